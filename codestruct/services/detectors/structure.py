"""Class-level and statement-level structure detectors."""

import logging
from collections import Counter, defaultdict

from codestruct.schemas.issue import ComplexityMetrics, Issue, IssueSeverity, IssueType
from codestruct.services.detectors.base import (
    Detector,
    FileContext,
    build_issue,
    code_line_count,
    iter_classes,
    iter_functions,
    severity_for,
    walk_own,
)
from codestruct.services.parser import SourceAST, SourceNode

logger = logging.getLogger(__name__)

NUMBER_KINDS = {"integer", "float", "number"}

# Values that are almost never magic
ALLOWED_NUMBERS = {0, 1, -1, 2, 0.5, 10, 24, 60, 100, 365, 1000}
HTTP_STATUS_CODES = {200, 201, 204, 301, 302, 304, 400, 401, 403, 404, 409, 422, 429, 500, 502, 503}

# Numbers under these nodes are named or defaulted already
_DEFAULT_VALUE_KINDS = {
    "default_parameter",
    "typed_default_parameter",
    "assignment_pattern",
    "optional_parameter",
}

BLOCK_KINDS = {"block", "statement_block"}
TERMINATOR_KINDS = {
    "return_statement",
    "raise_statement",
    "throw_statement",
    "break_statement",
    "continue_statement",
}

IDENTIFIER_KINDS = {"identifier", "shorthand_property_identifier"}

# Receivers that are modules or globals rather than collaborating objects
_GLOBAL_RECEIVERS = {
    "console", "Math", "JSON", "Object", "Array", "Promise", "Number", "String",
    "logger", "logging", "log", "os", "sys", "re", "json", "math", "super",
}


class GodClassDetector(Detector):
    """Classes that are too long or have too many methods."""

    name = "god_class"
    issue_types = (IssueType.GOD_CLASS,)

    def detect(self, ast: SourceAST, context: FileContext) -> list[Issue]:
        max_lines = context.options.max_class_lines
        max_methods = context.options.max_class_methods
        issues = []

        for cls in iter_classes(ast):
            lines = code_line_count(cls.node)
            methods = len(cls.methods)
            if lines <= max_lines and methods <= max_methods:
                continue

            ratio = max(lines / max_lines, methods / max_methods)
            issues.append(build_issue(
                IssueType.GOD_CLASS,
                severity_for(ratio, 1.0),
                85,
                ast,
                cls.node.start_line,
                cls.node.end_line,
                f"Class '{cls.name}' has {lines} code lines and {methods} methods "
                f"(thresholds {max_lines} lines, {max_methods} methods)",
                metadata=ComplexityMetrics(
                    metric="class size",
                    value=lines,
                    threshold=max_lines,
                    extra={"methods": float(methods), "method_threshold": float(max_methods)},
                ),
                class_name=cls.name,
            ))
        return issues


class MagicNumberDetector(Detector):
    """Unnamed numeric literals, grouped per line."""

    name = "magic_number"
    issue_types = (IssueType.MAGIC_NUMBER,)

    def detect(self, ast: SourceAST, context: FileContext) -> list[Issue]:
        by_line: dict[int, list[str]] = defaultdict(list)
        stack: list[tuple[SourceNode, bool]] = [(ast.root, False)]

        while stack:
            node, exempt = stack.pop()
            if node.is_error:
                continue
            if node.kind in NUMBER_KINDS and node.text and not exempt:
                if self._is_magic(node.text):
                    by_line[node.start_line].append(node.text)
                continue

            child_exempt = exempt or node.kind in _DEFAULT_VALUE_KINDS or self._is_constant_binding(node)
            for child in reversed(node.children):
                stack.append((child, child_exempt))

        issues = []
        for line in sorted(by_line):
            values = by_line[line]
            issues.append(build_issue(
                IssueType.MAGIC_NUMBER,
                IssueSeverity.MEDIUM,
                75,
                ast,
                line,
                line,
                f"Magic number{'s' if len(values) > 1 else ''} {', '.join(values)} on line {line}",
                metadata=ComplexityMetrics(
                    metric="magic numbers", value=len(values), threshold=0,
                ),
                excerpt=ast.excerpt(line, line, max_lines=1),
            ))
        return issues

    @staticmethod
    def _is_magic(text: str) -> bool:
        cleaned = text.replace("_", "").rstrip("nLljJ")
        try:
            value = int(cleaned, 0)
        except ValueError:
            try:
                value = float(cleaned)
            except ValueError:
                return False
        if value in ALLOWED_NUMBERS or value in HTTP_STATUS_CODES:
            return False
        return abs(value) > 2 or value != int(value)

    @staticmethod
    def _is_constant_binding(node: SourceNode) -> bool:
        """UPPER_CASE = ... style assignments name their literals."""
        if node.kind == "assignment":
            target = node.child_by_field("left")
        elif node.kind == "variable_declarator":
            target = node.child_by_field("name")
        else:
            return False
        return target is not None and target.text is not None and target.text.isupper()


class DeadCodeDetector(Detector):
    """Unreachable statements and locals that are written but never read."""

    name = "dead_code"
    issue_types = (IssueType.DEAD_CODE,)

    def detect(self, ast: SourceAST, context: FileContext) -> list[Issue]:
        return self._unreachable(ast) + self._unused_locals(ast)

    def _unreachable(self, ast: SourceAST) -> list[Issue]:
        issues = []
        for block in ast.walk():
            if block.kind not in BLOCK_KINDS:
                continue
            statements = [s for s in block.named_children if s.kind != "comment"]
            for index, statement in enumerate(statements[:-1]):
                if statement.kind not in TERMINATOR_KINDS:
                    continue
                first, last = statements[index + 1], statements[-1]
                issues.append(build_issue(
                    IssueType.DEAD_CODE,
                    IssueSeverity.HIGH,
                    90,
                    ast,
                    first.start_line,
                    last.end_line,
                    f"Unreachable code after {statement.kind.replace('_statement', '')} "
                    f"on line {statement.start_line}",
                    metadata=ComplexityMetrics(
                        metric="unreachable statements",
                        value=len(statements) - index - 1,
                        threshold=0,
                    ),
                ))
                break
        return issues

    def _unused_locals(self, ast: SourceAST) -> list[Issue]:
        issues = []
        for function in iter_functions(ast):
            assigned: dict[str, SourceNode] = {}
            targets: set[int] = set()
            declared_outer: set[str] = set()

            for node in walk_own(function.body):
                if node.kind in ("global_statement", "nonlocal_statement"):
                    declared_outer.update(n.text for n in node.walk() if n.kind == "identifier")
                target = self._assignment_target(node)
                if target is not None:
                    targets.add(id(target))
                    assigned.setdefault(target.text, target)

            if not assigned:
                continue

            reads = Counter(
                node.text
                for node in function.node.walk()
                if node.kind in IDENTIFIER_KINDS and id(node) not in targets
            )

            for name, target in assigned.items():
                if name.startswith("_") or name in declared_outer or reads[name]:
                    continue
                issues.append(build_issue(
                    IssueType.DEAD_CODE,
                    IssueSeverity.LOW,
                    70,
                    ast,
                    target.start_line,
                    target.start_line,
                    f"Local variable '{name}' in '{function.name}' is assigned but never used",
                    metadata=ComplexityMetrics(metric="unused locals", value=1, threshold=0),
                    function_name=function.name,
                    class_name=function.class_name,
                    excerpt=ast.excerpt(target.start_line, target.start_line, max_lines=1),
                ))
        return issues

    @staticmethod
    def _assignment_target(node: SourceNode) -> SourceNode | None:
        if node.kind == "assignment":
            target = node.child_by_field("left")
        elif node.kind == "variable_declarator":
            target = node.child_by_field("name")
        else:
            return None
        if target is not None and target.kind == "identifier" and target.text:
            return target
        return None


class FeatureEnvyDetector(Detector):
    """Methods more interested in another object's members than their own."""

    name = "feature_envy"
    issue_types = (IssueType.FEATURE_ENVY,)

    def detect(self, ast: SourceAST, context: FileContext) -> list[Issue]:
        imported = self._imported_names(ast)
        minimum = context.options.feature_envy_min_accesses
        issues = []

        for function in iter_functions(ast):
            if function.class_name is None:
                continue

            local = 0
            external: Counter[str] = Counter()
            for node in walk_own(function.body):
                receiver = self._receiver(node)
                if receiver is None:
                    continue
                if receiver in ("self", "this", "cls"):
                    local += 1
                elif receiver not in imported and receiver not in _GLOBAL_RECEIVERS:
                    external[receiver] += 1

            if not external:
                continue
            envied, count = max(sorted(external.items()), key=lambda item: item[1])
            if count < minimum or count <= local:
                continue

            issues.append(build_issue(
                IssueType.FEATURE_ENVY,
                IssueSeverity.MEDIUM,
                70,
                ast,
                function.start_line,
                function.end_line,
                f"Method '{function.name}' accesses '{envied}' {count} times "
                f"but its own members only {local} times",
                metadata=ComplexityMetrics(
                    metric="external accesses",
                    value=count,
                    threshold=minimum,
                    extra={"local_accesses": float(local)},
                ),
                function_name=function.name,
                class_name=function.class_name,
            ))
        return issues

    @staticmethod
    def _receiver(node: SourceNode) -> str | None:
        if node.kind not in ("attribute", "member_expression"):
            return None
        obj = node.child_by_field("object")
        if obj is None:
            return None
        if obj.kind == "this":
            return "this"
        if obj.kind == "identifier":
            return obj.text
        return None

    @staticmethod
    def _imported_names(ast: SourceAST) -> set[str]:
        names: set[str] = set()
        for node in ast.walk():
            if node.kind in ("import_statement", "import_from_statement", "import_declaration"):
                names.update(n.text for n in node.walk() if n.kind == "identifier" and n.text)
        return names
