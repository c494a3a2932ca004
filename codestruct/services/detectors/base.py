"""Detector capability interface and shared tree helpers."""

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterator
from dataclasses import dataclass, field

from codestruct.core.config import AnalysisOptions
from codestruct.schemas.issue import GenericMetrics, Issue, IssueSeverity, IssueType
from codestruct.services.parser import SourceAST, SourceNode
from codestruct.services.source import CONFIG_LANGUAGE, is_test_path

logger = logging.getLogger(__name__)

CODE_LANGUAGES = frozenset({"python", "javascript", "typescript", "tsx"})

FUNCTION_KINDS = {
    "function_definition",
    "function_declaration",
    "generator_function_declaration",
    "method_definition",
    "arrow_function",
    "function_expression",
    "function",
    "generator_function",
}

CLASS_KINDS = {"class_definition", "class_declaration", "abstract_class_declaration", "class"}

# Nodes between a class and its methods, including `handler = () => {}` fields
_CLASS_MEMBER_CONTAINERS = {
    "block",
    "class_body",
    "decorated_definition",
    "field_definition",
    "public_field_definition",
}

# Parameter list entries that are syntax rather than parameters
_PARAMETER_MARKERS = {"positional_separator", "keyword_separator", "comment", "this"}

RECOMMENDATIONS: dict[IssueType, str] = {
    IssueType.LONG_METHOD: "Extract cohesive blocks into well-named helper functions.",
    IssueType.GOD_CLASS: "Split the class along its responsibilities into smaller collaborators.",
    IssueType.DEEP_NESTING: "Use guard clauses or extract nested blocks to flatten the control flow.",
    IssueType.LONG_PARAMETER_LIST: "Group related parameters into a parameter object or dataclass.",
    IssueType.HIGH_COMPLEXITY: "Break the function into smaller functions with fewer branches.",
    IssueType.COGNITIVE_COMPLEXITY: "Simplify nested conditionals and boolean logic so the flow reads top to bottom.",
    IssueType.DUPLICATE_CODE: "Extract the shared logic into one function and call it from each location.",
    IssueType.MAGIC_NUMBER: "Replace the literal with a named constant.",
    IssueType.DEAD_CODE: "Remove code that can never run or whose result is never used.",
    IssueType.FEATURE_ENVY: "Move the behaviour to the class whose data it uses.",
    IssueType.HARDCODED_CREDENTIALS: "Load credentials from environment variables or a secret manager.",
    IssueType.HARDCODED_SECRETS: "Revoke the secret and load it from a secret manager.",
    IssueType.SENSITIVE_FILE: "Remove the file from version control and add it to .gitignore.",
    IssueType.UNSAFE_LOGGING: "Do not log credentials; log a masked value or an identifier instead.",
    IssueType.WEAK_ENCRYPTION: "Use a modern algorithm (SHA-256 or better, AES-GCM, secrets module).",
    IssueType.HARDCODED_VALUES: "Move environment-specific values to configuration.",
}


@dataclass(frozen=True)
class FileContext:
    """Read-only context handed to every detector for one file."""

    project_id: str
    path: str
    language: str
    options: AnalysisOptions = field(default_factory=AnalysisOptions)

    @property
    def is_test(self) -> bool:
        return is_test_path(self.path)

    @property
    def is_config(self) -> bool:
        return self.language == CONFIG_LANGUAGE


@dataclass
class FunctionInfo:
    """A function or method found in a tree."""

    node: SourceNode
    name: str
    class_name: str | None
    parameters: list[str]

    @property
    def start_line(self) -> int:
        return self.node.start_line

    @property
    def end_line(self) -> int:
        return self.node.end_line

    @property
    def body(self) -> SourceNode:
        return self.node.child_by_field("body") or self.node


@dataclass
class ClassInfo:
    node: SourceNode
    name: str
    methods: list[FunctionInfo] = field(default_factory=list)


class Detector(ABC):
    """A pure function from one tree to zero or more issues.

    Subclasses declare the issue types they emit and the languages they
    understand; the framework never branches on detector identity.
    """

    name: str = "detector"
    issue_types: tuple[IssueType, ...] = ()
    languages: frozenset[str] = CODE_LANGUAGES

    def applies_to(self, language: str) -> bool:
        return language in self.languages

    @abstractmethod
    def detect(self, ast: SourceAST, context: FileContext) -> list[Issue]:
        """Analyse one tree. Must not mutate it."""


# =============================================================================
# Tree helpers
# =============================================================================


def is_function(node: SourceNode) -> bool:
    return node.named and node.kind in FUNCTION_KINDS


def is_class(node: SourceNode) -> bool:
    return node.named and node.kind in CLASS_KINDS


def walk_own(node: SourceNode) -> Iterator[SourceNode]:
    """Walk a function's subtree without entering nested function definitions."""
    stack = list(reversed(node.children))
    yield node
    while stack:
        current = stack.pop()
        if current.is_error:
            continue
        yield current
        if is_function(current):
            continue
        stack.extend(reversed(current.children))


def parameter_names(function: SourceNode, language: str, in_class: bool) -> list[str]:
    """Formal parameter names, without the implicit receiver in Python methods."""
    params_node = function.child_by_field("parameters")
    if params_node is None:
        single = function.child_by_field("parameter")
        return [single.text or single.kind] if single is not None else []

    names = []
    for param in params_node.named_children:
        if param.kind in _PARAMETER_MARKERS or param.is_error:
            continue
        names.append(_parameter_name(param))

    if language == "python" and in_class and names and names[0] in ("self", "cls"):
        names = names[1:]
    return names


def _parameter_name(param: SourceNode) -> str:
    if param.text is not None:
        return param.text
    for node in param.walk():
        if node.kind in ("identifier", "shorthand_property_identifier_pattern") and node.text:
            prefix = "*" if param.kind in ("list_splat_pattern", "rest_pattern") else ""
            prefix = "**" if param.kind == "dictionary_splat_pattern" else prefix
            return prefix + node.text
    return param.kind


def iter_functions(ast: SourceAST) -> list[FunctionInfo]:
    """Every function, method and named function expression in source order."""
    functions: list[FunctionInfo] = []
    stack: list[tuple[SourceNode, str | None, bool]] = [(ast.root, None, False)]

    while stack:
        node, class_name, direct_in_class = stack.pop()
        child_class, child_direct = class_name, False

        if is_class(node):
            child_class, child_direct = node.name or "<anonymous>", True
        elif is_function(node):
            functions.append(FunctionInfo(
                node=node,
                name=node.name or "<anonymous>",
                class_name=class_name if direct_in_class else None,
                parameters=parameter_names(node, ast.language, direct_in_class),
            ))
            child_class, child_direct = None, False
        elif direct_in_class and node.kind in _CLASS_MEMBER_CONTAINERS:
            child_direct = True

        for child in reversed(node.children):
            if not child.is_error:
                stack.append((child, child_class, child_direct))

    return functions


def iter_classes(ast: SourceAST) -> list[ClassInfo]:
    """Every class with the methods defined directly in its body."""
    classes: dict[int, ClassInfo] = {}
    order: list[int] = []
    for node in ast.walk():
        if is_class(node):
            classes[id(node)] = ClassInfo(node=node, name=node.name or "<anonymous>")
            order.append(id(node))

    by_name: dict[str, list[ClassInfo]] = {}
    for info in classes.values():
        by_name.setdefault(info.name, []).append(info)

    for function in iter_functions(ast):
        if function.class_name is None:
            continue
        for info in by_name.get(function.class_name, []):
            if info.node.start_line <= function.start_line <= info.node.end_line:
                info.methods.append(function)
                break

    return [classes[key] for key in order]


def code_line_count(node: SourceNode) -> int:
    """Lines holding at least one non-comment token."""
    lines: set[int] = set()
    for leaf in node.leaves():
        lines.update(range(leaf.start_line, leaf.end_line + 1))
    return len(lines)


def severity_for(value: float, threshold: float) -> IssueSeverity:
    """Severity from how far past threshold a metric lies."""
    if value > threshold * 2:
        return IssueSeverity.CRITICAL
    if value > threshold * 1.5:
        return IssueSeverity.HIGH
    return IssueSeverity.MEDIUM


def build_issue(
    issue_type: IssueType,
    severity: IssueSeverity,
    confidence: int,
    ast: SourceAST,
    line_start: int,
    line_end: int,
    description: str,
    metadata=None,
    function_name: str | None = None,
    class_name: str | None = None,
    excerpt: str | None = None,
) -> Issue:
    return Issue(
        type=issue_type,
        severity=severity,
        confidence=confidence,
        file_path=ast.path,
        line_start=line_start,
        line_end=max(line_start, line_end),
        function_name=function_name,
        class_name=class_name,
        description=description,
        recommendation=RECOMMENDATIONS[issue_type],
        code_excerpt=excerpt if excerpt is not None else ast.excerpt(line_start, line_end),
        metadata=metadata if metadata is not None else GenericMetrics(),
    )
