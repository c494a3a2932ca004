"""Refactoring verifier.

A candidate rewrite moves through an explicit state machine:

    received -> syntax_checked -> structure_compared -> risk_scored -> badged

Each stage appends one or more named validation layers. The badge is a pure
function of those layers, so it can be recomputed from a stored suggestion.
Nothing here executes the candidate code.
"""

import logging
import re
from abc import ABC, abstractmethod
from collections import Counter
from collections.abc import Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from difflib import SequenceMatcher
from enum import Enum

from codestruct.core.config import AnalysisOptions
from codestruct.core.exceptions import (
    InvalidStateTransitionError,
    ParseError,
    UnsupportedLanguageError,
)
from codestruct.schemas.issue import IssueType
from codestruct.schemas.refactoring import (
    ChangeType,
    LayerStatus,
    LineChange,
    RefactoringSuggestion,
    ValidationLayer,
    VerificationBadge,
    VerificationRequest,
)
from codestruct.services.detectors import STRUCTURAL_DETECTORS
from codestruct.services.detectors.base import Detector, FileContext, iter_classes, iter_functions
from codestruct.services.detectors.complexity import FunctionMetricDetector
from codestruct.services.detectors.metrics import (
    ERROR_HANDLER_KINDS,
    GUARD_KINDS,
    count_kinds,
    decision_points,
)
from codestruct.services.parser import SourceAST, SourceNode, get_parser_adapter
from codestruct.services.security import SecurityScanner

logger = logging.getLogger(__name__)


class VerificationState(str, Enum):
    RECEIVED = "received"
    SYNTAX_CHECKED = "syntax_checked"
    STRUCTURE_COMPARED = "structure_compared"
    RISK_SCORED = "risk_scored"
    BADGED = "badged"


# A failed syntax or structure stage jumps straight to badged
VERIFICATION_TRANSITIONS: dict[VerificationState, set[VerificationState]] = {
    VerificationState.RECEIVED: {VerificationState.SYNTAX_CHECKED, VerificationState.BADGED},
    VerificationState.SYNTAX_CHECKED: {VerificationState.STRUCTURE_COMPARED, VerificationState.BADGED},
    VerificationState.STRUCTURE_COMPARED: {VerificationState.RISK_SCORED, VerificationState.BADGED},
    VerificationState.RISK_SCORED: {VerificationState.BADGED},
    VerificationState.BADGED: set(),
}

BADGE_CONFIDENCE: dict[VerificationBadge, int] = {
    VerificationBadge.VERIFIED: 95,
    VerificationBadge.WARNING: 60,
    VerificationBadge.FAILED: 0,
}

# Containers whose children sit one statement level deeper
_SCOPE_KINDS = {"block", "statement_block", "class_body", "switch_body", "object", "array"}

_CALL_KINDS = {"call", "call_expression", "new_expression"}
_CALLEE_NAME_KINDS = {"identifier", "property_identifier", "type_identifier"}

_FENCE = re.compile(r"^\s*```[\w+-]*\s*\n(?P<body>.*?)\n?\s*```\s*$", re.DOTALL)


class DiffBudgetExceeded(Exception):
    """The two trees are too large to align within the configured budget."""


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence, if any."""
    match = _FENCE.match(text)
    return match.group("body") + "\n" if match else text


def has_code(ast: SourceAST) -> bool:
    """True if the tree holds at least one token that is not a comment."""
    return any(leaf is not ast.root for leaf in ast.root.leaves())


def badge_for(layers: Sequence[ValidationLayer]) -> VerificationBadge:
    """Failed if any layer failed, verified if all passed, warning otherwise."""
    statuses = {layer.status for layer in layers}
    if not layers or LayerStatus.FAIL in statuses:
        return VerificationBadge.FAILED
    if statuses == {LayerStatus.PASS}:
        return VerificationBadge.VERIFIED
    return VerificationBadge.WARNING


@dataclass
class VerificationContext:
    """Mutable state threaded through the verification stages of one candidate."""

    request: VerificationRequest
    options: AnalysisOptions
    refactored_code: str
    state: VerificationState = VerificationState.RECEIVED
    original_ast: SourceAST | None = None
    refactored_ast: SourceAST | None = None
    changes: list[LineChange] = field(default_factory=list)
    layers: list[ValidationLayer] = field(default_factory=list)

    def advance(self, new_state: VerificationState) -> None:
        if new_state not in VERIFICATION_TRANSITIONS[self.state]:
            raise InvalidStateTransitionError("verification", self.state.value, new_state.value)
        self.state = new_state

    def add_layer(self, name: str, status: LayerStatus, detail: str) -> None:
        self.layers.append(ValidationLayer(name=name, status=status, detail=detail))

    def file_context(self) -> FileContext:
        # Secrets are always scanned here, whatever the file looks like
        options = self.options.model_copy(update={"scan_test_files_for_secrets": True})
        return FileContext(
            project_id="verification",
            path=self.request.file_path,
            language=self.request.language,
            options=options,
        )


# =============================================================================
# Line diff
# =============================================================================


def _line_units(ast: SourceAST) -> list[tuple[int, tuple]]:
    """One (line, key) unit per source line that holds tokens.

    The key is the statement depth of the line's first token plus the token
    texts starting on that line, so layout changes that keep every token on
    its line and at its depth compare equal.
    """
    units: dict[int, tuple[int, list[str]]] = {}
    stack = [(ast.root, 0)]
    while stack:
        node, depth = stack.pop()
        if not node.children:
            if node.start_byte == node.end_byte or not node.text:
                continue
            entry = units.setdefault(node.start_line, (depth, []))
            entry[1].append(node.text)
            continue
        child_depth = depth + 1 if node.kind in _SCOPE_KINDS else depth
        stack.extend((child, child_depth) for child in reversed(node.children))
    return [(line, (depth, tuple(tokens))) for line, (depth, tokens) in sorted(units.items())]


def compute_changes(original: SourceAST, refactored: SourceAST, max_units: int) -> list[LineChange]:
    """Classify changed lines as add, modify or remove by aligning token lines.

    Add and modify changes carry refactored line numbers; removals carry
    original line numbers.

    Raises:
        DiffBudgetExceeded: If the combined unit count exceeds ``max_units``
    """
    old_units = _line_units(original)
    new_units = _line_units(refactored)
    if len(old_units) + len(new_units) > max_units:
        raise DiffBudgetExceeded(f"{len(old_units) + len(new_units)} diff units exceed {max_units}")

    old_lines, new_lines = original.lines, refactored.lines

    def old_text(i: int) -> str:
        return old_lines[old_units[i][0] - 1]

    def new_text(j: int) -> str:
        return new_lines[new_units[j][0] - 1]

    matcher = SequenceMatcher(None, [u[1] for u in old_units], [u[1] for u in new_units], autojunk=False)
    changes: list[LineChange] = []
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            continue
        paired = min(i2 - i1, j2 - j1) if tag == "replace" else 0
        for k in range(paired):
            changes.append(LineChange(
                line_number=new_units[j1 + k][0],
                type=ChangeType.MODIFY,
                content=new_text(j1 + k),
                original_content=old_text(i1 + k),
            ))
        for i in range(i1 + paired, i2):
            changes.append(LineChange(
                line_number=old_units[i][0], type=ChangeType.REMOVE, content=old_text(i),
            ))
        for j in range(j1 + paired, j2):
            changes.append(LineChange(
                line_number=new_units[j][0], type=ChangeType.ADD, content=new_text(j),
            ))
    return changes


# =============================================================================
# Risk checks
# =============================================================================


class RiskCheck(ABC):
    """One heuristic in the risk battery. Produces exactly one validation layer."""

    name: str = "risk"

    @abstractmethod
    def run(self, context: VerificationContext) -> ValidationLayer:
        """Judge the refactored tree against the original."""

    def layer(self, status: LayerStatus, detail: str) -> ValidationLayer:
        return ValidationLayer(name=self.name, status=status, detail=detail)


def _is_public(name: str) -> bool:
    if name == "<anonymous>":
        return False
    return not name.startswith("_") or (name.startswith("__") and name.endswith("__"))


def public_signatures(ast: SourceAST) -> dict[str, list[str]]:
    """Top-level functions and methods that callers can see, with their parameters."""
    functions = iter_functions(ast)
    signatures: dict[str, list[str]] = {}
    for function in functions:
        nested = any(
            other is not function
            and other.node.start_byte <= function.node.start_byte
            and function.node.end_byte <= other.node.end_byte
            for other in functions
        )
        if nested or not _is_public(function.name):
            continue
        key = f"{function.class_name}.{function.name}" if function.class_name else function.name
        signatures.setdefault(key, function.parameters)
    return signatures


class SignaturesPreservedCheck(RiskCheck):
    name = "signatures"

    def run(self, context: VerificationContext) -> ValidationLayer:
        before = public_signatures(context.original_ast)
        after = public_signatures(context.refactored_ast)

        removed = sorted(set(before) - set(after))
        changed = sorted(k for k in before if k in after and before[k] != after[k])
        if removed or changed:
            problems = [f"removed {name}" for name in removed]
            problems += [f"{name}({', '.join(before[name])}) -> ({', '.join(after[name])})" for name in changed]
            return self.layer(LayerStatus.FAIL, "; ".join(problems))
        return self.layer(LayerStatus.PASS, f"{len(before)} public signatures preserved")


class NoNewSecretsCheck(RiskCheck):
    name = "security"

    _secret_types = {IssueType.HARDCODED_CREDENTIALS, IssueType.HARDCODED_SECRETS}

    def __init__(self, scanner: SecurityScanner | None = None):
        self.scanner = scanner or SecurityScanner()

    def _fingerprints(self, ast: SourceAST, context: VerificationContext) -> tuple[Counter, Counter, dict]:
        secrets: Counter = Counter()
        logging_leaks: Counter = Counter()
        lines: dict[tuple, int] = {}
        file_context = context.file_context()
        for issue in self.scanner.scan_lines(ast, file_context) + self.scanner.check_logging_calls(ast, file_context):
            # Keyed by the value, not the line, so renaming its holder changes nothing
            if issue.type in self._secret_types:
                key = (issue.type.value, issue.metadata.rule_id, issue.metadata.masked_value or issue.code_excerpt.strip())
                secrets[key] += 1
            elif issue.type is IssueType.UNSAFE_LOGGING:
                key = (issue.type.value, issue.metadata.rule_id, str(issue.metadata.credential_derived))
                logging_leaks[key] += 1
            else:
                continue
            lines.setdefault(key, issue.line_start)
        return secrets, logging_leaks, lines

    def run(self, context: VerificationContext) -> ValidationLayer:
        old_secrets, old_leaks, _ = self._fingerprints(context.original_ast, context)
        new_secrets, new_leaks, lines = self._fingerprints(context.refactored_ast, context)

        introduced = new_secrets - old_secrets
        if introduced:
            where = ", ".join(f"{key[1]} on line {lines[key]}" for key in sorted(introduced))
            return self.layer(LayerStatus.FAIL, f"new hardcoded secret introduced: {where}")
        leaked = new_leaks - old_leaks
        if leaked:
            return self.layer(
                LayerStatus.WARNING,
                f"new logging of sensitive values on line(s) {', '.join(str(lines[k]) for k in sorted(leaked))}",
            )
        return self.layer(LayerStatus.PASS, "no new secrets or sensitive logging")


class ComplexityNotIncreasedCheck(RiskCheck):
    name = "complexity"

    def run(self, context: VerificationContext) -> ValidationLayer:
        before = decision_points(context.original_ast.root, include_nested=True) + 1
        after = decision_points(context.refactored_ast.root, include_nested=True) + 1
        if after > before:
            return self.layer(LayerStatus.WARNING, f"cyclomatic complexity rose from {before} to {after}")
        return self.layer(LayerStatus.PASS, f"cyclomatic complexity {before} -> {after}")


class ErrorHandlingPreservedCheck(RiskCheck):
    name = "error_handling"

    def run(self, context: VerificationContext) -> ValidationLayer:
        handlers_before = count_kinds(context.original_ast.root, ERROR_HANDLER_KINDS)
        handlers_after = count_kinds(context.refactored_ast.root, ERROR_HANDLER_KINDS)
        guards_before = count_kinds(context.original_ast.root, GUARD_KINDS)
        guards_after = count_kinds(context.refactored_ast.root, GUARD_KINDS)

        if handlers_after < handlers_before:
            return self.layer(
                LayerStatus.FAIL,
                f"error handlers dropped from {handlers_before} to {handlers_after}",
            )
        if guards_after < guards_before:
            return self.layer(
                LayerStatus.WARNING,
                f"raise/throw/assert guards dropped from {guards_before} to {guards_after}",
            )
        return self.layer(
            LayerStatus.PASS,
            f"{handlers_after} error handlers and {guards_after} guards kept",
        )


def _callee_name(ast: SourceAST, call: SourceNode) -> str | None:
    callee = call.child_by_field("function") or call.child_by_field("constructor")
    if callee is None:
        return None
    if callee.kind == "attribute":
        callee = callee.child_by_field("attribute")
    elif callee.kind == "member_expression":
        callee = callee.child_by_field("property")
    if callee is None or callee.kind not in _CALLEE_NAME_KINDS:
        return None
    return ast.text_of(callee)


def defined_names(ast: SourceAST) -> set[str]:
    return {f.name for f in iter_functions(ast)} | {c.name for c in iter_classes(ast)}


def external_calls(ast: SourceAST) -> set[str]:
    """Names of called functions that the code does not define itself."""
    called = set()
    for node in ast.walk():
        if node.kind in _CALL_KINDS:
            name = _callee_name(ast, node)
            if name is not None:
                called.add(name)
    return called - defined_names(ast)


class CallsPreservedCheck(RiskCheck):
    """Calls to code outside the snippet are its side effects; none may vanish."""

    name = "calls"

    def run(self, context: VerificationContext) -> ValidationLayer:
        before = external_calls(context.original_ast)
        after = external_calls(context.refactored_ast) | defined_names(context.refactored_ast)
        dropped = sorted(before - after)
        if dropped:
            return self.layer(LayerStatus.WARNING, f"external calls no longer made: {', '.join(dropped)}")
        return self.layer(LayerStatus.PASS, f"{len(before)} external calls kept")


class IssueAddressedCheck(RiskCheck):
    """Whether the rewrite reduces the metric behind the issue it was made for.

    Only advisory: an unrelated or no-op rewrite warns, it never fails.
    """

    name = "issue_target"

    def __init__(self, detectors: Sequence[Detector] | None = None):
        if detectors is None:
            detectors = [detector_cls() for detector_cls in STRUCTURAL_DETECTORS] + [SecurityScanner()]
        self.detectors = list(detectors)

    def measure(self, issue_type: IssueType, ast: SourceAST, context: FileContext) -> int | None:
        for detector in self.detectors:
            if issue_type not in detector.issue_types or not detector.applies_to(ast.language):
                continue
            if isinstance(detector, FunctionMetricDetector):
                return max((detector.measure(f, ast) for f in iter_functions(ast)), default=0)
            return sum(1 for issue in detector.detect(ast, context) if issue.type is issue_type)
        return None

    def run(self, context: VerificationContext) -> ValidationLayer:
        issue_type = context.request.issue_type
        if issue_type is None:
            return self.layer(LayerStatus.PASS, "no target issue")
        if not context.changes:
            return self.layer(LayerStatus.PASS, "code unchanged")

        if issue_type is IssueType.DUPLICATE_CODE:
            before = len(iter_functions(context.original_ast))
            after = len(iter_functions(context.refactored_ast))
            if after > before:
                return self.layer(LayerStatus.PASS, f"shared code extracted into {after - before} new function(s)")
            return self.layer(LayerStatus.WARNING, "no shared function extracted")

        file_context = context.file_context()
        before = self.measure(issue_type, context.original_ast, file_context)
        if before is None:
            return self.layer(LayerStatus.PASS, f"no check for {issue_type.value}")
        after = self.measure(issue_type, context.refactored_ast, file_context)
        if after < before:
            return self.layer(LayerStatus.PASS, f"{issue_type.value} reduced from {before} to {after}")
        return self.layer(LayerStatus.WARNING, f"{issue_type.value} not reduced ({before} -> {after})")


def default_risk_checks() -> list[RiskCheck]:
    return [
        SignaturesPreservedCheck(),
        NoNewSecretsCheck(),
        ComplexityNotIncreasedCheck(),
        ErrorHandlingPreservedCheck(),
        CallsPreservedCheck(),
        IssueAddressedCheck(),
    ]


# =============================================================================
# Verifier
# =============================================================================


class RefactoringVerifier:
    """Runs the verification state machine for candidate refactorings."""

    def __init__(
        self,
        options: AnalysisOptions | None = None,
        checks: Sequence[RiskCheck] | None = None,
        max_workers: int = 4,
    ):
        self.options = options or AnalysisOptions()
        self.checks = list(checks) if checks is not None else default_risk_checks()
        self.max_workers = max(1, max_workers)

    def verify(self, request: VerificationRequest) -> RefactoringSuggestion:
        """Verify one candidate. Never raises for bad candidate code."""
        context = VerificationContext(
            request=request,
            options=self.options,
            refactored_code=strip_code_fences(request.refactored_code),
        )

        if self._check_syntax(context):
            if self._compare_structure(context):
                self._score_risk(context)
        context.advance(VerificationState.BADGED)
        return self._suggestion(context)

    def verify_many(self, requests: Iterable[VerificationRequest]) -> list[RefactoringSuggestion]:
        """Verify independent candidates in parallel, preserving input order."""
        requests = list(requests)
        if len(requests) <= 1 or self.max_workers == 1:
            return [self.verify(r) for r in requests]
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="verify") as executor:
            return list(executor.map(self.verify, requests))

    def _check_syntax(self, context: VerificationContext) -> bool:
        request = context.request
        parser = get_parser_adapter(self.options.max_ast_nodes)
        try:
            context.original_ast = parser.parse(request.original_code, request.language, request.file_path)
            context.refactored_ast = parser.parse_strict(
                context.refactored_code, request.language, request.file_path
            )
        except (UnsupportedLanguageError, ParseError) as e:
            logger.info(f"Candidate for {request.file_path} rejected at syntax stage: {e}")
            context.add_layer("syntax", LayerStatus.FAIL, str(e))
            return False
        except Exception as e:
            logger.error(f"Syntax stage crashed for {request.file_path}: {e}", exc_info=True)
            context.add_layer("syntax", LayerStatus.FAIL, f"parser error: {e}")
            return False

        if has_code(context.original_ast) and not has_code(context.refactored_ast):
            logger.info(f"Candidate for {request.file_path} rejected at syntax stage: no code")
            context.add_layer("syntax", LayerStatus.FAIL, "refactored code is empty")
            return False

        context.add_layer("syntax", LayerStatus.PASS, "refactored code parses cleanly")
        context.advance(VerificationState.SYNTAX_CHECKED)
        return True

    def _compare_structure(self, context: VerificationContext) -> bool:
        try:
            context.changes = compute_changes(
                context.original_ast, context.refactored_ast, self.options.max_diff_units
            )
        except DiffBudgetExceeded as e:
            logger.warning(f"Diff budget exceeded for {context.request.file_path}: {e}")
            context.add_layer("structure", LayerStatus.FAIL, f"diff budget exceeded: {e}")
            return False

        counts = Counter(change.type.value for change in context.changes)
        detail = (
            "no changes"
            if not context.changes
            else ", ".join(f"{counts[t.value]} {t.value}" for t in ChangeType if counts[t.value])
        )
        context.add_layer("structure", LayerStatus.PASS, detail)
        context.advance(VerificationState.STRUCTURE_COMPARED)
        return True

    def _score_risk(self, context: VerificationContext) -> None:
        for check in self.checks:
            try:
                context.layers.append(check.run(context))
            except Exception as e:
                logger.error(f"Risk check '{check.name}' crashed: {e}", exc_info=True)
                context.add_layer(check.name, LayerStatus.FAIL, f"check crashed: {e}")
        context.advance(VerificationState.RISK_SCORED)

    def _suggestion(self, context: VerificationContext) -> RefactoringSuggestion:
        request = context.request
        badge = badge_for(context.layers)
        confidence = BADGE_CONFIDENCE[badge]
        if request.confidence is not None:
            confidence = min(confidence, request.confidence)

        return RefactoringSuggestion(
            issue_id=request.issue_id,
            issue_type=request.issue_type,
            file_path=request.file_path,
            original_code=request.original_code,
            refactored_code=context.refactored_code,
            explanation=request.explanation,
            confidence=confidence,
            changes=context.changes,
            is_verified=badge == VerificationBadge.VERIFIED,
            verification_badge=badge,
            validation_layers=context.layers,
        )
