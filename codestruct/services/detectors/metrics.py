"""Structural metrics computed from normalized trees.

All metrics stop at nested function definitions so each function is measured
on its own body.
"""

from codestruct.services.detectors.base import is_function, walk_own
from codestruct.services.parser import SourceNode

# Nodes that add one path through the code
DECISION_KINDS = {
    # python
    "if_statement",
    "elif_clause",
    "for_statement",
    "while_statement",
    "except_clause",
    "conditional_expression",
    "case_clause",
    "for_in_clause",
    "if_clause",
    "boolean_operator",
    # javascript / typescript
    "for_in_statement",
    "do_statement",
    "switch_case",
    "catch_clause",
    "ternary_expression",
}

LOGICAL_OPERATORS = {"&&", "||", "??", "and", "or"}

# Control structures that open a nesting level
NESTING_KINDS = {
    "if_statement",
    "for_statement",
    "for_in_statement",
    "while_statement",
    "do_statement",
    "try_statement",
    "with_statement",
    "match_statement",
    "switch_statement",
}

# Structures that cost 1 + current nesting in cognitive complexity
COGNITIVE_NESTED_KINDS = {
    "if_statement",
    "for_statement",
    "for_in_statement",
    "while_statement",
    "do_statement",
    "switch_statement",
    "match_statement",
    "except_clause",
    "catch_clause",
    "conditional_expression",
    "ternary_expression",
}

# Structures that cost a flat 1
COGNITIVE_FLAT_KINDS = {"elif_clause", "else_clause"}

NESTED_SCOPE_KINDS = {"lambda", "arrow_function", "function_expression"}

ERROR_HANDLER_KINDS = {"except_clause", "catch_clause"}
GUARD_KINDS = {"raise_statement", "throw_statement", "assert_statement"}


def is_logical_operator(node: SourceNode) -> bool:
    if node.kind == "boolean_operator":
        return True
    if node.kind == "binary_expression":
        operator = node.child_by_field("operator")
        return operator is not None and operator.text in LOGICAL_OPERATORS
    return False


def _is_else_if(node: SourceNode, parent: SourceNode | None) -> bool:
    return node.kind == "if_statement" and parent is not None and parent.kind == "else_clause"


def decision_points(node: SourceNode, include_nested: bool = False) -> int:
    """Count branch points; boolean_operator is already a decision kind."""
    nodes = node.walk() if include_nested else walk_own(node)
    count = 0
    for current in nodes:
        if not current.named:
            continue
        if current.kind in DECISION_KINDS or (
            current.kind == "binary_expression" and is_logical_operator(current)
        ):
            count += 1
    return count


def cyclomatic_complexity(node: SourceNode) -> int:
    """Decision points + 1."""
    return decision_points(node) + 1


def max_nesting_depth(node: SourceNode) -> int:
    """Deepest stack of control structures; else-if chains do not nest."""
    deepest = 0
    stack: list[tuple[SourceNode, int, SourceNode | None]] = [(node, 0, None)]
    while stack:
        current, depth, parent = stack.pop()
        if current.is_error:
            continue
        if current is not node and is_function(current):
            continue
        if current.named and current.kind in NESTING_KINDS and not _is_else_if(current, parent):
            depth += 1
            deepest = max(deepest, depth)
        for child in current.children:
            stack.append((child, depth, current))
    return deepest


def cognitive_complexity(node: SourceNode) -> int:
    """Cognitive complexity in the style of the SonarSource definition.

    Nesting structures cost 1 plus the current nesting level, else/elif and
    each logical operator cost 1, and lambdas raise the nesting level.
    """
    total = 0
    stack: list[tuple[SourceNode, int, SourceNode | None]] = [
        (child, 0, node) for child in reversed(node.children)
    ]
    while stack:
        current, nesting, parent = stack.pop()
        if current.is_error or not current.named:
            continue
        if is_function(current) and current.kind not in NESTED_SCOPE_KINDS:
            continue

        child_nesting = nesting
        if _is_else_if(current, parent):
            total += 1
        elif current.kind in COGNITIVE_NESTED_KINDS:
            total += 1 + nesting
            child_nesting = nesting + 1
        elif current.kind in COGNITIVE_FLAT_KINDS:
            # Python's else on loops and try blocks is not a branch of an if;
            # an `else if` is charged on the inner if_statement
            if current.kind == "elif_clause":
                total += 1
            elif parent is not None and parent.kind == "if_statement" and not any(
                child.kind == "if_statement" for child in current.named_children
            ):
                total += 1
        elif is_logical_operator(current):
            total += 1
        elif current.kind in NESTED_SCOPE_KINDS:
            child_nesting = nesting + 1

        for child in reversed(current.children):
            stack.append((child, child_nesting, current))
    return total


def count_kinds(node: SourceNode, kinds: set[str]) -> int:
    return sum(1 for current in node.walk() if current.named and current.kind in kinds)
