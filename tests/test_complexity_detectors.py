"""Tests for the per-function metrics and complexity detectors."""

import pytest

from codestruct.core.config import AnalysisOptions
from codestruct.schemas.issue import IssueSeverity, IssueType
from codestruct.services.detectors.base import FileContext, iter_functions
from codestruct.services.detectors.complexity import (
    CognitiveComplexityDetector,
    DeepNestingDetector,
    HighComplexityDetector,
    LongMethodDetector,
    LongParameterListDetector,
)
from codestruct.services.detectors.metrics import (
    cognitive_complexity,
    cyclomatic_complexity,
    max_nesting_depth,
)
from codestruct.services.parser import ParserAdapter

LONG_FUNCTION = '''
def compute(a):
    x = a + 1
    y = x * 2
    z = y - 3
    w = z / 4
    v = w + 5
    u = v - 6
    return u
'''


def parse(code, language="python", path="sample.py"):
    return ParserAdapter().parse(code, language, path)


def only_function(code, language="python", path="sample.py"):
    functions = iter_functions(parse(code, language, path))
    assert len(functions) == 1
    return functions[0].node


def context_for(path="sample.py", language="python", **options):
    return FileContext(project_id="p1", path=path, language=language, options=AnalysisOptions(**options))


# =============================================================================
# Metrics
# =============================================================================


class TestMetrics:

    def test_cyclomatic_python(self):
        code = '''
def classify(a, b, c, items):
    if a and b:
        return 1
    elif c:
        return 2
    for item in items:
        print(item)
    return 0
'''
        assert cyclomatic_complexity(only_function(code)) == 5

    def test_cyclomatic_javascript(self):
        code = "function pick(a, b) { if (a && b) { return 1; } return a ? 2 : 3; }"
        assert cyclomatic_complexity(only_function(code, "javascript", "pick.js")) == 4

    def test_straight_line_code_has_complexity_one(self):
        assert cyclomatic_complexity(only_function("def f(x):\n    return x + 1\n")) == 1

    def test_nested_function_is_measured_separately(self):
        code = '''
def outer(values):
    def inner(v):
        if v:
            return v
        return 0
    return [inner(v) for v in values]
'''
        functions = iter_functions(parse(code))
        outer = next(f for f in functions if f.name == "outer")
        inner = next(f for f in functions if f.name == "inner")
        # the comprehension's for_in_clause is the only branch in outer
        assert cyclomatic_complexity(outer.node) == 2
        assert cyclomatic_complexity(inner.node) == 2

    def test_nesting_depth(self):
        code = '''
def nested(items):
    for item in items:
        if item:
            while item > 0:
                if item % 2:
                    item -= 1
                item -= 1
    return items
'''
        assert max_nesting_depth(only_function(code)) == 4

    def test_elif_chain_does_not_nest(self):
        code = '''
def grade(score):
    if score > 90:
        return "A"
    elif score > 80:
        return "B"
    elif score > 70:
        return "C"
    else:
        return "F"
'''
        assert max_nesting_depth(only_function(code)) == 1

    def test_javascript_else_if_chain_does_not_nest(self):
        code = '''
function grade(x) {
  if (x === 1) { return 1; }
  else if (x === 2) { return 2; }
  else if (x === 3) { return 3; }
  else if (x === 4) { return 4; }
  return 0;
}
'''
        assert max_nesting_depth(only_function(code, "javascript", "grade.js")) == 1

    def test_cognitive_complexity_charges_nesting(self):
        code = '''
def cog(a, b):
    if a:
        for x in b:
            if x:
                return x
    elif b:
        return b
    else:
        return None
'''
        # if +1, for +2, inner if +3, elif +1, else +1
        assert cognitive_complexity(only_function(code)) == 8

    def test_cognitive_complexity_javascript_else_if(self):
        code = '''
function grade(x) {
  if (x === 1) { return 1; }
  else if (x === 2) { return 2; }
  else { return 0; }
}
'''
        # if +1, else if +1, else +1
        assert cognitive_complexity(only_function(code, "javascript", "grade.js")) == 3


# =============================================================================
# Detectors
# =============================================================================


class TestLongMethodDetector:

    def setup_method(self):
        self.detector = LongMethodDetector()

    def test_reports_long_function(self):
        issues = self.detector.detect(parse(LONG_FUNCTION), context_for(max_method_lines=5))

        assert len(issues) == 1
        issue = issues[0]
        assert issue.type == IssueType.LONG_METHOD
        assert issue.function_name == "compute"
        assert issue.severity == IssueSeverity.HIGH
        assert issue.confidence == 90
        assert issue.metadata.value == 8
        assert issue.metadata.threshold == 5
        assert (issue.line_start, issue.line_end) == (2, 9)

    def test_under_threshold_is_quiet(self):
        assert self.detector.detect(parse(LONG_FUNCTION), context_for()) == []

    def test_entry_points_get_lower_confidence(self):
        code = LONG_FUNCTION.replace("def compute", "def main")
        issues = self.detector.detect(parse(code), context_for(max_method_lines=5))
        assert issues[0].confidence == 75

    def test_critical_when_far_over_threshold(self):
        issues = self.detector.detect(parse(LONG_FUNCTION), context_for(max_method_lines=3))
        assert issues[0].severity == IssueSeverity.CRITICAL


class TestLongParameterListDetector:

    def setup_method(self):
        self.detector = LongParameterListDetector()

    def test_reports_function(self):
        code = "def build(a, b, c, d, e, f):\n    return a\n"
        issues = self.detector.detect(parse(code), context_for())

        assert len(issues) == 1
        assert issues[0].metadata.value == 6
        assert issues[0].severity == IssueSeverity.MEDIUM
        assert issues[0].confidence == 95

    def test_self_is_not_counted(self):
        code = '''
class Builder:
    def build(self, a, b, c, d):
        return a
'''
        assert self.detector.detect(parse(code), context_for()) == []

    def test_method_reports_class(self):
        code = '''
class Builder:
    def build(self, a, b, c, d, e):
        return a
'''
        issues = self.detector.detect(parse(code), context_for())
        assert issues[0].class_name == "Builder"
        assert issues[0].metadata.value == 5

    def test_typescript_function(self):
        code = "function make(a: number, b: number, c: number, d: number, e?: number): number { return a; }"
        issues = self.detector.detect(parse(code, "typescript", "make.ts"), context_for("make.ts", "typescript"))
        assert len(issues) == 1
        assert issues[0].metadata.value == 5


class TestBranchingDetectors:

    NESTED = '''
def nested(items):
    for item in items:
        if item:
            while item > 0:
                if item % 2:
                    item -= 1
                item -= 1
    return items
'''

    def test_deep_nesting(self):
        issues = DeepNestingDetector().detect(parse(self.NESTED), context_for())

        assert len(issues) == 1
        assert issues[0].type == IssueType.DEEP_NESTING
        assert issues[0].metadata.value == 4
        assert issues[0].severity == IssueSeverity.MEDIUM

    def test_high_complexity(self):
        issues = HighComplexityDetector().detect(parse(self.NESTED), context_for(max_cyclomatic_complexity=3))

        assert len(issues) == 1
        assert issues[0].metadata.value == 5
        assert issues[0].confidence == 90

    def test_cognitive_complexity(self):
        issues = CognitiveComplexityDetector().detect(parse(self.NESTED), context_for(max_cognitive_complexity=5))

        assert len(issues) == 1
        # for +1, if +2, while +3, if +4
        assert issues[0].metadata.value == 10
        assert issues[0].confidence == 85

    @pytest.mark.parametrize("detector", [
        DeepNestingDetector(),
        HighComplexityDetector(),
        CognitiveComplexityDetector(),
    ])
    def test_simple_code_is_quiet(self, detector):
        code = "def add(a, b):\n    return a + b\n"
        assert detector.detect(parse(code), context_for()) == []
