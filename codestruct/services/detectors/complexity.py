"""Per-function complexity detectors.

Each detector measures one metric per function and reports the functions that
exceed the configured threshold. Confidence is high because the metrics are
exact counts over the tree.
"""

import re

from codestruct.schemas.issue import ComplexityMetrics, Issue, IssueType
from codestruct.services.detectors.base import (
    Detector,
    FileContext,
    FunctionInfo,
    build_issue,
    code_line_count,
    iter_functions,
    severity_for,
)
from codestruct.services.detectors.metrics import (
    cognitive_complexity,
    cyclomatic_complexity,
    max_nesting_depth,
)
from codestruct.services.parser import SourceAST

# Entry points that are long by convention
_ENTRY_POINT_NAMES = re.compile(r"^(main|setup|setUp|configure|init|test\w*|it|describe)$")


class FunctionMetricDetector(Detector):
    """Template for detectors that compare one per-function metric to a threshold."""

    issue_type: IssueType
    metric_name: str = ""
    confidence: int = 90

    def threshold(self, context: FileContext) -> int:
        raise NotImplementedError

    def measure(self, function: FunctionInfo, ast: SourceAST) -> int:
        raise NotImplementedError

    def describe(self, function: FunctionInfo, value: int, threshold: int) -> str:
        return f"Function '{function.name}' has {self.metric_name} {value} (threshold {threshold})"

    def confidence_for(self, function: FunctionInfo) -> int:
        return self.confidence

    def detect(self, ast: SourceAST, context: FileContext) -> list[Issue]:
        threshold = self.threshold(context)
        issues = []
        for function in iter_functions(ast):
            value = self.measure(function, ast)
            if value <= threshold:
                continue
            issues.append(build_issue(
                self.issue_type,
                severity_for(value, threshold),
                self.confidence_for(function),
                ast,
                function.start_line,
                function.end_line,
                self.describe(function, value, threshold),
                metadata=ComplexityMetrics(metric=self.metric_name, value=value, threshold=threshold),
                function_name=function.name,
                class_name=function.class_name,
            ))
        return issues


class LongMethodDetector(FunctionMetricDetector):
    name = "long_method"
    issue_types = (IssueType.LONG_METHOD,)
    issue_type = IssueType.LONG_METHOD
    metric_name = "code lines"
    confidence = 90

    def threshold(self, context: FileContext) -> int:
        return context.options.max_method_lines

    def measure(self, function: FunctionInfo, ast: SourceAST) -> int:
        return code_line_count(function.node)

    def describe(self, function: FunctionInfo, value: int, threshold: int) -> str:
        return f"Function '{function.name}' is {value} code lines long (threshold {threshold})"

    def confidence_for(self, function: FunctionInfo) -> int:
        if _ENTRY_POINT_NAMES.match(function.name):
            return 75
        return self.confidence


class LongParameterListDetector(FunctionMetricDetector):
    name = "long_parameter_list"
    issue_types = (IssueType.LONG_PARAMETER_LIST,)
    issue_type = IssueType.LONG_PARAMETER_LIST
    metric_name = "parameter count"
    confidence = 95

    def threshold(self, context: FileContext) -> int:
        return context.options.max_parameters

    def measure(self, function: FunctionInfo, ast: SourceAST) -> int:
        return len(function.parameters)

    def describe(self, function: FunctionInfo, value: int, threshold: int) -> str:
        return (
            f"Function '{function.name}' takes {value} parameters (threshold {threshold}): "
            f"{', '.join(function.parameters)}"
        )


class DeepNestingDetector(FunctionMetricDetector):
    name = "deep_nesting"
    issue_types = (IssueType.DEEP_NESTING,)
    issue_type = IssueType.DEEP_NESTING
    metric_name = "nesting depth"
    confidence = 90

    def threshold(self, context: FileContext) -> int:
        return context.options.max_nesting_depth

    def measure(self, function: FunctionInfo, ast: SourceAST) -> int:
        return max_nesting_depth(function.node)


class HighComplexityDetector(FunctionMetricDetector):
    name = "high_complexity"
    issue_types = (IssueType.HIGH_COMPLEXITY,)
    issue_type = IssueType.HIGH_COMPLEXITY
    metric_name = "cyclomatic complexity"
    confidence = 90

    def threshold(self, context: FileContext) -> int:
        return context.options.max_cyclomatic_complexity

    def measure(self, function: FunctionInfo, ast: SourceAST) -> int:
        return cyclomatic_complexity(function.node)


class CognitiveComplexityDetector(FunctionMetricDetector):
    name = "cognitive_complexity"
    issue_types = (IssueType.COGNITIVE_COMPLEXITY,)
    issue_type = IssueType.COGNITIVE_COMPLEXITY
    metric_name = "cognitive complexity"
    confidence = 85

    def threshold(self, context: FileContext) -> int:
        return context.options.max_cognitive_complexity

    def measure(self, function: FunctionInfo, ast: SourceAST) -> int:
        return cognitive_complexity(function.node)
