"""Quality scoring for analysis reports.

The severity weights are configuration, not an invariant: they come from the
run's options record.
"""

import logging
from collections.abc import Iterable, Mapping

from codestruct.schemas.issue import Issue, IssueSeverity

logger = logging.getLogger(__name__)

DEFAULT_SEVERITY_WEIGHTS: dict[str, int] = {
    IssueSeverity.CRITICAL.value: 10,
    IssueSeverity.HIGH.value: 5,
    IssueSeverity.MEDIUM.value: 2,
    IssueSeverity.LOW.value: 1,
}


class QualityScorer:
    """Turns a list of issues into a 0-100 quality score."""

    def __init__(self, severity_weights: Mapping[str, int] | None = None):
        self.severity_weights = dict(DEFAULT_SEVERITY_WEIGHTS)
        if severity_weights:
            self.severity_weights.update(severity_weights)

    def weighted_sum(self, issues: Iterable[Issue]) -> int:
        """Sum of severity weights.

        Formula: Σ weight(issue.severity)
        """
        return sum(self.severity_weights.get(issue.severity.value, 0) for issue in issues)

    def score(self, issues: Iterable[Issue], analysed_files: int) -> float:
        """Quality score in [0, 100].

        Formula: max(0, 100 - weighted_sum / max(1, analysed_files))

        Args:
            issues: Issues found in the run
            analysed_files: Number of files that were actually analysed

        Returns:
            Score rounded to one decimal place
        """
        penalty = self.weighted_sum(issues) / max(1, analysed_files)
        return round(max(0.0, 100.0 - penalty), 1)
