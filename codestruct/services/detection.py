"""Detector framework.

Runs every registered detector over one tree, isolating failures, then merges
the per-detector results into one deduplicated, id-stamped issue list. The
merge is commutative: detector execution order never changes the output.
"""

import logging
import threading
import uuid
from collections.abc import Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from codestruct.core.exceptions import DetectorFailure
from codestruct.schemas.issue import Issue
from codestruct.services.detectors import STRUCTURAL_DETECTORS
from codestruct.services.detectors.base import Detector, FileContext
from codestruct.services.parser import SourceAST
from codestruct.services.security import SecurityScanner

logger = logging.getLogger(__name__)

# Namespace for synthetic issue ids
ISSUE_NAMESPACE = uuid.UUID("6f1d3c52-9a5e-4b8e-8d43-1f0c2e7a9b11")


@dataclass
class DetectionResult:
    """Issues found in one file plus any detectors that failed on it."""

    path: str
    issues: list[Issue] = field(default_factory=list)
    failures: list[DetectorFailure] = field(default_factory=list)


def default_detectors() -> list[Detector]:
    """The standard battery: every structural detector plus the security scanner."""
    return [detector_cls() for detector_cls in STRUCTURAL_DETECTORS] + [SecurityScanner()]


def issue_id(project_id: str, issue: Issue) -> str:
    """Stable id derived from what the issue is and where it sits."""
    key = "|".join([project_id, *map(str, issue.dedup_key)])
    return str(uuid.uuid5(ISSUE_NAMESPACE, key))


def _preference(issue: Issue) -> tuple:
    """Total order used to pick one winner among duplicates."""
    return (
        issue.confidence,
        issue.severity.rank,
        issue.description,
        issue.metadata.model_dump_json(),
    )


def merge_issues(project_id: str, batches: Iterable[Iterable[Issue]]) -> list[Issue]:
    """Merge per-detector results.

    Identical (type, file, line range) findings collapse to the one with the
    highest confidence; the survivors get stable ids and a canonical order.
    """
    best: dict[tuple[str, str, int, int], Issue] = {}
    for batch in batches:
        for issue in batch:
            key = issue.dedup_key
            current = best.get(key)
            if current is None or _preference(issue) > _preference(current):
                best[key] = issue

    merged = [
        issue.model_copy(update={"id": issue_id(project_id, issue)})
        for issue in best.values()
    ]
    merged.sort(key=lambda i: (i.file_path, i.line_start, i.line_end, i.type.value))
    return merged


class DetectorFramework:
    """Runs a set of detectors over trees.

    Adding a detector means passing one more :class:`Detector` instance; no
    existing detector changes.
    """

    def __init__(self, detectors: Sequence[Detector] | None = None, max_workers: int = 1):
        self.detectors = list(detectors) if detectors is not None else default_detectors()
        self.max_workers = max(1, max_workers)
        self._executor: ThreadPoolExecutor | None = None
        self._executor_lock = threading.Lock()

    def __enter__(self) -> "DetectorFramework":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def _run_one(self, detector: Detector, ast: SourceAST, context: FileContext) -> list[Issue] | DetectorFailure:
        try:
            return list(detector.detect(ast, context))
        except Exception as e:
            failure = DetectorFailure(detector.name, context.path, e)
            logger.error(str(failure), exc_info=True)
            return failure

    def run(self, ast: SourceAST, context: FileContext) -> DetectionResult:
        """Run every applicable detector on one tree and merge the results."""
        applicable = [d for d in self.detectors if d.applies_to(ast.language)]

        if self.max_workers > 1 and len(applicable) > 1:
            with self._executor_lock:
                if self._executor is None:
                    self._executor = ThreadPoolExecutor(
                        max_workers=self.max_workers, thread_name_prefix="detector"
                    )
                executor = self._executor
            outcomes = list(executor.map(lambda d: self._run_one(d, ast, context), applicable))
        else:
            outcomes = [self._run_one(d, ast, context) for d in applicable]

        failures = [o for o in outcomes if isinstance(o, DetectorFailure)]
        batches = [o for o in outcomes if not isinstance(o, DetectorFailure)]
        return DetectionResult(
            path=context.path,
            issues=merge_issues(context.project_id, batches),
            failures=failures,
        )
