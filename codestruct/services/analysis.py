"""Project analysis run.

Files are parsed and run through the detector framework on a thread pool.
Once every per-file pass has finished, the duplicate engine runs over all the
parsed trees of the project. Cancellation is cooperative: files already being
analysed finish, files not yet started are skipped.
"""

import logging
import threading
from collections import Counter
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from codestruct.core.config import AnalysisOptions
from codestruct.core.exceptions import DetectorFailure, UnsupportedLanguageError
from codestruct.schemas.duplicate import DuplicateGroup
from codestruct.schemas.issue import Issue, IssueSeverity
from codestruct.services.ast_store import ASTStore
from codestruct.services.detection import DetectorFramework
from codestruct.services.detectors.base import Detector, FileContext
from codestruct.services.duplicates import DuplicateEngine
from codestruct.services.parser import SourceAST, get_parser_adapter
from codestruct.services.scoring import QualityScorer
from codestruct.services.security import security_summary
from codestruct.services.source import SkippedFile, SourceFile, collect_source_files

logger = logging.getLogger(__name__)


class FileStatus(str, Enum):
    ANALYZED = "analyzed"
    PARTIAL = "partial"
    UNSUPPORTED = "unsupported"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class FileOutcome:
    """Result of the per-file pass for one file."""

    path: str
    status: FileStatus
    issues: list[Issue] = field(default_factory=list)
    failures: list[DetectorFailure] = field(default_factory=list)
    detail: str = ""


@dataclass
class AnalysisReport:
    """Everything one analysis run produced."""

    project_id: str
    issues: list[Issue] = field(default_factory=list)
    duplicate_groups: list[DuplicateGroup] = field(default_factory=list)
    analyzed_files: list[str] = field(default_factory=list)
    partial_files: list[str] = field(default_factory=list)
    skipped_files: list[SkippedFile] = field(default_factory=list)
    detector_failures: list[DetectorFailure] = field(default_factory=list)
    cancelled: bool = False
    quality_score: float = 100.0

    @property
    def issues_by_type(self) -> dict[str, int]:
        return dict(sorted(Counter(issue.type.value for issue in self.issues).items()))

    @property
    def issues_by_severity(self) -> dict[str, int]:
        counts = Counter(issue.severity.value for issue in self.issues)
        return {severity.value: counts.get(severity.value, 0) for severity in IssueSeverity}

    @property
    def security_summary(self) -> dict:
        return security_summary(self.issues)


class ProjectAnalyzer:
    """Runs a full analysis over one project's files."""

    def __init__(
        self,
        project_id: str,
        options: AnalysisOptions | None = None,
        store: ASTStore | None = None,
        detectors: list[Detector] | None = None,
    ):
        self.project_id = project_id
        self.options = options or AnalysisOptions()
        self.store = store or ASTStore()
        self.framework = DetectorFramework(detectors, max_workers=self.options.detector_workers)
        self.duplicate_engine = DuplicateEngine(self.options)
        self.scorer = QualityScorer(self.options.severity_weights)
        self._cancel_event = threading.Event()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self) -> None:
        self.framework.close()

    def cancel(self) -> None:
        """Stop starting new files. In-flight files still finish."""
        logger.info(f"Cancellation requested for project {self.project_id}")
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def analyze_path(self, root: Path | str) -> AnalysisReport:
        """Analyse a local checkout.

        Raises:
            FileNotFoundError: If the root directory does not exist
        """
        files, unreadable = collect_source_files(root)
        return self.analyze(files, unreadable)

    def analyze(self, files: Iterable[SourceFile], skipped: Iterable[SkippedFile] = ()) -> AnalysisReport:
        """Analyse the given files and return the merged report."""
        report = AnalysisReport(project_id=self.project_id, skipped_files=list(skipped))

        supported: list[SourceFile] = []
        for source_file in files:
            if source_file.supported:
                supported.append(source_file)
            else:
                logger.info(f"Skipping {source_file.path}: unsupported language")
                report.skipped_files.append(SkippedFile(source_file.path, "unsupported language"))

        outcomes = self._run_file_passes(supported)

        parsed: list[SourceAST] = []
        for outcome in sorted(outcomes, key=lambda o: o.path):
            if outcome.status in (FileStatus.ANALYZED, FileStatus.PARTIAL):
                report.analyzed_files.append(outcome.path)
                if outcome.status == FileStatus.PARTIAL:
                    report.partial_files.append(outcome.path)
                report.issues.extend(outcome.issues)
                report.detector_failures.extend(outcome.failures)
                ast = self.store.get(self.project_id, outcome.path)
                if ast is not None:
                    parsed.append(ast)
            else:
                report.skipped_files.append(SkippedFile(outcome.path, outcome.detail or outcome.status.value))

        report.cancelled = self.cancelled
        if report.cancelled:
            logger.warning(
                f"Analysis of {self.project_id} cancelled after {len(report.analyzed_files)} files; "
                f"skipping duplicate detection"
            )
        else:
            duplicates = self.duplicate_engine.detect(self.project_id, parsed)
            report.issues.extend(duplicates.issues)
            report.duplicate_groups = duplicates.groups

        report.issues.sort(key=lambda i: (i.file_path, i.line_start, i.line_end, i.type.value))
        report.quality_score = self.scorer.score(report.issues, len(report.analyzed_files))
        logger.info(
            f"Analysis of {self.project_id} finished: {len(report.analyzed_files)} files, "
            f"{len(report.issues)} issues, {len(report.skipped_files)} skipped, "
            f"score {report.quality_score}"
        )
        return report

    def _run_file_passes(self, files: list[SourceFile]) -> list[FileOutcome]:
        if not files:
            return []
        workers = max(1, self.options.file_workers)
        if workers == 1:
            return [self.analyze_file(f) for f in files]

        outcomes = []
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="analyze") as executor:
            futures = [executor.submit(self.analyze_file, f) for f in files]
            for future in as_completed(futures):
                outcomes.append(future.result())
        return outcomes

    def analyze_file(self, source_file: SourceFile) -> FileOutcome:
        """Parse one file and run the detector framework over it. Never raises."""
        if self.cancelled:
            return FileOutcome(source_file.path, FileStatus.CANCELLED, detail="cancelled before start")

        try:
            parser = get_parser_adapter(self.options.max_ast_nodes)
            ast = self.store.get_or_parse(self.project_id, source_file, parser)
        except UnsupportedLanguageError as e:
            logger.info(f"Skipping {source_file.path}: {e}")
            return FileOutcome(source_file.path, FileStatus.UNSUPPORTED, detail="unsupported language")
        except Exception as e:
            logger.error(f"Failed to parse {source_file.path}: {e}", exc_info=True)
            return FileOutcome(source_file.path, FileStatus.FAILED, detail=f"parse failure: {e}")

        context = FileContext(
            project_id=self.project_id,
            path=source_file.path,
            language=ast.language,
            options=self.options,
        )
        result = self.framework.run(ast, context)
        status = FileStatus.PARTIAL if ast.has_errors else FileStatus.ANALYZED
        return FileOutcome(source_file.path, status, result.issues, result.failures)
