"""Property-based tests for the detector framework and issue merging.

The merge must not depend on the order detectors run in, duplicates must
collapse to the most confident finding, and one failing detector must not
take the others down with it.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from codestruct.core.exceptions import DetectorFailure
from codestruct.schemas.issue import ComplexityMetrics, GenericMetrics, Issue, IssueSeverity, IssueType
from codestruct.services.detection import DetectorFramework, default_detectors, issue_id, merge_issues
from codestruct.services.detectors.base import Detector, FileContext
from codestruct.services.parser import ParserAdapter

# =============================================================================
# Stub detectors
# =============================================================================


class StaticDetector(Detector):
    """Returns a fixed list of issues for every file."""

    def __init__(self, name, issues):
        self.name = name
        self._issues = issues

    def detect(self, ast, context):
        return list(self._issues)


class ExplodingDetector(Detector):
    name = "exploding"

    def detect(self, ast, context):
        raise RuntimeError("boom")


def make_issue(issue_type=IssueType.MAGIC_NUMBER, line=1, confidence=75, severity=IssueSeverity.MEDIUM,
               description="finding", path="app/main.py"):
    return Issue(
        type=issue_type,
        severity=severity,
        confidence=confidence,
        file_path=path,
        line_start=line,
        line_end=line,
        description=description,
        metadata=ComplexityMetrics(metric="value", value=float(line), threshold=1.0),
    )


# =============================================================================
# Strategies
# =============================================================================


@st.composite
def issue_strategy(draw):
    return make_issue(
        issue_type=draw(st.sampled_from([IssueType.MAGIC_NUMBER, IssueType.DEEP_NESTING, IssueType.LONG_METHOD])),
        line=draw(st.integers(min_value=1, max_value=6)),
        confidence=draw(st.integers(min_value=0, max_value=100)),
        severity=draw(st.sampled_from(list(IssueSeverity))),
        description=draw(st.sampled_from(["a", "b", "c"])),
    )


@st.composite
def batches_strategy(draw):
    return draw(st.lists(st.lists(issue_strategy(), max_size=6), min_size=1, max_size=5))


# =============================================================================
# Merge properties
# =============================================================================


class TestMergeIssues:

    @given(batches_strategy(), st.randoms())
    @settings(max_examples=100, deadline=None)
    def test_merge_is_order_independent(self, batches, rnd):
        shuffled = [list(batch) for batch in batches]
        rnd.shuffle(shuffled)
        for batch in shuffled:
            rnd.shuffle(batch)

        assert merge_issues("p1", batches) == merge_issues("p1", shuffled)

    @given(batches_strategy())
    @settings(max_examples=100, deadline=None)
    def test_merge_leaves_one_issue_per_key(self, batches):
        merged = merge_issues("p1", batches)
        keys = [issue.dedup_key for issue in merged]
        assert len(keys) == len(set(keys))
        assert len({issue.id for issue in merged}) == len(merged)

    @given(batches_strategy())
    @settings(max_examples=100, deadline=None)
    def test_merge_keeps_highest_confidence(self, batches):
        merged = {issue.dedup_key: issue for issue in merge_issues("p1", batches)}
        for batch in batches:
            for issue in batch:
                assert merged[issue.dedup_key].confidence >= issue.confidence

    def test_merge_output_is_sorted(self):
        issues = [
            make_issue(line=5, path="b.py"),
            make_issue(line=3, path="a.py"),
            make_issue(line=1, path="b.py"),
        ]
        merged = merge_issues("p1", [issues])
        assert [(i.file_path, i.line_start) for i in merged] == [("a.py", 3), ("b.py", 1), ("b.py", 5)]

    def test_ids_are_stable_across_runs(self):
        issue = make_issue()
        first = merge_issues("p1", [[issue]])[0]
        second = merge_issues("p1", [[issue]])[0]
        assert first.id == second.id == issue_id("p1", issue)
        assert merge_issues("p2", [[issue]])[0].id != first.id

    def test_duplicates_collapse_to_most_confident(self):
        low = make_issue(confidence=70, description="low")
        high = make_issue(confidence=90, description="high")
        merged = merge_issues("p1", [[low], [high]])

        assert len(merged) == 1
        assert merged[0].confidence == 90
        assert merged[0].description == "high"


# =============================================================================
# Framework
# =============================================================================


class TestDetectorFramework:

    def setup_method(self):
        self.ast = ParserAdapter().parse("x = 1\n", "python", "app/main.py")
        self.context = FileContext(project_id="p1", path="app/main.py", language="python")

    def test_failing_detector_is_isolated(self):
        good = StaticDetector("good", [make_issue()])
        framework = DetectorFramework([ExplodingDetector(), good])

        result = framework.run(self.ast, self.context)

        assert len(result.issues) == 1
        assert len(result.failures) == 1
        failure = result.failures[0]
        assert isinstance(failure, DetectorFailure)
        assert failure.detector == "exploding"
        assert failure.path == "app/main.py"

    def test_detectors_skip_other_languages(self):
        config_only = StaticDetector("config", [make_issue()])
        config_only.languages = frozenset({"config"})

        result = DetectorFramework([config_only]).run(self.ast, self.context)
        assert result.issues == []

    @pytest.mark.parametrize("max_workers", [1, 4])
    def test_parallel_and_serial_runs_agree(self, max_workers):
        detectors = [
            StaticDetector("one", [make_issue(line=1, confidence=60)]),
            StaticDetector("two", [make_issue(line=1, confidence=80), make_issue(line=2)]),
            StaticDetector("three", [make_issue(issue_type=IssueType.DEEP_NESTING, line=1)]),
        ]
        serial = DetectorFramework(detectors).run(self.ast, self.context)
        with DetectorFramework(detectors, max_workers=max_workers) as framework:
            parallel = framework.run(self.ast, self.context)

        assert parallel.issues == serial.issues
        assert len(parallel.issues) == 3

    @given(st.permutations(default_detectors()))
    @settings(max_examples=20, deadline=None)
    def test_default_detector_order_does_not_matter(self, detectors):
        code = '''
import hashlib

password = "hunter2hunter2"


def process(a, b, c, d, e, f):
    if a:
        for item in b:
            if item:
                while c:
                    c -= 1
    return hashlib.md5(a).hexdigest() * 42
'''
        ast = ParserAdapter().parse(code, "python", "app/process.py")
        context = FileContext(project_id="p1", path="app/process.py", language="python")

        baseline = DetectorFramework(default_detectors()).run(ast, context)
        permuted = DetectorFramework(detectors).run(ast, context)
        assert permuted.issues == baseline.issues
        assert permuted.failures == baseline.failures == []

    def test_generic_metadata_is_accepted(self):
        issue = Issue(
            type=IssueType.DEAD_CODE,
            severity=IssueSeverity.LOW,
            confidence=70,
            file_path="a.py",
            line_start=1,
            line_end=1,
            description="unused",
            metadata=GenericMetrics(values={"count": 1}),
        )
        assert merge_issues("p1", [[issue]])[0].metadata.kind == "generic"
