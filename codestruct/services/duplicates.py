"""Project-wide duplicate detection.

Three passes over every function body in a project, each cheaper-to-trust
than the next:

1. exact: hash of the body's token stream (whitespace and comments dropped)
2. structural: canonical node-kind serialization, identifiers and literal
   values ignored; equal shapes match outright, near shapes are compared
   with a sequence matcher
3. semantic: multiset Jaccard similarity of lexical tokens, only for bodies
   no earlier pass grouped

Matches are merged with a union-find arena that lives for one run, so group
membership is transitive and every block lands in at most one group. A link
that would put a nested function in the same group as its enclosing function
is refused, whether the two match directly or through a third block.
"""

import hashlib
import logging
import uuid
from collections import Counter, defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from difflib import SequenceMatcher

from codestruct.core.config import AnalysisOptions
from codestruct.schemas.common import CodeLocation
from codestruct.schemas.duplicate import DuplicateGroup, MatchType
from codestruct.schemas.issue import DuplicateMetrics, Issue, IssueSeverity, IssueType
from codestruct.services.detection import issue_id
from codestruct.services.detectors.base import (
    CODE_LANGUAGES,
    RECOMMENDATIONS,
    code_line_count,
    iter_functions,
)
from codestruct.services.parser import COMMENT_KINDS, SourceAST, SourceNode

logger = logging.getLogger(__name__)

GROUP_NAMESPACE = uuid.UUID("b8a0f7e4-3c1d-4e59-a6b2-7d9e0c4f1a23")

EXACT_CONFIDENCE = 100
SHAPE_CONFIDENCE = 95
MIN_STRUCTURAL_CONFIDENCE = 85

_MATCH_RANK: dict[str, int] = {"semantic": 1, "structural": 2, "exact": 3}


@dataclass
class CodeBlock:
    """One function body considered for duplication."""

    index: int
    path: str
    function_name: str
    class_name: str | None
    start_line: int
    end_line: int
    start_byte: int
    end_byte: int
    line_count: int
    tokens: list[str]
    shape: list[str]
    lexicon: Counter
    excerpt: str

    exact_key: str = field(init=False)
    shape_key: str = field(init=False)

    def __post_init__(self):
        self.exact_key = hashlib.sha1("\x1f".join(self.tokens).encode("utf-8")).hexdigest()
        self.shape_key = hashlib.sha1("\x1f".join(self.shape).encode("utf-8")).hexdigest()

    def overlaps(self, other: "CodeBlock") -> bool:
        return (
            self.path == other.path
            and self.start_byte < other.end_byte
            and other.start_byte < self.end_byte
        )

    @property
    def location(self) -> str:
        return f"{self.path}:{self.start_line}"


@dataclass(frozen=True)
class Match:
    match_type: MatchType
    similarity: float
    confidence: int

    @property
    def strength(self) -> tuple[int, int, float]:
        return (self.confidence, _MATCH_RANK[self.match_type], self.similarity)


class DisjointSet:
    """Union-find over block indices, scoped to one detection run."""

    def __init__(self, size: int):
        self.parent = list(range(size))
        self.rank = [0] * size
        self._members: dict[int, list[int]] = {i: [i] for i in range(size)}

    def members(self, item: int) -> list[int]:
        """Every item in the same set as ``item``."""
        return self._members[self.find(item)]

    def find(self, item: int) -> int:
        root = item
        while self.parent[root] != root:
            root = self.parent[root]
        while self.parent[item] != root:
            self.parent[item], item = root, self.parent[item]
        return root

    def union(self, a: int, b: int) -> None:
        root_a, root_b = self.find(a), self.find(b)
        if root_a == root_b:
            return
        if self.rank[root_a] < self.rank[root_b]:
            root_a, root_b = root_b, root_a
        self.parent[root_b] = root_a
        self._members[root_a].extend(self._members.pop(root_b))
        if self.rank[root_a] == self.rank[root_b]:
            self.rank[root_a] += 1

    def groups(self) -> list[list[int]]:
        members: dict[int, list[int]] = defaultdict(list)
        for item in range(len(self.parent)):
            members[self.find(item)].append(item)
        return [sorted(group) for group in members.values()]


@dataclass
class DuplicateResult:
    issues: list[Issue] = field(default_factory=list)
    groups: list[DuplicateGroup] = field(default_factory=list)
    blocks_considered: int = 0
    budget_exhausted: bool = False


def _shape(body: SourceNode) -> list[str]:
    """Pre-order kinds with relative depth; a canonical serialization of the tree."""
    shape = []
    stack = [(body, 0)]
    while stack:
        node, depth = stack.pop()
        if node.is_error or node.kind in COMMENT_KINDS:
            continue
        shape.append(f"{node.kind}@{depth}")
        stack.extend((child, depth + 1) for child in reversed(node.children))
    return shape


def _lexicon(tokens: list[str]) -> Counter:
    return Counter(token.lower() for token in tokens if any(ch.isalnum() for ch in token))


def jaccard(a: Counter, b: Counter) -> float:
    """Multiset Jaccard similarity."""
    union = sum((a | b).values())
    if union == 0:
        return 0.0
    return sum((a & b).values()) / union


def group_severity(line_count: int, members: int) -> IssueSeverity:
    if line_count >= 50 or members >= 5:
        return IssueSeverity.CRITICAL
    if line_count >= 30 or members >= 3:
        return IssueSeverity.HIGH
    if line_count >= 15:
        return IssueSeverity.MEDIUM
    return IssueSeverity.LOW


class DuplicateEngine:
    """Finds duplicated function bodies across all parsed files of a project."""

    def __init__(self, options: AnalysisOptions | None = None):
        self.options = options or AnalysisOptions()
        self._comparisons = 0
        self._exhausted = False

    def extract_blocks(self, asts: Iterable[SourceAST]) -> list[CodeBlock]:
        blocks: list[CodeBlock] = []
        for ast in sorted(asts, key=lambda a: a.path):
            if ast.language not in CODE_LANGUAGES:
                continue
            for function in iter_functions(ast):
                body = function.body
                tokens = [leaf.text for leaf in body.leaves()]
                line_count = code_line_count(body)
                if line_count < self.options.duplicate_min_lines:
                    continue
                if len(tokens) < self.options.duplicate_min_tokens:
                    continue
                blocks.append(CodeBlock(
                    index=len(blocks),
                    path=ast.path,
                    function_name=function.name,
                    class_name=function.class_name,
                    start_line=function.start_line,
                    end_line=function.end_line,
                    start_byte=body.start_byte,
                    end_byte=body.end_byte,
                    line_count=line_count,
                    tokens=tokens,
                    shape=_shape(body),
                    lexicon=_lexicon(tokens),
                    excerpt=ast.excerpt(function.start_line, function.end_line),
                ))
        return blocks

    def detect(self, project_id: str, asts: Iterable[SourceAST]) -> DuplicateResult:
        """Run all three passes and build groups and per-block issues."""
        self._comparisons = 0
        self._exhausted = False

        blocks = self.extract_blocks(asts)
        arena = DisjointSet(len(blocks))
        best: dict[int, Match] = {}

        def link(a: CodeBlock, b: CodeBlock, match: Match) -> None:
            if arena.find(a.index) != arena.find(b.index) and any(
                blocks[x].overlaps(blocks[y])
                for x in arena.members(a.index)
                for y in arena.members(b.index)
            ):
                logger.debug(f"Not linking {a.location} and {b.location}: groups would nest")
                return
            arena.union(a.index, b.index)
            for block in (a, b):
                current = best.get(block.index)
                if current is None or match.strength > current.strength:
                    best[block.index] = match

        self._exact_pass(blocks, link)
        self._structural_pass(blocks, link)
        self._semantic_pass(blocks, best, link)

        if self._exhausted:
            logger.warning(
                f"Duplicate comparison budget of {self.options.max_duplicate_comparisons} "
                f"exhausted for project {project_id}"
            )

        result = self._build_result(project_id, blocks, arena, best)
        result.blocks_considered = len(blocks)
        result.budget_exhausted = self._exhausted
        logger.info(
            f"Duplicate detection for {project_id}: {len(blocks)} blocks, "
            f"{len(result.groups)} groups"
        )
        return result

    # -------------------------------------------------------------------------
    # Passes
    # -------------------------------------------------------------------------

    @staticmethod
    def _buckets(blocks: list[CodeBlock], key) -> list[list[CodeBlock]]:
        buckets: dict[str, list[CodeBlock]] = defaultdict(list)
        for block in blocks:
            buckets[key(block)].append(block)
        return [bucket for bucket in buckets.values() if len(bucket) > 1]

    def _link_bucket(self, bucket: list[CodeBlock], match: Match, link) -> None:
        for i, a in enumerate(bucket):
            for b in bucket[i + 1:]:
                if not a.overlaps(b):
                    link(a, b, match)

    def _exact_pass(self, blocks: list[CodeBlock], link) -> None:
        match = Match("exact", 1.0, EXACT_CONFIDENCE)
        for bucket in self._buckets(blocks, lambda b: b.exact_key):
            self._link_bucket(bucket, match, link)

    def _structural_pass(self, blocks: list[CodeBlock], link) -> None:
        match = Match("structural", 1.0, SHAPE_CONFIDENCE)
        for bucket in self._buckets(blocks, lambda b: b.shape_key):
            distinct = {b.exact_key for b in bucket}
            if len(distinct) > 1:
                self._link_bucket(bucket, match, link)

        # Near shapes: compare one representative per distinct shape
        threshold = self.options.structural_similarity_threshold
        representatives: dict[str, CodeBlock] = {}
        for block in blocks:
            representatives.setdefault(block.shape_key, block)
        reps = list(representatives.values())
        members: dict[str, list[CodeBlock]] = defaultdict(list)
        for block in blocks:
            members[block.shape_key].append(block)

        for i, a in enumerate(reps):
            for b in reps[i + 1:]:
                shorter, longer = sorted((len(a.shape), len(b.shape)))
                if longer == 0 or shorter / longer < threshold:
                    continue
                if not self._spend():
                    return
                matcher = SequenceMatcher(None, a.shape, b.shape, autojunk=False)
                if matcher.real_quick_ratio() < threshold or matcher.quick_ratio() < threshold:
                    continue
                ratio = matcher.ratio()
                if ratio < threshold:
                    continue
                near = Match("structural", round(ratio, 4), self._structural_confidence(ratio, threshold))
                for x in members[a.shape_key]:
                    for y in members[b.shape_key]:
                        if not x.overlaps(y):
                            link(x, y, near)

    def _semantic_pass(self, blocks: list[CodeBlock], best: dict[int, Match], link) -> None:
        threshold = self.options.semantic_similarity_threshold
        candidates = [b for b in blocks if b.index not in best]
        for i, a in enumerate(candidates):
            for b in candidates[i + 1:]:
                if a.overlaps(b):
                    continue
                total_a, total_b = sum(a.lexicon.values()), sum(b.lexicon.values())
                if max(total_a, total_b) == 0 or min(total_a, total_b) / max(total_a, total_b) < threshold:
                    continue
                if not self._spend():
                    return
                score = jaccard(a.lexicon, b.lexicon)
                if score >= threshold:
                    link(a, b, Match("semantic", round(score, 4), round(score * 100)))

    def _spend(self) -> bool:
        if self._comparisons >= self.options.max_duplicate_comparisons:
            self._exhausted = True
            return False
        self._comparisons += 1
        return True

    @staticmethod
    def _structural_confidence(ratio: float, threshold: float) -> int:
        if threshold >= 1.0:
            return SHAPE_CONFIDENCE
        scaled = MIN_STRUCTURAL_CONFIDENCE + (ratio - threshold) / (1.0 - threshold) * 10
        return max(MIN_STRUCTURAL_CONFIDENCE, min(SHAPE_CONFIDENCE, round(scaled)))

    # -------------------------------------------------------------------------
    # Records
    # -------------------------------------------------------------------------

    def _build_result(
        self,
        project_id: str,
        blocks: list[CodeBlock],
        arena: DisjointSet,
        best: dict[int, Match],
    ) -> DuplicateResult:
        result = DuplicateResult()

        for member_indexes in arena.groups():
            if len(member_indexes) < 2:
                continue
            members = [blocks[i] for i in member_indexes]
            matches = [best[i] for i in member_indexes]
            group_id = str(uuid.uuid5(
                GROUP_NAMESPACE,
                "|".join([project_id, *(f"{b.path}:{b.start_line}-{b.end_line}" for b in members)]),
            ))
            severity = group_severity(max(b.line_count for b in members), len(members))
            strongest = max(matches, key=lambda m: _MATCH_RANK[m.match_type])

            issues = []
            for block, match in zip(members, matches):
                others = [b.location for b in members if b is not block]
                issue = Issue(
                    type=IssueType.DUPLICATE_CODE,
                    severity=severity,
                    confidence=match.confidence,
                    file_path=block.path,
                    line_start=block.start_line,
                    line_end=block.end_line,
                    function_name=block.function_name,
                    class_name=block.class_name,
                    description=(
                        f"'{block.function_name}' duplicates code ({match.match_type} match) "
                        f"at {', '.join(others)}"
                    ),
                    recommendation=RECOMMENDATIONS[IssueType.DUPLICATE_CODE],
                    code_excerpt=block.excerpt,
                    duplicate_group_id=group_id,
                    metadata=DuplicateMetrics(
                        match_type=match.match_type,
                        similarity=match.similarity,
                        group_size=len(members),
                        line_count=block.line_count,
                        token_count=len(block.tokens),
                    ),
                )
                issues.append(issue.model_copy(update={"id": issue_id(project_id, issue)}))

            result.issues.extend(issues)
            result.groups.append(DuplicateGroup(
                id=group_id,
                match_type=strongest.match_type,
                similarity=min(m.similarity for m in matches),
                severity=severity,
                issue_ids=[issue.id for issue in issues],
                locations=[
                    CodeLocation(path=b.path, line_start=b.start_line, line_end=b.end_line)
                    for b in members
                ],
            ))

        result.issues.sort(key=lambda i: (i.file_path, i.line_start, i.line_end))
        result.groups.sort(key=lambda g: (g.locations[0].path, g.locations[0].line_start))
        return result
