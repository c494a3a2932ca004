"""Property-based tests for project-wide duplicate detection.

Group membership must be transitive (union-find), every block lands in at
most one group, and confidences follow the pass that matched them.
"""

from collections import Counter

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from codestruct.core.config import AnalysisOptions
from codestruct.schemas.issue import IssueSeverity, IssueType
from codestruct.services.duplicates import DisjointSet, DuplicateEngine, group_severity, jaccard
from codestruct.services.parser import ParserAdapter

SUMMARIZE = '''
def summarize_orders(orders):
    total = 0
    count = 0
    largest = None
    for order in orders:
        amount = order["amount"]
        total += amount
        count += 1
        if largest is None or amount > largest:
            largest = amount
    average = total / count if count else 0
    return {"total": total, "count": count, "largest": largest, "average": average}
'''

LOAD_USERS = '''
def load_users(path):
    handle = open(path)
    rows = []
    for line in handle:
        name, age = line.split(",")
        rows.append((name, int(age)))
    handle.close()
    return rows
'''

LOAD_ITEMS = '''
def load_items(source):
    stream = open(source)
    records = []
    for entry in stream:
        title, price = entry.split(";")
        records.append((title, int(price)))
    stream.close()
    return records
'''

TOTAL_FOR = '''
def total_price(items, tax):
    total = 0
    for item in items:
        total = total + item.price * item.count
    total = total + total * tax
    result = round(total, 2)
    return result
'''

TOTAL_WHILE = '''
def total_price_indexed(items, tax):
    total = 0
    index = 0
    while index < len(items):
        item = items[index]
        total = total + item.price * item.count
        index = index + 1
    total = total + total * tax
    return round(total, 2)
'''

OUTER_WITH_INNER = '''
def outer(items):
    total = 0
    for item in items:
        total += item
    def inner(values):
        result = 0
        count = 0
        for value in values:
            if value > 0:
                result += value
                count += 1
        return result, count
    return inner(items), total
'''

DRAIN = '''
def drain(values):
    result = 0
    count = 0
    while values:
        value = values.pop()
        result += value
        count += 1
    return result, count
'''


def parse_all(files):
    parser = ParserAdapter()
    return [parser.parse(code, path=path) for path, code in files.items()]


# =============================================================================
# Engine
# =============================================================================


class TestDuplicateEngine:

    def setup_method(self):
        self.engine = DuplicateEngine()

    def test_exact_duplicates_across_files(self):
        result = self.engine.detect("p1", parse_all({"a.py": SUMMARIZE, "b.py": SUMMARIZE}))

        assert len(result.groups) == 1
        group = result.groups[0]
        assert group.size == 2
        assert group.match_type == "exact"
        assert group.similarity == 1.0
        assert group.severity == IssueSeverity.LOW

        assert len(result.issues) == 2
        for issue in result.issues:
            assert issue.type == IssueType.DUPLICATE_CODE
            assert issue.confidence == 100
            assert issue.duplicate_group_id == group.id
            assert issue.id in group.issue_ids
            assert issue.metadata.match_type == "exact"
            assert issue.metadata.group_size == 2
            assert (issue.line_start, issue.line_end) == (2, 13)
        assert [i.file_path for i in result.issues] == ["a.py", "b.py"]

    def test_renamed_copy_is_structural(self):
        result = self.engine.detect("p1", parse_all({"a.py": LOAD_USERS, "b.py": LOAD_ITEMS}))

        assert len(result.groups) == 1
        assert result.groups[0].match_type == "structural"
        for issue in result.issues:
            assert issue.metadata.match_type == "structural"
            assert 85 <= issue.confidence <= 95
            assert issue.confidence == 95

    def test_membership_is_transitive(self):
        files = {"a.py": LOAD_USERS, "b.py": LOAD_USERS, "c.py": LOAD_ITEMS}
        result = self.engine.detect("p1", parse_all(files))

        assert len(result.groups) == 1
        group = result.groups[0]
        assert group.size == 3
        assert group.match_type == "exact"
        assert group.severity == IssueSeverity.HIGH
        by_path = {issue.file_path: issue for issue in result.issues}
        assert by_path["a.py"].confidence == 100
        assert by_path["b.py"].confidence == 100
        assert by_path["c.py"].confidence == 95

    def test_semantic_pass(self):
        options = AnalysisOptions(structural_similarity_threshold=0.99, semantic_similarity_threshold=0.5)
        result = DuplicateEngine(options).detect("p1", parse_all({"a.py": TOTAL_FOR, "b.py": TOTAL_WHILE}))

        assert len(result.groups) == 1
        group = result.groups[0]
        assert group.match_type == "semantic"
        assert group.similarity == pytest.approx(18 / 32, abs=1e-4)
        for issue in result.issues:
            assert issue.confidence == round(issue.metadata.similarity * 100)

    def test_comparison_budget(self):
        options = AnalysisOptions(
            structural_similarity_threshold=0.99,
            semantic_similarity_threshold=0.5,
            max_duplicate_comparisons=0,
        )
        result = DuplicateEngine(options).detect("p1", parse_all({"a.py": TOTAL_FOR, "b.py": TOTAL_WHILE}))

        assert result.budget_exhausted
        assert result.groups == []

    def test_small_functions_are_ignored(self):
        code = "def tiny(a):\n    return a + 1\n"
        result = self.engine.detect("p1", parse_all({"a.py": code, "b.py": code}))

        assert result.blocks_considered == 0
        assert result.groups == []

    def test_unrelated_functions(self):
        result = self.engine.detect("p1", parse_all({"a.py": SUMMARIZE, "b.py": LOAD_USERS}))
        assert result.groups == []

    def test_config_files_are_skipped(self):
        text = "\n".join(f"key{i}: value{i}" for i in range(20))
        result = self.engine.detect("p1", parse_all({"a.yaml": text, "b.yaml": text}))
        assert result.blocks_considered == 0

    def test_group_ids_are_deterministic(self):
        files = {"a.py": SUMMARIZE, "b.py": SUMMARIZE}
        first = self.engine.detect("p1", parse_all(files))
        second = DuplicateEngine().detect("p1", parse_all(files))

        assert [g.id for g in first.groups] == [g.id for g in second.groups]
        assert [i.id for i in first.issues] == [i.id for i in second.issues]

    def test_every_block_in_at_most_one_group(self):
        files = {
            "a.py": SUMMARIZE,
            "b.py": SUMMARIZE,
            "c.py": LOAD_USERS,
            "d.py": LOAD_ITEMS,
        }
        result = self.engine.detect("p1", parse_all(files))

        assert len(result.groups) == 2
        locations = [(loc.path, loc.line_start) for group in result.groups for loc in group.locations]
        assert len(locations) == len(set(locations))

    def test_nested_function_never_pairs_with_its_parent(self):
        # Thresholds low enough that the two bodies would match on vocabulary alone
        options = AnalysisOptions(structural_similarity_threshold=1.0, semantic_similarity_threshold=0.3)
        engine = DuplicateEngine(options)
        asts = parse_all({"a.py": OUTER_WITH_INNER})

        blocks = engine.extract_blocks(asts)
        assert sorted(b.function_name for b in blocks) == ["inner", "outer"]
        outer, inner = sorted(blocks, key=lambda b: b.start_line)
        assert outer.overlaps(inner)

        assert engine.detect("p1", asts).groups == []

    def test_shared_match_does_not_merge_parent_and_child(self):
        # `drain` matches both `outer` and `inner`; only one of them may join its group
        options = AnalysisOptions(structural_similarity_threshold=1.0, semantic_similarity_threshold=0.3)
        result = DuplicateEngine(options).detect(
            "p1", parse_all({"a.py": OUTER_WITH_INNER, "b.py": DRAIN})
        )

        assert len(result.groups) == 1
        group = result.groups[0]
        assert group.size == 2
        assert sorted(loc.path for loc in group.locations) == ["a.py", "b.py"]
        assert len([i for i in result.issues if i.file_path == "a.py"]) == 1


# =============================================================================
# Union-find
# =============================================================================


def connected_components(size, edges):
    neighbours = {i: set() for i in range(size)}
    for a, b in edges:
        neighbours[a].add(b)
        neighbours[b].add(a)
    seen, components = set(), []
    for start in range(size):
        if start in seen:
            continue
        component, frontier = set(), [start]
        while frontier:
            node = frontier.pop()
            if node in component:
                continue
            component.add(node)
            frontier.extend(neighbours[node] - component)
        seen |= component
        components.append(sorted(component))
    return sorted(components)


@st.composite
def edge_lists(draw):
    size = draw(st.integers(min_value=1, max_value=25))
    node = st.integers(min_value=0, max_value=size - 1)
    edges = draw(st.lists(st.tuples(node, node), max_size=40))
    return size, edges


class TestDisjointSet:

    @given(edge_lists())
    @settings(max_examples=200)
    def test_groups_match_connected_components(self, data):
        size, edges = data
        arena = DisjointSet(size)
        for a, b in edges:
            arena.union(a, b)

        assert sorted(arena.groups()) == connected_components(size, edges)

    @given(edge_lists(), st.randoms())
    @settings(max_examples=100)
    def test_union_order_does_not_matter(self, data, rnd):
        size, edges = data
        shuffled = list(edges)
        rnd.shuffle(shuffled)

        first, second = DisjointSet(size), DisjointSet(size)
        for a, b in edges:
            first.union(a, b)
        for a, b in shuffled:
            second.union(b, a)

        assert sorted(first.groups()) == sorted(second.groups())

    def test_groups_partition_every_item(self):
        arena = DisjointSet(5)
        arena.union(0, 1)
        arena.union(3, 4)
        arena.union(1, 0)

        groups = arena.groups()
        assert sorted(item for group in groups for item in group) == [0, 1, 2, 3, 4]
        assert arena.find(0) == arena.find(1)
        assert arena.find(2) != arena.find(3)


# =============================================================================
# Helpers
# =============================================================================


class TestHelpers:

    def test_jaccard(self):
        assert jaccard(Counter("a b c".split()), Counter("a b d".split())) == 0.5
        assert jaccard(Counter(), Counter()) == 0.0
        assert jaccard(Counter({"x": 2}), Counter({"x": 1})) == 0.5

    @given(
        st.dictionaries(st.sampled_from("abcdef"), st.integers(min_value=1, max_value=5)),
        st.dictionaries(st.sampled_from("abcdef"), st.integers(min_value=1, max_value=5)),
    )
    def test_jaccard_is_symmetric_and_bounded(self, a, b):
        score = jaccard(Counter(a), Counter(b))
        assert score == jaccard(Counter(b), Counter(a))
        assert 0.0 <= score <= 1.0

    @pytest.mark.parametrize("lines,members,severity", [
        (60, 2, IssueSeverity.CRITICAL),
        (10, 5, IssueSeverity.CRITICAL),
        (35, 2, IssueSeverity.HIGH),
        (10, 3, IssueSeverity.HIGH),
        (20, 2, IssueSeverity.MEDIUM),
        (10, 2, IssueSeverity.LOW),
    ])
    def test_group_severity(self, lines, members, severity):
        assert group_severity(lines, members) == severity
