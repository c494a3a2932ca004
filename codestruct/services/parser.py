"""Parser adapter: raw file text to a normalized AST.

Code languages go through tree-sitter grammars; config and key-material files
go through a line-oriented key/value adapter so the security scanner sees
them through the same tree interface.

The normalized tree keeps every tree-sitter node (named and anonymous) so
token-level passes such as duplicate hashing can work from the tree alone.
"""

import logging
import re
import threading
from collections.abc import Iterator
from dataclasses import dataclass, field

import tree_sitter_javascript as tsjavascript
import tree_sitter_python as tspython
import tree_sitter_typescript as tstypescript
from tree_sitter import Language, Node, Parser

from codestruct.core.exceptions import ParseError, UnsupportedLanguageError
from codestruct.services.source import CONFIG_LANGUAGE, SourceFile, detect_language

logger = logging.getLogger(__name__)

DEFAULT_MAX_NODES = 500_000

_LANGUAGE_LOADERS = {
    "python": lambda: Language(tspython.language()),
    "javascript": lambda: Language(tsjavascript.language()),
    "typescript": lambda: Language(tstypescript.language_typescript()),
    "tsx": lambda: Language(tstypescript.language_tsx()),
}

TREE_SITTER_LANGUAGES = frozenset(_LANGUAGE_LOADERS)

# Node kinds whose `name` field becomes the symbol name
SYMBOL_KINDS = {
    "function_definition",
    "class_definition",
    "function_declaration",
    "generator_function_declaration",
    "class_declaration",
    "abstract_class_declaration",
    "method_definition",
    "interface_declaration",
    "class",
}

# Function expressions take their name from the binding they are assigned to
ANONYMOUS_FUNCTION_KINDS = {"arrow_function", "function_expression", "function", "generator_function"}

_BINDING_FIELDS = ("name", "key", "left", "property")

COMMENT_KINDS = {"comment", "line_comment", "block_comment", "html_comment"}


# =============================================================================
# Normalized tree
# =============================================================================


@dataclass
class SourceNode:
    """One node of a normalized AST.

    Lines are 1-based, columns 0-based. ``text`` is set for leaves only.
    """

    kind: str
    start_line: int
    start_column: int
    end_line: int
    end_column: int
    start_byte: int = 0
    end_byte: int = 0
    named: bool = True
    field_name: str | None = None
    name: str | None = None
    text: str | None = None
    is_error: bool = False
    children: list["SourceNode"] = field(default_factory=list)

    def child_by_field(self, name: str) -> "SourceNode | None":
        for child in self.children:
            if child.field_name == name:
                return child
        return None

    def children_by_field(self, name: str) -> list["SourceNode"]:
        return [child for child in self.children if child.field_name == name]

    @property
    def named_children(self) -> list["SourceNode"]:
        return [child for child in self.children if child.named]

    def walk(self, skip_errors: bool = True) -> Iterator["SourceNode"]:
        """Pre-order traversal. Error subtrees are pruned unless asked otherwise."""
        stack = [self]
        while stack:
            node = stack.pop()
            if skip_errors and node.is_error:
                continue
            yield node
            stack.extend(reversed(node.children))

    def leaves(self, skip_comments: bool = True) -> Iterator["SourceNode"]:
        """Token leaves in source order."""
        for node in self.walk():
            if node.children:
                continue
            if skip_comments and node.kind in COMMENT_KINDS:
                continue
            if node.start_byte == node.end_byte:
                continue
            yield node

    def shape(self) -> list[tuple[str, int, int, int, int, int]]:
        """Flat (kind, span..., depth) listing used to compare trees."""
        result = []
        stack = [(self, 0)]
        while stack:
            node, depth = stack.pop()
            result.append(
                (node.kind, node.start_line, node.start_column, node.end_line, node.end_column, depth)
            )
            stack.extend((child, depth + 1) for child in reversed(node.children))
        return result


@dataclass
class SourceAST:
    """Normalized tree for one source file."""

    path: str
    language: str
    root: SourceNode
    source: str
    has_errors: bool = False
    truncated: bool = False
    node_count: int = 0
    _source_bytes: bytes = field(default=b"", repr=False, compare=False)
    _lines: list[str] | None = field(default=None, repr=False, compare=False)

    @property
    def lines(self) -> list[str]:
        if self._lines is None:
            self._lines = [line.rstrip("\r") for line in self.source.split("\n")]
        return self._lines

    def walk(self, skip_errors: bool = True) -> Iterator[SourceNode]:
        return self.root.walk(skip_errors=skip_errors)

    def text_of(self, node: SourceNode) -> str:
        """Source text covered by a node."""
        if node.text is not None:
            return node.text
        if not self._source_bytes:
            self._source_bytes = self.source.encode("utf-8")
        return self._source_bytes[node.start_byte:node.end_byte].decode("utf-8", errors="replace")

    def excerpt(self, line_start: int, line_end: int, max_lines: int = 6) -> str:
        """First few source lines of a range."""
        end = min(line_end, line_start + max_lines - 1)
        return "\n".join(self.lines[line_start - 1:end])


# =============================================================================
# Adapter
# =============================================================================

# key: value / key = value, with optional quotes, `export` prefix and trailing comma
_CONFIG_PAIR = re.compile(
    r"""^\s*(?:export\s+)?["']?(?P<key>[A-Za-z_][\w.\-]*)["']?\s*[:=]\s*(?P<value>.*?)\s*,?\s*$"""
)
_CONFIG_SECTION = re.compile(r"^\s*\[[^\]]+\]\s*$")
_CONFIG_COMMENT = re.compile(r"^\s*(#|;|//)")


class ParserAdapter:
    """Turns file text into a :class:`SourceAST`.

    Not thread-safe: tree-sitter parsers hold per-parse state. Use
    :func:`get_parser_adapter` to get one adapter per worker thread.
    """

    _languages: dict[str, Language] = {}
    _languages_lock = threading.Lock()

    def __init__(self, max_nodes: int = DEFAULT_MAX_NODES):
        self.max_nodes = max_nodes
        self._parsers: dict[str, Parser] = {}

    @classmethod
    def _language(cls, language: str) -> Language:
        with cls._languages_lock:
            if language not in cls._languages:
                cls._languages[language] = _LANGUAGE_LOADERS[language]()
            return cls._languages[language]

    def _get_parser(self, language: str) -> Parser:
        parser = self._parsers.get(language)
        if parser is None:
            parser = Parser(self._language(language))
            self._parsers[language] = parser
        return parser

    @staticmethod
    def supports(language: str | None) -> bool:
        return language == CONFIG_LANGUAGE or language in TREE_SITTER_LANGUAGES

    def parse(self, text: str, language_hint: str | None = None, path: str = "<memory>") -> SourceAST:
        """Parse text into a normalized AST.

        Malformed input yields a partial tree with ``has_errors`` set rather
        than an exception.

        Raises:
            UnsupportedLanguageError: If no adapter exists for the language
        """
        language = language_hint or detect_language(path)
        if not self.supports(language):
            raise UnsupportedLanguageError(path, language)

        if language == CONFIG_LANGUAGE:
            return self._parse_config(text, path)

        source_bytes = text.encode("utf-8")
        tree = self._get_parser(language).parse(source_bytes)
        root, count, truncated = self._normalize(tree.root_node, source_bytes)

        has_errors = tree.root_node.has_error or truncated
        if truncated:
            logger.warning(f"AST for {path} exceeded {self.max_nodes} nodes, truncated")
        elif has_errors:
            logger.warning(f"Parse errors in {path}, using partial AST")

        return SourceAST(
            path=path,
            language=language,
            root=root,
            source=text,
            has_errors=has_errors,
            truncated=truncated,
            node_count=count,
            _source_bytes=source_bytes,
        )

    def parse_strict(self, text: str, language_hint: str | None = None, path: str = "<memory>") -> SourceAST:
        """Parse text, rejecting anything but a clean tree.

        Raises:
            UnsupportedLanguageError: If no adapter exists for the language
            ParseError: If the tree has error markers or was truncated
        """
        ast = self.parse(text, language_hint, path)
        if ast.truncated:
            raise ParseError(path, f"tree exceeds {self.max_nodes} nodes")
        if ast.has_errors:
            line = next((n.start_line for n in ast.walk(skip_errors=False) if n.is_error), None)
            raise ParseError(path, f"syntax error near line {line}" if line else "syntax error")
        return ast

    def parse_file(self, source_file: SourceFile) -> SourceAST:
        return self.parse(source_file.text, source_file.language, source_file.path)

    def _normalize(self, ts_root: Node, source_bytes: bytes) -> tuple[SourceNode, int, bool]:
        """Convert a tree-sitter tree with a cursor walk, stopping at the node budget."""
        cursor = ts_root.walk()
        parents: list[SourceNode] = []
        root: SourceNode | None = None
        count = 0
        truncated = False

        while True:
            node = self._make_node(cursor.node, cursor.field_name, source_bytes)
            count += 1
            if parents:
                parents[-1].children.append(node)
            else:
                root = node

            if count >= self.max_nodes:
                truncated = True
                break

            if cursor.goto_first_child():
                parents.append(node)
                continue

            finished = False
            while not cursor.goto_next_sibling():
                if not cursor.goto_parent():
                    finished = True
                    break
                parents.pop()
            if finished:
                break

        return root, count, truncated

    def _make_node(self, ts_node: Node, field_name: str | None, source_bytes: bytes) -> SourceNode:
        kind = ts_node.type
        is_leaf = ts_node.child_count == 0

        def get_text(n: Node) -> str:
            return source_bytes[n.start_byte:n.end_byte].decode("utf-8", errors="replace")

        name = None
        if kind in SYMBOL_KINDS:
            name_node = ts_node.child_by_field_name("name")
            if name_node is not None:
                name = get_text(name_node)
        elif kind in ANONYMOUS_FUNCTION_KINDS:
            name = self._binding_name(ts_node, get_text)

        return SourceNode(
            kind=kind,
            start_line=ts_node.start_point[0] + 1,
            start_column=ts_node.start_point[1],
            end_line=ts_node.end_point[0] + 1,
            end_column=ts_node.end_point[1],
            start_byte=ts_node.start_byte,
            end_byte=ts_node.end_byte,
            named=ts_node.is_named,
            field_name=field_name,
            name=name,
            text=get_text(ts_node) if is_leaf else None,
            is_error=kind == "ERROR" or ts_node.is_missing,
        )

    @staticmethod
    def _binding_name(ts_node: Node, get_text) -> str | None:
        name_node = ts_node.child_by_field_name("name")
        if name_node is not None:
            return get_text(name_node)
        parent = ts_node.parent
        if parent is None:
            return None
        for field_name in _BINDING_FIELDS:
            target = parent.child_by_field_name(field_name)
            if target is not None and target.id != ts_node.id:
                return get_text(target)
        return None

    def _parse_config(self, text: str, path: str) -> SourceAST:
        """Line-oriented adapter for config and key-material files."""
        lines = text.split("\n")
        if lines and lines[-1] == "":
            lines.pop()
        children: list[SourceNode] = []
        offset = 0

        for index, raw in enumerate(lines, start=1):
            line = raw.rstrip("\r")
            size = len(raw.encode("utf-8")) + 1
            line_bytes = len(line.encode("utf-8"))
            if not line.strip():
                offset += size
                continue

            if _CONFIG_COMMENT.match(line):
                kind, name, value = "comment", None, line.strip()
            elif _CONFIG_SECTION.match(line):
                kind, name, value = "section", line.strip()[1:-1], line.strip()
            else:
                match = _CONFIG_PAIR.match(line)
                if match:
                    kind, name, value = "pair", match.group("key"), match.group("value")
                else:
                    kind, name, value = "line", None, line.strip()

            children.append(SourceNode(
                kind=kind,
                start_line=index,
                start_column=0,
                end_line=index,
                end_column=line_bytes,
                start_byte=offset,
                end_byte=offset + line_bytes,
                name=name,
                text=value,
            ))
            offset += size

        root = SourceNode(
            kind="document",
            start_line=1,
            start_column=0,
            end_line=max(1, len(lines)),
            end_column=0,
            start_byte=0,
            end_byte=offset,
            children=children,
        )
        return SourceAST(
            path=path,
            language=CONFIG_LANGUAGE,
            root=root,
            source=text,
            node_count=len(children) + 1,
        )


# Thread-local storage for parser adapters
_thread_local = threading.local()


def get_parser_adapter(max_nodes: int = DEFAULT_MAX_NODES) -> ParserAdapter:
    """Get the parser adapter for the current thread."""
    adapter = getattr(_thread_local, "adapter", None)
    if adapter is None or adapter.max_nodes != max_nodes:
        adapter = ParserAdapter(max_nodes=max_nodes)
        _thread_local.adapter = adapter
    return adapter
