"""Keyed cache of parsed trees.

Entries are keyed by (project_id, path). Writes to one key are serialized by
a per-key lock; reads never lock. When two producers race on the same key the
last writer wins, which is harmless because parsing unchanged text is
idempotent.
"""

import hashlib
import logging
import threading
from dataclasses import dataclass, field

from codestruct.services.parser import ParserAdapter, SourceAST, get_parser_adapter
from codestruct.services.source import SourceFile

logger = logging.getLogger(__name__)


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class StoreEntry:
    """Cached tree plus the hash of the text it was built from."""

    ast: SourceAST
    content_hash: str
    language: str


@dataclass
class StoreStats:
    hits: int = 0
    misses: int = 0
    entries: int = 0


@dataclass
class ASTStore:
    """In-memory (project, path) -> AST cache shared by worker threads."""

    _entries: dict[tuple[str, str], StoreEntry] = field(default_factory=dict)
    _key_locks: dict[tuple[str, str], threading.Lock] = field(default_factory=dict)
    _locks_guard: threading.Lock = field(default_factory=threading.Lock)
    _stats: StoreStats = field(default_factory=StoreStats)

    def _lock_for(self, key: tuple[str, str]) -> threading.Lock:
        with self._locks_guard:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._key_locks[key] = lock
            return lock

    def get(self, project_id: str, path: str) -> SourceAST | None:
        entry = self._entries.get((project_id, path))
        return entry.ast if entry else None

    def put(self, project_id: str, ast: SourceAST) -> None:
        """Store a tree, replacing any previous entry for its path."""
        key = (project_id, ast.path)
        with self._lock_for(key):
            self._entries[key] = StoreEntry(ast, content_hash(ast.source), ast.language)

    def get_or_parse(
        self,
        project_id: str,
        source_file: SourceFile,
        parser: ParserAdapter | None = None,
    ) -> SourceAST:
        """Return the cached tree for a file, parsing only if its text changed.

        Raises:
            UnsupportedLanguageError: If the file's language has no adapter
        """
        key = (project_id, source_file.path)
        digest = content_hash(source_file.text)

        entry = self._entries.get(key)
        if entry is not None and entry.content_hash == digest and entry.language == source_file.language:
            self._record(hit=True)
            return entry.ast

        with self._lock_for(key):
            # Another producer may have stored this exact text while we waited
            entry = self._entries.get(key)
            if entry is not None and entry.content_hash == digest and entry.language == source_file.language:
                self._record(hit=True)
                return entry.ast

            parser = parser or get_parser_adapter()
            ast = parser.parse_file(source_file)
            self._entries[key] = StoreEntry(ast, digest, ast.language)
            self._record(hit=False)
            logger.debug(f"Parsed {source_file.path} for project {project_id}")
            return ast

    def invalidate(self, project_id: str, path: str | None = None) -> int:
        """Drop one entry, or every entry of a project. Returns the count removed."""
        with self._locks_guard:
            keys = [
                key for key in self._entries
                if key[0] == project_id and (path is None or key[1] == path)
            ]
            for key in keys:
                self._entries.pop(key, None)
        return len(keys)

    def paths(self, project_id: str) -> list[str]:
        return sorted(path for (project, path) in list(self._entries) if project == project_id)

    def stats(self) -> StoreStats:
        with self._locks_guard:
            return StoreStats(self._stats.hits, self._stats.misses, len(self._entries))

    def _record(self, hit: bool) -> None:
        with self._locks_guard:
            if hit:
                self._stats.hits += 1
            else:
                self._stats.misses += 1
