"""Source file records, language detection and checkout walking."""

import logging
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

logger = logging.getLogger(__name__)

# Languages parsed with tree-sitter grammars
TREE_SITTER_EXTENSIONS: dict[str, str] = {
    ".py": "python",
    ".pyi": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".ts": "typescript",
    ".mts": "typescript",
    ".cts": "typescript",
    ".tsx": "tsx",
}

CONFIG_LANGUAGE = "config"

# Config and key-material formats, parsed line by line
CONFIG_EXTENSIONS = {
    ".json", ".yaml", ".yml", ".toml", ".ini", ".cfg", ".conf",
    ".properties", ".env", ".pem", ".key",
}

SUPPORTED_LANGUAGES = frozenset(TREE_SITTER_EXTENSIONS.values()) | {CONFIG_LANGUAGE}

EXCLUDE_DIRS = [
    ".git",
    "node_modules",
    "dist",
    "build",
    ".next",
    "__pycache__",
    ".venv",
    "venv",
    ".tox",
    ".mypy_cache",
    ".pytest_cache",
]

# Files larger than this are skipped rather than read into memory
MAX_FILE_BYTES = 2 * 1024 * 1024


def detect_language(path: str) -> str | None:
    """Map a file path to a language tag, or None when unsupported."""
    name = PurePosixPath(path).name
    if name == ".env" or name.startswith(".env."):
        return CONFIG_LANGUAGE
    suffix = PurePosixPath(name).suffix.lower()
    if suffix in TREE_SITTER_EXTENSIONS:
        return TREE_SITTER_EXTENSIONS[suffix]
    if suffix in CONFIG_EXTENSIONS:
        return CONFIG_LANGUAGE
    return None


def is_test_path(path: str) -> bool:
    """Heuristic for test and fixture files."""
    lowered = path.lower().replace("\\", "/")
    name = lowered.rsplit("/", 1)[-1]
    return (
        "/tests/" in f"/{lowered}"
        or "/__tests__/" in f"/{lowered}"
        or name.startswith("test_")
        or ".test." in name
        or ".spec." in name
        or name.endswith("_test.py")
    )


@dataclass(frozen=True)
class SourceFile:
    """One file of the project under analysis. Immutable once read."""

    path: str
    language: str | None
    text: str
    supported: bool

    @classmethod
    def from_text(cls, path: str, text: str, language_hint: str | None = None) -> "SourceFile":
        language = language_hint or detect_language(path)
        return cls(
            path=path,
            language=language,
            text=text,
            supported=language in SUPPORTED_LANGUAGES,
        )


@dataclass(frozen=True)
class SkippedFile:
    """A file that was recorded but not analysed."""

    path: str
    reason: str


def collect_source_files(root: Path | str) -> tuple[list[SourceFile], list[SkippedFile]]:
    """Read every file under a local checkout.

    Args:
        root: Directory holding the project

    Returns:
        Tuple of (readable files, files that could not be read)

    Raises:
        FileNotFoundError: If the root directory does not exist
    """
    root = Path(root)
    if not root.is_dir():
        raise FileNotFoundError(f"Project root not found: {root}")

    files: list[SourceFile] = []
    skipped: list[SkippedFile] = []

    for file_path in sorted(root.rglob("*")):
        if not file_path.is_file():
            continue
        rel_path = file_path.relative_to(root).as_posix()
        if any(part in EXCLUDE_DIRS for part in file_path.relative_to(root).parts[:-1]):
            continue

        try:
            if file_path.stat().st_size > MAX_FILE_BYTES:
                skipped.append(SkippedFile(rel_path, "file too large"))
                continue
            text = file_path.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            skipped.append(SkippedFile(rel_path, "not valid UTF-8 text"))
            continue
        except OSError as e:
            logger.warning(f"Could not read {rel_path}: {e}")
            skipped.append(SkippedFile(rel_path, f"read error: {e}"))
            continue

        files.append(SourceFile.from_text(rel_path, text))

    logger.info(f"Collected {len(files)} files under {root} ({len(skipped)} unreadable)")
    return files, skipped
