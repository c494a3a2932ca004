"""Analysis services.

Note: tree-sitter grammars are loaded on first use, so the heavy modules are
resolved lazily. Import directly when preferred:
from codestruct.services.analysis import ProjectAnalyzer
"""

__all__ = [
    "ProjectAnalyzer",
    "RefactoringService",
    "RefactoringVerifier",
]

_LAZY_IMPORTS = {
    "ProjectAnalyzer": "codestruct.services.analysis",
    "RefactoringService": "codestruct.services.refactoring",
    "RefactoringVerifier": "codestruct.services.verifier",
}


def __getattr__(name: str):
    """Lazy import of the top-level services."""
    if name in _LAZY_IMPORTS:
        from importlib import import_module
        return getattr(import_module(_LAZY_IMPORTS[name]), name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
