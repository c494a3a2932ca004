"""Static code-quality and security analysis with verified refactorings."""

__version__ = "0.1.0"
