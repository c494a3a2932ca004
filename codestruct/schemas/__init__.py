"""Pydantic records handed to external stores and review flows."""

from codestruct.schemas.duplicate import DuplicateGroup
from codestruct.schemas.issue import (
    ComplexityMetrics,
    DuplicateMetrics,
    GenericMetrics,
    Issue,
    IssueSeverity,
    IssueStatus,
    IssueType,
    SecurityMetrics,
)
from codestruct.schemas.refactoring import (
    ChangeType,
    LayerStatus,
    LineChange,
    RefactoringSuggestion,
    SuggestionStatus,
    ValidationLayer,
    VerificationBadge,
    VerificationRequest,
)

__all__ = [
    "ChangeType",
    "ComplexityMetrics",
    "DuplicateGroup",
    "DuplicateMetrics",
    "GenericMetrics",
    "Issue",
    "IssueSeverity",
    "IssueStatus",
    "IssueType",
    "LayerStatus",
    "LineChange",
    "RefactoringSuggestion",
    "SecurityMetrics",
    "SuggestionStatus",
    "ValidationLayer",
    "VerificationBadge",
    "VerificationRequest",
]
