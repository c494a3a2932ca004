"""Refactoring suggestion schemas."""

from enum import Enum

from pydantic import Field

from codestruct.core.exceptions import InvalidStateTransitionError
from codestruct.schemas.common import BaseSchema, FrozenSchema
from codestruct.schemas.issue import IssueType


class ChangeType(str, Enum):
    ADD = "add"
    MODIFY = "modify"
    REMOVE = "remove"


class LayerStatus(str, Enum):
    PASS = "pass"
    WARNING = "warning"
    FAIL = "fail"


class VerificationBadge(str, Enum):
    VERIFIED = "verified"
    WARNING = "warning"
    FAILED = "failed"


class SuggestionStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


SUGGESTION_STATUS_TRANSITIONS: dict[SuggestionStatus, set[SuggestionStatus]] = {
    SuggestionStatus.PENDING: {SuggestionStatus.ACCEPTED, SuggestionStatus.REJECTED},
    SuggestionStatus.ACCEPTED: set(),
    SuggestionStatus.REJECTED: set(),
}


class LineChange(FrozenSchema):
    """One changed line.

    ``line_number`` refers to the refactored code for add/modify and to the
    original code for remove.
    """

    line_number: int = Field(ge=1)
    type: ChangeType
    content: str = ""
    original_content: str | None = None


class ValidationLayer(FrozenSchema):
    """Outcome of one named verification step."""

    name: str
    status: LayerStatus
    detail: str = ""


class RefactoringSuggestion(FrozenSchema):
    """A candidate rewrite for an issue, paired with its verification outcome."""

    issue_id: str | None = None
    issue_type: IssueType | None = None
    file_path: str | None = None
    original_code: str
    refactored_code: str
    explanation: str = ""
    confidence: int = Field(ge=0, le=100)
    changes: list[LineChange] = Field(default_factory=list)
    is_verified: bool
    verification_badge: VerificationBadge
    validation_layers: list[ValidationLayer] = Field(default_factory=list)
    status: SuggestionStatus = SuggestionStatus.PENDING

    def with_status(self, new_status: SuggestionStatus) -> "RefactoringSuggestion":
        """Return a copy moved to ``new_status`` by the review flow."""
        if new_status not in SUGGESTION_STATUS_TRANSITIONS[self.status]:
            raise InvalidStateTransitionError("suggestion status", self.status.value, new_status.value)
        return self.model_copy(update={"status": new_status})

    def failed_layers(self) -> list[ValidationLayer]:
        return [layer for layer in self.validation_layers if layer.status == LayerStatus.FAIL]


class VerificationRequest(BaseSchema):
    """Input to the verifier."""

    original_code: str
    refactored_code: str
    language: str
    file_path: str = "<suggestion>"
    issue_id: str | None = None
    issue_type: IssueType | None = None
    explanation: str = ""
    confidence: int | None = Field(default=None, ge=0, le=100)
