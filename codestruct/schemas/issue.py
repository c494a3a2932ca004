"""Issue schemas."""

from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from codestruct.core.exceptions import InvalidStateTransitionError
from codestruct.schemas.common import FrozenSchema


class IssueType(str, Enum):
    """Closed set of findings the detectors can emit."""
    LONG_METHOD = "long_method"
    GOD_CLASS = "god_class"
    DEEP_NESTING = "deep_nesting"
    LONG_PARAMETER_LIST = "long_parameter_list"
    HIGH_COMPLEXITY = "high_complexity"
    COGNITIVE_COMPLEXITY = "cognitive_complexity"
    DUPLICATE_CODE = "duplicate_code"
    MAGIC_NUMBER = "magic_number"
    DEAD_CODE = "dead_code"
    FEATURE_ENVY = "feature_envy"
    HARDCODED_CREDENTIALS = "hardcoded_credentials"
    HARDCODED_SECRETS = "hardcoded_secrets"
    SENSITIVE_FILE = "sensitive_file"
    UNSAFE_LOGGING = "unsafe_logging"
    WEAK_ENCRYPTION = "weak_encryption"
    HARDCODED_VALUES = "hardcoded_values"


class IssueSeverity(str, Enum):
    """Issue severity enum for schemas."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return SEVERITY_RANK[self]


SEVERITY_RANK: dict[IssueSeverity, int] = {
    IssueSeverity.LOW: 1,
    IssueSeverity.MEDIUM: 2,
    IssueSeverity.HIGH: 3,
    IssueSeverity.CRITICAL: 4,
}


class IssueStatus(str, Enum):
    """Review status, driven by the external review flow."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


# Allowed review transitions. Accepted and rejected are terminal.
ISSUE_STATUS_TRANSITIONS: dict[IssueStatus, set[IssueStatus]] = {
    IssueStatus.PENDING: {IssueStatus.ACCEPTED, IssueStatus.REJECTED},
    IssueStatus.ACCEPTED: set(),
    IssueStatus.REJECTED: set(),
}


# =============================================================================
# Metadata variants
# =============================================================================


class ComplexityMetrics(BaseModel):
    """Numeric metric that crossed a threshold."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["complexity"] = "complexity"
    metric: str
    value: float
    threshold: float
    extra: dict[str, float] = Field(default_factory=dict)


class DuplicateMetrics(BaseModel):
    """Match strength of one duplicated block."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["duplicate"] = "duplicate"
    match_type: Literal["exact", "structural", "semantic"]
    similarity: float = Field(ge=0.0, le=1.0)
    group_size: int = Field(ge=2)
    line_count: int
    token_count: int


class SecurityMetrics(BaseModel):
    """Rule that fired, with the offending value masked."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["security"] = "security"
    rule_id: str
    masked_value: str | None = None
    credential_derived: bool = False


class GenericMetrics(BaseModel):
    """Fallback bag of numeric metrics."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["generic"] = "generic"
    values: dict[str, float] = Field(default_factory=dict)


IssueMetadata = Annotated[
    Union[ComplexityMetrics, DuplicateMetrics, SecurityMetrics, GenericMetrics],
    Field(discriminator="kind"),
]

SECURITY_ISSUE_TYPES = frozenset({
    IssueType.HARDCODED_CREDENTIALS,
    IssueType.HARDCODED_SECRETS,
    IssueType.SENSITIVE_FILE,
    IssueType.UNSAFE_LOGGING,
    IssueType.WEAK_ENCRYPTION,
    IssueType.HARDCODED_VALUES,
})

# Metadata variant each issue family carries; GenericMetrics is always accepted.
METADATA_SCHEMA: dict[IssueType, type[BaseModel]] = {
    **{t: SecurityMetrics for t in SECURITY_ISSUE_TYPES},
    IssueType.DUPLICATE_CODE: DuplicateMetrics,
    **{
        t: ComplexityMetrics
        for t in IssueType
        if t not in SECURITY_ISSUE_TYPES and t is not IssueType.DUPLICATE_CODE
    },
}


class Issue(FrozenSchema):
    """A single detected code-quality or security finding.

    Records are immutable: ids, group ids and status changes produce copies.
    """

    id: str | None = None
    type: IssueType
    severity: IssueSeverity
    confidence: int = Field(ge=0, le=100)
    file_path: str
    line_start: int = Field(ge=1)
    line_end: int = Field(ge=1)
    function_name: str | None = None
    class_name: str | None = None
    description: str
    recommendation: str = ""
    code_excerpt: str = ""
    duplicate_group_id: str | None = None
    metadata: IssueMetadata = Field(default_factory=GenericMetrics)
    status: IssueStatus = IssueStatus.PENDING

    @model_validator(mode="after")
    def check_metadata_family(self) -> "Issue":
        if self.line_end < self.line_start:
            raise ValueError(f"line_end {self.line_end} precedes line_start {self.line_start}")
        expected = METADATA_SCHEMA[self.type]
        if not isinstance(self.metadata, (expected, GenericMetrics)):
            raise ValueError(
                f"{self.type.value} issues carry {expected.__name__}, "
                f"got {type(self.metadata).__name__}"
            )
        return self

    @property
    def dedup_key(self) -> tuple[str, str, int, int]:
        return (self.type.value, self.file_path, self.line_start, self.line_end)

    def with_status(self, new_status: IssueStatus) -> "Issue":
        """Return a copy moved to ``new_status``."""
        if new_status not in ISSUE_STATUS_TRANSITIONS[self.status]:
            raise InvalidStateTransitionError("issue status", self.status.value, new_status.value)
        return self.model_copy(update={"status": new_status})
