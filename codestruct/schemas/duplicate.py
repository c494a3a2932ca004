"""Duplicate group schemas."""

from typing import Literal

from pydantic import Field, model_validator

from codestruct.schemas.common import CodeLocation, FrozenSchema
from codestruct.schemas.issue import IssueSeverity

MatchType = Literal["exact", "structural", "semantic"]


class DuplicateGroup(FrozenSchema):
    """A cluster of DuplicateCode issues that share one group id."""

    id: str
    match_type: MatchType
    similarity: float = Field(ge=0.0, le=1.0)
    severity: IssueSeverity
    issue_ids: list[str]
    locations: list[CodeLocation]

    @model_validator(mode="after")
    def check_members(self) -> "DuplicateGroup":
        if len(self.issue_ids) < 2:
            raise ValueError("a duplicate group needs at least two members")
        if len(self.issue_ids) != len(self.locations):
            raise ValueError("issue_ids and locations must line up")
        return self

    @property
    def size(self) -> int:
        return len(self.issue_ids)
