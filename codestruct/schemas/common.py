"""Common schemas and utilities."""

from pydantic import BaseModel, ConfigDict


class BaseSchema(BaseModel):
    """Base schema with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
    )


class FrozenSchema(BaseSchema):
    """Schema for records that are handed to external stores as-is."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        frozen=True,
    )


class CodeLocation(BaseModel):
    """A line range inside one file."""

    model_config = ConfigDict(frozen=True)

    path: str
    line_start: int
    line_end: int
