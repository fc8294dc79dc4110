"""
Message and record schemas for the analysis consumer.

Contains Pydantic models for change events consumed from the analysis
topic and for analysis records read from the document store.
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ChangeEvent(BaseModel):
    """Schema for a module change event.

    Published whenever a module changes upstream. The producer of the
    original pipeline writes ``data`` and ``pushedAt``; both spellings
    are accepted.

    Attributes:
        name: Module name to (re-)analyze
        pushed_at: When the event was pushed onto the queue

    Example:
        >>> event = ChangeEvent.model_validate_json(
        ...     '{"data": "left-pad", "pushedAt": "2024-03-01T10:00:00Z"}'
        ... )
        >>> event.name
        'left-pad'
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(
        ...,
        description="Module name",
        min_length=1,
        validation_alias=AliasChoices("name", "data"),
    )
    pushed_at: datetime = Field(
        ...,
        description="Time the event was pushed to the queue",
        validation_alias=AliasChoices("pushed_at", "pushedAt"),
    )

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Ensure the module name is not blank and carries no padding."""
        if not v.strip():
            raise ValueError("name cannot be empty or whitespace")
        if v != v.strip():
            raise ValueError("name cannot have surrounding whitespace")
        return v

    @field_validator("pushed_at")
    @classmethod
    def validate_pushed_at(cls, v: datetime) -> datetime:
        return _as_utc(v)


class AnalysisRecord(BaseModel):
    """Schema for a stored analysis document.

    Only the fields the consumer needs are modelled; the rest of the
    stored document is ignored.

    Attributes:
        name: Module name
        started_at: When the most recent analysis of the module started
            (None when the stored document does not say)
        revision: Store revision token used for conflict-aware updates
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    name: str = Field(..., min_length=1)
    started_at: Optional[datetime] = Field(
        default=None,
        validation_alias=AliasChoices("started_at", "startedAt"),
    )
    revision: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("revision", "_rev"),
    )

    @field_validator("started_at")
    @classmethod
    def validate_started_at(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v) if v is not None else None
