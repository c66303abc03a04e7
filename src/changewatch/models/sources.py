from __future__ import annotations

from datetime import datetime

from pydantic import AnyUrl, BaseModel, field_validator
from pydantic import ValidationError as PydanticValidationError


class Source(BaseModel):
    """A monitored changelog endpoint."""

    id: str
    name: str
    url: str
    is_active: bool = True
    last_version: str | None = None
    last_checked_at: datetime | None = None
    created_at: datetime


class VersionRecord(BaseModel):
    """One detected version for one source."""

    version: str
    source_id: str | None
    detected_at: datetime
    notified: bool = False


class ParsedChangelogEntry(BaseModel):
    """Latest version block extracted from a changelog document. Never persisted."""

    version: str
    content: str


def _validate_absolute_url(v: str) -> str:
    # AnyUrl rejects relative references; the original string is stored untouched
    # so uniqueness stays an exact, case-sensitive match.
    try:
        AnyUrl(v)
    except PydanticValidationError as exc:
        raise ValueError(f"Invalid URL format: {v!r}") from exc
    return v


class SourceCreateInput(BaseModel):
    name: str
    url: str

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("name must not be empty")
        return v

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        return _validate_absolute_url(v)


class SourceUpdateInput(BaseModel):
    name: str | None = None
    url: str | None = None
    is_active: bool | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str | None) -> str | None:
        if v is not None and not v.strip():
            raise ValueError("name must not be empty")
        return v

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        if v is None:
            return v
        return _validate_absolute_url(v)
