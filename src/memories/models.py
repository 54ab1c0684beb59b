"""Data models for timeline entries, uploaded image details, and memories."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

MemorySource = Literal["timeline", "details", "merged", "storage"]
Confidence = Literal["exact", "linked", "same_day", "title", "best_guess", "none"]


def parse_instant(value: str | datetime | None) -> datetime | None:
    """Parse an ISO 8601 string (``Z`` suffix allowed). Returns None if unparseable."""
    if value is None or isinstance(value, datetime):
        return value
    text = value.strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def calendar_day(value: str | datetime | None) -> date | None:
    """The ISO calendar date of an instant, or None."""
    instant = parse_instant(value)
    return instant.date() if instant else None


class TimelineRecord(BaseModel):
    """A row of ``memory_timeline`` — a narrative entry on the timeline."""

    id: str
    title: str
    description: str | None = None
    date: str = ""  # display string, e.g. "May 20, 2018"
    raw_date: str | None = None  # ISO instant
    image_url: str | None = None
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> TimelineRecord:
        return cls.model_validate({k: v for k, v in row.items() if v is not None})


class DetailsRecord(BaseModel):
    """A row of ``memory_details`` — metadata for one uploaded object."""

    id: str
    file_name: str
    display_name: str = ""
    description: str | None = None
    date_taken: str | None = None
    location: str | None = None
    timeline_id: str | None = None  # explicit link to memory_timeline.id
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> DetailsRecord:
        return cls.model_validate({k: v for k, v in row.items() if v is not None})


class Memory(BaseModel):
    """A displayable remembrance: image plus metadata, as the page consumes it."""

    id: str
    url: str | None = None
    file_name: str = ""
    display_name: str = ""
    description: str | None = None
    date: str = ""
    date_taken: str | None = None
    location: str | None = None
    available: bool | None = None  # None until checked
    source: MemorySource = "timeline"
    confidence: Confidence = "exact"

    @property
    def title(self) -> str:
        return self.display_name

    @property
    def raw_date(self) -> str | None:
        return self.date_taken

    @property
    def renderable(self) -> bool:
        """Only memories with a url may be rendered as an image."""
        return bool(self.url)


class Note(BaseModel):
    """A short note left on the page."""

    id: str
    content: str
    created_at: str = ""


class UploadMetadata(BaseModel):
    """Metadata accompanying an uploaded memory image."""

    display_name: str = Field(min_length=1)
    description: str | None = None
    date_taken: datetime
    location: str | None = None
