"""TimelineService — add, edit and delete narrative timeline entries."""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from src.backend.base import TIMELINE_TABLE, BackendError
from src.countdown import format_date
from src.memories.errors import FetchError, MemoriesError
from src.memories.models import TimelineRecord

if TYPE_CHECKING:
    from src.backend.base import RecordStore

logger = logging.getLogger(__name__)


def _as_datetime(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime(value.year, value.month, value.day)


class TimelineService:
    """CRUD over ``memory_timeline``.

    The display ``date`` string is always derived from ``raw_date`` so the
    two never drift apart.
    """

    def __init__(self, records: RecordStore) -> None:
        self._records = records

    async def list(self) -> list[TimelineRecord]:
        """All entries, newest ``raw_date`` first."""
        try:
            rows = await self._records.select(TIMELINE_TABLE, order="raw_date", descending=True)
        except BackendError as exc:
            msg = f"Error fetching timeline: {exc}"
            raise FetchError(msg) from exc
        return [TimelineRecord.from_row(row) for row in rows]

    async def add(
        self,
        when: date | datetime,
        title: str,
        description: str = "",
        image_url: str | None = None,
    ) -> TimelineRecord:
        if not title.strip():
            msg = "A title is required"
            raise MemoriesError(msg)
        moment = _as_datetime(when)
        try:
            row = await self._records.insert(
                TIMELINE_TABLE,
                {
                    "title": title.strip(),
                    "description": description,
                    "date": format_date(moment),
                    "raw_date": moment.isoformat(),
                    "image_url": image_url,
                },
            )
        except BackendError as exc:
            msg = f"Could not add memory: {exc}"
            raise MemoriesError(msg) from exc
        logger.info("Added timeline entry %s (%s)", row["id"], title)
        return TimelineRecord.from_row(row)

    async def edit(
        self,
        record_id: str,
        *,
        when: date | datetime | None = None,
        title: str | None = None,
        description: str | None = None,
    ) -> bool:
        """Patch an entry. Returns False if no such entry exists."""
        patch: dict[str, Any] = {}
        if title is not None:
            if not title.strip():
                msg = "A title is required"
                raise MemoriesError(msg)
            patch["title"] = title.strip()
        if description is not None:
            patch["description"] = description
        if when is not None:
            moment = _as_datetime(when)
            patch["date"] = format_date(moment)
            patch["raw_date"] = moment.isoformat()
        if not patch:
            return False
        try:
            return await self._records.update(TIMELINE_TABLE, record_id, patch)
        except BackendError as exc:
            msg = f"Could not update memory: {exc}"
            raise MemoriesError(msg) from exc

    async def delete(self, record_id: str) -> bool:
        try:
            return await self._records.delete(TIMELINE_TABLE, record_id)
        except BackendError as exc:
            msg = f"Could not delete memory: {exc}"
            raise MemoriesError(msg) from exc
