"""NotesService — short notes left on the page."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from src.backend.base import NOTES_TABLE, BackendError
from src.memories.errors import FetchError, MemoriesError
from src.memories.models import Note

if TYPE_CHECKING:
    from src.backend.base import RecordStore

logger = logging.getLogger(__name__)

MAX_NOTE_LENGTH = 2000


class NotesService:
    """Add, list and delete rows of ``love_notes``."""

    def __init__(self, records: RecordStore) -> None:
        self._records = records

    async def list(self) -> list[Note]:
        """All notes, newest first."""
        try:
            rows = await self._records.select(NOTES_TABLE, order="created_at", descending=True)
        except BackendError as exc:
            msg = f"Error fetching notes: {exc}"
            raise FetchError(msg) from exc
        return [Note.model_validate(row) for row in rows]

    async def add(self, content: str) -> Note:
        """Store a note. Blank notes are rejected."""
        text = content.strip()
        if not text:
            msg = "A note cannot be empty"
            raise MemoriesError(msg)
        if len(text) > MAX_NOTE_LENGTH:
            msg = f"Note too long: {len(text)} characters (max {MAX_NOTE_LENGTH})"
            raise MemoriesError(msg)
        try:
            row = await self._records.insert(NOTES_TABLE, {"content": text})
        except BackendError as exc:
            msg = f"Could not save note: {exc}"
            raise MemoriesError(msg) from exc
        logger.info("Added note %s", row["id"])
        return Note.model_validate(row)

    async def delete(self, note_id: str) -> bool:
        try:
            return await self._records.delete(NOTES_TABLE, note_id)
        except BackendError as exc:
            msg = f"Could not delete note: {exc}"
            raise MemoriesError(msg) from exc
