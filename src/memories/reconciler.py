"""MemoryReconciler — merge the timeline and details stores into one memory list.

One reconciliation pass is a single barrier: fetch both stores, build every
memory, run the availability checks, de-duplicate, then publish one immutable
snapshot.  Per-record problems are logged and skipped; a failed fetch fails
the whole pass with ``FetchError``.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import TYPE_CHECKING

from src.backend.base import DETAILS_TABLE, TIMELINE_TABLE, BackendError
from src.config import settings
from src.memories.errors import FetchError
from src.memories.linker import BestEffortLinker
from src.memories.models import DetailsRecord, Memory, TimelineRecord

if TYPE_CHECKING:
    from collections.abc import Iterable

    from src.backend.base import Backend
    from src.memories.availability import ImageAvailabilityChecker

logger = logging.getLogger(__name__)

IMAGE_NAME_RE = re.compile(r"\.(jpe?g|png|gif|webp)$", re.IGNORECASE)


def display_name_from_key(key: str) -> str:
    """``beach_day_1717200000.jpg`` -> ``beach day 1717200000``."""
    return key.rsplit(".", 1)[0].replace("_", " ") if "." in key else key.replace("_", " ")


def dedupe_by_url(memories: Iterable[Memory]) -> list[Memory]:
    """Drop later memories whose url was already seen. Url-less memories are all kept."""
    seen: set[str] = set()
    result = []
    for memory in memories:
        if memory.url:
            if memory.url in seen:
                logger.debug("Dropping duplicate memory %s (%s)", memory.id, memory.url)
                continue
            seen.add(memory.url)
        result.append(memory)
    return result


class MemoryReconciler:
    """Builds the memory list consumed by the slideshow and timeline views.

    Args:
        backend: Record store and object storage.
        checker: Availability checker; its results only flag memories.
        bucket: Bucket holding uploaded images (default from settings).
        check_images: Set False to skip availability checks entirely.
    """

    def __init__(
        self,
        backend: Backend,
        checker: ImageAvailabilityChecker,
        bucket: str | None = None,
        check_images: bool = True,
    ) -> None:
        self._backend = backend
        self._checker = checker
        self.bucket = bucket or settings.memories_bucket
        self.check_images = check_images
        self._snapshot: tuple[Memory, ...] = ()
        self._inflight: asyncio.Task[list[Memory]] | None = None
        self._generation = 0

    @property
    def snapshot(self) -> tuple[Memory, ...]:
        """The last published memory list."""
        return self._snapshot

    @property
    def in_flight(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    # -- Lifecycle -------------------------------------------------------------

    async def reconcile(self) -> list[Memory]:
        """Run a reconciliation pass, or join the one already running.

        Raises ``FetchError`` if either record store cannot be read.
        """
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.create_task(self._run(self._generation))
        return list(await asyncio.shield(self._inflight))

    def close(self) -> None:
        """Invalidate the current generation; running passes will not publish."""
        self._generation += 1

    # -- Internal --------------------------------------------------------------

    async def _run(self, generation: int) -> list[Memory]:
        timeline = await self._fetch(TIMELINE_TABLE, "raw_date", TimelineRecord)
        details = await self._fetch(DETAILS_TABLE, "created_at", DetailsRecord)

        memories = self._merge(timeline, details)
        if not timeline and not details:
            memories = await self._from_storage()

        if self.check_images:
            await self._flag_availability(memories)
        memories = dedupe_by_url(memories)

        if generation != self._generation:
            logger.info("Discarding stale reconciliation pass (%d memories)", len(memories))
            return memories

        self._snapshot = tuple(memories)
        logger.info(
            "Reconciled %d memories (%d timeline, %d details)",
            len(memories),
            len(timeline),
            len(details),
        )
        return memories

    async def _fetch(self, table: str, order: str, model):  # noqa: ANN001, ANN202
        try:
            rows = await self._backend.records.select(table, order=order, descending=True)
        except BackendError as exc:
            msg = f"Error fetching {table}: {exc}"
            raise FetchError(msg) from exc

        records = []
        for row in rows:
            try:
                records.append(model.from_row(row))
            except ValueError:
                logger.warning("Skipping malformed %s row: %r", table, row.get("id"))
        return records

    def _merge(
        self, timeline: list[TimelineRecord], details: list[DetailsRecord]
    ) -> list[Memory]:
        linker = BestEffortLinker(details)
        memories = []

        for record in timeline:
            try:
                memories.append(self._from_timeline(record, linker))
            except Exception:
                logger.exception("Skipping timeline record %s", record.id)

        for record in linker.unconsumed():
            try:
                memories.append(self._from_details(record))
            except Exception:
                logger.exception("Skipping details record %s", record.id)

        return memories

    def _from_timeline(self, record: TimelineRecord, linker: BestEffortLinker) -> Memory:
        match, linked = linker.claim(record)
        memory = Memory(
            id=record.id,
            url=record.image_url or None,
            display_name=record.title,
            description=record.description,
            date=record.date,
            date_taken=record.raw_date,
            source="timeline",
            confidence="exact" if record.image_url else "none",
        )
        if match is None:
            return memory

        # Timeline narrative fields and its own image_url take priority
        update = {
            "file_name": match.file_name,
            "location": match.location,
            "description": record.description or match.description,
            "date_taken": record.raw_date or match.date_taken,
            "source": "merged",
        }
        if not record.image_url:
            try:
                update["url"] = self._public_url(match.file_name)
            except ValueError:
                logger.warning(
                    "Details record %s has no file_name; showing timeline %s without an image",
                    match.id,
                    record.id,
                )
                return memory
            update["confidence"] = "linked" if linked else "same_day"
        return memory.model_copy(update=update)

    def _from_details(self, record: DetailsRecord) -> Memory:
        return Memory(
            id=record.id,
            url=self._public_url(record.file_name),
            file_name=record.file_name,
            display_name=record.display_name or display_name_from_key(record.file_name),
            description=record.description,
            date_taken=record.date_taken,
            location=record.location,
            source="details",
            confidence="exact",
        )

    def _public_url(self, file_name: str) -> str:
        if not file_name.strip():
            msg = "details record has an empty file_name"
            raise ValueError(msg)
        return self._backend.storage.get_public_url(self.bucket, file_name)

    async def _from_storage(self) -> list[Memory]:
        """Both stores are empty: show whatever images sit in the bucket."""
        try:
            objects = await self._backend.storage.list(self.bucket)
        except BackendError:
            logger.warning("Could not list bucket %r", self.bucket, exc_info=True)
            return []
        return [
            Memory(
                id=obj.id or obj.name,
                url=self._backend.storage.get_public_url(self.bucket, obj.name),
                file_name=obj.name,
                display_name=display_name_from_key(obj.name),
                source="storage",
                confidence="exact",
            )
            for obj in objects
            if IMAGE_NAME_RE.search(obj.name)
        ]

    async def _flag_availability(self, memories: list[Memory]) -> None:
        targets = [i for i, m in enumerate(memories) if m.url]
        results = await asyncio.gather(
            *(self._checker.check_loads(memories[i].url) for i in targets)
        )
        for i, ok in zip(targets, results, strict=True):
            memories[i] = memories[i].model_copy(update={"available": ok})
            if not ok:
                logger.warning(
                    "Memory %s image did not load: %s", memories[i].id, memories[i].url
                )
