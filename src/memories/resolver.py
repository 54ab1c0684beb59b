"""MemoryCardImageResolver — find a working image for one timeline card.

Strategies run in priority order and the first verified hit wins:

1. ``direct``      the memory's own url
2. ``title``       an object whose key contains the memory title
3. ``same_day``    a details record taken on the same calendar day
4. ``best_guess``  the first object in the bucket that loads at all

Anything found by strategies 2–4 is written back to the timeline record's
``image_url`` so the next pass doesn't need to search.  ``best_guess`` is a
last resort and is reported with that confidence so the page can badge it.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from src.backend.base import DETAILS_TABLE, TIMELINE_TABLE, BackendError
from src.config import settings
from src.memories.linker import same_day
from src.memories.models import DetailsRecord
from src.memories.reconciler import IMAGE_NAME_RE
from src.memories.uploader import slugify

if TYPE_CHECKING:
    from src.backend.base import Backend, StoredObject
    from src.memories.availability import ImageAvailabilityChecker
    from src.memories.models import Confidence, Memory

logger = logging.getLogger(__name__)


@dataclass
class ResolvedImage:
    url: str
    strategy: str
    confidence: Confidence

    @property
    def best_guess(self) -> bool:
        return self.confidence == "best_guess"


class _Listing:
    """Bucket listing shared by the strategies of one resolve call."""

    def __init__(self, backend: Backend, bucket: str) -> None:
        self._backend = backend
        self._bucket = bucket
        self._objects: list[StoredObject] | None = None

    async def images(self) -> list[StoredObject]:
        if self._objects is None:
            objects = await self._backend.storage.list(self._bucket)
            self._objects = [obj for obj in objects if IMAGE_NAME_RE.search(obj.name)]
        return self._objects


# A strategy yields candidate urls for a memory, best first
Strategy = Callable[["Memory", _Listing], Awaitable[list[str]]]


class MemoryCardImageResolver:
    """Resolves and caches an image url for memories shown outside the slideshow."""

    def __init__(
        self,
        backend: Backend,
        checker: ImageAvailabilityChecker,
        bucket: str | None = None,
    ) -> None:
        self._backend = backend
        self._checker = checker
        self.bucket = bucket or settings.memories_bucket
        self.strategies: list[tuple[str, Confidence, Strategy]] = [
            ("direct", "exact", self._direct),
            ("title", "title", self._by_title),
            ("same_day", "same_day", self._by_same_day),
            ("best_guess", "best_guess", self._first_working),
        ]

    async def resolve_image(self, memory: Memory) -> ResolvedImage | None:
        """Walk the strategies; return the first verified url, or None. Never raises."""
        listing = _Listing(self._backend, self.bucket)
        for name, confidence, strategy in self.strategies:
            try:
                candidates = await strategy(memory, listing)
            except BackendError:
                logger.warning("Image strategy %s failed for %s", name, memory.id, exc_info=True)
                continue
            for url in candidates:
                if not await self._checker.check_loads(url):
                    continue
                resolved = ResolvedImage(url=url, strategy=name, confidence=confidence)
                if name != "direct":
                    await self._cache(memory, url)
                logger.info("Resolved image for %s via %s: %s", memory.id, name, url)
                return resolved
        logger.info("No image found for memory %s", memory.id)
        return None

    # -- Strategies ------------------------------------------------------------

    async def _direct(self, memory: Memory, listing: _Listing) -> list[str]:
        return [memory.url] if memory.url else []

    async def _by_title(self, memory: Memory, listing: _Listing) -> list[str]:
        title = memory.display_name.strip().lower()
        if not title:
            return []
        needles = {title, title.replace(" ", "_"), slugify(title)}
        return [
            self._url(obj.name)
            for obj in await listing.images()
            if any(needle in obj.name.lower() for needle in needles)
        ]

    async def _by_same_day(self, memory: Memory, listing: _Listing) -> list[str]:
        if not memory.date_taken:
            return []
        rows = await self._backend.records.select(DETAILS_TABLE, order="created_at")
        urls = []
        for row in rows:
            try:
                details = DetailsRecord.from_row(row)
            except ValueError:
                continue
            if details.file_name and same_day(memory.date_taken, details.date_taken):
                urls.append(self._url(details.file_name))
        return urls

    async def _first_working(self, memory: Memory, listing: _Listing) -> list[str]:
        return [self._url(obj.name) for obj in await listing.images()]

    # -- Helpers ---------------------------------------------------------------

    def _url(self, key: str) -> str:
        return self._backend.storage.get_public_url(self.bucket, key)

    async def _cache(self, memory: Memory, url: str) -> None:
        if memory.source not in ("timeline", "merged"):
            return
        try:
            await self._backend.records.update(TIMELINE_TABLE, memory.id, {"image_url": url})
        except BackendError:
            logger.warning("Could not cache image url for %s", memory.id, exc_info=True)
