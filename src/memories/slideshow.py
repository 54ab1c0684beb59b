"""SlideshowController — presentation state over a reconciled memory snapshot.

The controller never mutates the memory list; it only moves its own index
and flags.  Autoplay is an APScheduler interval job that calls ``tick()``.
Bookmarks and per-slide load state live in side tables keyed by memory id.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from src.config import settings
from src.memories.errors import FetchError

if TYPE_CHECKING:
    from src.memories.models import Memory
    from src.memories.reconciler import MemoryReconciler

logger = logging.getLogger(__name__)

AUTOPLAY_JOB_ID = "slideshow-autoplay"

Status = Literal["loading", "ready", "empty", "error"]
SlideLoad = Literal["loading", "loaded", "error"]

# Share capability signature: async (title, text, url) -> None
ShareHandler = Callable[[str, str, str], Awaitable[None]]


@dataclass
class ShareResult:
    supported: bool
    shared: bool = False
    error: str | None = None


@dataclass
class DownloadInfo:
    url: str
    file_name: str


class SlideshowController:
    """Owns index, autoplay, fullscreen, info overlay and bookmarks.

    Args:
        reconciler: Source of memory snapshots.
        interval_ms: Autoplay period (default from settings).
        share_handler: Platform share capability; None means unsupported.
        download_url: Maps ``(url, file_name)`` to a save-as URL.
    """

    def __init__(
        self,
        reconciler: MemoryReconciler,
        interval_ms: int | None = None,
        share_handler: ShareHandler | None = None,
        download_url: Callable[[str, str], str] | None = None,
    ) -> None:
        self._reconciler = reconciler
        self.interval_ms = interval_ms or settings.slideshow_interval_ms
        self._share_handler = share_handler
        self._download_url = download_url
        self._scheduler: AsyncIOScheduler | None = None

        self.memories: tuple[Memory, ...] = ()
        self.status: Status = "loading"
        self.error: str | None = None
        self.index = 0
        self.fullscreen = False
        self.show_info = True
        self._autoplay = True
        self._refreshing = False
        self.bookmarks: set[str] = set()
        self.slide_state: dict[str, SlideLoad] = {}

    # -- Derived state ---------------------------------------------------------

    @property
    def navigable(self) -> bool:
        return self.status == "ready" and bool(self.memories)

    @property
    def autoplay(self) -> bool:
        """Whether autoplay is effectively running right now."""
        return self._autoplay and self.navigable and not self._refreshing

    @property
    def current(self) -> Memory | None:
        return self.memories[self.index] if self.navigable else None

    def state(self) -> dict:
        """Serializable view of the controller for the page."""
        current = self.current
        return {
            "status": self.status,
            "error": self.error,
            "index": self.index,
            "count": len(self.memories),
            "autoplay": self.autoplay,
            "autoplay_enabled": self._autoplay,
            "fullscreen": self.fullscreen,
            "show_info": self.show_info,
            "refreshing": self._refreshing,
            "current": current.model_dump() if current else None,
            "current_load": self.slide_load_state(current) if current else None,
            "bookmarked": bool(current and current.id in self.bookmarks),
            "bookmarks": sorted(self.bookmarks),
        }

    # -- Loading ---------------------------------------------------------------

    async def refresh(self) -> None:
        """Run a reconciliation pass and adopt its snapshot.

        Autoplay is suspended while the pass is in flight.  A fetch failure
        moves the controller to the ``error`` state instead of raising.
        """
        self._refreshing = True
        self.status = "loading"
        try:
            memories = await self._reconciler.reconcile()
        except FetchError as exc:
            logger.exception("Slideshow refresh failed")
            self.load_failed(str(exc))
        else:
            self.load(memories)
        finally:
            self._refreshing = False

    def load(self, memories: list[Memory] | tuple[Memory, ...]) -> None:
        """Adopt a new snapshot. Index, bookmarks and load state carry over by id."""
        previous = self.memories[self.index].id if self.index < len(self.memories) else None
        self.memories = tuple(memories)
        self.error = None
        self.status = "ready" if self.memories else "empty"

        ids = {m.id for m in self.memories}
        # Ids can change provenance between passes; only keep ones still present
        self.bookmarks &= ids
        self.slide_state = {k: v for k, v in self.slide_state.items() if k in ids}

        self.index = 0
        if previous is not None:
            for i, memory in enumerate(self.memories):
                if memory.id == previous:
                    self.index = i
                    break
        logger.info("Slideshow loaded %d memories (status=%s)", len(self.memories), self.status)

    def load_failed(self, message: str) -> None:
        self.memories = ()
        self.status = "error"
        self.error = message
        self.index = 0
        self.fullscreen = False

    # -- Navigation ------------------------------------------------------------

    def go_to(self, index: int) -> bool:
        """Select slide *index* (wraps). Returns False when navigation is disabled."""
        if not self.navigable:
            return False
        self.index = index % len(self.memories)
        return True

    def next(self) -> bool:
        return self.go_to(self.index + 1)

    def prev(self) -> bool:
        return self.go_to(self.index - 1)

    def tick(self) -> None:
        """Autoplay step: advance by one if autoplay is effectively on."""
        if self.autoplay:
            self.next()

    def handle_swipe(self, direction: str) -> bool:
        """Swipe left shows the next slide, swipe right the previous one."""
        if direction == "left":
            return self.next()
        if direction == "right":
            return self.prev()
        return False

    def handle_key(self, key: str) -> bool:
        """Keyboard shortcuts, active only in fullscreen. Returns True if handled."""
        if not self.fullscreen:
            return False
        if key == "ArrowRight":
            return self.next()
        if key == "ArrowLeft":
            return self.prev()
        if key == "Escape":
            self.fullscreen = False
            return True
        if key in (" ", "Space", "Spacebar"):
            self.toggle_autoplay()
            return True
        if key in ("i", "I"):
            self.show_info = not self.show_info
            return True
        return False

    # -- Toggles ---------------------------------------------------------------

    def toggle_autoplay(self) -> bool:
        self._autoplay = not self._autoplay
        logger.debug("Autoplay %s", "enabled" if self._autoplay else "paused")
        return self._autoplay

    def toggle_fullscreen(self) -> bool:
        if not self.navigable:
            self.fullscreen = False
            return False
        self.fullscreen = not self.fullscreen
        return self.fullscreen

    def toggle_info(self) -> bool:
        self.show_info = not self.show_info
        return self.show_info

    # -- Per-slide image state -------------------------------------------------

    def mark_loaded(self, memory_id: str) -> None:
        self.slide_state[memory_id] = "loaded"

    def mark_failed(self, memory_id: str) -> None:
        self.slide_state[memory_id] = "error"

    def slide_load_state(self, memory: Memory) -> SlideLoad:
        """``error`` for url-less memories, which must never be image-loaded."""
        if not memory.renderable:
            return "error"
        return self.slide_state.get(memory.id, "loading")

    # -- Actions on the current slide -----------------------------------------

    def toggle_bookmark(self) -> bool | None:
        """Toggle the bookmark on the current slide. None when nothing is shown."""
        current = self.current
        if current is None:
            return None
        if current.id in self.bookmarks:
            self.bookmarks.discard(current.id)
            return False
        self.bookmarks.add(current.id)
        return True

    async def share(self) -> ShareResult:
        current = self.current
        if current is None or not current.url:
            return ShareResult(supported=self._share_handler is not None, error="Nothing to share")
        if self._share_handler is None:
            return ShareResult(supported=False, error="Sharing is not supported here")
        try:
            await self._share_handler(current.display_name, current.description or "", current.url)
        except Exception as exc:
            logger.exception("Share failed for memory %s", current.id)
            return ShareResult(supported=True, error=str(exc))
        return ShareResult(supported=True, shared=True)

    def download(self) -> DownloadInfo | None:
        current = self.current
        if current is None or not current.url:
            return None
        file_name = current.file_name or f"{current.display_name or 'memory'}.jpg"
        if self._download_url and current.file_name:
            url = self._download_url(current.url, current.file_name)
        else:
            url = current.url
        return DownloadInfo(url=url, file_name=file_name)

    # -- Autoplay scheduling ---------------------------------------------------

    def start(self) -> None:
        """Start the autoplay timer. Needs a running event loop."""
        if self._scheduler is not None:
            return
        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self._on_timer,
            trigger=IntervalTrigger(seconds=self.interval_ms / 1000),
            id=AUTOPLAY_JOB_ID,
            name="Slideshow autoplay",
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        self._scheduler.start()
        logger.info("Slideshow autoplay timer started (period=%dms)", self.interval_ms)

    def stop(self) -> None:
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Slideshow autoplay timer stopped")

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    async def _on_timer(self) -> None:
        self.tick()
