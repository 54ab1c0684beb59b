"""Wiring of the memories components around one backend."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from src.backend.base import Backend
from src.memories.availability import ImageAvailabilityChecker
from src.memories.notes import NotesService
from src.memories.provisioner import BucketProvisioner
from src.memories.reconciler import MemoryReconciler
from src.memories.resolver import MemoryCardImageResolver
from src.memories.slideshow import SlideshowController
from src.memories.timeline import TimelineService
from src.memories.uploader import MemoryUploadPipeline

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """Everything the page's routes need."""

    backend: Backend
    checker: ImageAvailabilityChecker
    provisioner: BucketProvisioner
    reconciler: MemoryReconciler
    slideshow: SlideshowController
    uploader: MemoryUploadPipeline
    resolver: MemoryCardImageResolver
    timeline: TimelineService
    notes: NotesService

    async def start(self) -> None:
        """Provision the bucket, run the first pass, start autoplay."""
        await self.provisioner.ensure_ready()
        await self.slideshow.refresh()
        self.slideshow.start()

    async def stop(self) -> None:
        self.slideshow.stop()
        self.reconciler.close()


def build_context(
    backend: Backend,
    checker: ImageAvailabilityChecker | None = None,
) -> AppContext:
    checker = checker or ImageAvailabilityChecker()
    provisioner = BucketProvisioner(backend.storage)
    reconciler = MemoryReconciler(backend, checker, bucket=provisioner.bucket)

    def download_url(url: str, file_name: str) -> str:
        return backend.storage.download_url(provisioner.bucket, file_name, file_name)

    return AppContext(
        backend=backend,
        checker=checker,
        provisioner=provisioner,
        reconciler=reconciler,
        slideshow=SlideshowController(reconciler, download_url=download_url),
        uploader=MemoryUploadPipeline(backend, provisioner, bucket=provisioner.bucket),
        resolver=MemoryCardImageResolver(backend, checker, bucket=provisioner.bucket),
        timeline=TimelineService(backend.records),
        notes=NotesService(backend.records),
    )
