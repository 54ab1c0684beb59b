"""MemoryUploadPipeline — store a new image and write both metadata records."""

from __future__ import annotations

import logging
import mimetypes
import re
import time
from typing import TYPE_CHECKING

from pydantic import ValidationError

from src.backend.base import DETAILS_TABLE, TIMELINE_TABLE, BackendError
from src.config import settings
from src.countdown import format_date
from src.memories.errors import UploadError
from src.memories.models import Memory, UploadMetadata

if TYPE_CHECKING:
    from src.backend.base import Backend
    from src.memories.provisioner import BucketProvisioner

logger = logging.getLogger(__name__)

ACCEPTED_TYPES = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
}

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def slugify(name: str) -> str:
    """Lowercase, collapse anything non-alphanumeric to ``_``. Never empty."""
    slug = _SLUG_RE.sub("_", name.lower()).strip("_")[:60]
    return slug or "memory"


def make_object_key(display_name: str, extension: str, now_ms: int | None = None) -> str:
    """``Beach Day`` -> ``beach_day_1717200000000.jpg``."""
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"{slugify(display_name)}_{stamp}.{extension}"


def detect_content_type(filename: str, content_type: str | None) -> str | None:
    """Accepted image content type from the declared type or the extension."""
    declared = (content_type or "").split(";")[0].strip().lower()
    if declared == "image/jpg":
        declared = "image/jpeg"
    if declared in ACCEPTED_TYPES:
        return declared
    guessed = mimetypes.guess_type(filename)[0]
    return guessed if guessed in ACCEPTED_TYPES else None


class MemoryUploadPipeline:
    """Uploads an image, then writes a timeline record and a linked details record.

    The timeline record is written first and carries the public URL directly;
    the details record stores its id in ``timeline_id``.  If the details write
    fails the timeline record is deleted again so the two stores never
    disagree about which memories exist.
    """

    def __init__(
        self,
        backend: Backend,
        provisioner: BucketProvisioner | None = None,
        bucket: str | None = None,
        max_bytes: int | None = None,
    ) -> None:
        self._backend = backend
        self._provisioner = provisioner
        self.bucket = bucket or settings.memories_bucket
        self.max_bytes = max_bytes or settings.upload_max_bytes

    def validate(self, data: bytes, filename: str, content_type: str | None) -> str:
        """Return the accepted content type or raise ``UploadError``."""
        accepted = detect_content_type(filename, content_type)
        if accepted is None:
            msg = "Invalid file type: please select an image file (JPEG, PNG, GIF, WEBP)"
            raise UploadError(msg)
        if not data:
            msg = "The selected file is empty"
            raise UploadError(msg)
        if len(data) > self.max_bytes:
            msg = f"File too large: {len(data)} bytes (max {self.max_bytes})"
            raise UploadError(msg)
        return accepted

    async def upload(
        self,
        data: bytes,
        filename: str,
        metadata: UploadMetadata | dict,
        content_type: str | None = None,
    ) -> Memory:
        """Run the whole pipeline. Raises ``UploadError`` on any failure."""
        if isinstance(metadata, dict):
            try:
                metadata = UploadMetadata.model_validate(metadata)
            except ValidationError as exc:
                msg = f"Invalid memory details: {exc.errors()[0]['msg']}"
                raise UploadError(msg) from exc
        if not metadata.display_name.strip():
            msg = "A name for the memory is required"
            raise UploadError(msg)

        accepted = self.validate(data, filename, content_type)
        key = make_object_key(metadata.display_name, ACCEPTED_TYPES[accepted])

        if self._provisioner is not None:
            await self._provisioner.ensure_ready(self.bucket)

        storage = self._backend.storage
        try:
            await storage.upload(self.bucket, key, data, content_type=accepted, overwrite=True)
        except BackendError as exc:
            msg = f"Upload failed: {exc}"
            raise UploadError(msg) from exc
        public_url = storage.get_public_url(self.bucket, key)

        taken = metadata.date_taken.isoformat()
        records = self._backend.records
        try:
            timeline = await records.insert(
                TIMELINE_TABLE,
                {
                    "title": metadata.display_name,
                    "description": metadata.description,
                    "date": format_date(metadata.date_taken),
                    "raw_date": taken,
                    "image_url": public_url,
                },
            )
        except BackendError as exc:
            logger.warning("Object %s/%s is orphaned after a failed write", self.bucket, key)
            msg = f"Saving the memory failed: {exc}"
            raise UploadError(msg) from exc

        try:
            details = await records.insert(
                DETAILS_TABLE,
                {
                    "file_name": key,
                    "display_name": metadata.display_name,
                    "description": metadata.description,
                    "date_taken": taken,
                    "location": metadata.location,
                    "timeline_id": timeline["id"],
                },
            )
        except BackendError as exc:
            await self._compensate(timeline["id"], key)
            msg = f"Saving the memory details failed: {exc}"
            raise UploadError(msg) from exc

        logger.info(
            "Uploaded memory %r as %s (timeline=%s, details=%s)",
            metadata.display_name,
            key,
            timeline["id"],
            details["id"],
        )
        return Memory(
            id=timeline["id"],
            url=public_url,
            file_name=key,
            display_name=metadata.display_name,
            description=metadata.description,
            date=timeline.get("date", ""),
            date_taken=taken,
            location=metadata.location,
            source="merged",
            confidence="linked",
        )

    async def _compensate(self, timeline_id: str, key: str) -> None:
        try:
            await self._backend.records.delete(TIMELINE_TABLE, timeline_id)
            logger.warning("Rolled back timeline record %s after details write failed", timeline_id)
        except BackendError:
            logger.exception(
                "Rollback of timeline record %s failed; object %s needs cleanup",
                timeline_id,
                key,
            )
