"""BucketProvisioner — make sure the memories bucket exists and is public."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from src.backend.base import BackendError
from src.config import settings
from src.memories.errors import ProvisionError

if TYPE_CHECKING:
    from src.backend.base import ObjectStorage

logger = logging.getLogger(__name__)


class BucketProvisioner:
    """Idempotently creates the bucket and (re)applies public-read + size limit."""

    def __init__(
        self,
        storage: ObjectStorage,
        bucket: str | None = None,
        size_limit: int | None = None,
    ) -> None:
        self._storage = storage
        self.bucket = bucket or settings.memories_bucket
        self.size_limit = size_limit or settings.bucket_size_limit

    async def ensure_container_exists(self, name: str | None = None) -> None:
        """Create *name* if missing, then confirm it is public.

        Raises ``ProvisionError`` if either step fails.
        """
        name = name or self.bucket
        try:
            buckets = await self._storage.list_buckets()
            if not any(b.name == name for b in buckets):
                logger.info("Creating %r bucket...", name)
                await self._storage.create_bucket(name, public=True, size_limit=self.size_limit)
            # Always re-apply so a bucket created elsewhere ends up public too
            await self._storage.update_bucket(name, public=True, size_limit=self.size_limit)
        except BackendError as exc:
            msg = f"Could not provision bucket {name!r}: {exc}"
            raise ProvisionError(msg) from exc
        logger.info(
            "Bucket %r confirmed public with %d byte object limit", name, self.size_limit
        )

    async def ensure_ready(self, name: str | None = None) -> bool:
        """Like ``ensure_container_exists`` but logs failures and returns False."""
        try:
            await self.ensure_container_exists(name)
        except ProvisionError:
            logger.warning("Bucket provisioning failed; continuing without it", exc_info=True)
            return False
        return True
