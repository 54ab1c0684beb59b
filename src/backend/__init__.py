"""Backend selection — returns the record store and object storage pair."""

from __future__ import annotations

import logging

from src.backend.base import Backend, BackendError
from src.config import settings

logger = logging.getLogger(__name__)

_backend: Backend | None = None


def get_backend() -> Backend:
    """Return the shared Backend, creating it from settings on first use."""
    global _backend  # noqa: PLW0603
    if _backend is None:
        _backend = create_backend(settings.backend)
    return _backend


def create_backend(kind: str) -> Backend:
    """Build a Backend for *kind* (``"supabase"`` or ``"local"``)."""
    if kind == "supabase":
        from src.backend.supabase import SupabaseBackend

        client = SupabaseBackend()
        logger.info("Backend: supabase (%s)", settings.supabase_url)
        return Backend(records=client, storage=client)
    if kind == "local":
        from src.backend.local import LocalObjectStorage, LocalRecordStore

        logger.info(
            "Backend: local (db=%s, storage=%s)", settings.database_path, settings.storage_dir
        )
        return Backend(records=LocalRecordStore(), storage=LocalObjectStorage())
    msg = f"Unknown backend: {kind!r} (expected 'supabase' or 'local')"
    raise BackendError(msg)


def _reset() -> None:
    """Drop the shared Backend (for testing)."""
    global _backend  # noqa: PLW0603
    _backend = None
