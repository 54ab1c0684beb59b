"""Shared test fixtures."""

import pytest

from src.backend.base import Backend
from src.backend.local import LocalObjectStorage, LocalRecordStore

# Smallest valid-looking JPEG header; content is never decoded
JPEG_BYTES = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00" + b"\x00" * 64


class StubChecker:
    """ImageAvailabilityChecker stand-in: every url loads unless marked broken."""

    def __init__(self, broken: set[str] | None = None) -> None:
        self.broken = broken or set()
        self.calls: list[str] = []

    async def check_loads(self, url: str | None) -> bool:
        self.calls.append(url or "")
        return bool(url) and url not in self.broken


@pytest.fixture
def records(tmp_path) -> LocalRecordStore:
    """A LocalRecordStore backed by a temp database."""
    return LocalRecordStore(db_path=tmp_path / "test.db")


@pytest.fixture
def storage(tmp_path) -> LocalObjectStorage:
    """A LocalObjectStorage rooted in a temp directory."""
    return LocalObjectStorage(root=tmp_path / "storage", public_base_url="http://test.local")


@pytest.fixture
def backend(records, storage) -> Backend:
    return Backend(records=records, storage=storage)


@pytest.fixture
async def bucket(storage) -> str:
    """Create the memories bucket and return its name."""
    await storage.create_bucket("memories", public=True, size_limit=10 * 1024 * 1024)
    return "memories"


@pytest.fixture
def checker() -> StubChecker:
    return StubChecker()


@pytest.fixture
def jpeg_bytes() -> bytes:
    return JPEG_BYTES
