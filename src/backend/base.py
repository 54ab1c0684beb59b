"""Base types for the backend collaborator: a record store plus object storage."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

TIMELINE_TABLE = "memory_timeline"
DETAILS_TABLE = "memory_details"
NOTES_TABLE = "love_notes"


class BackendError(Exception):
    """Raised when the record store or object storage rejects a request."""


@dataclass
class Bucket:
    """An object-storage container."""

    name: str
    public: bool = False
    size_limit: int | None = None


@dataclass
class StoredObject:
    """A single object listed from a bucket."""

    name: str
    id: str = ""
    size: int = 0
    content_type: str = ""
    created_at: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)


class RecordStore(ABC):
    """Flat-record CRUD against named tables.

    Rows are plain dicts keyed by column name.  Every method raises
    ``BackendError`` on failure.
    """

    @abstractmethod
    async def select(
        self,
        table: str,
        filters: dict[str, Any] | None = None,
        order: str | None = None,
        descending: bool = True,
    ) -> list[dict[str, Any]]:
        """Return rows matching all *filters* (equality), sorted by *order*."""
        ...

    @abstractmethod
    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        """Insert *row* and return it as stored (with generated id/timestamps)."""
        ...

    @abstractmethod
    async def update(self, table: str, row_id: str, patch: dict[str, Any]) -> bool:
        """Apply *patch* to the row with *row_id*. Returns True if a row changed."""
        ...

    @abstractmethod
    async def delete(self, table: str, row_id: str) -> bool:
        """Delete the row with *row_id*. Returns True if a row was removed."""
        ...


class ObjectStorage(ABC):
    """Bucketed blob storage with public URLs."""

    @abstractmethod
    async def list_buckets(self) -> list[Bucket]: ...

    @abstractmethod
    async def create_bucket(self, name: str, *, public: bool, size_limit: int) -> Bucket: ...

    @abstractmethod
    async def update_bucket(self, name: str, *, public: bool, size_limit: int) -> Bucket: ...

    @abstractmethod
    async def list(self, bucket: str) -> list[StoredObject]: ...

    @abstractmethod
    async def upload(
        self,
        bucket: str,
        key: str,
        data: bytes,
        *,
        content_type: str = "application/octet-stream",
        overwrite: bool = False,
    ) -> None: ...

    @abstractmethod
    def get_public_url(self, bucket: str, key: str) -> str:
        """Return the public URL for *key*. Pure; performs no I/O."""
        ...

    def download_url(self, bucket: str, key: str, file_name: str | None = None) -> str:
        """URL that makes a browser save the object instead of displaying it."""
        url = self.get_public_url(bucket, key)
        return f"{url}?download={quote(file_name or key)}"


@dataclass
class Backend:
    """The pair of stores every memories component talks to."""

    records: RecordStore
    storage: ObjectStorage
