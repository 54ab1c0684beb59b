"""Local backend — libsql tables plus a directory tree per bucket.

Used for development and tests.  Public URLs point at the web server's
``/storage/<bucket>/<key>`` route, which serves files from ``storage_dir``.
"""

from __future__ import annotations

import json
import logging
import mimetypes
import re
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import Any
from urllib.parse import quote

from src.backend.base import (
    DETAILS_TABLE,
    NOTES_TABLE,
    TIMELINE_TABLE,
    BackendError,
    Bucket,
    ObjectStorage,
    RecordStore,
    StoredObject,
)
from src.config import settings
from src.db import get_connection

logger = logging.getLogger(__name__)

_SCHEMA: dict[str, tuple[str, ...]] = {
    TIMELINE_TABLE: (
        "id",
        "title",
        "description",
        "date",
        "raw_date",
        "image_url",
        "created_at",
        "updated_at",
    ),
    DETAILS_TABLE: (
        "id",
        "file_name",
        "display_name",
        "description",
        "date_taken",
        "location",
        "timeline_id",
        "created_at",
        "updated_at",
    ),
    NOTES_TABLE: ("id", "content", "created_at"),
}

_CREATE_TABLES = (
    """
    CREATE TABLE IF NOT EXISTS memory_timeline (
        id          TEXT PRIMARY KEY,
        title       TEXT NOT NULL,
        description TEXT,
        date        TEXT NOT NULL,
        raw_date    TEXT NOT NULL,
        image_url   TEXT,
        created_at  TEXT NOT NULL,
        updated_at  TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS memory_details (
        id           TEXT PRIMARY KEY,
        file_name    TEXT NOT NULL,
        display_name TEXT NOT NULL,
        description  TEXT,
        date_taken   TEXT,
        location     TEXT,
        timeline_id  TEXT,
        created_at   TEXT NOT NULL,
        updated_at   TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS love_notes (
        id         TEXT PRIMARY KEY,
        content    TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
)

_SAFE_KEY_RE = re.compile(r"[^a-zA-Z0-9._\-]")
_BUCKETS_FILE = ".buckets.json"


def _columns(table: str) -> tuple[str, ...]:
    try:
        return _SCHEMA[table]
    except KeyError:
        msg = f"Unknown table: {table}"
        raise BackendError(msg) from None


class LocalRecordStore(RecordStore):
    """RecordStore over a local libsql database.

    Pass an explicit *db_path* for test isolation (e.g. ``tmp_path / "test.db"``).
    """

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path
        self._initialised = False

    # -- Internal helpers ------------------------------------------------------

    async def _connect(self):  # noqa: ANN202
        db = await get_connection(self._db_path)
        if not self._initialised:
            for statement in _CREATE_TABLES:
                await db.execute(statement)
            await db.commit()
            self._initialised = True
        return db

    # -- CRUD ------------------------------------------------------------------

    async def select(
        self,
        table: str,
        filters: dict[str, Any] | None = None,
        order: str | None = None,
        descending: bool = True,
    ) -> list[dict[str, Any]]:
        columns = _columns(table)
        sql = f"SELECT {', '.join(columns)} FROM {table}"
        params: list[Any] = []
        if filters:
            for key in filters:
                if key not in columns:
                    msg = f"Unknown column {key!r} on {table}"
                    raise BackendError(msg)
            sql += " WHERE " + " AND ".join(f"{key} = ?" for key in filters)
            params.extend(filters.values())
        if order:
            if order not in columns:
                msg = f"Unknown column {order!r} on {table}"
                raise BackendError(msg)
            direction = "DESC" if descending else "ASC"
            # NULLs last, then id as a deterministic tie-break
            sql += f" ORDER BY {order} IS NULL, {order} {direction}, id {direction}"

        db = await self._connect()
        try:
            cursor = await db.execute(sql, tuple(params))
            rows = await cursor.fetchall()
        except Exception as exc:
            msg = f"Select from {table} failed: {exc}"
            raise BackendError(msg) from exc
        finally:
            await db.close()
        return [dict(zip(columns, row, strict=True)) for row in rows]

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        columns = _columns(table)
        now = datetime.now(UTC).isoformat()
        record = {column: row.get(column) for column in columns}
        record["id"] = record["id"] or uuid.uuid4().hex
        record["created_at"] = record["created_at"] or now
        if "updated_at" in columns:
            record["updated_at"] = record["updated_at"] or now

        placeholders = ", ".join("?" for _ in columns)
        db = await self._connect()
        try:
            await db.execute(
                f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})",
                tuple(record[column] for column in columns),
            )
            await db.commit()
        except Exception as exc:
            msg = f"Insert into {table} failed: {exc}"
            raise BackendError(msg) from exc
        finally:
            await db.close()
        logger.debug("Inserted %s row %s", table, record["id"])
        return record

    async def update(self, table: str, row_id: str, patch: dict[str, Any]) -> bool:
        columns = _columns(table)
        changes = {k: v for k, v in patch.items() if k in columns and k != "id"}
        if "updated_at" in columns:
            changes["updated_at"] = datetime.now(UTC).isoformat()
        if not changes:
            return False

        assignments = ", ".join(f"{key} = ?" for key in changes)
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"UPDATE {table} SET {assignments} WHERE id = ?",
                (*changes.values(), row_id),
            )
            await db.commit()
        except Exception as exc:
            msg = f"Update of {table}/{row_id} failed: {exc}"
            raise BackendError(msg) from exc
        finally:
            await db.close()
        return cursor.rowcount > 0

    async def delete(self, table: str, row_id: str) -> bool:
        _columns(table)
        db = await self._connect()
        try:
            cursor = await db.execute(f"DELETE FROM {table} WHERE id = ?", (row_id,))
            await db.commit()
        except Exception as exc:
            msg = f"Delete of {table}/{row_id} failed: {exc}"
            raise BackendError(msg) from exc
        finally:
            await db.close()
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Deleted %s row %s", table, row_id)
        return deleted


class LocalObjectStorage(ObjectStorage):
    """ObjectStorage backed by ``<root>/<bucket>/<key>`` files.

    Bucket settings live in ``<root>/.buckets.json``.  Keys are flat and
    sanitized the same way on write and read, so a key can never escape
    its bucket directory.
    """

    def __init__(self, root: Path | None = None, public_base_url: str | None = None) -> None:
        self._root = (root or settings.storage_dir).resolve()
        self._root.mkdir(parents=True, exist_ok=True)
        self._base_url = (public_base_url or settings.get_public_base_url()).rstrip("/")

    # -- Path helpers ----------------------------------------------------------

    @staticmethod
    def sanitize_key(key: str) -> str:
        """Replace unsafe characters and strip leading dots.

        Raises ``BackendError`` if nothing is left.
        """
        sanitized = _SAFE_KEY_RE.sub("_", key).lstrip(".")[:255]
        if not sanitized:
            msg = f"Object key is empty after sanitization: {key!r}"
            raise BackendError(msg)
        return sanitized

    def _bucket_dir(self, bucket: str) -> Path:
        return self._root / self.sanitize_key(bucket)

    def resolve(self, bucket: str, key: str) -> Path:
        """Absolute path of *key* inside *bucket*."""
        return self._bucket_dir(bucket) / self.sanitize_key(key)

    def _load_buckets(self) -> dict[str, dict[str, Any]]:
        path = self._root / _BUCKETS_FILE
        if not path.exists():
            return {}
        return json.loads(path.read_text("utf-8"))

    def _save_buckets(self, buckets: dict[str, dict[str, Any]]) -> None:
        (self._root / _BUCKETS_FILE).write_text(json.dumps(buckets, indent=2), "utf-8")

    def _require_bucket(self, bucket: str) -> dict[str, Any]:
        config = self._load_buckets().get(bucket)
        if config is None:
            msg = f"Bucket not found: {bucket}"
            raise BackendError(msg)
        return config

    # -- Buckets ---------------------------------------------------------------

    async def list_buckets(self) -> list[Bucket]:
        return [
            Bucket(name=name, public=cfg.get("public", False), size_limit=cfg.get("size_limit"))
            for name, cfg in self._load_buckets().items()
        ]

    async def create_bucket(self, name: str, *, public: bool, size_limit: int) -> Bucket:
        buckets = self._load_buckets()
        if name in buckets:
            msg = f"Bucket already exists: {name}"
            raise BackendError(msg)
        buckets[name] = {"public": public, "size_limit": size_limit}
        self._bucket_dir(name).mkdir(parents=True, exist_ok=True)
        self._save_buckets(buckets)
        logger.info("Created local bucket %s", name)
        return Bucket(name=name, public=public, size_limit=size_limit)

    async def update_bucket(self, name: str, *, public: bool, size_limit: int) -> Bucket:
        buckets = self._load_buckets()
        if name not in buckets:
            msg = f"Bucket not found: {name}"
            raise BackendError(msg)
        buckets[name] = {"public": public, "size_limit": size_limit}
        self._save_buckets(buckets)
        return Bucket(name=name, public=public, size_limit=size_limit)

    # -- Objects ---------------------------------------------------------------

    async def list(self, bucket: str) -> list[StoredObject]:
        self._require_bucket(bucket)
        directory = self._bucket_dir(bucket)
        objects = []
        for path in sorted(directory.iterdir()) if directory.exists() else []:
            if not path.is_file():
                continue
            stat = path.stat()
            objects.append(
                StoredObject(
                    name=path.name,
                    id=path.name,
                    size=stat.st_size,
                    content_type=mimetypes.guess_type(path.name)[0] or "",
                    created_at=datetime.fromtimestamp(stat.st_mtime, tz=UTC).isoformat(),
                )
            )
        return objects

    async def upload(
        self,
        bucket: str,
        key: str,
        data: bytes,
        *,
        content_type: str = "application/octet-stream",
        overwrite: bool = False,
    ) -> None:
        config = self._require_bucket(bucket)
        limit = config.get("size_limit")
        if limit and len(data) > limit:
            msg = f"Object too large: {len(data)} bytes (bucket limit {limit})"
            raise BackendError(msg)
        target = self.resolve(bucket, key)
        if target.exists() and not overwrite:
            msg = f"Object already exists: {bucket}/{key}"
            raise BackendError(msg)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        logger.info("Stored %s/%s (%d bytes, %s)", bucket, target.name, len(data), content_type)

    def get_public_url(self, bucket: str, key: str) -> str:
        return f"{self._base_url}/storage/{quote(bucket)}/{quote(self.sanitize_key(key))}"

    def is_public(self, bucket: str) -> bool:
        """True when *bucket* exists and is publicly readable."""
        return bool(self._load_buckets().get(bucket, {}).get("public"))
