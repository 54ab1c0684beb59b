"""Supabase backend — PostgREST tables and Storage buckets over httpx."""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx

from src.backend.base import (
    BackendError,
    Bucket,
    ObjectStorage,
    RecordStore,
    StoredObject,
)
from src.config import settings

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 20
LIST_PAGE_SIZE = 1000


def _raise_for_status(resp: httpx.Response, action: str) -> None:
    """Convert a non-2xx response into a ``BackendError`` with the server message."""
    if resp.is_success:
        return
    detail = resp.text[:200]
    try:
        body = resp.json()
        if isinstance(body, dict):
            detail = body.get("message") or body.get("error") or detail
    except ValueError:
        pass
    msg = f"{action} failed ({resp.status_code}): {detail}"
    raise BackendError(msg)


class SupabaseBackend(RecordStore, ObjectStorage):
    """Record store and object storage for a single Supabase project.

    Args:
        url: Project URL, e.g. ``https://xyz.supabase.co``.
        key: Anon or service-role key.
        client: Optional pre-built ``httpx.AsyncClient`` (tests inject one
            with a ``MockTransport``).
    """

    def __init__(
        self,
        url: str | None = None,
        key: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = (url or settings.supabase_url).rstrip("/")
        self._key = key or settings.supabase_key
        if not self._url or not self._key:
            msg = "SUPABASE_URL and SUPABASE_KEY must be set for the supabase backend"
            raise BackendError(msg)
        self._client = client or httpx.AsyncClient(timeout=DEFAULT_TIMEOUT)
        self._headers = {
            "apikey": self._key,
            "Authorization": f"Bearer {self._key}",
        }

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, action: str, **kwargs: Any) -> httpx.Response:
        headers = {**self._headers, **kwargs.pop("headers", {})}
        try:
            resp = await self._client.request(method, f"{self._url}{path}", headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            msg = f"{action} failed: {exc}"
            raise BackendError(msg) from exc
        _raise_for_status(resp, action)
        return resp

    # -- Record store (PostgREST) ------------------------------------------------

    async def select(
        self,
        table: str,
        filters: dict[str, Any] | None = None,
        order: str | None = None,
        descending: bool = True,
    ) -> list[dict[str, Any]]:
        params: dict[str, str] = {"select": "*"}
        for key, value in (filters or {}).items():
            params[key] = "is.null" if value is None else f"eq.{value}"
        if order:
            direction = "desc" if descending else "asc"
            params["order"] = f"{order}.{direction}.nullslast,id.{direction}"
        resp = await self._request("GET", f"/rest/v1/{table}", f"Select from {table}", params=params)
        return resp.json()

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        payload = {k: v for k, v in row.items() if v is not None}
        resp = await self._request(
            "POST",
            f"/rest/v1/{table}",
            f"Insert into {table}",
            json=payload,
            headers={"Prefer": "return=representation"},
        )
        rows = resp.json()
        return rows[0] if isinstance(rows, list) and rows else payload

    async def update(self, table: str, row_id: str, patch: dict[str, Any]) -> bool:
        resp = await self._request(
            "PATCH",
            f"/rest/v1/{table}",
            f"Update of {table}/{row_id}",
            params={"id": f"eq.{row_id}"},
            json=patch,
            headers={"Prefer": "return=representation"},
        )
        return bool(resp.json())

    async def delete(self, table: str, row_id: str) -> bool:
        resp = await self._request(
            "DELETE",
            f"/rest/v1/{table}",
            f"Delete of {table}/{row_id}",
            params={"id": f"eq.{row_id}"},
            headers={"Prefer": "return=representation"},
        )
        return bool(resp.json())

    # -- Object storage ----------------------------------------------------------

    async def list_buckets(self) -> list[Bucket]:
        resp = await self._request("GET", "/storage/v1/bucket", "List buckets")
        return [
            Bucket(
                name=item.get("name", ""),
                public=bool(item.get("public")),
                size_limit=item.get("file_size_limit"),
            )
            for item in resp.json()
        ]

    async def create_bucket(self, name: str, *, public: bool, size_limit: int) -> Bucket:
        await self._request(
            "POST",
            "/storage/v1/bucket",
            f"Create bucket {name}",
            json={"id": name, "name": name, "public": public, "file_size_limit": size_limit},
        )
        logger.info("Created storage bucket %s", name)
        return Bucket(name=name, public=public, size_limit=size_limit)

    async def update_bucket(self, name: str, *, public: bool, size_limit: int) -> Bucket:
        await self._request(
            "PUT",
            f"/storage/v1/bucket/{quote(name)}",
            f"Update bucket {name}",
            json={"id": name, "public": public, "file_size_limit": size_limit},
        )
        return Bucket(name=name, public=public, size_limit=size_limit)

    async def list(self, bucket: str) -> list[StoredObject]:
        resp = await self._request(
            "POST",
            f"/storage/v1/object/list/{quote(bucket)}",
            f"List objects in {bucket}",
            json={"prefix": "", "limit": LIST_PAGE_SIZE, "offset": 0},
        )
        objects = []
        for item in resp.json():
            # Folder placeholders come back with a null id
            if not item.get("id"):
                continue
            meta = item.get("metadata") or {}
            objects.append(
                StoredObject(
                    name=item.get("name", ""),
                    id=item["id"],
                    size=int(meta.get("size") or 0),
                    content_type=meta.get("mimetype", ""),
                    created_at=item.get("created_at") or "",
                    metadata=meta,
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
        await self._request(
            "POST",
            f"/storage/v1/object/{quote(bucket)}/{quote(key)}",
            f"Upload of {bucket}/{key}",
            content=data,
            headers={
                "Content-Type": content_type,
                "x-upsert": "true" if overwrite else "false",
            },
        )
        logger.info("Uploaded %s/%s (%d bytes)", bucket, key, len(data))

    def get_public_url(self, bucket: str, key: str) -> str:
        return f"{self._url}/storage/v1/object/public/{quote(bucket)}/{quote(key)}"
