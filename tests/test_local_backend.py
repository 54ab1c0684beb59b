"""Tests for the local backend — libsql records and directory storage."""

import pytest

from src.backend.base import DETAILS_TABLE, NOTES_TABLE, TIMELINE_TABLE, BackendError
from src.backend.local import LocalObjectStorage, LocalRecordStore

# -- Record store --------------------------------------------------------------


async def test_insert_fills_id_and_timestamps(records: LocalRecordStore) -> None:
    row = await records.insert(TIMELINE_TABLE, {"title": "First Date", "date": "May 20, 2018", "raw_date": "2018-05-20T00:00:00"})
    assert row["id"]
    assert row["created_at"]
    assert row["updated_at"]
    assert row["image_url"] is None


async def test_select_orders_newest_first(records: LocalRecordStore) -> None:
    for i, day in enumerate(["2018-05-20", "2023-05-20", "2019-05-20"]):
        await records.insert(
            TIMELINE_TABLE,
            {"id": f"t{i}", "title": f"m{i}", "date": day, "raw_date": f"{day}T00:00:00"},
        )

    rows = await records.select(TIMELINE_TABLE, order="raw_date", descending=True)
    assert [r["id"] for r in rows] == ["t1", "t2", "t0"]


async def test_select_ties_broken_by_id(records: LocalRecordStore) -> None:
    for row_id in ("b", "a", "c"):
        await records.insert(
            TIMELINE_TABLE,
            {"id": row_id, "title": row_id, "date": "x", "raw_date": "2020-01-01T00:00:00"},
        )
    rows = await records.select(TIMELINE_TABLE, order="raw_date", descending=True)
    assert [r["id"] for r in rows] == ["c", "b", "a"]


async def test_select_with_filter(records: LocalRecordStore) -> None:
    await records.insert(DETAILS_TABLE, {"id": "d1", "file_name": "a.jpg", "display_name": "A"})
    await records.insert(DETAILS_TABLE, {"id": "d2", "file_name": "b.jpg", "display_name": "B"})

    rows = await records.select(DETAILS_TABLE, filters={"file_name": "b.jpg"})
    assert [r["id"] for r in rows] == ["d2"]


async def test_select_unknown_column_raises(records: LocalRecordStore) -> None:
    with pytest.raises(BackendError):
        await records.select(DETAILS_TABLE, order="nope")


async def test_unknown_table_raises(records: LocalRecordStore) -> None:
    with pytest.raises(BackendError, match="Unknown table"):
        await records.select("properties")


async def test_update_and_delete(records: LocalRecordStore) -> None:
    await records.insert(NOTES_TABLE, {"id": "n1", "content": "hello"})

    assert await records.update(NOTES_TABLE, "n1", {"content": "hi"}) is True
    rows = await records.select(NOTES_TABLE)
    assert rows[0]["content"] == "hi"

    assert await records.delete(NOTES_TABLE, "n1") is True
    assert await records.delete(NOTES_TABLE, "n1") is False
    assert await records.select(NOTES_TABLE) == []


async def test_update_missing_row_returns_false(records: LocalRecordStore) -> None:
    assert await records.update(TIMELINE_TABLE, "missing", {"title": "x"}) is False


# -- Object storage ------------------------------------------------------------


async def test_create_and_list_buckets(storage: LocalObjectStorage) -> None:
    await storage.create_bucket("memories", public=True, size_limit=100)
    buckets = await storage.list_buckets()
    assert [(b.name, b.public, b.size_limit) for b in buckets] == [("memories", True, 100)]


async def test_create_existing_bucket_raises(storage: LocalObjectStorage) -> None:
    await storage.create_bucket("memories", public=False, size_limit=100)
    with pytest.raises(BackendError, match="already exists"):
        await storage.create_bucket("memories", public=False, size_limit=100)


async def test_update_missing_bucket_raises(storage: LocalObjectStorage) -> None:
    with pytest.raises(BackendError, match="not found"):
        await storage.update_bucket("memories", public=True, size_limit=100)


async def test_upload_and_list(storage: LocalObjectStorage, bucket: str) -> None:
    await storage.upload(bucket, "beach.jpg", b"abc", content_type="image/jpeg")
    objects = await storage.list(bucket)
    assert [o.name for o in objects] == ["beach.jpg"]
    assert objects[0].size == 3
    assert objects[0].content_type == "image/jpeg"


async def test_upload_respects_overwrite(storage: LocalObjectStorage, bucket: str) -> None:
    await storage.upload(bucket, "a.jpg", b"one")
    with pytest.raises(BackendError, match="already exists"):
        await storage.upload(bucket, "a.jpg", b"two")
    await storage.upload(bucket, "a.jpg", b"two", overwrite=True)
    assert storage.resolve(bucket, "a.jpg").read_bytes() == b"two"


async def test_upload_over_bucket_limit_raises(storage: LocalObjectStorage) -> None:
    await storage.create_bucket("small", public=True, size_limit=2)
    with pytest.raises(BackendError, match="too large"):
        await storage.upload("small", "a.jpg", b"abc")


async def test_upload_to_missing_bucket_raises(storage: LocalObjectStorage) -> None:
    with pytest.raises(BackendError, match="Bucket not found"):
        await storage.upload("nope", "a.jpg", b"abc")


async def test_keys_cannot_escape_bucket(storage: LocalObjectStorage, bucket: str) -> None:
    await storage.upload(bucket, "../../etc/passwd", b"x")
    path = storage.resolve(bucket, "../../etc/passwd")
    assert path.parent == storage.resolve(bucket, "x").parent
    assert path.name == "_.._etc_passwd"


def test_public_url(storage: LocalObjectStorage) -> None:
    assert storage.get_public_url("memories", "a b.jpg") == "http://test.local/storage/memories/a_b.jpg"


def test_download_url(storage: LocalObjectStorage) -> None:
    url = storage.download_url("memories", "a.jpg", "a.jpg")
    assert url == "http://test.local/storage/memories/a.jpg?download=a.jpg"


def test_download_url_escapes_file_name(storage: LocalObjectStorage) -> None:
    url = storage.download_url("memories", "a.jpg", "Beach Day & Sunset.jpg")
    assert url.endswith("?download=Beach%20Day%20%26%20Sunset.jpg")
