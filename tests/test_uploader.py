"""Tests for MemoryUploadPipeline — storage upload plus the two metadata writes."""

from datetime import datetime

import pytest

from src.backend.base import DETAILS_TABLE, TIMELINE_TABLE, Backend, BackendError
from src.backend.local import LocalRecordStore
from src.memories.errors import UploadError
from src.memories.models import UploadMetadata
from src.memories.provisioner import BucketProvisioner
from src.memories.reconciler import MemoryReconciler
from src.memories.uploader import (
    MemoryUploadPipeline,
    detect_content_type,
    make_object_key,
    slugify,
)

BEACH = {
    "display_name": "Beach Day",
    "description": "Sunset walk",
    "date_taken": "2024-06-01T15:30:00",
    "location": "Malibu",
}


@pytest.fixture
def pipeline(backend: Backend) -> MemoryUploadPipeline:
    provisioner = BucketProvisioner(backend.storage, bucket="memories")
    return MemoryUploadPipeline(backend, provisioner=provisioner, bucket="memories", max_bytes=1024)


# -- Helpers -------------------------------------------------------------------


def test_slugify() -> None:
    assert slugify("Beach Day!") == "beach_day"
    assert slugify("   ") == "memory"
    assert slugify("ü") == "memory"
    assert len(slugify("x" * 200)) == 60


def test_make_object_key() -> None:
    assert make_object_key("Beach Day", "jpg", now_ms=1717200000000) == "beach_day_1717200000000.jpg"


def test_detect_content_type() -> None:
    assert detect_content_type("a.bin", "image/jpg") == "image/jpeg"
    assert detect_content_type("a.png", None) == "image/png"
    assert detect_content_type("a.png", "application/octet-stream") == "image/png"
    assert detect_content_type("a.pdf", "application/pdf") is None


# -- Validation ----------------------------------------------------------------


async def test_rejects_non_image(pipeline: MemoryUploadPipeline) -> None:
    with pytest.raises(UploadError, match="Invalid file type"):
        await pipeline.upload(b"%PDF", "doc.pdf", BEACH, content_type="application/pdf")


async def test_rejects_too_large(pipeline: MemoryUploadPipeline) -> None:
    with pytest.raises(UploadError, match="too large"):
        await pipeline.upload(b"x" * 2048, "big.jpg", BEACH, content_type="image/jpeg")


async def test_rejects_empty_file(pipeline: MemoryUploadPipeline) -> None:
    with pytest.raises(UploadError, match="empty"):
        await pipeline.upload(b"", "a.jpg", BEACH, content_type="image/jpeg")


async def test_rejects_missing_name(pipeline: MemoryUploadPipeline, jpeg_bytes: bytes) -> None:
    with pytest.raises(UploadError):
        await pipeline.upload(jpeg_bytes, "a.jpg", {**BEACH, "display_name": ""}, "image/jpeg")


async def test_rejects_blank_name(pipeline: MemoryUploadPipeline, jpeg_bytes: bytes) -> None:
    with pytest.raises(UploadError, match="name"):
        await pipeline.upload(jpeg_bytes, "a.jpg", {**BEACH, "display_name": "   "}, "image/jpeg")


async def test_rejects_missing_date(pipeline: MemoryUploadPipeline, jpeg_bytes: bytes) -> None:
    metadata = {k: v for k, v in BEACH.items() if k != "date_taken"}
    with pytest.raises(UploadError, match="Invalid memory details"):
        await pipeline.upload(jpeg_bytes, "a.jpg", metadata, "image/jpeg")


async def test_nothing_written_when_validation_fails(
    pipeline: MemoryUploadPipeline, backend: Backend
) -> None:
    with pytest.raises(UploadError):
        await pipeline.upload(b"x", "a.txt", BEACH, content_type="text/plain")
    assert await backend.records.select(TIMELINE_TABLE) == []
    assert await backend.records.select(DETAILS_TABLE) == []


# -- Pipeline ------------------------------------------------------------------


async def test_upload_writes_object_and_linked_records(
    pipeline: MemoryUploadPipeline, backend: Backend, jpeg_bytes: bytes
) -> None:
    memory = await pipeline.upload(jpeg_bytes, "IMG_0001.JPG", BEACH, content_type="image/jpeg")

    assert memory.file_name.startswith("beach_day_")
    assert memory.file_name.endswith(".jpg")
    assert memory.url == f"http://test.local/storage/memories/{memory.file_name}"
    assert memory.date == "June 1, 2024"

    [timeline] = await backend.records.select(TIMELINE_TABLE)
    [details] = await backend.records.select(DETAILS_TABLE)
    assert timeline["id"] == memory.id
    assert timeline["title"] == "Beach Day"
    assert timeline["image_url"] == memory.url
    assert details["timeline_id"] == timeline["id"]
    assert details["file_name"] == memory.file_name
    assert details["location"] == "Malibu"

    stored = backend.storage.resolve("memories", memory.file_name)
    assert stored.read_bytes() == jpeg_bytes


async def test_upload_provisions_bucket(
    pipeline: MemoryUploadPipeline, backend: Backend, jpeg_bytes: bytes
) -> None:
    assert await backend.storage.list_buckets() == []
    await pipeline.upload(jpeg_bytes, "a.jpg", BEACH, content_type="image/jpeg")
    assert backend.storage.is_public("memories")


async def test_upload_accepts_model_metadata(
    pipeline: MemoryUploadPipeline, jpeg_bytes: bytes
) -> None:
    metadata = UploadMetadata(display_name="Prom", date_taken=datetime(2019, 5, 4, 20, 0))
    memory = await pipeline.upload(jpeg_bytes, "prom.png", metadata, content_type="image/png")
    assert memory.file_name.endswith(".png")
    assert memory.location is None


async def test_upload_then_reconcile_yields_one_memory(
    pipeline: MemoryUploadPipeline, backend: Backend, checker, jpeg_bytes: bytes
) -> None:
    uploaded = await pipeline.upload(jpeg_bytes, "beach.jpg", BEACH, content_type="image/jpeg")

    memories = await MemoryReconciler(backend, checker, bucket="memories").reconcile()

    assert len(memories) == 1
    [memory] = memories
    assert memory.id == uploaded.id
    assert memory.display_name == "Beach Day"
    assert memory.location == "Malibu"
    assert memory.url == uploaded.url
    assert memory.available is True


# -- Failures ------------------------------------------------------------------


class _DetailsWriteFails(LocalRecordStore):
    async def insert(self, table, row):
        if table == DETAILS_TABLE:
            msg = "details table is read-only"
            raise BackendError(msg)
        return await super().insert(table, row)


async def test_details_failure_rolls_back_timeline(tmp_path, storage, jpeg_bytes: bytes) -> None:
    records = _DetailsWriteFails(db_path=tmp_path / "fail.db")
    backend = Backend(records=records, storage=storage)
    pipeline = MemoryUploadPipeline(
        backend, provisioner=BucketProvisioner(storage, bucket="memories"), bucket="memories"
    )

    with pytest.raises(UploadError, match="read-only"):
        await pipeline.upload(jpeg_bytes, "a.jpg", BEACH, content_type="image/jpeg")

    assert await records.select(TIMELINE_TABLE) == []


async def test_storage_failure_writes_no_records(
    backend: Backend, storage, jpeg_bytes: bytes
) -> None:
    # No provisioner and no bucket: the storage write fails
    pipeline = MemoryUploadPipeline(backend, bucket="memories")

    with pytest.raises(UploadError, match="Upload failed"):
        await pipeline.upload(jpeg_bytes, "a.jpg", BEACH, content_type="image/jpeg")

    assert await backend.records.select(TIMELINE_TABLE) == []
