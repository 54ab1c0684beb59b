"""Tests for choosing a backend from settings."""

import pytest

from src import backend as backend_module
from src.backend import create_backend, get_backend
from src.backend.base import BackendError
from src.backend.local import LocalObjectStorage, LocalRecordStore
from src.backend.supabase import SupabaseBackend


@pytest.fixture(autouse=True)
def _fresh_backend(tmp_path, monkeypatch):
    monkeypatch.setattr("src.config.settings.database_path", tmp_path / "db" / "test.db")
    monkeypatch.setattr("src.config.settings.storage_dir", tmp_path / "storage")
    backend_module._reset()
    yield
    backend_module._reset()


def test_local_backend() -> None:
    backend = create_backend("local")
    assert isinstance(backend.records, LocalRecordStore)
    assert isinstance(backend.storage, LocalObjectStorage)


def test_supabase_backend_shares_one_client(monkeypatch) -> None:
    monkeypatch.setattr("src.config.settings.supabase_url", "https://proj.supabase.co")
    monkeypatch.setattr("src.config.settings.supabase_key", "anon-key")

    backend = create_backend("supabase")

    assert isinstance(backend.records, SupabaseBackend)
    assert backend.records is backend.storage


def test_unknown_backend() -> None:
    with pytest.raises(BackendError, match="Unknown backend"):
        create_backend("firebase")


def test_get_backend_is_shared(monkeypatch) -> None:
    monkeypatch.setattr("src.config.settings.backend", "local")
    assert get_backend() is get_backend()
