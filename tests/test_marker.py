"""Tests for upload marker persistence."""

import json
from datetime import UTC, datetime
from pathlib import Path

import pytest

from step_sync.errors import StorageError
from step_sync.marker import InMemoryMarkerStore, JsonFileMarkerStore
from step_sync.models import UploadMarker

UPLOADED_AT = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)


async def test_in_memory_defaults_to_never_uploaded():
    store = InMemoryMarkerStore()
    assert (await store.get()).last_upload_at is None


async def test_in_memory_overwrites():
    store = InMemoryMarkerStore()
    await store.put(UploadMarker(UPLOADED_AT))
    assert await store.get() == UploadMarker(UPLOADED_AT)


class TestJsonFileMarkerStore:
    async def test_missing_file_means_never_uploaded(self, tmp_path: Path):
        store = JsonFileMarkerStore(tmp_path / "marker.json")
        assert await store.get() == UploadMarker()

    async def test_put_then_get(self, tmp_path: Path):
        path = tmp_path / "state" / "marker.json"
        store = JsonFileMarkerStore(path)

        await store.put(UploadMarker(UPLOADED_AT))

        assert json.loads(path.read_text(encoding="utf-8")) == {
            "lastUploadAt": "2024-01-01T12:00:00.000Z"
        }
        assert await JsonFileMarkerStore(path).get() == UploadMarker(UPLOADED_AT)

    async def test_put_overwrites_previous_marker(self, tmp_path: Path):
        store = JsonFileMarkerStore(tmp_path / "marker.json")
        later = UPLOADED_AT.replace(hour=13)

        await store.put(UploadMarker(UPLOADED_AT))
        await store.put(UploadMarker(later))

        assert (await store.get()).last_upload_at == later

    async def test_corrupt_marker_raises_storage_error(self, tmp_path: Path):
        path = tmp_path / "marker.json"
        path.write_text("[]", encoding="utf-8")

        with pytest.raises(StorageError):
            await JsonFileMarkerStore(path).get()
