"""Persistence for the client-side last-upload marker."""

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Protocol

import structlog

from .errors import StorageError
from .models import UploadMarker

logger = structlog.get_logger(__name__)


class MarkerStore(Protocol):
    """Holds the single persisted UploadMarker value."""

    async def get(self) -> UploadMarker:
        ...

    async def put(self, marker: UploadMarker) -> None:
        ...


class InMemoryMarkerStore:
    """Marker kept in process memory."""

    def __init__(self, marker: UploadMarker | None = None) -> None:
        self._marker = marker or UploadMarker()

    async def get(self) -> UploadMarker:
        return self._marker

    async def put(self, marker: UploadMarker) -> None:
        self._marker = marker


class JsonFileMarkerStore:
    """Marker stored as ``{"lastUploadAt": ...}`` in a small JSON file."""

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    async def get(self) -> UploadMarker:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._get_sync)

    def _get_sync(self) -> UploadMarker:
        if not self._path.exists():
            return UploadMarker()
        try:
            with open(self._path, encoding="utf-8") as f:
                data = json.load(f)
            return UploadMarker.from_dict(data)
        except (OSError, ValueError, AttributeError) as e:
            raise StorageError(f"Failed to read upload marker {self._path}: {e}") from e

    async def put(self, marker: UploadMarker) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._put_sync, marker)

    def _put_sync(self, marker: UploadMarker) -> None:
        tmp_name: str | None = None
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self._path.parent, prefix=f".{self._path.name}.", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(marker.to_dict(), f)
            os.replace(tmp_name, self._path)
            tmp_name = None
        except OSError as e:
            raise StorageError(f"Failed to write upload marker {self._path}: {e}") from e
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    logger.warning("marker_tmp_cleanup_failed", tmp=tmp_name)
