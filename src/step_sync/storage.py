"""Record persistence backends for the step ledger."""

import asyncio
import json
import os
import tempfile
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol

import structlog

from .errors import StorageError
from .models import StepRecord

logger = structlog.get_logger(__name__)


class RecordStore(Protocol):
    """Durable home of the full ordered record list."""

    async def load(self) -> list[StepRecord]:
        ...

    async def save(self, records: Sequence[StepRecord]) -> None:
        ...


class MemoryRecordStore:
    """Keeps records in process memory only."""

    def __init__(self, records: Sequence[StepRecord] | None = None) -> None:
        self._records: tuple[StepRecord, ...] = tuple(records or ())

    async def load(self) -> list[StepRecord]:
        return list(self._records)

    async def save(self, records: Sequence[StepRecord]) -> None:
        self._records = tuple(records)


class JsonFileRecordStore:
    """Stores the record list as a pretty-printed JSON array.

    Writes go to a temporary file in the target directory which then
    replaces the data file, so a failed write never leaves a truncated
    file behind.
    """

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)
        if self._path.exists() and self._path.is_dir():
            raise ValueError(f"data file is a directory: {self._path}")

    @property
    def path(self) -> Path:
        return self._path

    async def load(self) -> list[StepRecord]:
        """Read every record from disk.

        Returns:
            Records in stored order; empty when the file does not exist.

        Raises:
            StorageError: If the file cannot be read or decoded.
        """
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._load_sync)

    def _load_sync(self) -> list[StepRecord]:
        if not self._path.exists():
            logger.info("record_store_missing", path=str(self._path))
            return []
        try:
            with open(self._path, encoding="utf-8") as f:
                raw = json.load(f)
            if not isinstance(raw, list):
                raise ValueError("data file must contain a JSON array")
            records = [StepRecord.from_dict(item) for item in raw]
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.error("record_store_load_failed", path=str(self._path), error=str(e))
            raise StorageError(f"Failed to load records from {self._path}: {e}") from e
        logger.info("record_store_loaded", path=str(self._path), records=len(records))
        return records

    async def save(self, records: Sequence[StepRecord]) -> None:
        """Replace the data file with the given records.

        Raises:
            StorageError: If the write fails. The previous file is left intact.
        """
        payload = [r.to_dict() for r in records]
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._save_sync, payload)

    def _save_sync(self, payload: list) -> None:
        tmp_name: str | None = None
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self._path.parent, prefix=f".{self._path.name}.", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self._path)
            tmp_name = None
        except OSError as e:
            logger.error("record_store_save_failed", path=str(self._path), error=str(e))
            raise StorageError(f"Failed to save records to {self._path}: {e}") from e
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    logger.warning("record_store_tmp_cleanup_failed", tmp=tmp_name)
