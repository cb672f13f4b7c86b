"""Append-only step record ledger with query and aggregate helpers."""

import asyncio
import math
import time
from collections.abc import Callable
from datetime import UTC, date, datetime, timedelta, tzinfo
from typing import Any

import structlog

from .errors import NotFoundError, StepValidationError, StorageError
from .metrics import (
    RECORDS_STORED,
    STORAGE_WRITE_DURATION,
    SUBMISSIONS_ACCEPTED,
    SUBMISSIONS_REJECTED,
)
from .models import (
    LedgerStats,
    RecordPage,
    StepRecord,
    TodayRecords,
    format_timestamp,
    parse_timestamp,
    truncate_to_millis,
)
from .storage import RecordStore

logger = structlog.get_logger(__name__)

DEFAULT_DEVICE_TYPE = "unknown"
DEFAULT_PAGE_SIZE = 50


def utcnow() -> datetime:
    return datetime.now(UTC)


def _validate_steps(steps: Any) -> int:
    """Coerce a submitted step count to a non-negative int."""
    if steps is None:
        raise StepValidationError("Missing required field: steps", field="steps")
    # bool is an int subclass
    if isinstance(steps, bool) or not isinstance(steps, int | float):
        raise StepValidationError("Invalid steps value: must be a number", field="steps")
    if isinstance(steps, float):
        if not steps.is_integer():
            raise StepValidationError(
                "Invalid steps value: must be a whole number", field="steps"
            )
        steps = int(steps)
    if steps < 0:
        raise StepValidationError("Invalid steps value: must not be negative", field="steps")
    return steps


def _validate_timestamp(timestamp: Any, default: datetime) -> datetime:
    """Parse a submitted timestamp and normalise it to UTC.

    Values whose offset pushes them outside the representable range
    (e.g. year 9999 at UTC-1) are rejected here, before they can be stored.
    """
    if timestamp is None or timestamp == "":
        return default
    if not isinstance(timestamp, str | datetime):
        raise StepValidationError("Invalid timestamp: must be an ISO-8601 string", field="timestamp")
    try:
        observed_at = parse_timestamp(timestamp).astimezone(UTC)
        format_timestamp(observed_at)
    except (ValueError, OverflowError) as e:
        raise StepValidationError(f"Invalid timestamp: {timestamp!r}", field="timestamp") from e
    return observed_at


def _validate_device_type(device_type: Any) -> str:
    if device_type is None or device_type == "":
        return DEFAULT_DEVICE_TYPE
    if not isinstance(device_type, str):
        raise StepValidationError("Invalid deviceType: must be a string", field="deviceType")
    return device_type


class StepLedger:
    """Durable, append-only list of step submissions.

    Every mutation holds a single asyncio lock across the
    append-and-persist sequence, so concurrent submissions never lose
    each other's records. Queries read an immutable snapshot and never
    wait on the lock.
    """

    def __init__(
        self,
        store: RecordStore,
        clock: Callable[[], datetime] = utcnow,
        tz: tzinfo | None = None,
    ) -> None:
        """Initialize the ledger.

        Args:
            store: Persistence backend holding the full record list.
            clock: Returns the current aware datetime.
            tz: Timezone defining the calendar day for today(); host local if None.
        """
        self._store = store
        self._clock = clock
        self._tz = tz
        self._lock = asyncio.Lock()
        self._records: tuple[StepRecord, ...] = ()
        self._ordered: tuple[StepRecord, ...] = ()
        self._last_id = 0
        self._loaded = False

    async def load(self) -> int:
        """Load persisted records into memory.

        Returns:
            Number of records loaded.

        Raises:
            StorageError: If the backend cannot be read.
        """
        async with self._lock:
            records = await self._store.load()
            self._set_records(tuple(records))
            self._last_id = max(
                (int(r.id) for r in records if r.id.isdigit()),
                default=0,
            )
            self._loaded = True
        logger.info("ledger_loaded", records=len(records))
        return len(records)

    @property
    def loaded(self) -> bool:
        return self._loaded

    def count(self) -> int:
        return len(self._records)

    def _set_records(self, records: tuple[StepRecord, ...]) -> None:
        self._records = records
        self._ordered = tuple(sorted(records, key=lambda r: r.sort_key, reverse=True))
        RECORDS_STORED.set(len(records))

    def _next_id(self, received_at: datetime) -> str:
        candidate = int(received_at.timestamp() * 1000)
        if candidate <= self._last_id:
            candidate = self._last_id + 1
        self._last_id = candidate
        return str(candidate)

    async def submit(
        self,
        steps: Any,
        timestamp: str | datetime | None = None,
        device_type: str | None = None,
    ) -> StepRecord:
        """Validate, append and persist a step submission.

        Args:
            steps: Step count; must be a non-negative whole number.
            timestamp: Observation time; defaults to ingestion time.
            device_type: Free-form device tag; defaults to "unknown".

        Returns:
            The stored record with server-assigned id and receivedAt.

        Raises:
            StepValidationError: If a field is missing or invalid.
            StorageError: If the record could not be persisted.
        """
        try:
            clean_steps = _validate_steps(steps)
            clean_device = _validate_device_type(device_type)
        except StepValidationError as e:
            SUBMISSIONS_REJECTED.labels(reason="validation").inc()
            logger.warning("submission_rejected", field=e.field, error=str(e))
            raise

        async with self._lock:
            received_at = truncate_to_millis(self._clock())
            try:
                observed_at = _validate_timestamp(timestamp, default=received_at)
            except StepValidationError as e:
                SUBMISSIONS_REJECTED.labels(reason="validation").inc()
                logger.warning("submission_rejected", field=e.field, error=str(e))
                raise

            record = StepRecord(
                id=self._next_id(received_at),
                steps=clean_steps,
                timestamp=observed_at,
                device_type=clean_device,
                received_at=received_at,
            )
            updated = self._records + (record,)

            start = time.perf_counter()
            try:
                await self._store.save(updated)
            except StorageError:
                SUBMISSIONS_REJECTED.labels(reason="storage").inc()
                raise
            except Exception as e:
                SUBMISSIONS_REJECTED.labels(reason="storage").inc()
                logger.error("ledger_persist_failed", record_id=record.id, error=str(e))
                raise StorageError(f"Failed to persist record: {e}") from e
            finally:
                STORAGE_WRITE_DURATION.observe(time.perf_counter() - start)

            self._set_records(updated)

        SUBMISSIONS_ACCEPTED.inc()
        logger.info(
            "step_record_stored",
            record_id=record.id,
            steps=record.steps,
            device_type=record.device_type,
            total_records=len(updated),
        )
        return record

    def list_records(self, page: int = 1, page_size: int = DEFAULT_PAGE_SIZE) -> RecordPage:
        """Return one page of records, most recent timestamp first.

        Pages past the end are empty rather than an error.
        """
        if page < 1:
            raise StepValidationError("page must be at least 1", field="page")
        if page_size < 1:
            raise StepValidationError("limit must be at least 1", field="limit")

        ordered = self._ordered
        start = (page - 1) * page_size
        return RecordPage(
            page=page,
            limit=page_size,
            total=len(ordered),
            total_pages=math.ceil(len(ordered) / page_size),
            records=list(ordered[start : start + page_size]),
        )

    def latest(self) -> StepRecord:
        """Return the record with the greatest timestamp.

        Raises:
            NotFoundError: If the ledger is empty.
        """
        ordered = self._ordered
        if not ordered:
            raise NotFoundError("No data available")
        return ordered[0]

    def _day_bounds(self, day: date) -> tuple[datetime, datetime]:
        start = datetime(day.year, day.month, day.day, tzinfo=self._tz)
        end_day = day + timedelta(days=1)
        end = datetime(end_day.year, end_day.month, end_day.day, tzinfo=self._tz)
        if self._tz is None:
            # Host local time
            start, end = start.astimezone(), end.astimezone()
        return start, end

    def current_day(self) -> date:
        return self._clock().astimezone(self._tz).date()

    def today(self) -> TodayRecords:
        """Return records whose timestamp falls in the current local day."""
        day = self.current_day()
        start, end = self._day_bounds(day)
        records = [r for r in self._ordered if start <= r.timestamp < end]
        return TodayRecords(day=day, records=records)

    def stats(self) -> LedgerStats:
        """Compute aggregate statistics over every record."""
        ordered = self._ordered
        if not ordered:
            return LedgerStats()

        steps = [r.steps for r in ordered]
        total = sum(steps)
        return LedgerStats(
            total_records=len(steps),
            total_steps=total,
            # Round half up
            average_steps=math.floor(total / len(steps) + 0.5),
            max_steps=max(steps),
            min_steps=min(steps),
            today_records=self.today().count,
            latest_record=ordered[0],
        )
