"""Upload gate deciding when observed step totals are pushed to the ledger.

Platform notifications arrive at a cadence this system does not control
(typically hourly). The scheduler decouples that cadence from the upload
interval: each notification is checked against the persisted marker of
the last successful upload, and the marker only moves forward after the
ledger confirms a submission.
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta, tzinfo
from enum import Enum
from typing import Any, Protocol

import structlog

from .errors import NetworkError, StorageError
from .marker import MarkerStore
from .metrics import UPLOAD_OUTCOMES
from .models import StepReading, UploadMarker
from .sources import HealthDataSource

logger = structlog.get_logger(__name__)


class UploadOutcome(str, Enum):
    """Result of handling one notification."""

    UPLOADED = "uploaded"
    SKIPPED = "skipped"
    FAILED = "failed"
    BUSY = "busy"


class Uploader(Protocol):
    async def upload(self, reading: StepReading) -> dict[str, Any]:
        ...


def should_upload(
    now: datetime,
    last_upload_at: datetime | None,
    min_interval: timedelta,
) -> bool:
    """Return True when an upload is due.

    A missing marker is always eligible; otherwise the elapsed time must
    reach min_interval (equality counts as eligible).
    """
    if last_upload_at is None:
        return True
    return now - last_upload_at >= min_interval


def record_upload(now: datetime) -> UploadMarker:
    """Marker for a submission confirmed at ``now``."""
    return UploadMarker(last_upload_at=now)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class UploadScheduler:
    """Handles background notifications from a health data source."""

    def __init__(
        self,
        source: HealthDataSource,
        uploader: Uploader,
        marker_store: MarkerStore,
        min_interval: timedelta,
        clock: Callable[[], datetime] = _utcnow,
        background_frequency: str = "hourly",
        tz: tzinfo | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            source: Health data collaborator (authorization, queries, notifications).
            uploader: Sends readings to the ledger; raises NetworkError on failure.
            marker_store: Persists the last successful upload time.
            min_interval: Minimum spacing between successful uploads.
            clock: Returns the current aware datetime.
            background_frequency: Frequency hint passed to background delivery.
            tz: Timezone of the step query's calendar day; host local if None.
        """
        self._source = source
        self._uploader = uploader
        self._marker_store = marker_store
        self._min_interval = min_interval
        self._clock = clock
        self._background_frequency = background_frequency
        self._tz = tz
        self._started = False
        self._in_flight = False

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> bool:
        """Obtain authorization and subscribe to background notifications.

        Returns:
            True when notifications are wired up, False otherwise.
        """
        if self._started:
            logger.info("scheduler_already_started")
            return True

        try:
            authorized = await self._source.is_authorized()
            if not authorized:
                authorized = await self._source.request_authorization()
            if not authorized:
                logger.warning("health_authorization_denied")
                return False

            enabled = await self._source.enable_background_delivery(self._background_frequency)
            if not enabled:
                logger.warning(
                    "background_delivery_unavailable",
                    frequency=self._background_frequency,
                )
                return False
        except Exception as e:
            logger.error("scheduler_start_failed", error=str(e))
            return False

        self._source.on_update_notification(self.on_external_notification)
        self._started = True
        logger.info(
            "scheduler_started",
            frequency=self._background_frequency,
            min_interval_seconds=self._min_interval.total_seconds(),
        )
        return True

    async def stop(self) -> None:
        """Disable background delivery if the source supports it."""
        disable = getattr(self._source, "disable_background_delivery", None)
        if disable is not None:
            await disable()
        self._started = False
        logger.info("scheduler_stopped")

    async def last_upload_at(self) -> datetime | None:
        marker = await self._marker_store.get()
        return marker.last_upload_at

    async def on_external_notification(self) -> UploadOutcome:
        """Handle one notification from the health data source."""
        logger.debug("notification_received")
        return await self._handle(force=False)

    async def upload_now(self, force: bool = False) -> UploadOutcome:
        """Upload on demand; ``force`` bypasses the interval gate."""
        return await self._handle(force=force)

    def _start_of_day(self, now: datetime) -> datetime:
        local = now.astimezone(self._tz)
        return local.replace(hour=0, minute=0, second=0, microsecond=0)

    async def _current_marker(self) -> UploadMarker:
        try:
            return await self._marker_store.get()
        except StorageError as e:
            # Unknown history counts as never uploaded
            logger.warning("upload_marker_unreadable", error=str(e))
            return UploadMarker()

    async def _handle(self, force: bool) -> UploadOutcome:
        if self._in_flight:
            logger.info("notification_dropped_upload_in_flight")
            return self._finish(UploadOutcome.BUSY)

        self._in_flight = True
        try:
            now = self._clock()
            marker = await self._current_marker()
            if not force and not should_upload(now, marker.last_upload_at, self._min_interval):
                logger.info(
                    "upload_skipped",
                    last_upload_at=marker.last_upload_at.isoformat()
                    if marker.last_upload_at
                    else None,
                    min_interval_seconds=self._min_interval.total_seconds(),
                )
                return self._finish(UploadOutcome.SKIPPED)

            try:
                steps = await self._source.query_step_total(self._start_of_day(now), now)
            except Exception as e:
                logger.error("step_query_failed", error=str(e))
                return self._finish(UploadOutcome.FAILED)

            reading = StepReading(steps=steps, observed_at=now)
            try:
                await self._uploader.upload(reading)
            except NetworkError as e:
                logger.warning("upload_failed", steps=steps, status=e.status_code, error=str(e))
                return self._finish(UploadOutcome.FAILED)

            confirmed = record_upload(self._clock())
            try:
                await self._marker_store.put(confirmed)
            except StorageError as e:
                logger.error("upload_marker_write_failed", error=str(e))
                self._finish(UploadOutcome.FAILED)
                raise

            logger.info("upload_succeeded", steps=steps)
            return self._finish(UploadOutcome.UPLOADED)
        finally:
            self._in_flight = False

    @staticmethod
    def _finish(outcome: UploadOutcome) -> UploadOutcome:
        UPLOAD_OUTCOMES.labels(outcome=outcome.value).inc()
        return outcome
