"""Tests for the upload gate and notification handling."""

import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from step_sync.errors import NetworkError, StorageError
from step_sync.marker import InMemoryMarkerStore
from step_sync.models import StepReading, UploadMarker
from step_sync.scheduler import UploadOutcome, UploadScheduler, record_upload, should_upload
from step_sync.sources import ManualHealthSource

INTERVAL = timedelta(minutes=5)


def _make_scheduler(
    clock,
    source: ManualHealthSource | None = None,
    uploader: AsyncMock | None = None,
    marker: UploadMarker | None = None,
) -> tuple[UploadScheduler, ManualHealthSource, AsyncMock, InMemoryMarkerStore]:
    source = source or ManualHealthSource(steps=4200)
    if uploader is None:
        uploader = AsyncMock()
        uploader.upload.return_value = {"id": "1"}
    store = InMemoryMarkerStore(marker)
    scheduler = UploadScheduler(
        source=source,
        uploader=uploader,
        marker_store=store,
        min_interval=INTERVAL,
        clock=clock,
        tz=UTC,
    )
    return scheduler, source, uploader, store


class TestShouldUpload:
    """Tests for the pure upload gate."""

    @pytest.mark.parametrize("interval_seconds", [1, 60, 300, 3600, 86400])
    def test_first_run_always_eligible(self, interval_seconds):
        now = datetime(2024, 1, 1, tzinfo=UTC)
        assert should_upload(now, None, timedelta(seconds=interval_seconds)) is True

    def test_boundary_equality_is_eligible(self):
        last = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)
        assert should_upload(last + INTERVAL, last, INTERVAL) is True

    def test_just_before_boundary_is_not_eligible(self):
        last = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)
        now = last + INTERVAL - timedelta(microseconds=1)
        assert should_upload(now, last, INTERVAL) is False

    def test_well_past_interval_is_eligible(self):
        last = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)
        assert should_upload(last + timedelta(hours=3), last, INTERVAL) is True

    def test_clock_behind_marker_is_not_eligible(self):
        last = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)
        assert should_upload(last - timedelta(minutes=10), last, INTERVAL) is False


def test_record_upload_sets_marker():
    now = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)
    assert record_upload(now) == UploadMarker(last_upload_at=now)


class TestOnExternalNotification:
    """Tests for the notification handler."""

    async def test_first_notification_uploads_and_records_marker(self, clock):
        scheduler, source, uploader, store = _make_scheduler(clock)

        outcome = await scheduler.on_external_notification()

        assert outcome == UploadOutcome.UPLOADED
        uploader.upload.assert_awaited_once_with(StepReading(steps=4200, observed_at=clock.now))
        assert (await store.get()).last_upload_at == clock.now

    async def test_queries_from_start_of_day(self, clock):
        scheduler, source, _, _ = _make_scheduler(clock)

        await scheduler.on_external_notification()

        start, end = source.queries[0]
        assert start == datetime(2024, 1, 1, 0, 0, tzinfo=UTC)
        assert end == clock.now

    async def test_skips_within_interval(self, clock):
        marker = UploadMarker(last_upload_at=clock.now - timedelta(minutes=2))
        scheduler, source, uploader, store = _make_scheduler(clock, marker=marker)

        outcome = await scheduler.on_external_notification()

        assert outcome == UploadOutcome.SKIPPED
        uploader.upload.assert_not_awaited()
        assert source.queries == []
        assert await store.get() == marker

    async def test_uploads_again_after_interval(self, clock):
        scheduler, _, uploader, store = _make_scheduler(clock)

        assert await scheduler.on_external_notification() == UploadOutcome.UPLOADED
        clock.advance(minutes=4)
        assert await scheduler.on_external_notification() == UploadOutcome.SKIPPED
        clock.advance(minutes=1)
        assert await scheduler.on_external_notification() == UploadOutcome.UPLOADED

        assert uploader.upload.await_count == 2
        assert (await store.get()).last_upload_at == clock.now

    async def test_network_failure_leaves_marker_unchanged(self, clock):
        marker = UploadMarker(last_upload_at=clock.now - timedelta(hours=1))
        uploader = AsyncMock()
        uploader.upload.side_effect = NetworkError("HTTP 500", status_code=500)
        scheduler, _, _, store = _make_scheduler(clock, uploader=uploader, marker=marker)

        outcome = await scheduler.on_external_notification()

        assert outcome == UploadOutcome.FAILED
        assert await store.get() == marker

    async def test_failure_is_retried_on_next_notification(self, clock):
        uploader = AsyncMock()
        uploader.upload.side_effect = [NetworkError("timed out"), {"id": "1"}]
        scheduler, _, _, store = _make_scheduler(clock, uploader=uploader)

        assert await scheduler.on_external_notification() == UploadOutcome.FAILED
        assert (await store.get()).last_upload_at is None

        clock.advance(seconds=5)
        assert await scheduler.on_external_notification() == UploadOutcome.UPLOADED
        assert (await store.get()).last_upload_at == clock.now

    async def test_query_failure_does_not_upload(self, clock):
        source = ManualHealthSource()
        source.query_step_total = AsyncMock(side_effect=RuntimeError("health store locked"))
        scheduler, _, uploader, store = _make_scheduler(clock, source=source)

        outcome = await scheduler.on_external_notification()

        assert outcome == UploadOutcome.FAILED
        uploader.upload.assert_not_awaited()
        assert (await store.get()).last_upload_at is None

    async def test_unreadable_marker_counts_as_never_uploaded(self, clock):
        scheduler, _, uploader, store = _make_scheduler(clock)
        store.get = AsyncMock(side_effect=StorageError("corrupt marker"))

        outcome = await scheduler.on_external_notification()

        assert outcome == UploadOutcome.UPLOADED
        uploader.upload.assert_awaited_once()

    async def test_marker_write_failure_is_raised(self, clock):
        scheduler, _, _, store = _make_scheduler(clock)
        store.put = AsyncMock(side_effect=StorageError("disk full"))

        with pytest.raises(StorageError, match="disk full"):
            await scheduler.on_external_notification()

    async def test_notification_during_upload_is_dropped(self, clock):
        release = asyncio.Event()

        async def slow_upload(reading):
            await release.wait()
            return {"id": "1"}

        uploader = AsyncMock()
        uploader.upload.side_effect = slow_upload
        scheduler, _, _, _ = _make_scheduler(clock, uploader=uploader)

        first = asyncio.create_task(scheduler.on_external_notification())
        await asyncio.sleep(0)
        second = await scheduler.on_external_notification()
        release.set()

        assert second == UploadOutcome.BUSY
        assert await first == UploadOutcome.UPLOADED
        assert uploader.upload.await_count == 1

    async def test_upload_now_force_bypasses_gate(self, clock):
        marker = UploadMarker(last_upload_at=clock.now)
        scheduler, _, uploader, store = _make_scheduler(clock, marker=marker)

        assert await scheduler.upload_now() == UploadOutcome.SKIPPED
        clock.advance(seconds=30)
        assert await scheduler.upload_now(force=True) == UploadOutcome.UPLOADED
        assert (await store.get()).last_upload_at == clock.now
        uploader.upload.assert_awaited_once()


class TestSchedulerLifecycle:
    """Tests for authorization and background delivery setup."""

    async def test_start_registers_notification_handler(self, clock):
        scheduler, source, uploader, _ = _make_scheduler(clock)

        assert await scheduler.start() is True
        assert scheduler.started
        assert source.background_frequency == "hourly"

        results = await source.notify()
        assert results == [UploadOutcome.UPLOADED]
        uploader.upload.assert_awaited_once()

    async def test_start_is_idempotent(self, clock):
        scheduler, source, uploader, _ = _make_scheduler(clock)

        await scheduler.start()
        await scheduler.start()

        assert await source.notify() == [UploadOutcome.UPLOADED]

    async def test_start_requests_authorization(self, clock):
        source = ManualHealthSource(authorized=False, grant=True)
        scheduler, _, _, _ = _make_scheduler(clock, source=source)

        assert await scheduler.start() is True
        assert await source.is_authorized() is True

    async def test_start_fails_when_authorization_denied(self, clock):
        source = ManualHealthSource(authorized=False, grant=False)
        scheduler, _, _, _ = _make_scheduler(clock, source=source)

        assert await scheduler.start() is False
        assert not scheduler.started
        assert source.background_frequency is None

    async def test_start_fails_when_background_delivery_unavailable(self, clock):
        source = ManualHealthSource()
        source.enable_background_delivery = AsyncMock(return_value=False)
        scheduler, _, _, _ = _make_scheduler(clock, source=source)

        assert await scheduler.start() is False
        assert await source.notify() == []

    async def test_stop_disables_background_delivery(self, clock):
        scheduler, source, _, _ = _make_scheduler(clock)
        await scheduler.start()

        await scheduler.stop()

        assert not scheduler.started
        assert source.background_frequency is None
        assert await source.notify() == []

    async def test_last_upload_at_reads_marker(self, clock):
        scheduler, _, _, _ = _make_scheduler(clock)
        assert await scheduler.last_upload_at() is None

        await scheduler.on_external_notification()
        assert await scheduler.last_upload_at() == clock.now
