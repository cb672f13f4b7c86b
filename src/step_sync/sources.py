"""Health data source interface consumed by the upload scheduler."""

from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, Protocol

import structlog

logger = structlog.get_logger(__name__)

NotificationCallback = Callable[[], Awaitable[Any]]


class HealthDataSource(Protocol):
    """Capabilities of the platform health data store.

    The platform owns the notification cadence; callbacks registered with
    on_update_notification fire whenever it decides new data exists.
    """

    async def is_authorized(self) -> bool:
        ...

    async def request_authorization(self) -> bool:
        ...

    async def query_step_total(self, start: datetime, end: datetime) -> int:
        ...

    def on_update_notification(self, callback: NotificationCallback) -> None:
        ...

    async def enable_background_delivery(self, frequency: str) -> bool:
        ...


class ManualHealthSource:
    """In-process source whose step total is set by hand.

    Used by the upload CLI and as a stand-in for the platform in tests;
    notify() plays the role of a background delivery wake-up.
    """

    def __init__(self, steps: int = 0, authorized: bool = True, grant: bool = True) -> None:
        self.steps = steps
        self._authorized = authorized
        self._grant = grant
        self._callbacks: list[NotificationCallback] = []
        self.background_frequency: str | None = None
        self.queries: list[tuple[datetime, datetime]] = []

    async def is_authorized(self) -> bool:
        return self._authorized

    async def request_authorization(self) -> bool:
        self._authorized = self._grant
        return self._authorized

    async def query_step_total(self, start: datetime, end: datetime) -> int:
        self.queries.append((start, end))
        return self.steps

    def on_update_notification(self, callback: NotificationCallback) -> None:
        self._callbacks.append(callback)

    async def enable_background_delivery(self, frequency: str) -> bool:
        self.background_frequency = frequency
        return True

    async def disable_background_delivery(self) -> None:
        self.background_frequency = None
        self._callbacks.clear()

    async def notify(self) -> list[Any]:
        """Fire every registered callback in order and collect the results."""
        results = []
        for callback in list(self._callbacks):
            results.append(await callback())
        logger.debug("manual_source_notified", callbacks=len(results))
        return results
