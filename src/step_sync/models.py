"""Data model for step readings, upload markers and ledger records."""

from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Any

from .types import StatsPayload, StepRecordPayload


def format_timestamp(ts: datetime) -> str:
    """Format a datetime as an ISO-8601 UTC string with millisecond precision."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def truncate_to_millis(ts: datetime) -> datetime:
    """Drop sub-millisecond precision, matching the stored wire format."""
    return ts.replace(microsecond=ts.microsecond - ts.microsecond % 1000)


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse an ISO-8601 string into an aware datetime at millisecond precision.

    Naive values are interpreted as UTC.

    Raises:
        ValueError: If the value is not a valid ISO-8601 timestamp.
    """
    if isinstance(value, datetime):
        ts = value
    else:
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"Invalid timestamp: {value!r}")
        ts = datetime.fromisoformat(value.strip())
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return truncate_to_millis(ts)


@dataclass(frozen=True)
class StepReading:
    """A step total observed by the health data source."""

    steps: int
    observed_at: datetime


@dataclass(frozen=True)
class UploadMarker:
    """Time of the last successful upload (None = never uploaded)."""

    last_upload_at: datetime | None = None

    def to_dict(self) -> dict[str, str | None]:
        return {
            "lastUploadAt": (
                format_timestamp(self.last_upload_at) if self.last_upload_at else None
            )
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UploadMarker":
        raw = data.get("lastUploadAt")
        return cls(last_upload_at=parse_timestamp(raw) if raw else None)


@dataclass(frozen=True)
class StepRecord:
    """One immutable step submission stored in the ledger."""

    id: str
    steps: int
    timestamp: datetime
    device_type: str
    received_at: datetime

    def to_dict(self) -> StepRecordPayload:
        """Convert record to its JSON wire shape."""
        return {
            "id": self.id,
            "steps": self.steps,
            "timestamp": format_timestamp(self.timestamp),
            "deviceType": self.device_type,
            "receivedAt": format_timestamp(self.received_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StepRecord":
        """Build a record from its JSON wire shape.

        Raises:
            KeyError: If a required field is missing.
            ValueError: If a timestamp cannot be parsed.
        """
        return cls(
            id=str(data["id"]),
            steps=int(data["steps"]),
            timestamp=parse_timestamp(data["timestamp"]),
            device_type=data.get("deviceType") or "unknown",
            received_at=parse_timestamp(data["receivedAt"]),
        )

    @property
    def sort_key(self) -> tuple[datetime, int]:
        """Ordering key: timestamp, then ingestion order."""
        return (self.timestamp, _id_rank(self.id))


def _id_rank(record_id: str) -> int:
    """Numeric rank of a record id; non-numeric ids sort first."""
    return int(record_id) if record_id.isdigit() else -1


@dataclass(frozen=True)
class RecordPage:
    """One page of records, most recent first."""

    page: int
    limit: int
    total: int
    total_pages: int
    records: list[StepRecord] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "page": self.page,
            "limit": self.limit,
            "total": self.total,
            "totalPages": self.total_pages,
            "data": [r.to_dict() for r in self.records],
        }


@dataclass(frozen=True)
class TodayRecords:
    """Records observed during the current local calendar day."""

    day: date
    records: list[StepRecord] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.records)

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.day.isoformat(),
            "count": self.count,
            "data": [r.to_dict() for r in self.records],
        }


@dataclass(frozen=True)
class LedgerStats:
    """Aggregate statistics over the full ledger."""

    total_records: int = 0
    total_steps: int = 0
    average_steps: int = 0
    max_steps: int = 0
    min_steps: int = 0
    today_records: int = 0
    latest_record: StepRecord | None = None

    def to_dict(self) -> StatsPayload:
        payload: StatsPayload = {
            "totalRecords": self.total_records,
            "totalSteps": self.total_steps,
            "averageSteps": self.average_steps,
            "maxSteps": self.max_steps,
            "minSteps": self.min_steps,
            "todayRecords": self.today_records,
        }
        if self.latest_record is not None:
            payload["latestRecord"] = self.latest_record.to_dict()
        return payload
