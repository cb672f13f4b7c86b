"""Shared type aliases and typed dictionaries."""

from __future__ import annotations

from typing import NotRequired, TypeAlias, TypedDict

JSONValue: TypeAlias = (
    str | int | float | bool | None | list["JSONValue"] | dict[str, "JSONValue"]
)
TraceContextCarrier: TypeAlias = dict[str, str]


class StepRecordPayload(TypedDict):
    """Wire shape of a stored step record."""

    id: str
    steps: int
    timestamp: str
    deviceType: str
    receivedAt: str


class SubmissionPayload(TypedDict):
    """Wire shape of an outbound step submission."""

    steps: int
    timestamp: str
    deviceType: str


class StatsPayload(TypedDict):
    """Aggregate statistics payload."""

    totalRecords: int
    totalSteps: int
    averageSteps: int
    maxSteps: int
    minSteps: int
    todayRecords: int
    latestRecord: NotRequired[StepRecordPayload]


class HealthPayload(TypedDict):
    """Liveness payload."""

    status: str
    timestamp: str
    uptimeSeconds: float
    recordsStored: int
