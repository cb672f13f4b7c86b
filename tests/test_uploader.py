"""Tests for outbound step submissions."""

import json
from datetime import UTC, datetime

import httpx
import pytest

from step_sync.config import UploadSettings
from step_sync.errors import NetworkError
from step_sync.models import StepReading
from step_sync.uploader import StepUploader

ENDPOINT = "http://ledger.test/api/steps"


def _make_settings(max_attempts: int = 1) -> UploadSettings:
    return UploadSettings(
        _env_file=None,
        endpoint=ENDPOINT,
        timeout_seconds=2.0,
        max_attempts=max_attempts,
        device_type="iOS",
    )


def _make_uploader(handler, max_attempts: int = 1) -> StepUploader:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return StepUploader(_make_settings(max_attempts), client=client, retry_wait=0)


@pytest.fixture
def reading():
    return StepReading(steps=4200, observed_at=datetime(2024, 1, 1, 10, 0, tzinfo=UTC))


class TestStepUploader:
    """Tests for StepUploader."""

    async def test_posts_submission_payload(self, reading):
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(201, json={"id": "1704103200000", "steps": 4200})

        uploader = _make_uploader(handler)
        body = await uploader.upload(reading)

        assert body["id"] == "1704103200000"
        assert len(captured) == 1
        request = captured[0]
        assert request.method == "POST"
        assert str(request.url) == ENDPOINT
        assert json.loads(request.content) == {
            "steps": 4200,
            "timestamp": "2024-01-01T10:00:00.000Z",
            "deviceType": "iOS",
        }
        assert request.headers["content-type"] == "application/json"

    async def test_non_success_status_raises_network_error(self, reading):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, json={"error": "Failed to save data"})

        uploader = _make_uploader(handler)

        with pytest.raises(NetworkError, match="HTTP 500: Failed to save data") as exc_info:
            await uploader.upload(reading)
        assert exc_info.value.status_code == 500

    async def test_transport_error_raises_network_error(self, reading):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        uploader = _make_uploader(handler)

        with pytest.raises(NetworkError) as exc_info:
            await uploader.upload(reading)
        assert exc_info.value.status_code is None

    async def test_timeout_raises_network_error(self, reading):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("read timed out", request=request)

        uploader = _make_uploader(handler)

        with pytest.raises(NetworkError, match="timed out"):
            await uploader.upload(reading)

    async def test_retries_server_errors_up_to_max_attempts(self, reading):
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            if calls < 3:
                return httpx.Response(503)
            return httpx.Response(201, json={"id": "1"})

        uploader = _make_uploader(handler, max_attempts=3)
        body = await uploader.upload(reading)

        assert body == {"id": "1"}
        assert calls == 3

    async def test_client_errors_are_not_retried(self, reading):
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(400, json={"error": "Invalid steps value"})

        uploader = _make_uploader(handler, max_attempts=3)

        with pytest.raises(NetworkError) as exc_info:
            await uploader.upload(reading)
        assert exc_info.value.status_code == 400
        assert calls == 1

    async def test_single_attempt_by_default(self, reading):
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(502)

        uploader = _make_uploader(handler)

        with pytest.raises(NetworkError):
            await uploader.upload(reading)
        assert calls == 1

    async def test_non_json_success_body_returns_empty_dict(self, reading):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(201, text="created")

        uploader = _make_uploader(handler)
        assert await uploader.upload(reading) == {}
