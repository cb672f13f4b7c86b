"""Outbound step submissions to the ledger API."""

import time
from typing import Any

import httpx
import structlog
from opentelemetry import trace
from opentelemetry.trace import SpanKind
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from .config import UploadSettings
from .errors import NetworkError
from .metrics import UPLOAD_DURATION
from .models import StepReading, format_timestamp
from .tracing import inject_trace_context
from .types import SubmissionPayload

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)


def _is_retryable(exc: BaseException) -> bool:
    """Transport failures and 5xx responses are retryable; 4xx are not."""
    if not isinstance(exc, NetworkError):
        return False
    return exc.status_code is None or exc.status_code >= 500


class StepUploader:
    """Posts step readings to the ledger's submission endpoint."""

    def __init__(
        self,
        settings: UploadSettings,
        client: httpx.AsyncClient | None = None,
        retry_wait: float = 0.5,
    ) -> None:
        """Initialize the uploader.

        Args:
            settings: Upload settings (endpoint, timeout, attempts, device tag).
            client: Shared HTTP client; a short-lived one is created per call if None.
            retry_wait: Base delay in seconds between attempts.
        """
        self._settings = settings
        self._client = client
        self._retry_wait = retry_wait

    def build_payload(self, reading: StepReading) -> SubmissionPayload:
        return {
            "steps": reading.steps,
            "timestamp": format_timestamp(reading.observed_at),
            "deviceType": self._settings.device_type,
        }

    async def upload(self, reading: StepReading) -> dict[str, Any]:
        """Submit a reading, retrying up to the configured attempt count.

        Returns:
            Decoded response body of the accepted submission.

        Raises:
            NetworkError: If every attempt failed.
        """
        payload = self.build_payload(reading)
        async for attempt_state in AsyncRetrying(
            stop=stop_after_attempt(self._settings.max_attempts),
            wait=wait_exponential(multiplier=self._retry_wait, max=10),
            retry=retry_if_exception(_is_retryable),
            reraise=True,
        ):
            with attempt_state:
                attempt = attempt_state.retry_state.attempt_number
                return await self._attempt_upload(payload, attempt)
        # Unreachable with reraise=True
        raise NetworkError("Upload retries exhausted")

    async def _attempt_upload(self, payload: SubmissionPayload, attempt: int) -> dict[str, Any]:
        with tracer.start_as_current_span("upload.submit", kind=SpanKind.CLIENT) as span:
            span.set_attribute("http.method", "POST")
            span.set_attribute("http.url", self._settings.endpoint)
            span.set_attribute("upload.attempt", attempt)
            headers = inject_trace_context({"Content-Type": "application/json"})
            start = time.perf_counter()
            try:
                if self._client is not None:
                    response = await self._post(self._client, payload, headers)
                else:
                    async with httpx.AsyncClient() as client:
                        response = await self._post(client, payload, headers)
            except httpx.TimeoutException as e:
                logger.warning("upload_timeout", attempt=attempt, error=str(e))
                raise NetworkError(
                    f"Upload timed out after {self._settings.timeout_seconds}s"
                ) from e
            except httpx.HTTPError as e:
                logger.warning("upload_transport_error", attempt=attempt, error=str(e))
                raise NetworkError(f"Upload failed: {e}") from e
            finally:
                UPLOAD_DURATION.observe(time.perf_counter() - start)

            span.set_attribute("http.status_code", response.status_code)
            if not response.is_success:
                error_msg = f"HTTP {response.status_code}"
                try:
                    error_data = response.json()
                    if isinstance(error_data, dict) and "error" in error_data:
                        error_msg = f"{error_msg}: {error_data['error']}"
                except ValueError:
                    pass
                logger.warning(
                    "upload_http_error",
                    status=response.status_code,
                    attempt=attempt,
                )
                raise NetworkError(error_msg, status_code=response.status_code)

            logger.info("upload_accepted", steps=payload["steps"], attempt=attempt)
            try:
                body = response.json()
            except ValueError:
                return {}
            return body if isinstance(body, dict) else {}

    async def _post(
        self,
        client: httpx.AsyncClient,
        payload: SubmissionPayload,
        headers: dict[str, str],
    ) -> httpx.Response:
        return await client.post(
            self._settings.endpoint,
            json=payload,
            headers=headers,
            timeout=self._settings.timeout_seconds,
        )
