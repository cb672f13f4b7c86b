"""REST API for the step ledger."""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Callable
from datetime import datetime

import structlog
import uvicorn
from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from opentelemetry import trace
from opentelemetry.trace import SpanKind
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from . import __version__
from .config import HTTPSettings
from .errors import NotFoundError, StepValidationError, StorageError
from .ledger import DEFAULT_PAGE_SIZE, StepLedger, utcnow
from .metrics import HTTP_REQUESTS_TOTAL
from .models import format_timestamp
from .tracing import extract_trace_context
from .types import HealthPayload, JSONValue

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)

SECURITY_HEADERS: dict[str, str] = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Cross-Origin-Resource-Policy": "same-origin",
    "X-DNS-Prefetch-Control": "off",
}

ENDPOINTS: dict[str, str] = {
    "GET /": "API info",
    "GET /health": "Health check",
    "POST /api/steps": "Submit step data",
    "GET /api/steps": "List step data (page, limit)",
    "GET /api/steps/latest": "Get latest step data",
    "GET /api/steps/today": "Get today's step submissions",
    "GET /api/stats": "Get statistics",
}


class StepRecordModel(BaseModel):
    """Stored step record."""

    id: str
    steps: int
    timestamp: str
    deviceType: str
    receivedAt: str


class RecordPageResponse(BaseModel):
    """Paged record listing."""

    page: int
    limit: int
    total: int
    totalPages: int
    data: list[StepRecordModel] = Field(default_factory=list)


class TodayResponse(BaseModel):
    """Records for the current calendar day."""

    date: str
    count: int
    data: list[StepRecordModel] = Field(default_factory=list)


class StatsResponse(BaseModel):
    """Aggregate statistics."""

    totalRecords: int
    totalSteps: int
    averageSteps: int
    maxSteps: int
    minSteps: int
    todayRecords: int
    latestRecord: StepRecordModel | None = None


class HealthResponse(BaseModel):
    """Liveness response."""

    status: str
    timestamp: str
    uptimeSeconds: float
    recordsStored: int


class InfoResponse(BaseModel):
    """Service info response."""

    name: str
    version: str
    endpoints: dict[str, str]


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str
    field: str | None = None


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        for header, value in SECURITY_HEADERS.items():
            response.headers.setdefault(header, value)
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs each request and counts it by route template."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            # The app-level handler renders the 500 once the error leaves the stack
            self._record(request, status.HTTP_500_INTERNAL_SERVER_ERROR, start)
            raise
        self._record(request, response.status_code, start)
        return response

    @staticmethod
    def _record(request: Request, status_code: int, start: float) -> None:
        route = request.scope.get("route")
        path = getattr(route, "path", None) or "unmatched"
        HTTP_REQUESTS_TOTAL.labels(
            method=request.method, path=path, status=str(status_code)
        ).inc()
        logger.info(
            "http_request",
            method=request.method,
            path=request.url.path,
            status=status_code,
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
            client_host=request.client.host if request.client else None,
        )


def _parse_positive_int(raw: str | None, default: int, name: str) -> int:
    """Parse a paging parameter; missing or non-numeric values use the default."""
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    if value < 1:
        raise StepValidationError(f"{name} must be at least 1", field=name)
    return value


def error_response(status_code: int, error: str, field: str | None = None) -> JSONResponse:
    payload: dict[str, JSONValue] = {"error": error}
    if field is not None:
        payload["field"] = field
    return JSONResponse(status_code=status_code, content=payload)


class HTTPHandler:
    """Serves the step ledger over HTTP."""

    def __init__(
        self,
        settings: HTTPSettings,
        ledger: StepLedger,
        default_page_size: int = DEFAULT_PAGE_SIZE,
        max_page_size: int = 1000,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._settings = settings
        self._ledger = ledger
        self._default_page_size = default_page_size
        self._max_page_size = max_page_size
        self._clock = clock
        self._started_monotonic = time.monotonic()
        self._app: FastAPI | None = None
        self._server: uvicorn.Server | None = None
        self._server_task: asyncio.Task | None = None

    def health_payload(self) -> HealthPayload:
        return {
            "status": "ok",
            "timestamp": format_timestamp(self._clock()),
            "uptimeSeconds": round(time.monotonic() - self._started_monotonic, 3),
            "recordsStored": self._ledger.count(),
        }

    def _build_app(self) -> FastAPI:
        app = FastAPI(
            title="Step Tracker API",
            version=__version__,
            description="Append-only ledger of step count submissions.",
        )
        app.add_middleware(SecurityHeadersMiddleware)
        app.add_middleware(
            CORSMiddleware,
            allow_origins=self._settings.origins,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
        )
        app.add_middleware(RequestLoggingMiddleware)

        @app.exception_handler(StarletteHTTPException)
        async def http_exception_handler(
            request: Request, exc: StarletteHTTPException
        ) -> JSONResponse:
            if exc.status_code == status.HTTP_404_NOT_FOUND:
                return error_response(status.HTTP_404_NOT_FOUND, "Not found")
            return error_response(exc.status_code, str(exc.detail))

        @app.exception_handler(Exception)
        async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
            logger.exception("http_unhandled_error", path=request.url.path, error=str(exc))
            return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")

        @app.get("/", response_model=InfoResponse, summary="Service info")
        async def info() -> InfoResponse:
            """Handle GET / -- returns service metadata and endpoint list."""
            return InfoResponse(name="Step Tracker API", version=__version__, endpoints=ENDPOINTS)

        @app.get("/health", response_model=HealthResponse, summary="Health check")
        async def health() -> HealthPayload:
            """Handle GET /health -- returns service liveness status."""
            return self.health_payload()

        @app.post(
            "/api/steps",
            status_code=status.HTTP_201_CREATED,
            response_model=StepRecordModel,
            responses={
                400: {"model": ErrorResponse},
                500: {"model": ErrorResponse},
            },
            summary="Submit step data",
        )
        async def submit_steps(request: Request):
            """Handle POST /api/steps -- validate and append a step submission."""
            request_context = extract_trace_context(dict(request.headers))
            with tracer.start_as_current_span(
                "http.submit_steps",
                context=request_context,
                kind=SpanKind.SERVER,
            ) as span:
                span.set_attribute("http.method", "POST")
                span.set_attribute("http.route", "/api/steps")

                raw_body = await request.body()
                try:
                    payload = json.loads(raw_body) if raw_body else None
                except (json.JSONDecodeError, UnicodeDecodeError) as exc:
                    logger.warning("http_payload_parse_error", error=str(exc))
                    return error_response(status.HTTP_400_BAD_REQUEST, "Invalid JSON")

                if not isinstance(payload, dict):
                    return error_response(
                        status.HTTP_400_BAD_REQUEST, "Payload must be a JSON object"
                    )

                try:
                    record = await self._ledger.submit(
                        payload.get("steps"),
                        timestamp=payload.get("timestamp"),
                        device_type=payload.get("deviceType"),
                    )
                except StepValidationError as exc:
                    return error_response(status.HTTP_400_BAD_REQUEST, str(exc), field=exc.field)
                except StorageError as exc:
                    logger.error("http_submit_storage_error", error=str(exc))
                    return error_response(
                        status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to save data"
                    )

                span.set_attribute("step_record.id", record.id)
                return record.to_dict()

        @app.get(
            "/api/steps",
            response_model=RecordPageResponse,
            responses={400: {"model": ErrorResponse}},
            summary="List step data",
        )
        async def list_steps(page: str | None = None, limit: str | None = None):
            """Handle GET /api/steps -- paged listing, most recent first."""
            try:
                page_num = _parse_positive_int(page, 1, "page")
                page_size = _parse_positive_int(limit, self._default_page_size, "limit")
            except StepValidationError as exc:
                return error_response(status.HTTP_400_BAD_REQUEST, str(exc), field=exc.field)
            page_size = min(page_size, self._max_page_size)
            return self._ledger.list_records(page=page_num, page_size=page_size).to_dict()

        @app.get(
            "/api/steps/latest",
            response_model=StepRecordModel,
            responses={404: {"model": ErrorResponse}},
            summary="Get latest step data",
        )
        async def latest_steps():
            """Handle GET /api/steps/latest -- record with the newest timestamp."""
            try:
                return self._ledger.latest().to_dict()
            except NotFoundError as exc:
                return error_response(status.HTTP_404_NOT_FOUND, str(exc))

        @app.get("/api/steps/today", response_model=TodayResponse, summary="Today's steps")
        async def today_steps():
            """Handle GET /api/steps/today -- records from the current local day."""
            return self._ledger.today().to_dict()

        @app.get(
            "/api/stats",
            response_model=StatsResponse,
            response_model_exclude_none=True,
            summary="Get statistics",
        )
        async def stats():
            """Handle GET /api/stats -- aggregate statistics."""
            return self._ledger.stats().to_dict()

        @app.get("/metrics", summary="Prometheus metrics")
        async def metrics() -> Response:
            """Handle GET /metrics -- returns Prometheus metrics."""
            return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

        return app

    async def start(self) -> None:
        """Start the HTTP server."""
        self._app = self._build_app()
        config = uvicorn.Config(
            self._app,
            host=self._settings.host,
            port=self._settings.port,
            log_level="info",
        )
        self._server = uvicorn.Server(config)
        self._server_task = asyncio.create_task(self._server.serve())
        logger.info(
            "http_server_started",
            host=self._settings.host,
            port=self._settings.port,
        )

    async def stop(self) -> None:
        """Stop the HTTP server."""
        if self._server:
            self._server.should_exit = True
        if self._server_task:
            await self._server_task
            self._server_task = None
        logger.info("http_server_stopped")

    @property
    def app(self) -> FastAPI:
        """Expose the FastAPI app for testing."""
        if not self._app:
            self._app = self._build_app()
        return self._app
