"""Main entry point for the step ledger service."""

import asyncio
import signal
import sys
from pathlib import Path

import httpx
import structlog

from . import __version__
from .config import Settings, get_settings
from .http_handler import HTTPHandler
from .ledger import StepLedger
from .logging import setup_logging
from .metrics import SERVICE_INFO
from .storage import JsonFileRecordStore, MemoryRecordStore, RecordStore
from .tracing import setup_tracing

logger = structlog.get_logger(__name__)


def build_store(settings: Settings) -> RecordStore:
    """Create the record store selected by LEDGER_BACKEND."""
    if settings.ledger.backend == "memory":
        return MemoryRecordStore()
    return JsonFileRecordStore(Path(settings.ledger.data_file))


class StepLedgerService:
    """Owns the ledger and its HTTP front end."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._ledger: StepLedger | None = None
        self._http_handler: HTTPHandler | None = None
        self._shutdown_event = asyncio.Event()

    @property
    def ledger(self) -> StepLedger | None:
        return self._ledger

    async def start(self) -> None:
        """Load persisted records and start serving HTTP."""
        setup_tracing(self._settings.tracing)
        logger.info(
            "service_starting",
            version=__version__,
            backend=self._settings.ledger.backend,
        )
        SERVICE_INFO.info({"version": __version__, "backend": self._settings.ledger.backend})

        self._ledger = StepLedger(
            build_store(self._settings),
            tz=self._settings.ledger.tzinfo,
        )
        loaded = await self._ledger.load()

        self._http_handler = HTTPHandler(
            settings=self._settings.http,
            ledger=self._ledger,
            default_page_size=self._settings.ledger.default_page_size,
            max_page_size=self._settings.ledger.max_page_size,
        )
        await self._http_handler.start()

        logger.info(
            "service_started",
            records_loaded=loaded,
            port=self._settings.http.port,
            data_file=self._settings.ledger.data_file
            if self._settings.ledger.backend == "file"
            else None,
        )

    async def stop(self) -> None:
        """Stop serving; every accepted record is already persisted."""
        logger.info("service_stopping")
        if self._http_handler:
            await self._http_handler.stop()
        logger.info(
            "service_stopped",
            records_stored=self._ledger.count() if self._ledger else 0,
        )

    async def run_until_shutdown(self) -> None:
        """Run the service until shutdown signal received."""
        await self._shutdown_event.wait()

    def request_shutdown(self) -> None:
        """Request service shutdown."""
        self._shutdown_event.set()


async def main() -> None:
    """Main entry point."""
    settings = get_settings()
    setup_logging(settings.app)

    service = StepLedgerService(settings)

    loop = asyncio.get_running_loop()

    def signal_handler() -> None:
        logger.info("shutdown_signal_received")
        service.request_shutdown()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await service.start()
        await service.run_until_shutdown()
    except Exception as e:
        logger.exception("service_error", error=str(e))
        raise
    finally:
        await service.stop()


def run() -> None:
    """Entry point for the CLI."""
    asyncio.run(main())


def health_check_cli() -> None:
    """Health check CLI for Docker HEALTHCHECK.

    Exits with code 0 when GET /health answers 200, 1 otherwise.
    """
    settings = get_settings()
    host = "127.0.0.1" if settings.http.host in ("0.0.0.0", "::") else settings.http.host
    url = f"http://{host}:{settings.http.port}/health"
    try:
        response = httpx.get(url, timeout=5.0)
    except httpx.HTTPError as e:
        print(f"Health check failed: {e}")
        sys.exit(1)
    if response.status_code != 200:
        print(f"Health check failed: HTTP {response.status_code}")
        sys.exit(1)
    print("Health check passed")
    sys.exit(0)


if __name__ == "__main__":
    run()
