"""CLI tools for ledger inspection and one-shot uploads."""

import argparse
import asyncio
import json
import sys
from datetime import timedelta
from pathlib import Path

from .config import get_settings
from .errors import StorageError
from .ledger import StepLedger
from .logging import setup_logging
from .marker import JsonFileMarkerStore
from .scheduler import UploadOutcome, UploadScheduler
from .sources import ManualHealthSource
from .storage import JsonFileRecordStore
from .uploader import StepUploader


def non_negative_int(value: str) -> int:
    """Parse a non-negative integer argument."""
    parsed = int(value)
    if parsed < 0:
        raise argparse.ArgumentTypeError(f"must not be negative: {value}")
    return parsed


async def _print_stats(data_file: Path) -> int:
    settings = get_settings()
    ledger = StepLedger(JsonFileRecordStore(data_file), tz=settings.ledger.tzinfo)
    try:
        await ledger.load()
    except StorageError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    print(json.dumps(ledger.stats().to_dict(), indent=2))
    return 0


def ledger_stats() -> None:
    """CLI entry point printing aggregate statistics of a data file.

    Usage:
        step-ledger-stats [--data-file data/steps.json]
    """
    settings = get_settings()
    # stdout carries only the JSON document
    setup_logging(settings.app, stream=sys.stderr)

    parser = argparse.ArgumentParser(description="Print statistics for a step ledger data file")
    parser.add_argument(
        "--data-file",
        type=Path,
        default=Path(settings.ledger.data_file),
        help=f"Ledger data file (default: {settings.ledger.data_file})",
    )
    args = parser.parse_args()

    if not args.data_file.exists():
        print(f"Error: data file not found: {args.data_file}", file=sys.stderr)
        sys.exit(1)

    sys.exit(asyncio.run(_print_stats(args.data_file)))


async def _upload_once(
    steps: int,
    force: bool,
    endpoint: str | None,
    marker_file: Path,
) -> UploadOutcome:
    settings = get_settings()
    upload_settings = settings.upload
    if endpoint:
        upload_settings = upload_settings.model_copy(update={"endpoint": endpoint})

    scheduler = UploadScheduler(
        source=ManualHealthSource(steps=steps),
        uploader=StepUploader(upload_settings),
        marker_store=JsonFileMarkerStore(marker_file),
        min_interval=timedelta(seconds=upload_settings.interval_seconds),
        background_frequency=upload_settings.background_frequency,
    )
    return await scheduler.upload_now(force=force)


def upload() -> None:
    """CLI entry point for a one-shot upload honouring the interval gate.

    Usage:
        step-upload --steps 4200 [--force] [--endpoint URL] [--marker-file PATH]
    """
    settings = get_settings()
    setup_logging(settings.app)

    parser = argparse.ArgumentParser(description="Upload a step reading to the ledger")
    parser.add_argument(
        "--steps",
        type=non_negative_int,
        required=True,
        help="Step total observed today",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Ignore the minimum upload interval",
    )
    parser.add_argument(
        "--endpoint",
        default=None,
        help=f"Submission URL (default: {settings.upload.endpoint})",
    )
    parser.add_argument(
        "--marker-file",
        type=Path,
        default=Path(settings.upload.marker_file),
        help=f"Last-upload marker file (default: {settings.upload.marker_file})",
    )
    args = parser.parse_args()

    try:
        outcome = asyncio.run(_upload_once(args.steps, args.force, args.endpoint, args.marker_file))
    except StorageError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"Upload {outcome.value}")
    sys.exit(1 if outcome == UploadOutcome.FAILED else 0)
