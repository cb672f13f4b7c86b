"""Step count synchronisation service.

A small system that gates step-count uploads from a phone-side health data
source and stores the submissions in an append-only ledger served over a
REST API.

Modules:
    config: Configuration management using pydantic-settings
    scheduler: Upload gate and background notification handling
    uploader: Outbound submissions to the ledger API
    ledger: Append-only step record ledger with query helpers
    storage: Record persistence backends
    http_handler: REST API for the ledger

Example:
    Run the ledger service::

        $ uv run step-ledger

    Push the current reading once::

        $ uv run step-upload --steps 4200
"""

__version__ = "1.0.0"

from .config import Settings, get_settings

__all__ = ["Settings", "get_settings", "__version__"]
