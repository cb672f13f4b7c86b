"""Configuration management using pydantic-settings."""

import threading
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Valid log levels
VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

# Frequency hints understood by platform background delivery
VALID_BACKGROUND_FREQUENCIES = {"immediate", "hourly", "daily", "weekly"}

# Bounds for the client upload interval, in seconds
MIN_UPLOAD_INTERVAL_SECONDS = 60
MAX_UPLOAD_INTERVAL_SECONDS = 3600


class HTTPSettings(BaseSettings):
    """HTTP server settings for the ledger API."""

    model_config = SettingsConfigDict(env_prefix="HTTP_")

    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=3000, description="Listen port")
    allowed_origins: str = Field(
        default="*", description="CORS origins: '*' or a comma separated list"
    )

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate port is in valid range."""
        if not 1 <= v <= 65535:
            raise ValueError(f"Port must be between 1 and 65535, got {v}")
        return v

    @property
    def origins(self) -> list[str]:
        """Allowed CORS origins as a list."""
        if not self.allowed_origins.strip() or self.allowed_origins.strip() == "*":
            return ["*"]
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]


class LedgerSettings(BaseSettings):
    """Step ledger storage and query settings."""

    model_config = SettingsConfigDict(env_prefix="LEDGER_")

    backend: str = Field(default="file", description="Storage backend: file or memory")
    data_file: str = Field(default="data/steps.json", description="JSON data file path")
    default_page_size: int = Field(default=50, description="Default page size for listings")
    max_page_size: int = Field(default=1000, description="Largest accepted page size")
    timezone: str | None = Field(
        default=None, description="IANA timezone for the 'today' boundary (host local if unset)"
    )

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        """Validate storage backend name."""
        normalized = v.lower()
        if normalized not in ("file", "memory"):
            raise ValueError(f"Invalid backend '{v}'. Must be 'file' or 'memory'")
        return normalized

    @field_validator("default_page_size", "max_page_size")
    @classmethod
    def validate_page_size(cls, v: int) -> int:
        """Validate page sizes are positive."""
        if v < 1:
            raise ValueError(f"Page size must be at least 1, got {v}")
        return v

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str | None) -> str | None:
        """Validate timezone is a known IANA name."""
        if v is None or not v.strip():
            return None
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone '{v}'") from e
        return v

    @property
    def tzinfo(self) -> ZoneInfo | None:
        """Configured timezone, or None for host local time."""
        return ZoneInfo(self.timezone) if self.timezone else None


class UploadSettings(BaseSettings):
    """Client-side upload scheduler settings."""

    model_config = SettingsConfigDict(env_prefix="UPLOAD_")

    endpoint: str = Field(
        default="http://localhost:3000/api/steps", description="Ledger submission URL"
    )
    interval_seconds: int = Field(default=300, description="Minimum seconds between uploads")
    timeout_seconds: float = Field(default=10.0, description="Submission timeout in seconds")
    max_attempts: int = Field(default=1, description="Attempts per notification")
    device_type: str = Field(default="iOS", description="Device tag sent with submissions")
    marker_file: str = Field(
        default="data/upload_marker.json", description="Persisted last-upload marker"
    )
    background_frequency: str = Field(
        default="hourly", description="Background delivery frequency hint"
    )

    @field_validator("interval_seconds")
    @classmethod
    def validate_interval(cls, v: int) -> int:
        """Validate upload interval is within bounds."""
        if not MIN_UPLOAD_INTERVAL_SECONDS <= v <= MAX_UPLOAD_INTERVAL_SECONDS:
            raise ValueError(
                f"Upload interval must be between {MIN_UPLOAD_INTERVAL_SECONDS} and "
                f"{MAX_UPLOAD_INTERVAL_SECONDS} seconds, got {v}"
            )
        return v

    @field_validator("timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        """Validate timeout is positive."""
        if v <= 0:
            raise ValueError(f"Timeout must be positive, got {v}")
        return v

    @field_validator("max_attempts")
    @classmethod
    def validate_max_attempts(cls, v: int) -> int:
        """Validate attempt count is reasonable."""
        if not 1 <= v <= 5:
            raise ValueError(f"Max attempts must be between 1 and 5, got {v}")
        return v

    @field_validator("background_frequency")
    @classmethod
    def validate_frequency(cls, v: str) -> str:
        """Validate background delivery frequency hint."""
        normalized = v.lower()
        if normalized not in VALID_BACKGROUND_FREQUENCIES:
            raise ValueError(
                f"Invalid background frequency '{v}'. Must be one of: "
                f"{', '.join(sorted(VALID_BACKGROUND_FREQUENCIES))}"
            )
        return normalized


class AppSettings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(env_prefix="APP_")

    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="json", description="Log format: json or console")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        normalized = v.upper()
        if normalized not in VALID_LOG_LEVELS:
            raise ValueError(
                f"Invalid log level '{v}'. Must be one of: {', '.join(VALID_LOG_LEVELS)}"
            )
        return normalized

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Validate log format is valid."""
        normalized = v.lower()
        if normalized not in ("json", "console"):
            raise ValueError(f"Invalid log format '{v}'. Must be 'json' or 'console'")
        return normalized


class TracingSettings(BaseSettings):
    """OpenTelemetry tracing settings."""

    model_config = SettingsConfigDict(env_prefix="TRACING_")

    enabled: bool = Field(default=False, description="Enable OTLP trace export")
    service_name: str = Field(default="step-sync", description="Service name resource attribute")


class Settings(BaseSettings):
    """Combined application settings."""

    http: HTTPSettings = Field(default_factory=HTTPSettings)
    ledger: LedgerSettings = Field(default_factory=LedgerSettings)
    upload: UploadSettings = Field(default_factory=UploadSettings)
    app: AppSettings = Field(default_factory=AppSettings)
    tracing: TracingSettings = Field(default_factory=TracingSettings)

    @classmethod
    def load(cls) -> "Settings":
        """Load settings from environment variables."""
        return cls(
            http=HTTPSettings(),
            ledger=LedgerSettings(),
            upload=UploadSettings(),
            app=AppSettings(),
            tracing=TracingSettings(),
        )


# Global settings instance with thread-safe initialization
_settings: Settings | None = None
_settings_lock = threading.Lock()


def get_settings() -> Settings:
    """Get or create the global settings instance.

    Thread-safe singleton pattern using double-checked locking.
    """
    global _settings
    if _settings is None:
        with _settings_lock:
            # Double-check after acquiring lock
            if _settings is None:
                _settings = Settings.load()
    return _settings
