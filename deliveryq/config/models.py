"""Configuration schema models using Pydantic."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .duration import DurationParseError, parse_duration, validate_duration_range

# (min_seconds, max_seconds) for each configurable duration
PROCESS_INTERVAL_RANGE = (10, 3600)
RETENTION_RANGE = (3600, 30 * 86400)
BATCH_WINDOW_RANGE = (1, 86400)


class TransportType(str, Enum):
    """Supported mail transports."""

    SMTP = "smtp"
    HTTP = "http"
    LOG = "log"


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Log output formats."""

    JSON = "json"
    KEY_VALUE = "key-value"


def _checked_duration(value: str, bounds: tuple, label: str) -> int:
    try:
        seconds = parse_duration(value)
        validate_duration_range(seconds, bounds[0], bounds[1], label=label)
    except DurationParseError as e:
        raise ValueError(str(e)) from e
    return seconds


class QueueConfig(BaseModel):
    """Processing cycle, retention and batching settings."""

    process_interval: str = Field("60s", description="Interval between processing cycles")
    retention: str = Field("24h", description="Age after which undelivered items expire")
    delivery_batch_size: int = Field(
        20, ge=1, le=500, description="Maximum pending items delivered per cycle"
    )
    consolidation_page_size: int = Field(
        100, ge=1, le=1000, description="Maximum batched items consolidated per cycle"
    )
    max_attempts: int = Field(
        3, ge=1, le=10, description="Default delivery attempts before an item fails"
    )
    default_batch_window: str = Field(
        "5m", description="Batch window used when a batch key has no explicit batch_until"
    )
    digest_preview_limit: int = Field(
        5, ge=1, le=50, description="Maximum entries listed individually in a digest"
    )

    # Computed fields
    process_interval_seconds: Optional[int] = None
    retention_seconds: Optional[int] = None
    default_batch_window_seconds: Optional[int] = None

    @field_validator("process_interval")
    @classmethod
    def validate_process_interval(cls, v: str) -> str:
        _checked_duration(v, PROCESS_INTERVAL_RANGE, "process_interval")
        return v

    @field_validator("retention")
    @classmethod
    def validate_retention(cls, v: str) -> str:
        _checked_duration(v, RETENTION_RANGE, "retention")
        return v

    @field_validator("default_batch_window")
    @classmethod
    def validate_default_batch_window(cls, v: str) -> str:
        _checked_duration(v, BATCH_WINDOW_RANGE, "default_batch_window")
        return v

    @model_validator(mode="after")
    def compute_durations(self):
        """Store parsed durations alongside their source strings."""
        self.process_interval_seconds = parse_duration(self.process_interval)
        self.retention_seconds = parse_duration(self.retention)
        self.default_batch_window_seconds = parse_duration(self.default_batch_window)

        if self.default_batch_window_seconds >= self.retention_seconds:
            raise ValueError(
                "default_batch_window must be shorter than retention, "
                "otherwise batched items expire before they are consolidated"
            )

        return self


class EmailConfig(BaseModel):
    """Mail transport settings."""

    transport: TransportType = Field(TransportType.SMTP, description="Mail transport to use")
    use_tls: bool = Field(True, description="Use TLS/STARTTLS for SMTP connections")
    timeout_seconds: int = Field(
        30, ge=1, le=300, description="Network timeout for a single send"
    )
    sender_name: str = Field(
        "Notifications", min_length=1, description="Display name for the From header"
    )
    reply_to: Optional[str] = Field(None, description="Optional Reply-To address")

    @field_validator("sender_name")
    @classmethod
    def strip_sender_name(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("sender_name cannot be empty")
        return stripped

    model_config = {"use_enum_values": True}


class UnsubscribeConfig(BaseModel):
    """Unsubscribe link construction."""

    base_url: str = Field(
        "http://localhost:8000", min_length=1, description="Public API base URL"
    )
    path_template: str = Field(
        "/api/notifications/unsubscribe/{token}",
        description="Path appended to base_url; must contain {token}",
    )

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        stripped = v.strip().rstrip("/")
        if not stripped.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https://")
        return stripped

    @field_validator("path_template")
    @classmethod
    def require_token_placeholder(cls, v: str) -> str:
        if "{token}" not in v:
            raise ValueError("path_template must contain the {token} placeholder")
        return v if v.startswith("/") else f"/{v}"


class LinksConfig(BaseModel):
    """Links rendered into email bodies."""

    frontend_url: str = Field(
        "http://localhost:3000", min_length=1, description="Base URL for relative action links"
    )

    @field_validator("frontend_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.strip().rstrip("/")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: LogLevel = Field(LogLevel.INFO, description="Log level")
    format: LogFormat = Field(
        LogFormat.KEY_VALUE, description="Log output format (json or key-value)"
    )

    model_config = {"use_enum_values": True}


class AppConfig(BaseModel):
    """Root configuration object for the delivery queue."""

    queue: QueueConfig = Field(default_factory=QueueConfig, description="Queue settings")
    email: EmailConfig = Field(default_factory=EmailConfig, description="Email settings")
    unsubscribe: UnsubscribeConfig = Field(
        default_factory=UnsubscribeConfig, description="Unsubscribe link settings"
    )
    links: LinksConfig = Field(default_factory=LinksConfig, description="Link settings")
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )
