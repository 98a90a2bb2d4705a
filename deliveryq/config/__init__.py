"""Configuration management for the notification delivery queue."""

from .environment import EnvironmentConfig, load_environment_config
from .exceptions import ConfigurationError
from .loader import load_config, parse_app_config, validate_config_file
from .models import (
    AppConfig,
    EmailConfig,
    LinksConfig,
    LogFormat,
    LoggingConfig,
    LogLevel,
    QueueConfig,
    TransportType,
    UnsubscribeConfig,
)

__all__ = [
    # Loader functions
    "load_config",
    "parse_app_config",
    "validate_config_file",
    "load_environment_config",
    # Configuration models
    "AppConfig",
    "QueueConfig",
    "EmailConfig",
    "UnsubscribeConfig",
    "LinksConfig",
    "LoggingConfig",
    "EnvironmentConfig",
    # Enums
    "TransportType",
    "LogLevel",
    "LogFormat",
    # Exceptions
    "ConfigurationError",
]
