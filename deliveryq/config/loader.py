"""Configuration loader for the delivery queue."""

from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from pydantic import ValidationError

from .environment import EnvironmentConfig, load_environment_config
from .exceptions import ConfigurationError
from .models import AppConfig
from .validators import check_for_warnings, emit_warnings

DEFAULT_CONFIG_CANDIDATES = (
    Path("config.yaml"),
    Path("config") / "config.yaml",
)


def load_config(config_path: Optional[Path] = None) -> Tuple[AppConfig, EnvironmentConfig]:
    """
    Load and validate configuration from a YAML file and environment variables.

    Config file lookup order:
    1. config_path if given (must exist)
    2. config.yaml in the current directory
    3. ./config/config.yaml
    4. No file: built-in defaults

    Every section of the file is optional, so an absent file is not an error.

    Args:
        config_path: Optional path to configuration file

    Returns:
        Tuple of (AppConfig, EnvironmentConfig)

    Raises:
        ConfigurationError: If the file is unreadable or values are invalid
    """
    config_file = _find_config_file(config_path)
    config_dict = _read_yaml(config_file) if config_file else {}

    warnings = check_for_warnings(config_dict)
    if warnings:
        emit_warnings(warnings)

    app_config = parse_app_config(config_dict)

    try:
        env_config = load_environment_config()
    except ConfigurationError:
        raise
    except Exception as e:
        raise ConfigurationError(
            f"Failed to load environment configuration: {e}",
            suggestions=["Copy .env.example to .env and fill in your credentials"],
        ) from e

    return app_config, env_config


def parse_app_config(config_dict: Dict[str, Any]) -> AppConfig:
    """Validate a raw config mapping, translating pydantic errors.

    Raises:
        ConfigurationError: With one readable line per validation error
    """
    try:
        return AppConfig.model_validate(config_dict)
    except ValidationError as e:
        raise ConfigurationError(
            "Configuration validation failed",
            errors=_format_validation_errors(e),
            suggestions=[
                "Review config.example.yaml for the expected format",
                "Durations accept '30s', '5m', '24h' or ISO-8601 such as 'PT5M'",
            ],
        ) from e


def _format_validation_errors(error: ValidationError) -> List[str]:
    messages = []
    for item in error.errors():
        field_path = " -> ".join(str(loc) for loc in item["loc"]) or "(root)"
        error_type = item["type"]

        if error_type == "missing":
            messages.append(f"Missing required field: {field_path}")
        elif error_type in ("string_type", "int_type", "bool_type", "int_parsing", "bool_parsing"):
            expected = error_type.split("_")[0]
            messages.append(
                f"Invalid type for '{field_path}': expected {expected}, got {item.get('input')!r}"
            )
        elif error_type == "enum":
            messages.append(f"Invalid value for '{field_path}': {item['msg']}")
        else:
            messages.append(f"{field_path}: {item['msg']}")
    return messages


def _read_yaml(config_file: Path) -> Dict[str, Any]:
    try:
        with open(config_file, "r", encoding="utf-8") as f:
            config_dict = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Failed to parse YAML configuration: {e}",
            suggestions=[
                "Check YAML syntax in your config file",
                "Ensure proper indentation (use spaces, not tabs)",
            ],
        ) from e
    except OSError as e:
        raise ConfigurationError(
            f"Failed to read configuration file: {e}",
            suggestions=[f"Ensure {config_file} is readable"],
        ) from e

    if config_dict is None:
        return {}

    if not isinstance(config_dict, dict):
        raise ConfigurationError(
            "Configuration file must contain a mapping at the top level",
            suggestions=["Review config.example.yaml for the expected format"],
        )

    return config_dict


def _find_config_file(config_path: Optional[Path] = None) -> Optional[Path]:
    if config_path:
        if not config_path.exists():
            raise ConfigurationError(
                f"Specified configuration file not found: {config_path}",
                suggestions=[
                    f"Ensure {config_path} exists",
                    "Omit --config to run with built-in defaults",
                ],
            )
        return config_path

    for candidate in DEFAULT_CONFIG_CANDIDATES:
        if candidate.exists():
            return candidate

    return None


def validate_config_file(config_path: Path) -> bool:
    """
    Validate a configuration file without loading environment variables.

    Args:
        config_path: Path to configuration file

    Returns:
        True if valid, False otherwise (errors printed to stdout)
    """
    try:
        parse_app_config(_read_yaml(config_path))
    except ConfigurationError as e:
        print(f"✗ Configuration validation failed:\n{e}")
        return False

    print(f"✓ Configuration file {config_path} is valid")
    return True
