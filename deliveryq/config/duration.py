"""Duration parsing for queue intervals and windows."""

import re

ISO8601_PATTERN = re.compile(
    r"^P(?:(\d+)D)?(?:T(?:(\d+)H)?(?:(\d+)M)?(?:(\d+(?:\.\d+)?)S)?)?$"
)
HUMAN_TOKEN_PATTERN = re.compile(r"(\d+)\s*([smhd])")

UNIT_SECONDS = {
    "s": 1,
    "m": 60,
    "h": 3600,
    "d": 86400,
}


class DurationParseError(ValueError):
    """Raised when a duration string cannot be parsed or is out of range."""

    pass


def parse_duration(duration_str: str) -> int:
    """
    Parse a duration string to seconds.

    Supports human-readable durations ("30s", "5m", "24h", "1h30m") and
    ISO-8601 durations ("PT30S", "PT5M", "P1D").

    Args:
        duration_str: Duration string to parse

    Returns:
        Duration in seconds

    Raises:
        DurationParseError: If the duration string is invalid or zero

    Examples:
        >>> parse_duration("60s")
        60
        >>> parse_duration("PT5M")
        300
        >>> parse_duration("24h")
        86400
    """
    if not isinstance(duration_str, str):
        raise DurationParseError(f"Duration must be a string, got {type(duration_str).__name__}")

    duration_str = duration_str.strip()
    if not duration_str:
        raise DurationParseError("Duration string cannot be empty")

    if duration_str.upper().startswith("P"):
        total_seconds = _parse_iso8601_duration(duration_str)
    else:
        total_seconds = _parse_human_readable_duration(duration_str)

    if total_seconds == 0:
        raise DurationParseError(f"Duration cannot be zero: '{duration_str}'")

    return total_seconds


def _parse_iso8601_duration(duration_str: str) -> int:
    match = ISO8601_PATTERN.match(duration_str.upper())
    if not match or duration_str.upper() in ("P", "PT"):
        raise DurationParseError(
            f"Invalid ISO-8601 duration format: '{duration_str}'. "
            "Expected format like 'P1D', 'PT1H30M', 'PT5M', or 'PT30S'"
        )

    days, hours, minutes, seconds = match.groups()
    return (
        int(days or 0) * UNIT_SECONDS["d"]
        + int(hours or 0) * UNIT_SECONDS["h"]
        + int(minutes or 0) * UNIT_SECONDS["m"]
        + int(float(seconds or 0))
    )


def _parse_human_readable_duration(duration_str: str) -> int:
    lowered = duration_str.lower()
    matches = HUMAN_TOKEN_PATTERN.findall(lowered)

    if not matches:
        raise DurationParseError(
            f"Invalid duration format: '{duration_str}'. "
            "Expected format like '30s', '5m', '1h', '2d', or combinations like '1h30m'"
        )

    # Every character must belong to a number+unit token
    parsed = "".join(f"{num}{unit}" for num, unit in matches)
    if parsed != re.sub(r"\s+", "", lowered):
        raise DurationParseError(
            f"Invalid characters in duration: '{duration_str}'. "
            "Use only digits and units: s (seconds), m (minutes), h (hours), d (days)"
        )

    return sum(int(num) * UNIT_SECONDS[unit] for num, unit in matches)


def validate_duration_range(
    duration_seconds: int,
    min_seconds: int,
    max_seconds: int,
    label: str = "Duration",
) -> None:
    """
    Validate that a duration is within an acceptable range.

    Args:
        duration_seconds: Duration in seconds to validate
        min_seconds: Minimum allowed duration
        max_seconds: Maximum allowed duration
        label: Name used in the error message (e.g. "process_interval")

    Raises:
        DurationParseError: If duration is outside the valid range
    """
    if duration_seconds < min_seconds:
        raise DurationParseError(
            f"{label} too short: {format_duration(duration_seconds)}. "
            f"Minimum is {format_duration(min_seconds)}."
        )

    if duration_seconds > max_seconds:
        raise DurationParseError(
            f"{label} too long: {format_duration(duration_seconds)}. "
            f"Maximum is {format_duration(max_seconds)}."
        )


def format_duration(seconds: int) -> str:
    """Render seconds as a short human-readable string ("5 minutes", "1 day")."""
    for unit_name, unit_seconds in (("day", 86400), ("hour", 3600), ("minute", 60)):
        if seconds >= unit_seconds and seconds % unit_seconds == 0:
            count = seconds // unit_seconds
            return f"{count} {unit_name}{'s' if count != 1 else ''}"
    return f"{seconds} second{'s' if seconds != 1 else ''}"
