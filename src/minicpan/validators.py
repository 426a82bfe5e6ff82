"""
Input validation functions for minicpan.

Provides validation for log levels, directory modes and mirror-relative
paths so bad settings are rejected before any network or disk I/O.
"""

import logging

# Verbosity names accepted on the command line and in config files,
# mapped to stdlib logging levels.  "fatal" only lets CRITICAL through,
# which is how -qq silences per-file warnings.
LOG_LEVELS: dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
    "critical": logging.CRITICAL,
}


# ---------------------------------------------------------------------------
# Error message formatting helpers
# ---------------------------------------------------------------------------


def format_validation_error(field_name: str, reason: str) -> str:
    """
    Generate consistent error message for validation failures.

    Args:
        field_name: Human-readable field name (e.g., "Log level")
        reason: Description of validation failure (e.g., "cannot be empty")

    Returns:
        Formatted error message string
    """
    return f"{field_name} {reason}"


def validate_log_level(level: str) -> tuple[bool, str]:
    """
    Validate a verbosity name.

    Args:
        level: The level name to validate (case-insensitive)

    Returns:
        Tuple of (is_valid, error_message).
        Returns (True, "") if valid, (False, reason) if invalid.
    """
    if not level or not level.strip():
        return (
            False,
            format_validation_error("Log level", "cannot be empty"),
        )

    if level.strip().lower() not in LOG_LEVELS:
        return (
            False,
            f"unknown logging level: {level}",
        )

    return (True, "")


def parse_dir_mode(value: int | str) -> int:
    """Convert an octal directory mode (``"0711"`` or ``0o711``) to an int.

    Raises:
        ValueError: If the value is not a valid permission mask.
    """
    if isinstance(value, int):
        mode = value
    else:
        text = str(value).strip().lower().removeprefix("0o")
        try:
            mode = int(text, 8)
        except ValueError:
            raise ValueError(
                f"Invalid dirmode '{value}': must be an octal number such as 0711"
            ) from None

    if not (0 <= mode <= 0o7777):
        raise ValueError(
            f"Invalid dirmode '{value}': must be between 0 and 07777"
        )
    return mode


def validate_mirror_path(path: str) -> tuple[bool, str]:
    """
    Validate a path relative to the mirror root (e.g. an also_mirror entry).

    Validation rules:
        - Cannot be empty or whitespace-only
        - Cannot be absolute
        - Cannot contain '..' segments (would escape the mirror root)
        - Cannot have empty path segments (e.g., 'authors//id')
    """
    if not path or not path.strip():
        return (
            False,
            format_validation_error("Mirror path", "cannot be empty"),
        )

    if path.startswith("/"):
        return (
            False,
            format_validation_error("Mirror path", "must be relative"),
        )

    segments = path.split("/")
    if ".." in segments:
        return (
            False,
            format_validation_error("Mirror path", "cannot contain '..'"),
        )

    if "" in segments:
        return (
            False,
            format_validation_error(
                "Mirror path", "cannot have empty path segments"
            ),
        )

    return (True, "")
