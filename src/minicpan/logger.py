import json
import logging
import sys

from .validators import LOG_LEVELS

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
STDERR_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
FILE_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s %(message)s"


class JsonFormatter(logging.Formatter):
    """One JSON object per line: ts, level, logger, msg and, if any, exc."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def resolve_level(level: str) -> int:
    """Map a verbosity name (debug, info, warn, fatal, ...) to a logging level.

    Raises:
        ValueError: If the name is not a known verbosity.
    """
    try:
        return LOG_LEVELS[level.strip().lower()]
    except KeyError:
        raise ValueError(f"unknown logging level: {level}") from None


def _formatter(debug_format: str, text_format: str) -> logging.Formatter:
    if debug_format == "json":
        return JsonFormatter(datefmt=DATE_FORMAT)
    return logging.Formatter(text_format, datefmt=DATE_FORMAT)


def setup_logging(
    level: str = "info",
    log_file: str | None = None,
    debug_format: str = "text",
) -> None:
    """
    Configure logging for a mirror run.

    Progress and per-file warnings go to stderr.  With a log_file the
    same records are appended there too, tagged with the logger name.

    Args:
        level: Verbosity name: debug, info, warn or fatal.
        log_file: Optional log file path.
        debug_format: "text" (default) or "json" for structured output.
    """
    log_level = resolve_level(level)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(_formatter(debug_format, STDERR_FORMAT))
    handlers: list[logging.Handler] = [stderr_handler]

    if log_file:
        file_handler = logging.FileHandler(log_file, mode="a")
        file_handler.setFormatter(_formatter(debug_format, FILE_FORMAT))
        handlers.append(file_handler)

    logging.basicConfig(
        level=log_level,
        handlers=handlers,
        force=True,
    )

    # Silence third-party libs unless DEBUG
    if log_level != logging.DEBUG:
        for name in ("urllib3", "requests"):
            logging.getLogger(name).setLevel(logging.WARNING)
