"""Unified configuration schema for minicpan.

Defines Pydantic models for the config file structure with dedicated
sections for the mirror itself and for logging.

Usage:
    from minicpan.config_schema import UnifiedConfig, build_config

    raw = load_hierarchical_config()
    unified = build_config(raw)
    fallbacks = unified.mirror.model_dump(exclude_none=True)
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class MirrorSection(BaseModel):
    """Mirror settings as they appear in a config file.

    All fields are optional to support zero-config: env vars and CLI args
    can supply them at runtime instead.  Unknown keys (for example the
    ``class`` key of old ``.minicpanrc`` files) are ignored.
    """

    local: str | None = Field(
        default=None, description="Local mirror directory"
    )
    remote: str | None = Field(
        default=None, description="Remote CPAN mirror URL"
    )
    force: bool | None = Field(
        default=None,
        description="Check every distribution even if the indices are unchanged",
    )
    offline: bool | None = Field(
        default=None, description="Do not contact the remote mirror"
    )
    exact_mirror: bool | None = Field(
        default=None, description="Never delete unmirrored files"
    )
    skip_cleanup: bool | None = Field(
        default=None, description="Skip the cleanup pass"
    )
    ignore_source_control: bool | None = Field(
        default=None,
        description="Leave .git/.svn/.cvs files alone during cleanup",
    )
    perl: bool | None = Field(
        default=None,
        description="Also mirror perl, parrot and other language distributions",
    )
    no_conn_cache: bool | None = Field(
        default=None, description="Disable HTTP keep-alive"
    )
    dirmode: str | None = Field(
        default=None, description="Octal mode for created directories"
    )
    timeout: float | None = Field(
        default=None, gt=0, description="Per-request timeout in seconds"
    )
    also_mirror: list[str] = Field(
        default_factory=list,
        description="Extra remote paths mirrored on every run",
    )
    path_filters: list[str] = Field(
        default_factory=list,
        description="Regexes; matching distribution paths are skipped",
    )
    module_filters: list[str] = Field(
        default_factory=list,
        description="Regexes; matching module names are skipped",
    )
    log_level: str | None = Field(
        default=None, description="Verbosity: debug, info, warn or fatal"
    )

    model_config = {"frozen": True}

    @field_validator(
        "also_mirror", "path_filters", "module_filters", mode="before"
    )
    @classmethod
    def _split_scalar(cls, value):
        """Accept a whitespace-separated string where a list is expected."""
        if value is None:
            return []
        if isinstance(value, str):
            return value.split()
        if isinstance(value, list):
            for item in value:
                if isinstance(item, dict):
                    key = next(iter(item), "")
                    raise ValueError(
                        f"entry {key!r} was read as a YAML mapping; "
                        f"quote values containing ':' (e.g. \"^Acme::\")"
                    )
        return value

    @field_validator("dirmode", mode="before")
    @classmethod
    def _dirmode_is_quoted(cls, value):
        """Reject unquoted YAML numbers (``711`` loads as decimal 711)."""
        if isinstance(value, (int, float)):
            raise ValueError(
                f"dirmode {value!r} must be a quoted octal string, "
                f"e.g. dirmode: \"0711\""
            )
        return value


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Verbosity name (debug, info, warn, fatal).
        file: Optional log file path.
        format: "text" or "json".
    """

    level: str | None = Field(default=None, description="Log level")
    file: str | None = Field(default=None, description="Log file path")
    format: str = Field(default="text", description="text or json")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Aggregates all config sections. Every section has sensible defaults,
    so ``UnifiedConfig()`` (zero-config) is always valid.
    """

    mirror: MirrorSection = Field(default_factory=MirrorSection)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Missing sections get their defaults.

    Args:
        raw_data: Merged configuration dictionary.

    Returns:
        Validated ``UnifiedConfig`` instance.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)
