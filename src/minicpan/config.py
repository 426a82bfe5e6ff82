"""Mirror configuration.

Reads mirror settings from CLI args, environment variables, .env files,
and config file fallbacks (YAML or legacy ``.minicpanrc``).

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > config files > Built-in defaults

Environment variables:
    MINICPAN_LOCAL: Local mirror directory (required)
    MINICPAN_REMOTE: Remote CPAN mirror URL (required)
    MINICPAN_FORCE: Check every distribution even if indices are unchanged
    MINICPAN_OFFLINE: Do not contact the remote mirror
    MINICPAN_EXACT_MIRROR: Never delete unmirrored files
    MINICPAN_SKIP_CLEANUP: Skip the cleanup pass
    MINICPAN_IGNORE_SOURCE_CONTROL: Leave .git/.svn/.cvs alone during cleanup
    MINICPAN_PERL: Also mirror perl and other language distributions
    MINICPAN_NO_CONN_CACHE: Disable HTTP keep-alive
    MINICPAN_TIMEOUT: Per-request timeout in seconds
    MINICPAN_DIRMODE: Octal mode for created directories (default: 0711)
    MINICPAN_LOG_LEVEL: debug, info, warn or fatal (default: info)
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from .validators import (
    parse_dir_mode,
    validate_log_level,
    validate_mirror_path,
)

logger = logging.getLogger(__name__)

DEFAULT_DIR_MODE = 0o711


@dataclass
class MirrorConfig:
    local: str
    remote: str
    force: bool = False
    offline: bool = False
    exact_mirror: bool = False
    skip_cleanup: bool = False
    ignore_source_control: bool = False
    skip_perl: bool = False
    no_conn_cache: bool = False
    # Filter rules: a regex string, compiled pattern, predicate, or a list of them
    path_filters: Any = None
    module_filters: Any = None
    also_mirror: list[str] = field(default_factory=list)
    dir_mode: int = DEFAULT_DIR_MODE
    timeout: float | None = None
    log_level: str = "info"


def home_dir() -> Path:
    """Return the user's home directory.

    Raises:
        ValueError: If it cannot be determined.
    """
    try:
        return Path.home()
    except RuntimeError:
        raise ValueError(
            "couldn't determine your home directory! set HOME env variable"
        ) from None


def expand_local_path(path: str) -> str:
    """Expand a leading ``~`` and make *path* absolute."""
    if path.startswith("~"):
        path = str(home_dir()) + path[1:]
    return os.path.abspath(path)


def validate_config(config: MirrorConfig) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Normalizes in place: ``local`` becomes an absolute path and ``remote``
    always ends with a slash.

    Args:
        config: MirrorConfig instance to validate.

    Raises:
        ValueError: If a required value is missing or malformed.
    """
    if not config.local or not config.local.strip():
        raise ValueError(
            "no local mirror supplied. Set MINICPAN_LOCAL, "
            "pass --local, or add 'local' to the config file."
        )
    config.local = expand_local_path(config.local.strip())

    if not config.remote or not config.remote.strip():
        raise ValueError(
            "no remote mirror supplied. Set MINICPAN_REMOTE, "
            "pass --remote, or add 'remote' to the config file."
        )
    config.remote = config.remote.strip()

    if not config.remote.startswith(("http://", "https://")):
        raise ValueError(
            f"Invalid remote URL '{config.remote}': must start with http:// or https://"
        )

    parsed = urlparse(config.remote)
    if not parsed.hostname:
        raise ValueError(
            f"Invalid remote URL '{config.remote}': URL must include a hostname"
        )

    if not config.remote.endswith("/"):
        config.remote = config.remote + "/"

    is_valid, message = validate_log_level(config.log_level)
    if not is_valid:
        raise ValueError(message)
    config.log_level = config.log_level.strip().lower()

    config.dir_mode = parse_dir_mode(config.dir_mode)

    if config.timeout is not None and config.timeout <= 0:
        raise ValueError(
            f"Invalid timeout '{config.timeout}': must be a positive number of seconds"
        )

    for path in config.also_mirror:
        is_valid, message = validate_mirror_path(path)
        if not is_valid:
            raise ValueError(f"Invalid also_mirror entry '{path}': {message}")

    if config.exact_mirror and not config.skip_cleanup:
        logger.debug("exact_mirror set: cleanup will not delete any file")


def _get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def _resolve_bool(
    cli_value: bool | None, env_key: str, fallback: Any, default: bool
) -> bool:
    """CLI flag (only when set) > env var > config file > default."""
    if cli_value:
        return True
    env_value = _get_bool_env(env_key)
    if env_value is not None:
        return env_value
    if fallback is not None:
        return bool(fallback)
    return default


def load_config(
    overrides: dict[str, Any] | None = None,
    fallbacks: dict[str, Any] | None = None,
) -> MirrorConfig:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI override > env var / .env > config file fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        overrides: Values from the command line.  Keys match the
            ``mirror`` config section (local, remote, force, perl, ...).
        fallbacks: Values from the ``mirror`` section of the config files.

    Returns:
        Validated MirrorConfig instance.

    Raises:
        ValueError: If required config (local, remote) is missing after
            checking all sources, or any value is invalid.
    """
    cli = overrides or {}
    fb = fallbacks or {}

    # --- String fields: CLI > env > config file > error ---

    local = cli.get("local") or os.getenv("MINICPAN_LOCAL") or fb.get("local")
    remote = (
        cli.get("remote") or os.getenv("MINICPAN_REMOTE") or fb.get("remote")
    )

    log_level = (
        cli.get("log_level")
        or os.getenv("MINICPAN_LOG_LEVEL")
        or fb.get("log_level")
        or "info"
    )

    # --- Boolean fields: CLI > env > config file > default ---

    force = _resolve_bool(
        cli.get("force"), "MINICPAN_FORCE", fb.get("force"), False
    )
    offline = _resolve_bool(
        cli.get("offline"), "MINICPAN_OFFLINE", fb.get("offline"), False
    )
    exact_mirror = _resolve_bool(
        cli.get("exact_mirror"),
        "MINICPAN_EXACT_MIRROR",
        fb.get("exact_mirror"),
        False,
    )
    skip_cleanup = _resolve_bool(
        cli.get("skip_cleanup"),
        "MINICPAN_SKIP_CLEANUP",
        fb.get("skip_cleanup"),
        False,
    )
    ignore_source_control = _resolve_bool(
        cli.get("ignore_source_control"),
        "MINICPAN_IGNORE_SOURCE_CONTROL",
        fb.get("ignore_source_control"),
        False,
    )
    no_conn_cache = _resolve_bool(
        cli.get("no_conn_cache"),
        "MINICPAN_NO_CONN_CACHE",
        fb.get("no_conn_cache"),
        False,
    )
    # The command line skips language distributions unless asked for them
    perl = _resolve_bool(cli.get("perl"), "MINICPAN_PERL", fb.get("perl"), False)

    # --- Numeric fields: CLI > env > config file > default ---

    timeout_raw = cli.get("timeout")
    if timeout_raw is None:
        timeout_raw = os.getenv("MINICPAN_TIMEOUT")
    if timeout_raw is None:
        timeout_raw = fb.get("timeout")
    if timeout_raw is not None:
        try:
            timeout: float | None = float(timeout_raw)
        except ValueError:
            raise ValueError(
                f"Invalid timeout '{timeout_raw}': must be a number of seconds"
            ) from None
    else:
        timeout = None

    dir_mode_raw = cli.get("dirmode")
    if dir_mode_raw is None:
        dir_mode_raw = os.getenv("MINICPAN_DIRMODE")
    if dir_mode_raw is None:
        dir_mode_raw = fb.get("dirmode")
    dir_mode = (
        parse_dir_mode(dir_mode_raw)
        if dir_mode_raw is not None
        else DEFAULT_DIR_MODE
    )

    # --- List fields: CLI > config file ---

    also_mirror = list(cli.get("also_mirror") or fb.get("also_mirror") or [])
    path_filters = list(
        cli.get("path_filters") or fb.get("path_filters") or []
    )
    module_filters = list(
        cli.get("module_filters") or fb.get("module_filters") or []
    )

    config = MirrorConfig(
        local=local or "",
        remote=remote or "",
        force=force,
        offline=offline,
        exact_mirror=exact_mirror,
        skip_cleanup=skip_cleanup,
        ignore_source_control=ignore_source_control,
        skip_perl=not perl,
        no_conn_cache=no_conn_cache,
        path_filters=path_filters or None,
        module_filters=module_filters or None,
        also_mirror=also_mirror,
        dir_mode=dir_mode,
        timeout=timeout,
        log_level=log_level,
    )

    validate_config(config)

    return config
