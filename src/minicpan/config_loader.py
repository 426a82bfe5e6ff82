"""
Config file discovery and loading for minicpan.

Two formats are understood: YAML files (``.yml``/``.yaml``) with an
``!include`` tag and ``${VAR}`` interpolation, and the legacy
``.minicpanrc`` file of ``key: value`` lines.  Every discovered file is
loaded and merged section by section, the more specific file winning.

Usage:
    from minicpan.config_loader import load_hierarchical_config

    raw = load_hierarchical_config()
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# 1. Env var interpolation
# ---------------------------------------------------------------------------

# ${NAME} or ${NAME:-fallback}
_ENV_REF = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


def interpolate_env_vars(value: str) -> str:
    """Expand ``${NAME}`` and ``${NAME:-fallback}`` references in *value*.

    An unset or empty variable expands to its fallback, or to ``""`` when
    there is none.  An unterminated ``${`` is kept as written.
    """

    def _expand(match: re.Match) -> str:
        name, fallback = match.group(1), match.group(2)
        current = os.environ.get(name)
        if current:
            return current
        return fallback if fallback is not None else ""

    return _ENV_REF.sub(_expand, value)


def _interpolate_recursive(obj: Any) -> Any:
    """Apply ``interpolate_env_vars`` to every string in a nested structure."""
    if isinstance(obj, dict):
        return {key: _interpolate_recursive(val) for key, val in obj.items()}
    if isinstance(obj, list):
        return [_interpolate_recursive(item) for item in obj]
    if isinstance(obj, str):
        return interpolate_env_vars(obj)
    return obj


# ---------------------------------------------------------------------------
# 2. YAML !include support
# ---------------------------------------------------------------------------


class ConfigLoader(yaml.SafeLoader):
    """SafeLoader that understands ``!include other.yml``.

    The tag is registered on this subclass only; plain ``yaml.safe_load``
    keeps rejecting it.  Each loader carries the chain of files being
    loaded so a file that includes itself, directly or not, is reported.
    """


def _include_constructor(loader: ConfigLoader, node: yaml.ScalarNode) -> Any:
    """Load the file named by an ``!include`` tag in place of the tag."""
    including_file = Path(loader.name).resolve()
    target = Path(loader.construct_scalar(node))
    if not target.is_absolute():
        target = including_file.parent / target
    target = target.resolve()

    chain: list[Path] = getattr(loader, "_include_stack", [])
    if target in chain:
        cycle = " -> ".join(str(p) for p in [*chain, target])
        raise ValueError(f"Circular include detected: {cycle}")

    if not target.exists():
        raise FileNotFoundError(
            f"Include file not found: {target} (referenced from {including_file})"
        )

    return _load_yaml_with_includes(target, _include_stack=[*chain, target])


ConfigLoader.add_constructor("!include", _include_constructor)


def _load_yaml_with_includes(
    path: Path,
    *,
    _include_stack: list[Path] | None = None,
) -> Any:
    """Parse one YAML document from *path*, following ``!include`` tags."""
    path = path.resolve()

    with open(path, encoding="utf-8") as fh:
        loader = ConfigLoader(fh)
        loader._include_stack = _include_stack or [path]  # type: ignore[attr-defined]
        try:
            return loader.get_single_data()
        finally:
            loader.dispose()


# ---------------------------------------------------------------------------
# 3. Legacy .minicpanrc format
# ---------------------------------------------------------------------------

_RC_LINE = re.compile(r"\A(\w+):\s*(\S.*?)\s*\Z")

MULTIVALUE_KEYS = ("also_mirror", "module_filters", "path_filters")


def read_minicpanrc(path: Path) -> dict[str, Any]:
    """Parse a ``.minicpanrc`` file of ``key: value`` lines.

    Blank and unparseable lines are ignored.  The multi-valued keys
    (``also_mirror``, ``module_filters``, ``path_filters``) are split on
    whitespace and accumulate across repeated lines; every other key keeps
    the last value seen.  Filter values stay strings; they are compiled
    into regexes by the filter chain.

    Returns:
        Flat dict suitable for the ``mirror`` config section.
    """
    config: dict[str, Any] = {key: [] for key in MULTIVALUE_KEYS}

    with open(path, encoding="utf-8") as fh:
        for line in fh:
            line = line.rstrip("\n")
            if not line.strip():
                continue

            match = _RC_LINE.match(line)
            if not match:
                logger.debug("Ignoring unparseable line in %s: %r", path, line)
                continue

            key, value = match.group(1), match.group(2)
            if key in MULTIVALUE_KEYS:
                config[key].extend(v for v in value.split() if v)
            else:
                config[key] = value

    for key in MULTIVALUE_KEYS:
        if not config[key]:
            del config[key]

    return config


# ---------------------------------------------------------------------------
# 4. Convention-based file discovery
# ---------------------------------------------------------------------------


def _home() -> Path | None:
    try:
        return Path.home()
    except RuntimeError:
        return None


def discover_config_files(explicit: str | None = None) -> list[Path]:
    """Return existing config file paths in precedence order (highest first).

    Search order:
        1. *explicit* (the ``--config`` CLI option).
        2. ``MINICPAN_CONFIG`` env var.  For backward compatibility,
           ``CPAN_MINI_CONFIG`` is also accepted with a deprecation warning.
        3. ``.minicpan/config.yml`` in CWD (project-level)
        4. ``.minicpan/config.yaml`` in CWD (alternate extension)
        5. ``~/.config/minicpan/config.yml`` (XDG global)
        6. ``~/.minicpanrc`` (legacy key/value format)

    Only paths that exist on disk are returned.
    """
    candidates: list[Path] = []

    if explicit:
        candidates.append(Path(explicit).expanduser().resolve())

    env_path = os.environ.get("MINICPAN_CONFIG")
    if not env_path:
        env_path = os.environ.get("CPAN_MINI_CONFIG")
        if env_path:
            logger.warning(
                "CPAN_MINI_CONFIG is deprecated; "
                "use MINICPAN_CONFIG instead"
            )
    if env_path:
        candidates.append(Path(env_path).expanduser().resolve())

    cwd = Path.cwd()
    candidates.append(cwd / ".minicpan" / "config.yml")
    candidates.append(cwd / ".minicpan" / "config.yaml")

    home = _home()
    if home is not None:
        candidates.append(home / ".config" / "minicpan" / "config.yml")
        candidates.append(home / ".minicpanrc")

    seen: set[Path] = set()
    found: list[Path] = []
    for path in candidates:
        if path in seen or not path.exists():
            continue
        seen.add(path)
        found.append(path)
    return found


# ---------------------------------------------------------------------------
# 4a. Config bootstrapping
# ---------------------------------------------------------------------------

_STARTER_CONFIG = """\
# minicpan configuration
#
# Mirror settings can also be set via environment variables:
#   MINICPAN_LOCAL, MINICPAN_REMOTE, MINICPAN_FORCE, MINICPAN_OFFLINE
#
# mirror:
#   local: ~/minicpan
#   remote: https://www.cpan.org/
#   exact_mirror: false
#   skip_cleanup: false
#   ignore_source_control: false
#   perl: false
#   dirmode: "0711"
#   timeout: 60
#   also_mirror:
#     - indices/mirrors.json
#   path_filters:
#     - "/RJBS/"
#   module_filters:
#     - "^Acme::"
#
# logging:
#   level: info
#   file: null
#   format: text
"""


def resolve_config_path() -> Path:
    """Path of the config file in effect, existing or not.

    The highest-precedence discovered file, or
    ``./.minicpan/config.yml`` when there is none.  Nothing is created.
    """
    found = discover_config_files()
    return found[0] if found else Path.cwd() / ".minicpan" / "config.yml"


def ensure_config(target: Path | None = None) -> Path:
    """Return the config file in effect, writing a starter file if none exists.

    Args:
        target: Where to write the starter file.  Defaults to
            ``resolve_config_path()``.  When given, only *target* itself
            counts as an existing config.
    """
    if target is not None:
        found = [target] if target.exists() else []
    else:
        found = discover_config_files()
    if found:
        logger.debug("Using existing config file %s", found[0])
        return found[0]

    path = target or resolve_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(_STARTER_CONFIG, encoding="utf-8")
    logger.info("Created starter config: %s", path)
    return path


# ---------------------------------------------------------------------------
# 5. Hierarchical merge
# ---------------------------------------------------------------------------


def load_config_file(path: Path) -> Any:
    """Load one config file, picking the parser from the file name.

    ``.yml``/``.yaml`` files are YAML; anything else is read as a legacy
    ``.minicpanrc`` and wrapped into a ``mirror`` section.
    """
    if path.suffix in (".yml", ".yaml"):
        return _load_yaml_with_includes(path)
    return {"mirror": read_minicpanrc(path)}


def load_hierarchical_config(explicit: str | None = None) -> dict[str, Any]:
    """Load every discovered config file and merge them.

    Files are applied from the least specific to the most specific.  A
    top-level section (``mirror``, ``logging``) from a more specific file
    replaces the same section from a less specific one as a whole; keys
    are not merged inside a section.  ``${VAR}`` references are expanded
    after merging.

    Args:
        explicit: Config file named on the command line, if any.

    Returns:
        The merged raw config, ``{}`` when no file exists.
    """
    merged: dict[str, Any] = {}

    for path in reversed(discover_config_files(explicit)):
        logger.debug("Loading config: %s", path)
        try:
            data = load_config_file(path)
        except Exception:
            logger.exception("Failed to load config file %s", path)
            raise

        if isinstance(data, dict):
            merged.update(data)
        elif data is not None:
            logger.warning(
                "Ignoring config file %s: top level is a %s, not a mapping",
                path,
                type(data).__name__,
            )

    if not merged:
        logger.debug("No config values found, using built-in defaults")
        return {}

    return _interpolate_recursive(merged)
