"""Command-line entry point for minicpan."""

import argparse
import logging
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from . import __version__
from .config import MirrorConfig, load_config
from .config_loader import ensure_config, load_hierarchical_config
from .config_schema import build_config
from .errors import MirrorError
from .logger import resolve_level, setup_logging
from .mirror.engine import MirrorEngine
from .mirror.models import MirrorBackend

logger = logging.getLogger(__name__)

EngineFactory = Callable[[MirrorConfig], MirrorBackend]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="minicpan",
        description="Build and update a minimal local mirror of CPAN",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Mirror into ~/minicpan from the main CPAN site
  minicpan -l ~/minicpan -r https://www.cpan.org/

  # Settings from ~/.minicpanrc or .minicpan/config.yml, warnings only
  minicpan -q

  # Check every distribution even if the indices did not change
  minicpan -f

  # Keep everything, never delete unmirrored files
  minicpan -x

  # Write a starter .minicpan/config.yml to edit
  minicpan --init-config

Settings can also come from MINICPAN_* environment variables or a .env file.
Command-line options take precedence over both.
        """,
    )

    parser.add_argument(
        "-l",
        "--local",
        help="Local mirror directory (takes precedence over MINICPAN_LOCAL and config files)",
    )
    parser.add_argument(
        "-r",
        "--remote",
        help="Remote CPAN mirror URL (takes precedence over MINICPAN_REMOTE and config files)",
    )
    parser.add_argument(
        "-d",
        "--dirmode",
        help="Octal mode for created directories (default: 0711)",
    )
    parser.add_argument(
        "-t",
        "--timeout",
        type=float,
        help="Per-request timeout in seconds",
    )
    parser.add_argument(
        "-C",
        "--config",
        help="Config file to use (YAML, or .minicpanrc key: value format)",
    )
    parser.add_argument(
        "--init-config",
        action="store_true",
        help="Write a commented starter config file (or the -C path) and exit",
    )
    parser.add_argument(
        "--offline",
        action="store_true",
        help="Do not contact the remote mirror; exit without changes",
    )
    parser.add_argument(
        "-f",
        "--force",
        action="store_true",
        help="Check every distribution even if the indices are unchanged",
    )
    parser.add_argument(
        "-p",
        "--perl",
        action="store_true",
        help="Also mirror perl, parrot and other language distributions",
    )
    parser.add_argument(
        "-x",
        "--exact-mirror",
        action="store_true",
        help="Never delete files that were not mirrored this run",
    )
    parser.add_argument(
        "--skip-cleanup",
        action="store_true",
        help="Skip the cleanup pass",
    )
    parser.add_argument(
        "--ignore-source-control",
        action="store_true",
        help="Leave .git, .svn and .cvs files alone during cleanup",
    )
    parser.add_argument(
        "--no-conn-cache",
        action="store_true",
        help="Open a new HTTP connection for every request",
    )
    parser.add_argument(
        "--also-mirror",
        action="append",
        metavar="PATH",
        help="Extra remote path to mirror on every run (repeatable)",
    )
    parser.add_argument(
        "--path-filter",
        action="append",
        dest="path_filters",
        metavar="REGEX",
        help="Skip distributions whose path matches REGEX (repeatable)",
    )
    parser.add_argument(
        "--module-filter",
        action="append",
        dest="module_filters",
        metavar="REGEX",
        help="Skip packages whose module name matches REGEX (repeatable)",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="count",
        default=0,
        help="Only show warnings; -qq shows only fatal errors",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Show debug output",
    )
    parser.add_argument(
        "--log-level",
        help="Verbosity: debug, info, warn or fatal",
    )
    parser.add_argument(
        "--log-file",
        help="Also append log records to this file",
    )
    parser.add_argument(
        "--log-format",
        choices=("text", "json"),
        help="Log record format (default: text)",
    )
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"minicpan version {__version__}",
    )
    return parser


def _verbosity(args: argparse.Namespace) -> str | None:
    if args.quiet:
        return "warn" if args.quiet == 1 else "fatal"
    if args.debug:
        return "debug"
    return args.log_level


def build_overrides(args: argparse.Namespace) -> dict[str, Any]:
    """Turn parsed arguments into ``load_config`` overrides.

    Only options actually given on the command line are included.
    """
    overrides: dict[str, Any] = {}
    for key in ("local", "remote", "dirmode", "timeout"):
        value = getattr(args, key)
        if value is not None:
            overrides[key] = value

    for key in (
        "offline",
        "force",
        "perl",
        "exact_mirror",
        "skip_cleanup",
        "ignore_source_control",
        "no_conn_cache",
    ):
        if getattr(args, key):
            overrides[key] = True

    for key in ("also_mirror", "path_filters", "module_filters"):
        value = getattr(args, key)
        if value:
            overrides[key] = list(value)

    level = _verbosity(args)
    if level:
        overrides["log_level"] = level

    return overrides


def run(
    argv: list[str] | None = None,
    engine_factory: EngineFactory | None = None,
) -> None:
    """Entry point that handles errors gracefully and parses CLI arguments."""
    parser = build_parser()
    args = parser.parse_args(argv)

    chosen = [
        flag
        for flag, given in (
            ("-q", args.quiet),
            ("--debug", args.debug),
            ("--log-level", args.log_level),
        )
        if given
    ]
    if len(chosen) > 1:
        parser.error(f"only one of {', '.join(chosen)} may be given")

    engine: MirrorBackend | None = None
    try:
        if args.init_config:
            target = Path(args.config).expanduser() if args.config else None
            print(f"Config file: {ensure_config(target)}")
            return

        # .env first so ${VAR} interpolation in config files can use it
        load_dotenv()

        raw = load_hierarchical_config(args.config)
        unified = build_config(raw)

        fallbacks = {
            key: value
            for key, value in unified.mirror.model_dump().items()
            if value is not None and value != []
        }
        if "log_level" not in fallbacks and unified.logging.level:
            fallbacks["log_level"] = unified.logging.level

        overrides = build_overrides(args)
        config = load_config(overrides=overrides, fallbacks=fallbacks)

        setup_logging(
            level=config.log_level,
            log_file=args.log_file or unified.logging.file,
            debug_format=args.log_format or unified.logging.format,
        )
        if overrides:
            logger.debug(
                "Config overrides from CLI: %s", ", ".join(sorted(overrides))
            )

        factory = engine_factory or MirrorEngine
        engine = factory(config)
        engine.update_mirror()

        report = getattr(engine, "last_report", None)
        if report is not None and resolve_level(engine.log_level) <= logging.INFO:
            print(report.summary(), file=sys.stderr)
    except (MirrorError, ValueError, OSError, yaml.YAMLError) as e:
        logger.debug("Mirror run failed", exc_info=True)
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)
    finally:
        close = getattr(engine, "close", None)
        if close is not None:
            close()


if __name__ == "__main__":
    run()
