"""Minimal CPAN mirror engine.

Keeps a local tree holding only the newest distribution of every package
listed in the remote ``02packages.details.txt.gz`` index, plus the three
index files and each author's ``CHECKSUMS``.

Architecture
------------
A run stages the indices first and only touches the local tree once they
have been fetched.  Every file fetched or kept this run is marked in the
session; the cleanup pass deletes whatever is left unmarked.

Modules:

- ``engine``   -- ``MirrorEngine``: orchestrates a full update.
- ``session``  -- ``MirrorSession``: per-run marks, change list, staging dir.
- ``filters``  -- ``FilterChain`` and the ``PatternRule``/``PredicateRule``/
  ``AnyRule`` rule tree.
- ``models``   -- ``MirrorMark``, ``MirrorReport``, ``MirrorBackend``.

Usage example
-------------
::

    from minicpan.config import load_config
    from minicpan.mirror import MirrorEngine

    config = load_config({"local": "~/minicpan", "remote": "https://www.cpan.org/"})
    with MirrorEngine(config) as engine:
        changes = engine.update_mirror()
        print(engine.last_report.summary())
"""

from .engine import MirrorEngine
from .filters import (
    AnyRule,
    FilterChain,
    PatternRule,
    PredicateRule,
    compile_rule,
)
from .models import MirrorBackend, MirrorMark, MirrorReport
from .session import MirrorSession

__all__ = [
    "AnyRule",
    "FilterChain",
    "MirrorBackend",
    "MirrorEngine",
    "MirrorMark",
    "MirrorReport",
    "MirrorSession",
    "PatternRule",
    "PredicateRule",
    "compile_rule",
]
