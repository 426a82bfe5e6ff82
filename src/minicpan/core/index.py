"""Streaming reader for ``02packages.details.txt.gz``.

The package index is a gzip'd text file: a block of ``Header: value``
lines, a blank line, then one ``Module  Version  path`` line per package.
Everything here is lazy so the full index is never held in memory.
"""

from __future__ import annotations

import gzip
import logging
import zlib
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import NamedTuple

from ..errors import IndexFormatError

logger = logging.getLogger(__name__)

INDEX_FILE_NAMES = ("02packages.details.txt", "02packages.details.txt.gz")


class IndexEntry(NamedTuple):
    """One package line of the index.

    ``version`` is the literal string ``"undef"`` for unversioned modules.
    ``path`` is relative to ``authors/id/``.
    """

    module: str
    version: str
    path: str


def open_compressed(path: Path) -> Iterator[str]:
    """Yield decoded text lines from a gzip file, one at a time.

    Raises:
        IndexFormatError: If the file is missing or is not valid gzip data.
    """
    try:
        with gzip.open(path, "rt", encoding="utf-8", errors="replace") as fh:
            yield from fh
    except FileNotFoundError:
        raise IndexFormatError(f"Cannot open details: {path} not found") from None
    except (OSError, EOFError, zlib.error) as exc:
        raise IndexFormatError(f"Cannot read details {path}: {exc}") from exc


def parse_package_index(
    lines: Iterable[str], validate_header: bool = True
) -> Iterator[IndexEntry]:
    """Parse package index lines into ``IndexEntry`` tuples.

    The header block runs until the first blank line.  When
    *validate_header* is set, one of its lines must be
    ``File: 02packages.details.txt`` (or the ``.gz`` name); otherwise the
    first body line raises ``IndexFormatError`` so a corrupt or wrong
    download is never mistaken for an empty index.

    Raises:
        IndexFormatError: On a missing/mismatched ``File:`` header or a body
            line that does not have exactly three fields.
    """
    in_header = True
    file_ok = not validate_header

    for lineno, line in enumerate(lines, start=1):
        if in_header:
            if line.strip():
                header, _, value = line.partition(":")
                if header == "File" and value.strip() in INDEX_FILE_NAMES:
                    file_ok = True
            else:
                in_header = False
            continue

        if not file_ok:
            raise IndexFormatError(
                "02packages.details.txt file is not a valid index"
            )

        fields = line.split()
        if not fields:
            continue
        if len(fields) != 3:
            raise IndexFormatError(
                f"malformed index line {lineno}: expected 3 fields, "
                f"got {len(fields)}: {line.rstrip()!r}"
            )

        yield IndexEntry(*fields)
