"""HTTP and index-reading collaborators used by the mirror engine."""

from .client import FetchResult, FetchStatus, MirrorClient
from .index import IndexEntry, open_compressed, parse_package_index

__all__ = [
    "FetchResult",
    "FetchStatus",
    "IndexEntry",
    "MirrorClient",
    "open_compressed",
    "parse_package_index",
]
