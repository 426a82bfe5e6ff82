"""Exception types raised by the mirror engine.

Only fatal conditions are raised.  Per-file problems (a failed download,
a file that cannot be removed) are logged where they happen and the run
carries on.
"""


class MirrorError(RuntimeError):
    """A condition that makes the whole mirror run unusable."""


class IndexFormatError(MirrorError):
    """The package index is corrupt, truncated or not the expected file."""
