"""Data contracts for the mirror engine.

- ``MirrorMark``: Per-file state tracked for one run.
- ``MirrorReport``: Aggregate results for a full mirror run.
- ``MirrorBackend``: What the command line needs from an engine.
"""

from __future__ import annotations

from enum import IntEnum
from typing import Protocol

from pydantic import BaseModel


class MirrorMark(IntEnum):
    """How far a local file has been verified during the current run.

    Marks are ordered; a file's mark only ever goes up.
    """

    CHECKED = 1  # known present and acceptable, not contacted remotely
    FETCHED = 2  # verified against the remote this run


class MirrorReport(BaseModel):
    """Aggregate report for a full mirror run.

    Attributes:
        local: Local mirror root.
        remote: Remote base URL.
        changes_made: Number of files actually updated.
        updated: Sorted relative paths written this run.
        removed: Files deleted by the cleanup pass.
        failed: Relative paths whose fetch failed.
        offline: True when the run was skipped because of offline mode.
        short_circuited: True when the indices were unchanged and the
            archive phase was skipped.
        started_at: ISO 8601 timestamp when the run started.
        completed_at: ISO 8601 timestamp when the run completed.
    """

    local: str
    remote: str
    changes_made: int = 0
    updated: list[str] = []
    removed: list[str] = []
    failed: list[str] = []
    offline: bool = False
    short_circuited: bool = False
    started_at: str
    completed_at: str | None = None

    model_config = {"frozen": True}

    def summary(self) -> str:
        """Format a human-readable summary of the mirror run.

        Returns:
            Multi-line summary string with counts.
        """
        if self.offline:
            return f"Offline mode: {self.local} left untouched"

        lines = [f"Mirror report for {self.local} from {self.remote}"]
        if self.short_circuited:
            lines.append("  Indices unchanged; nothing to do")
        lines.extend(
            [
                f"  Updated: {len(self.updated)}",
                f"  Removed: {len(self.removed)}",
                f"  Failed:  {len(self.failed)}",
            ]
        )
        return "\n".join(lines)


class MirrorBackend(Protocol):
    """The capability the command line drives.

    Alternative engines (a dry-run engine, a test double) only need to
    provide these two members.
    """

    log_level: str

    def update_mirror(self) -> int: ...
