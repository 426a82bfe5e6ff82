"""Run-scoped state for one mirror update.

A ``MirrorSession`` owns everything that changes while a run is in
progress: the per-file marks consulted by the cleanup pass, the set of
files written this run, and the private staging directory the indices
are downloaded into.  Nothing here outlives the run except the ``RECENT``
manifest written by ``write_recent()``.

Key design choices:

* **Marks only go up** -- ``promote()`` ignores a lower mark, so a file
  verified against the remote is never downgraded to merely "checked".
* **Lazy scratch dir** -- the staging directory is created on first use
  and removed by ``close()``; the session is a context manager.
* **Atomic manifest** -- ``write_recent()`` writes to a temp file then
  calls ``os.replace()`` so readers never see a partial list.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path

from ..errors import MirrorError
from .models import MirrorMark

logger = logging.getLogger(__name__)

FILE_MODE = 0o644


class MirrorSession:
    """State for a single ``update_mirror`` run.

    Args:
        local_root: Absolute path of the local mirror.
        remote_base: Remote base URL, ending in ``/``.
    """

    def __init__(self, local_root: Path, remote_base: str) -> None:
        self.local_root = local_root
        self.remote_base = remote_base
        self.mirrored: dict[Path, MirrorMark] = {}
        self.recent: set[str] = set()
        self.changes_made = 0
        self.failed: list[str] = []
        self.removed: list[str] = []
        self._scratch_dir: Path | None = None

    def __enter__(self) -> MirrorSession:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Staging area
    # ------------------------------------------------------------------

    @property
    def scratch_dir(self) -> Path:
        """Private staging directory, created on first access."""
        if self._scratch_dir is None:
            self._scratch_dir = Path(tempfile.mkdtemp(prefix="minicpan-"))
            logger.debug("Created scratch dir %s", self._scratch_dir)
        return self._scratch_dir

    def close(self) -> None:
        """Remove the staging directory.  Safe to call more than once."""
        if self._scratch_dir is not None:
            shutil.rmtree(self._scratch_dir, ignore_errors=True)
            logger.debug("Removed scratch dir %s", self._scratch_dir)
            self._scratch_dir = None

    # ------------------------------------------------------------------
    # Marks
    # ------------------------------------------------------------------

    def mark_of(self, local_file: Path) -> int:
        """Current mark of *local_file*, ``0`` if it has none."""
        return self.mirrored.get(local_file, 0)

    def promote(self, local_file: Path, mark: MirrorMark) -> None:
        """Raise the mark of *local_file* to at least *mark*."""
        if mark > self.mark_of(local_file):
            self.mirrored[local_file] = mark

    def is_mirrored(self, local_file: Path) -> bool:
        return local_file in self.mirrored

    # ------------------------------------------------------------------
    # Change tracking
    # ------------------------------------------------------------------

    def record_update(self, rel_path: str) -> None:
        """Note that *rel_path* was written with new content this run."""
        self.recent.add(rel_path)
        self.changes_made += 1

    def write_recent(self, target: Path) -> bool:
        """Write the sorted recent-updates list to *target*.

        Nothing is written when no file changed.

        Returns:
            ``True`` if the manifest was written.

        Raises:
            MirrorError: If the manifest cannot be written.
        """
        if not self.recent:
            return False

        try:
            fd, tmp_path = tempfile.mkstemp(
                dir=str(target.parent), prefix=".RECENT-", suffix=".tmp"
            )
        except OSError as exc:
            raise MirrorError(f"can't write to {target}: {exc}") from exc

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                for rel_path in sorted(self.recent):
                    fh.write(f"{rel_path}\n")
            os.chmod(tmp_path, FILE_MODE)
            os.replace(tmp_path, target)
        except OSError as exc:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise MirrorError(f"can't write to {target}: {exc}") from exc
        return True
