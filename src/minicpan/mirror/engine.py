"""Mirror engine that orchestrates a full minicpan update.

The ``MirrorEngine`` ties together the HTTP client, the index parser, the
filter chain and the run session into a complete update.  It:

1. Stages the three fixed indices into a private scratch directory.
2. Stops early when no index changed (unless ``force`` is set).
3. Mirrors the configured extra paths.
4. Mirrors every distribution the package index still lists, plus the
   ``CHECKSUMS`` file of each author directory.
5. Installs the staged indices into the local mirror.
6. Writes the ``RECENT`` manifest.
7. Deletes local files the index no longer needs.

Indices are installed only after every archive has been attempted, so a
run killed half-way leaves the old indices behind and the next run sees
them as changed again instead of skipping the archive phase.

Error handling is per-file: a failed download or an undeletable file is
logged and the run carries on.  Anything that makes the mirror unusable
raises ``MirrorError``.
"""

from __future__ import annotations

import logging
import os
import posixpath
import shutil
from datetime import datetime, timezone
from pathlib import Path
from urllib.parse import urljoin, urlparse

from minicpan.config import MirrorConfig, validate_config
from minicpan.core.client import FetchStatus, MirrorClient
from minicpan.core.index import open_compressed, parse_package_index
from minicpan.errors import MirrorError
from minicpan.mirror.filters import FilterChain
from minicpan.mirror.models import MirrorMark, MirrorReport
from minicpan.mirror.session import MirrorSession

logger = logging.getLogger(__name__)

FIXED_INDICES = (
    "authors/01mailrc.txt.gz",
    "modules/02packages.details.txt.gz",
    "modules/03modlist.data.gz",
)
PACKAGES_INDEX = "modules/02packages.details.txt.gz"
RECENT_FILE = "RECENT"
CHECKSUMS_FILE = "CHECKSUMS"

# Left alone, contents included, when ignore_source_control is set
SOURCE_CONTROL_FILES = frozenset(
    {".cvs", ".svn", ".git", ".cvsignore", ".svnignore", ".gitignore"}
)


class MirrorEngine:
    """Build and update a minimal CPAN mirror.

    Args:
        config: The mirror configuration.
        client: HTTP client used for every fetch.  Defaults to a
            ``MirrorClient`` built from *config*.
        check_remote: Probe the remote package index at construction
            time and fail fast if it cannot be reached.

    Raises:
        ValueError: If *config* is invalid.
        MirrorError: If the local root is unusable or the remote is
            unreachable.
    """

    def __init__(
        self,
        config: MirrorConfig,
        client: MirrorClient | None = None,
        check_remote: bool = True,
    ) -> None:
        validate_config(config)
        self.config = config
        self.client = client or MirrorClient(config)
        self.local_root = Path(config.local)
        self.remote = config.remote

        self.filters = FilterChain(
            skip_language_distributions=config.skip_perl,
            path_filters=config.path_filters,
            module_filters=config.module_filters,
        )
        self.session = MirrorSession(self.local_root, self.remote)
        self.last_report: MirrorReport | None = None

        self._prepare_local_root()

        if check_remote and not config.offline:
            test_url = urljoin(self.remote, PACKAGES_INDEX)
            if not self.client.head_ok(test_url):
                raise MirrorError(
                    f"unable to contact the remote mirror {self.remote}"
                )

    @property
    def log_level(self) -> str:
        return self.config.log_level

    def close(self) -> None:
        """Release the scratch directory and the HTTP connection pool."""
        self.session.close()
        self.client.close()

    def __enter__(self) -> MirrorEngine:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    def update_mirror(self) -> int:
        """Bring the local mirror up to date with the remote.

        Returns:
            The number of files updated; ``0`` means nothing new.

        Raises:
            MirrorError: On any fatal condition (see module docstring).
        """
        started_at = datetime.now(timezone.utc).isoformat()

        if self.config.offline:
            logger.info("Offline mode: not updating %s", self.local_root)
            self.last_report = MirrorReport(
                local=str(self.local_root),
                remote=self.remote,
                offline=True,
                started_at=started_at,
                completed_at=datetime.now(timezone.utc).isoformat(),
            )
            return 0

        self.session.close()
        self.session = MirrorSession(self.local_root, self.remote)

        with self.session:
            short_circuited = not self._run()

        session = self.session
        self.last_report = MirrorReport(
            local=str(self.local_root),
            remote=self.remote,
            changes_made=session.changes_made,
            updated=sorted(session.recent),
            removed=list(session.removed),
            failed=list(session.failed),
            short_circuited=short_circuited,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc).isoformat(),
        )
        return session.changes_made

    def _run(self) -> bool:
        """Run every step after the offline check.

        Returns ``False`` when the run stopped at the decision gate.
        """
        if not os.access(self.local_root, os.W_OK):
            raise MirrorError(
                f"local mirror target {self.local_root} is not writable"
            )

        logger.info("Updating %s", self.local_root)
        logger.info("Mirroring from %s", self.remote)
        logger.info("=" * 63)

        self.mirror_indices()

        if not (self.config.force or self.session.changes_made):
            logger.info("Indices unchanged; nothing to mirror")
            return False

        self._mirror_extras()
        for path in self.get_mirror_list():
            self.mirror_file(path, skip_if_present=True)

        self._install_indices()

        self._write_out_recent()

        if not self.config.skip_cleanup:
            self.clean_unmirrored()

        return True

    # ------------------------------------------------------------------
    # Indices
    # ------------------------------------------------------------------

    def mirror_indices(self) -> None:
        """Fetch the fixed indices into the scratch directory.

        Any existing local copy is copied in first, with its timestamps,
        so the fetch is conditional and an unreachable remote still leaves
        the previous index available.
        """
        scratch = self.session.scratch_dir
        self._make_index_dirs(scratch)

        for path in FIXED_INDICES:
            local_file = self._local_path(self.local_root, path)
            scratch_file = self._local_path(scratch, path)

            if local_file.is_file():
                shutil.copy2(local_file, scratch_file)

            self.mirror_file(path, into_staging=True)

    def _install_indices(self) -> None:
        """Copy the staged indices over the local ones."""
        self._make_index_dirs(self.local_root)
        scratch = self.session.scratch_dir

        for path in FIXED_INDICES:
            local_file = self._local_path(self.local_root, path)
            scratch_file = self._local_path(scratch, path)

            if not scratch_file.is_file():
                logger.warning(
                    "%s was never fetched; leaving local copy as is", path
                )
                continue

            local_file.unlink(missing_ok=True)
            shutil.copy2(scratch_file, local_file)
            self.session.promote(local_file, MirrorMark.FETCHED)

    def _make_index_dirs(self, base_dir: Path) -> None:
        for path in FIXED_INDICES:
            self._make_dirs(self._local_path(base_dir, posixpath.dirname(path)))

    def _mirror_extras(self) -> None:
        for path in self.config.also_mirror:
            self.mirror_file(path)

    # ------------------------------------------------------------------
    # Mirror list
    # ------------------------------------------------------------------

    def get_mirror_list(self) -> list[str]:
        """Return the sorted distribution paths the staged index requires.

        Raises:
            IndexFormatError: If the staged package index is missing,
                corrupt, or not a ``02packages.details.txt`` file.
        """
        details = self._local_path(self.session.scratch_dir, PACKAGES_INDEX)

        mirror_list: set[str] = set()
        for entry in parse_package_index(open_compressed(details)):
            if self.filters.filter_module(entry):
                continue
            mirror_list.add(f"authors/id/{entry.path}")

        return sorted(mirror_list)

    # ------------------------------------------------------------------
    # Single-file mirroring
    # ------------------------------------------------------------------

    def mirror_file(
        self,
        path: str,
        skip_if_present: bool = False,
        *,
        into_staging: bool = False,
        update_times: bool = False,
    ) -> None:
        """Mirror one remote file into the local tree.

        Args:
            path: Path relative to the remote base, or a full URL.
            skip_if_present: Trust an existing local file without asking
                the remote.
            into_staging: Write into the scratch directory instead of the
                local mirror.
            update_times: Set the file's mtime to now after an update.

        Files under ``authors/id`` pull in the ``CHECKSUMS`` file of their
        directory.  It is re-fetched whenever the file itself changed.
        Failed downloads are logged and otherwise ignored.
        """
        session = self.session
        remote_url, rel_path = self._resolve(path)
        base = session.scratch_dir if into_staging else self.local_root
        local_file = self._local_path(base, rel_path)

        checksum_might_be_up_to_date = True

        if skip_if_present and local_file.is_file():
            session.promote(local_file, MirrorMark.CHECKED)
        elif session.mark_of(local_file) < MirrorMark.FETCHED:
            session.promote(local_file, MirrorMark.FETCHED)
            self._make_dirs(local_file.parent)

            result = self.client.mirror(remote_url, local_file)

            if result.is_transport_error:
                logger.warning(
                    "%s ... resulted in an HTTP client error: %s",
                    rel_path,
                    result.error,
                )
                session.failed.append(rel_path)
                return
            if result.status is FetchStatus.UPDATED:
                if update_times:
                    os.utime(local_file, None)
                checksum_might_be_up_to_date = False
                session.record_update(rel_path)
                logger.info("%s ... updated", rel_path)
            elif result.status is FetchStatus.NOT_MODIFIED:
                logger.info("%s ... up to date", rel_path)
            else:
                logger.warning(
                    "%s ... resulted in an HTTP error with status %s: %s",
                    rel_path,
                    result.code,
                    result.error,
                )
                session.failed.append(rel_path)
                return

        if rel_path.startswith("authors/id"):
            checksum_path = posixpath.join(
                posixpath.dirname(rel_path), CHECKSUMS_FILE
            )
            if checksum_path != rel_path:
                self.mirror_file(
                    checksum_path,
                    skip_if_present=checksum_might_be_up_to_date,
                )

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def file_allowed(self, file: Path) -> bool:
        """Return ``True`` if *file* may stay even though it was not mirrored.

        Only dot-files and the ``RECENT`` manifest are allowed, unless
        ``exact_mirror`` is set, which allows everything.
        """
        if self.config.exact_mirror:
            return True

        if file == self.local_root / RECENT_FILE:
            return True

        return file.name.startswith(".")

    def clean_unmirrored(self) -> None:
        """Delete every local file that is neither mirrored nor allowed.

        With ``ignore_source_control`` set, ``.git``/``.svn``/``.cvs``
        directories are not descended into and their ignore files are kept.
        """
        ignore_source_control = self.config.ignore_source_control

        for dirpath, dirnames, filenames in os.walk(self.local_root):
            if ignore_source_control:
                dirnames[:] = [
                    d for d in dirnames if d not in SOURCE_CONTROL_FILES
                ]
            dirnames.sort()

            for name in sorted(filenames):
                if ignore_source_control and name in SOURCE_CONTROL_FILES:
                    continue

                file = Path(dirpath) / name
                if not file.is_file() or self.session.is_mirrored(file):
                    continue
                if self.file_allowed(file):
                    continue

                self.clean_file(file)

    def clean_file(self, file: Path) -> bool:
        """Delete *file*; returns ``True`` on success.

        A file that cannot be removed is logged and left in place.
        """
        try:
            file.unlink()
        except OSError as exc:
            logger.warning("%s cannot be removed: %s", file, exc)
            return False

        logger.info("%s removed", file)
        self.session.removed.append(str(file))
        return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _write_out_recent(self) -> None:
        self.session.write_recent(self.local_root / RECENT_FILE)

    def _resolve(self, path: str) -> tuple[str, str]:
        """Return ``(remote_url, relative_path)`` for *path*.

        *path* may be relative to the remote base or a full URL.
        """
        if path.startswith(("http://", "https://")):
            if path.startswith(self.remote):
                return path, path[len(self.remote) :]
            return path, urlparse(path).path.lstrip("/")
        return urljoin(self.remote, path), path

    @staticmethod
    def _local_path(base: Path, rel_path: str) -> Path:
        return base.joinpath(*[part for part in rel_path.split("/") if part])

    def _make_dirs(self, directory: Path) -> None:
        try:
            os.makedirs(directory, mode=self.config.dir_mode, exist_ok=True)
        except OSError as exc:
            raise MirrorError(f"couldn't create {directory}: {exc}") from exc
        logger.debug("Ensured directory %s", directory)

    def _prepare_local_root(self) -> None:
        root = self.local_root
        if root.exists() and not root.is_dir():
            raise MirrorError(
                f"local mirror path {root} exists but is not a directory"
            )
        if not root.exists():
            self._make_dirs(root)
        if not os.access(root, os.W_OK):
            raise MirrorError(f"no write permission to local mirror {root}")
