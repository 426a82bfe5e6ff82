"""HTTP client with conditional "mirror" semantics.

``MirrorClient.mirror()`` fetches a URL into a local file only when the
remote copy is newer than the local one, keeping the remote
``Last-Modified`` time on the written file so the next run can send a
matching ``If-Modified-Since``.
"""

import logging
import os
import tempfile
from dataclasses import dataclass
from email.utils import formatdate, parsedate_to_datetime
from enum import Enum
from pathlib import Path

import requests
from urllib3.exceptions import HTTPError as Urllib3Error

from .. import __version__
from ..config import MirrorConfig

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
FILE_MODE = 0o644


class FetchStatus(str, Enum):
    """Outcome of one conditional fetch."""

    UPDATED = "updated"
    NOT_MODIFIED = "not_modified"
    FAILED = "failed"


@dataclass(frozen=True)
class FetchResult:
    """Result of ``MirrorClient.mirror``.

    Attributes:
        status: What happened to the local file.
        code: HTTP status code, or ``None`` when no response was obtained.
        error: Error description for failed fetches.
    """

    status: FetchStatus
    code: int | None = None
    error: str | None = None

    @property
    def is_transport_error(self) -> bool:
        return self.status is FetchStatus.FAILED and self.code is None


class MirrorClient:
    def __init__(self, config: MirrorConfig):
        self.config = config
        self.user_agent = f"minicpan/{__version__}"
        self._session: requests.Session | None = None

    @property
    def session(self) -> requests.Session:
        """Get or create the shared requests.Session."""
        if self._session is None:
            self._session = self._create_session()
        return self._session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.headers["User-Agent"] = self.user_agent
        # Archives are stored exactly as served, never transfer-decoded
        session.headers["Accept-Encoding"] = "identity"
        if self.config.no_conn_cache:
            session.headers["Connection"] = "close"
        return session

    def close(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None

    def head_ok(self, url: str) -> bool:
        """
        Return True if a HEAD request for *url* succeeds.
        """
        try:
            response = self.session.head(
                url, timeout=self.config.timeout, allow_redirects=True
            )
        except requests.RequestException as exc:
            logger.debug("HEAD %s failed: %s", url, exc)
            return False
        return 200 <= response.status_code < 300

    def mirror(self, url: str, local_path: Path) -> FetchResult:
        """
        Fetch *url* into *local_path* unless the local copy is current.

        Sends ``If-Modified-Since`` built from the local file's mtime.  The
        body is streamed to a temporary file next to the target and moved
        into place only once it is complete, so an interrupted download
        never leaves a truncated file under the real name.
        """
        headers = {}
        if local_path.exists():
            mtime = local_path.stat().st_mtime
            headers["If-Modified-Since"] = formatdate(mtime, usegmt=True)

        try:
            response = self.session.get(
                url,
                headers=headers,
                stream=True,
                timeout=self.config.timeout,
            )
        except requests.RequestException as exc:
            return FetchResult(FetchStatus.FAILED, error=str(exc))

        try:
            if response.status_code == 304:
                return FetchResult(FetchStatus.NOT_MODIFIED, code=304)

            if not (200 <= response.status_code < 300):
                return FetchResult(
                    FetchStatus.FAILED,
                    code=response.status_code,
                    error=f"{response.status_code} {response.reason}",
                )

            try:
                self._write_atomically(response, local_path)
            except (
                requests.RequestException, Urllib3Error, OSError, ValueError
            ) as exc:
                return FetchResult(FetchStatus.FAILED, error=str(exc))
        finally:
            response.close()

        self._apply_last_modified(response, local_path)
        return FetchResult(FetchStatus.UPDATED, code=response.status_code)

    def _write_atomically(
        self, response: requests.Response, local_path: Path
    ) -> int:
        """Stream the raw response body into *local_path*.

        Bytes are written as they came off the wire, even when the server
        labels a ``.gz`` file with ``Content-Encoding: gzip``.  Returns the
        number of bytes written.
        """
        fd, tmp_path = tempfile.mkstemp(
            dir=str(local_path.parent), prefix=".minicpan-", suffix=".tmp"
        )
        written = 0
        try:
            with os.fdopen(fd, "wb") as fh:
                for chunk in response.raw.stream(CHUNK_SIZE, decode_content=False):
                    if chunk:
                        fh.write(chunk)
                        written += len(chunk)

            expected = response.headers.get("Content-Length")
            if expected is not None and int(expected) != written:
                raise ValueError(
                    f"short read: got {written} of {expected} bytes"
                )

            os.chmod(tmp_path, FILE_MODE)
            os.replace(tmp_path, local_path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise
        return written

    @staticmethod
    def _apply_last_modified(
        response: requests.Response, local_path: Path
    ) -> None:
        last_modified = response.headers.get("Last-Modified")
        if not last_modified:
            return
        try:
            timestamp = parsedate_to_datetime(last_modified).timestamp()
        except (TypeError, ValueError):
            logger.debug(
                "Ignoring unparseable Last-Modified %r for %s",
                last_modified,
                local_path,
            )
            return
        os.utime(local_path, (timestamp, timestamp))
