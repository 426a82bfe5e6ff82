"""Shared pytest fixtures for minicpan tests."""

from __future__ import annotations

import gzip
import os
from pathlib import Path

import pytest

from minicpan.config import MirrorConfig
from minicpan.core.client import FetchResult, FetchStatus

REMOTE = "http://cpan.example.com/"


def pytest_addoption(parser):
    """Add custom CLI options for test filtering."""
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run tests that require a live CPAN mirror",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "live: mark test as requiring a live CPAN mirror"
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live is passed."""
    if config.getoption("--run-live"):
        return
    skip_live = pytest.mark.skip(reason="need --run-live option to run")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


@pytest.fixture(autouse=True)
def _clean_minicpan_env(monkeypatch):
    """Keep MINICPAN_* settings of the developer's shell out of the tests."""
    for key in list(os.environ):
        if key.startswith("MINICPAN_") or key == "CPAN_MINI_CONFIG":
            monkeypatch.delenv(key, raising=False)


# ---------------------------------------------------------------------------
# Index helpers
# ---------------------------------------------------------------------------


def make_packages_index(
    entries: list[tuple[str, str, str]],
    file_header: str = "02packages.details.txt",
) -> bytes:
    """Build a gzip'd ``02packages.details.txt`` from (module, version, path)."""
    lines = [
        f"File:         {file_header}",
        "URL:          http://www.perl.com/CPAN/modules/02packages.details.txt",
        "Description:  Package names found in directory $CPAN/authors/id/",
        "Columns:      package name, version, path",
        f"Line-Count:   {len(entries)}",
        "",
    ]
    lines.extend(f"{m:<30} {v:>8}  {p}" for m, v, p in entries)
    return gzip.compress(("\n".join(lines) + "\n").encode("utf-8"))


def write_packages_index(
    path: Path, entries: list[tuple[str, str, str]], **kwargs
) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(make_packages_index(entries, **kwargs))
    return path


# ---------------------------------------------------------------------------
# Fake remote
# ---------------------------------------------------------------------------


class FakeRemote:
    """In-memory stand-in for ``MirrorClient``.

    Files are stored by path relative to the remote base together with a
    modification time.  ``mirror()`` behaves like a conditional GET: a local
    file at least as new as the remote one is "not modified".
    """

    def __init__(self, base: str = REMOTE) -> None:
        self.base = base
        self.files: dict[str, tuple[bytes, float]] = {}
        self.unreachable: set[str] = set()
        self.reachable = True
        self.fetches: list[str] = []
        self.downloads: list[str] = []
        self.closed = False
        self._clock = 1_600_000_000.0

    def put(self, rel_path: str, content: bytes | str) -> None:
        """Publish *content*; each call is newer than the previous one."""
        if isinstance(content, str):
            content = content.encode("utf-8")
        self._clock += 60
        self.files[rel_path] = (content, self._clock)

    def delete(self, rel_path: str) -> None:
        self.files.pop(rel_path, None)

    def put_index(self, entries: list[tuple[str, str, str]], **kwargs) -> None:
        self.put(
            "modules/02packages.details.txt.gz",
            make_packages_index(entries, **kwargs),
        )

    def publish_standard(self, entries: list[tuple[str, str, str]]) -> None:
        """Publish all three indices plus every archive and CHECKSUMS."""
        self.put("authors/01mailrc.txt.gz", gzip.compress(b"alias X x\n"))
        self.put("modules/03modlist.data.gz", gzip.compress(b"modlist\n"))
        self.put_index(entries)
        for _, _, path in entries:
            rel = f"authors/id/{path}"
            if rel not in self.files:
                self.put(rel, f"archive {path}")
            checksums = rel.rsplit("/", 1)[0] + "/CHECKSUMS"
            if checksums not in self.files:
                self.put(checksums, f"checksums for {checksums}")

    # MirrorClient interface

    def head_ok(self, url: str) -> bool:
        return self.reachable

    def mirror(self, url: str, local_path: Path) -> FetchResult:
        rel_path = url[len(self.base) :]
        self.fetches.append(rel_path)

        if rel_path in self.unreachable:
            return FetchResult(FetchStatus.FAILED, error="connection refused")
        if rel_path not in self.files:
            return FetchResult(FetchStatus.FAILED, code=404, error="404 Not Found")

        content, mtime = self.files[rel_path]
        if local_path.exists() and local_path.stat().st_mtime >= mtime:
            return FetchResult(FetchStatus.NOT_MODIFIED, code=304)

        local_path.write_bytes(content)
        os.utime(local_path, (mtime, mtime))
        self.downloads.append(rel_path)
        return FetchResult(FetchStatus.UPDATED, code=200)

    def close(self) -> None:
        self.closed = True


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mirror_config(tmp_path):
    """MirrorConfig pointing at an empty local root under tmp_path."""
    return MirrorConfig(
        local=str(tmp_path / "minicpan"),
        remote=REMOTE,
    )


@pytest.fixture
def fake_remote():
    return FakeRemote()


@pytest.fixture
def make_engine(mirror_config, fake_remote):
    """Factory building a MirrorEngine wired to the fake remote."""
    from minicpan.mirror.engine import MirrorEngine

    engines = []

    def _make(**overrides):
        for key, value in overrides.items():
            setattr(mirror_config, key, value)
        engine = MirrorEngine(mirror_config, client=fake_remote)
        engines.append(engine)
        return engine

    yield _make

    for engine in engines:
        engine.session.close()
