"""Tests for MirrorSession -- marks, change tracking and the staging dir."""

import stat
from pathlib import Path

import pytest

from minicpan.errors import MirrorError
from minicpan.mirror.models import MirrorMark
from minicpan.mirror.session import MirrorSession


@pytest.fixture
def session(tmp_path):
    with MirrorSession(tmp_path, "http://cpan.example.com/") as s:
        yield s


class TestMarks:
    def test_unmarked_file(self, session, tmp_path):
        path = tmp_path / "a"
        assert session.mark_of(path) == 0
        assert session.is_mirrored(path) is False

    def test_promote(self, session, tmp_path):
        path = tmp_path / "a"
        session.promote(path, MirrorMark.CHECKED)
        assert session.mark_of(path) == MirrorMark.CHECKED
        assert session.is_mirrored(path) is True

    def test_marks_never_go_down(self, session, tmp_path):
        path = tmp_path / "a"
        session.promote(path, MirrorMark.FETCHED)
        session.promote(path, MirrorMark.CHECKED)
        assert session.mark_of(path) == MirrorMark.FETCHED

    def test_marks_are_ordered(self):
        assert MirrorMark.CHECKED < MirrorMark.FETCHED


class TestScratchDir:
    def test_created_lazily(self, tmp_path):
        session = MirrorSession(tmp_path, "http://cpan.example.com/")
        assert session._scratch_dir is None

        scratch = session.scratch_dir
        assert scratch.is_dir()
        assert session.scratch_dir == scratch
        session.close()

    def test_removed_on_close(self, tmp_path):
        session = MirrorSession(tmp_path, "http://cpan.example.com/")
        scratch = session.scratch_dir
        (scratch / "file").write_text("x")

        session.close()
        session.close()

        assert not scratch.exists()

    def test_removed_when_context_exits_with_error(self, tmp_path):
        with pytest.raises(RuntimeError):
            with MirrorSession(tmp_path, "http://cpan.example.com/") as session:
                scratch = session.scratch_dir
                raise RuntimeError("boom")
        assert not scratch.exists()


class TestRecent:
    def test_record_update_counts(self, session):
        session.record_update("b")
        session.record_update("a")
        assert session.changes_made == 2
        assert session.recent == {"a", "b"}

    def test_write_recent_sorted(self, session, tmp_path):
        session.record_update("modules/02packages.details.txt.gz")
        session.record_update("authors/id/A/AU/AUTHOR/CHECKSUMS")

        target = tmp_path / "RECENT"
        assert session.write_recent(target) is True

        assert target.read_text() == (
            "authors/id/A/AU/AUTHOR/CHECKSUMS\n"
            "modules/02packages.details.txt.gz\n"
        )
        assert stat.S_IMODE(target.stat().st_mode) == 0o644
        assert not list(tmp_path.glob(".RECENT-*"))

    def test_nothing_written_without_changes(self, session, tmp_path):
        target = tmp_path / "RECENT"
        target.write_text("previous\n")

        assert session.write_recent(target) is False
        assert target.read_text() == "previous\n"

    def test_unwritable_target(self, session, tmp_path):
        session.record_update("a")
        with pytest.raises(MirrorError, match="can't write to"):
            session.write_recent(Path(tmp_path / "missing-dir" / "RECENT"))
