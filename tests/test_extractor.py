"""
Tests for lazy archive extraction.
"""

import os
import zipfile

import pytest

from flowpack import extractor
from flowpack.extractor import ExtractionError, ensure_extracted, extract_archive, materialize
from flowpack.packer import ArchiveEntry, pack_directory, remove_session_tokens
from flowpack.runmode import RunMode


def _write_zip(path, members):
    with zipfile.ZipFile(path, "w") as zf:
        for name, data in members.items():
            zf.writestr(name, data)
    return path


class TestExtractArchive:
    """Tests for extract_archive."""

    def test_extracts_members(self, tmp_path):
        archive = _write_zip(tmp_path / "a.dat", {"x.txt": "x", "sub/": "", "sub/y.txt": "y"})
        target = tmp_path / "out"

        assert extract_archive(archive=archive, target=target) is True
        assert (target / "x.txt").read_text() == "x"
        assert (target / "sub" / "y.txt").read_text() == "y"

    @pytest.mark.parametrize("name", ["../evil.txt", "/abs.txt", "c:/drive.txt", "dir\\back.txt"])
    def test_refuses_unsafe_members(self, tmp_path, name):
        archive = _write_zip(tmp_path / "a.dat", {"ok.txt": "ok", name: "bad"})
        target = tmp_path / "out"

        with pytest.raises(ExtractionError):
            extract_archive(archive=archive, target=target)

        assert target.exists() is False
        assert not (tmp_path / "evil.txt").exists()
        assert [p.name for p in tmp_path.iterdir() if ".partial-" in p.name] == []

    def test_corrupt_archive_is_fatal(self, tmp_path):
        archive = tmp_path / "a.dat"
        archive.write_bytes(b"not a zip file")

        with pytest.raises(ExtractionError):
            extract_archive(archive=archive, target=tmp_path / "out")
        assert (tmp_path / "out").exists() is False

    def test_missing_archive_is_fatal(self, tmp_path):
        with pytest.raises(ExtractionError):
            extract_archive(archive=tmp_path / "missing.dat", target=tmp_path / "out")

    def test_losing_a_race_discards_local_copy(self, tmp_path, monkeypatch):
        archive = _write_zip(tmp_path / "a.dat", {"x.txt": "mine"})
        target = tmp_path / "out"

        def rename_after_other_process(src, dst):
            os.mkdir(dst)
            with open(os.path.join(dst, "x.txt"), "w") as f:
                f.write("theirs")
            raise FileExistsError(dst)

        monkeypatch.setattr(extractor.os, "rename", rename_after_other_process)

        assert extract_archive(archive=archive, target=target) is False
        assert (target / "x.txt").read_text() == "theirs"
        assert [p.name for p in tmp_path.iterdir() if ".partial-" in p.name] == []


class TestEnsureExtracted:
    """Tests for ensure_extracted."""

    def test_extraction_is_idempotent(self, tmp_path):
        archive = _write_zip(tmp_path / "a.dat", {"flows.json": "[]"})
        target = tmp_path / "user"

        assert ensure_extracted(archive=archive, target=target) is True
        (target / "flows.json").write_text("[1]")
        (target / "extra.txt").write_text("kept")

        assert ensure_extracted(archive=archive, target=target) is False
        assert (target / "flows.json").read_text() == "[1]"
        assert (target / "extra.txt").read_text() == "kept"

    def test_existing_target_skips_missing_archive(self, tmp_path):
        target = tmp_path / "user"
        target.mkdir()
        assert ensure_extracted(archive=tmp_path / "missing.dat", target=target) is False

    def test_optional_missing_archive_can_create_empty_dir(self, tmp_path, caplog):
        target = tmp_path / "user"
        assert ensure_extracted(
            archive=tmp_path / "missing.dat", target=target, required=False, create_empty=True
        ) is False
        assert target.is_dir() is True
        assert list(target.iterdir()) == []
        assert "not found" in caplog.text

    def test_optional_missing_archive_leaves_dir_absent(self, tmp_path):
        target = tmp_path / "locales"
        assert ensure_extracted(archive=tmp_path / "missing.dat", target=target, required=False) is False
        assert target.exists() is False

    def test_required_missing_archive_is_fatal(self, tmp_path):
        with pytest.raises(ExtractionError):
            ensure_extracted(archive=tmp_path / "missing.dat", target=tmp_path / "user", required=True)


class TestMaterialize:
    """Tests for materialize."""

    def test_design_time_does_nothing(self, make_context):
        ctx = make_context(RunMode.DESIGN_TIME)
        report = materialize(ctx)
        assert report.user_dir_extracted is False
        assert report.locales_extracted is False
        assert ctx.paths.user_dir.exists() is False

    def test_locked_extracts_both_archives(self, make_context):
        ctx = make_context(RunMode.PRODUCTION_LOCKED)
        _write_zip(ctx.user_archive, {"flows_cred.json": "{}"})
        _write_zip(ctx.locales_archive, {"en-US/messages.json": "{}"})

        report = materialize(ctx)

        assert report.user_dir_extracted is True
        assert report.locales_extracted is True
        assert (ctx.paths.user_dir / "flows_cred.json").is_file()
        assert (ctx.paths.locales_dir / "en-US" / "messages.json").is_file()
        assert ctx.paths.user_dir.is_relative_to(ctx.snapshot) is False

    def test_second_start_touches_nothing(self, make_context):
        ctx = make_context(RunMode.PRODUCTION_LOCKED)
        _write_zip(ctx.user_archive, {"a.txt": "a"})
        _write_zip(ctx.locales_archive, {"b.txt": "b"})
        materialize(ctx)
        (ctx.paths.user_dir / "a.txt").write_text("edited")

        report = materialize(ctx)

        assert report.user_dir_extracted is False
        assert report.locales_extracted is False
        assert (ctx.paths.user_dir / "a.txt").read_text() == "edited"

    def test_locked_missing_user_archive_is_fatal(self, make_context):
        ctx = make_context(RunMode.PRODUCTION_LOCKED)
        with pytest.raises(ExtractionError):
            materialize(ctx)

    def test_free_roam_missing_archives(self, make_context):
        ctx = make_context(RunMode.PRODUCTION_FREE_ROAM)

        report = materialize(ctx)

        assert report.user_dir_extracted is False
        assert ctx.paths.user_dir.is_dir() is True
        assert ctx.paths.locales_dir.exists() is False

    def test_locales_extracted_independently(self, make_context):
        ctx = make_context(RunMode.PRODUCTION_FREE_ROAM)
        ctx.paths.user_dir.mkdir(parents=True)
        _write_zip(ctx.locales_archive, {"en-US/messages.json": "{}"})

        report = materialize(ctx)

        assert report.user_dir_extracted is False
        assert report.locales_extracted is True


class TestPackExtractRoundTrip:
    """Packing a user directory and extracting it reproduces the tree."""

    def test_round_trip_without_session_tokens(self, project, tmp_path):
        user_dir = project / ".flowpack"
        assert remove_session_tokens(user_dir) is True
        archive = pack_directory(ArchiveEntry(source_dir=user_dir, archive_path=tmp_path / "user.dat"))

        target = tmp_path / "restored"
        extract_archive(archive=archive, target=target)

        def tree(root):
            return sorted(p.relative_to(root).as_posix() for p in root.rglob("*"))

        assert tree(target) == tree(user_dir)
        assert (target / ".sessions.json").exists() is False
        assert (target / "lib" / "flows").is_dir() is True
        assert (target / "flows_cred.json").read_text() == (user_dir / "flows_cred.json").read_text()
