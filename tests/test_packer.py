"""
Tests for the archive packer and the package descriptor.
"""

import json
import zipfile

import pytest

from flowpack import packer
from flowpack.descriptor import PackageDescriptor, descriptor_for, write_descriptor
from flowpack.errors import BuildError
from flowpack.packer import (
    ArchiveEntry,
    ArchiveError,
    PackResult,
    pack_archives,
    pack_directory,
    remove_session_tokens,
)


class TestRemoveSessionTokens:
    """Tests for remove_session_tokens."""

    def test_removes_file(self, project):
        user_dir = project / ".flowpack"
        assert remove_session_tokens(user_dir) is True
        assert (user_dir / ".sessions.json").exists() is False
        assert (user_dir / "flows_cred.json").exists() is True

    def test_absent_file(self, project):
        user_dir = project / ".flowpack"
        remove_session_tokens(user_dir)
        assert remove_session_tokens(user_dir) is False

    def test_missing_user_dir(self, tmp_path):
        assert remove_session_tokens(tmp_path / "nope") is False


class TestPackDirectory:
    """Tests for pack_directory."""

    def test_stored_with_directory_entries(self, project, tmp_path):
        archive = pack_directory(ArchiveEntry(source_dir=project / ".flowpack", archive_path=tmp_path / "u.dat"))

        with zipfile.ZipFile(archive) as zf:
            names = zf.namelist()
            assert all(info.compress_type == zipfile.ZIP_STORED for info in zf.infolist())

        assert "lib/" in names
        assert "lib/flows/" in names
        assert "flows_cred.json" in names
        assert not any(n.startswith("/") or n.startswith(".flowpack") for n in names)

    def test_no_temp_file_left(self, project, tmp_path):
        pack_directory(ArchiveEntry(source_dir=project / "locales", archive_path=tmp_path / "l.dat"))
        assert sorted(p.name for p in tmp_path.iterdir() if p.suffix == ".tmp") == []

    def test_missing_directory(self, tmp_path):
        with pytest.raises(ArchiveError):
            pack_directory(ArchiveEntry(source_dir=tmp_path / "missing", archive_path=tmp_path / "x.dat"))

    def test_archive_error_is_build_error(self):
        assert issubclass(ArchiveError, BuildError)


class TestPackArchives:
    """Tests for pack_archives."""

    def test_stages_run_in_order_then_copy(self, project, tmp_path, monkeypatch):
        calls = []
        real = packer.pack_directory

        def recording(entry):
            calls.append(entry.source_dir.name)
            return real(entry)

        monkeypatch.setattr(packer, "pack_directory", recording)
        out = tmp_path / "build"

        result = pack_archives(
            [
                ArchiveEntry(source_dir=project / ".flowpack", archive_path=project / ".flowpack.dat"),
                ArchiveEntry(source_dir=project / "locales", archive_path=project / ".locales.dat"),
            ],
            output_dir=out,
            flows_file=project / "flows.json",
        )

        assert calls == [".flowpack", "locales"]
        assert [p.name for p in result.archives] == [".flowpack.dat", ".locales.dat"]
        assert all(p.parent == out and p.is_file() for p in result.archives)
        assert result.flows_file == out / "flows.json"
        assert (out / "flows.json").read_text() == (project / "flows.json").read_text()

    def test_missing_flows_file_is_not_copied(self, project, tmp_path):
        (project / "flows.json").unlink()
        result = pack_archives(
            [ArchiveEntry(source_dir=project / "locales", archive_path=project / ".locales.dat")],
            output_dir=tmp_path / "build",
            flows_file=project / "flows.json",
        )
        assert result.flows_file is None
        assert (tmp_path / "build" / "flows.json").exists() is False

    def test_failed_stage_stops_later_stages(self, project, tmp_path):
        with pytest.raises(ArchiveError):
            pack_archives(
                [
                    ArchiveEntry(source_dir=project / "missing", archive_path=project / ".flowpack.dat"),
                    ArchiveEntry(source_dir=project / "locales", archive_path=project / ".locales.dat"),
                ],
                output_dir=tmp_path / "build",
            )
        assert (project / ".locales.dat").exists() is False
        assert (tmp_path / "build").exists() is False


class TestDescriptor:
    """Tests for the package descriptor."""

    def test_assets_follow_pack_result(self, tmp_path):
        pack = PackResult(
            archives=(tmp_path / ".flowpack.dat", tmp_path / ".locales.dat"),
            flows_file=tmp_path / "flows.json",
        )
        desc = descriptor_for(name="flowpack-app", binary="flowpack_bundle.py", pack=pack)

        assert desc.assets == (
            "./site-packages/**",
            "./resources/**",
            "./.flowpack.dat",
            "./.locales.dat",
            "./flows.json",
        )

    def test_no_flows_file(self, tmp_path):
        pack = PackResult(archives=(tmp_path / ".flowpack.dat",), flows_file=None)
        desc = descriptor_for(name="n", binary="b.py", pack=pack)
        assert "./flows.json" not in desc.assets
        assert "./.locales.dat" not in desc.assets

    def test_write_descriptor_layout(self, tmp_path):
        desc = PackageDescriptor(name="flowpack-app", binary="flowpack_bundle.py", assets=("./a", "./b"))
        path = write_descriptor(desc, tmp_path / "out" / "package.json")

        text = path.read_text(encoding="utf-8")
        assert text.endswith("\n")
        assert json.loads(text) == {
            "name": "flowpack-app",
            "bin": "flowpack_bundle.py",
            "pkg": {"assets": ["./a", "./b"]},
        }
