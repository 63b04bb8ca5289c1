"""
Tests for the command line interface and logging setup.
"""

import logging

import pytest

from flowpack import cli
from flowpack.logs import configure_logging


class TestConfigureLogging:
    """Tests for configure_logging."""

    @pytest.mark.parametrize(
        "verbose,quiet,level",
        [
            (0, 0, logging.INFO),
            (1, 0, logging.DEBUG),
            (0, 1, logging.WARNING),
            (0, 2, logging.ERROR),
            (3, 1, logging.WARNING),
        ],
    )
    def test_levels(self, verbose, quiet, level):
        logger = configure_logging(verbose=verbose, quiet=quiet)
        assert logger.name == "flowpack"
        assert logger.level == level
        assert logger.propagate is False
        assert len(logger.handlers) == 1

    def test_reconfigure_replaces_handler(self):
        configure_logging(verbose=0, quiet=0)
        logger = configure_logging(verbose=0, quiet=0)
        assert len(logger.handlers) == 1


class TestBuildCommand:
    """Tests for `flowpack build`."""

    def test_build_succeeds(self, project, deps_dir):
        code = cli.main(
            [
                "build",
                str(project),
                "--deps-dir",
                str(deps_dir),
                "--precompile",
                "flow_runtime",
                "--package-name",
                "hello-app",
                "-q",
            ]
        )

        assert code == 0
        assert (project / "build" / "flowpack_bundle.py").is_file()
        assert (project / "build" / ".flowpack.dat").is_file()
        assert '"name": "hello-app"' in (project / "build" / "package.json").read_text(encoding="utf-8")

    def test_missing_project_exits_1(self, tmp_path):
        assert cli.main(["build", str(tmp_path / "missing"), "-qq"]) == 1

    def test_build_error_exits_1(self, project, deps_dir):
        for path in sorted((project / "locales").rglob("*"), reverse=True):
            path.rmdir() if path.is_dir() else path.unlink()
        (project / "locales").rmdir()

        code = cli.main(["build", str(project), "--deps-dir", str(deps_dir), "--precompile", "flow_runtime", "-qq"])

        assert code == 1
        assert (project / "build" / "package.json").exists() is False

    def test_invalid_output_name_exits_1(self, project, deps_dir):
        code = cli.main(
            [
                "build",
                str(project),
                "--deps-dir",
                str(deps_dir),
                "--precompile",
                "flow_runtime",
                "--output-name",
                "bad.js",
                "-qq",
            ]
        )
        assert code == 1

    def test_command_required(self):
        with pytest.raises(SystemExit):
            cli.main([])

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc:
            cli.main(["--version"])
        assert exc.value.code == 0
        assert "flowpack" in capsys.readouterr().out

    def test_collect_submodules_flag(self, project, deps_dir, monkeypatch):
        seen = {}

        def fake_build(config, *, logger=None):
            seen["config"] = config

        monkeypatch.setattr(cli, "build_executable", fake_build)

        code = cli.main(
            [
                "build",
                str(project),
                "--deps-dir",
                str(deps_dir),
                "--collect-submodules",
                "plugins",
                "--collect-submodules",
                "uvicorn",
                "-qq",
            ]
        )

        assert code == 0
        assert seen["config"].collect_submodules == ("plugins", "uvicorn")
