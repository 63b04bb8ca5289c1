"""
Pytest configuration and fixtures for flowpack tests.
"""

import logging
import pathlib
import sys
from collections.abc import Callable

import pytest

# Add the repository root to path so `import flowpack` works without installing.
repo_root = pathlib.Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from flowpack.context import RuntimeContext  # noqa: E402
from flowpack.paths import resolve_paths  # noqa: E402
from flowpack.runmode import RunMode  # noqa: E402


@pytest.fixture(autouse=True)
def reset_flowpack_logger():
    """Undo configure_logging() so caplog sees flowpack records in every test."""
    yield
    logger = logging.getLogger("flowpack")
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def project(tmp_path: pathlib.Path) -> pathlib.Path:
    """A small flow project with user data, locales, resources and flows."""
    root = tmp_path / "hello_flows"
    root.mkdir()
    (root / "launcher.py").write_text(
        'import localmod\n\nPROJECT = "{FLOWPACK_PROJECT_DIR}"\n\nprint(localmod.GREETING, PROJECT)\n',
        encoding="utf-8",
    )
    (root / "localmod.py").write_text('GREETING = "hello"\n', encoding="utf-8")

    user = root / ".flowpack"
    (user / "lib" / "flows").mkdir(parents=True)
    (user / "flows_cred.json").write_text('{"secret": "x"}\n', encoding="utf-8")
    (user / ".sessions.json").write_text('{"token": "abc"}\n', encoding="utf-8")

    locales = root / "locales" / "en-US"
    locales.mkdir(parents=True)
    (locales / "messages.json").write_text('{"hello": "Hello"}\n', encoding="utf-8")

    resources = root / "resources"
    resources.mkdir()
    (resources / "flowpack.css").write_text("body {}\n", encoding="utf-8")

    (root / "flows.json").write_text('[{"id": "n1", "type": "inject"}]\n', encoding="utf-8")
    return root


@pytest.fixture
def deps_dir(tmp_path: pathlib.Path) -> pathlib.Path:
    """An installed-packages directory holding a fake flow runtime."""
    deps = tmp_path / "deps"
    runtime = deps / "flow_runtime"
    network = runtime / "nodes" / "core" / "network"
    network.mkdir(parents=True)
    (runtime / "__init__.py").write_text("", encoding="utf-8")
    (runtime / "package.json").write_text('{"version": "1.0.0"}\n', encoding="utf-8")
    (runtime / "nodes" / "__init__.py").write_text("", encoding="utf-8")
    (network / "http_request.py").write_text(
        "import asyncio\n"
        "import importlib\n\n\n"
        "async def load():\n"
        '    httpx = await asyncio.to_thread(importlib.import_module, "httpx")\n'
        "    return httpx\n",
        encoding="utf-8",
    )
    editor = runtime / "editor"
    editor.mkdir()
    (editor / "index.html").write_text("<html></html>\n", encoding="utf-8")
    return deps


@pytest.fixture
def make_context(tmp_path: pathlib.Path) -> Callable[[RunMode], RuntimeContext]:
    """Factory for runtime contexts rooted in tmp_path."""

    def _make(mode: RunMode) -> RuntimeContext:
        source_dir = tmp_path / "src"
        exec_dir = tmp_path / "exe"
        snapshot = tmp_path / "snapshot" / "proj" / "build"
        source_dir.mkdir(parents=True, exist_ok=True)
        exec_dir.mkdir(parents=True, exist_ok=True)
        snapshot.mkdir(parents=True, exist_ok=True)
        return RuntimeContext(
            mode=mode,
            paths=resolve_paths(
                mode,
                source_dir=source_dir,
                exec_dir=exec_dir,
                snapshot=snapshot,
                project_name="proj",
            ),
            project_name="proj",
            source_dir=source_dir,
            exec_dir=exec_dir,
            snapshot=snapshot,
        )

    return _make
