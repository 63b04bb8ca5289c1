"""Launcher.

Boots the external flow runtime once per process: resolve the run mode and
paths, materialize the embedded archives, merge settings, bind the HTTP
listener, start the runtime, then open the autoload page.
"""

import asyncio
from collections.abc import Callable, Sequence
import logging
import os
import pathlib
import socket
import sys
import time
from typing import Any, Protocol
import webbrowser

import uvicorn

from flowpack import constants
from flowpack.context import RuntimeContext, resolve_context
from flowpack.extractor import ExtractionError, materialize
from flowpack.logs import configure_logging
from flowpack.runmode import RunMode
from flowpack.settings import SETTINGS_FILE, SettingsError, load_settings, runtime_settings


class LaunchError(RuntimeError):
    """Raised when the HTTP listener cannot be brought up."""


class FlowRuntime(Protocol):
    """What the launcher needs from a flow runtime."""

    @property
    def app(self) -> Any:
        """ASGI application serving the admin and node roots."""
        ...

    def init(self, settings: dict[str, Any]) -> None:
        """Configure the runtime before the listener binds."""
        ...

    async def start(self) -> None:
        """Load flows and begin execution."""
        ...


def console_title(ctx: RuntimeContext, settings: dict[str, Any]) -> str:
    """Return the console window title for a run mode.

    :param ctx: Runtime context.
    :param settings: Runtime settings.
    :returns: Title text.
    """

    if ctx.mode is RunMode.PRODUCTION_LOCKED:
        return str(settings.get("consoleTitle") or "Flowpack")
    return f"Flowpack: {ctx.mode.label}"


def set_console_title(title: str, *, stream: Any = None) -> bool:
    """Write the terminal title escape sequence if the stream is a terminal.

    :param title: Title text.
    :param stream: Output stream (defaults to ``sys.stdout``).
    :returns: ``True`` if the sequence was written.
    """

    if stream is None:
        stream = sys.stdout
    isatty = getattr(stream, "isatty", None)
    if isatty is None or isatty() is False:
        return False
    stream.write(f"\x1b]0;{title}\x07")
    stream.flush()
    return True


def base_url(settings: dict[str, Any]) -> str:
    """Loopback URL of the admin root."""

    return f"http://127.0.0.1:{settings['uiPort']}{settings['httpAdminRoot']}"


def resolve_autoload(text: str, base: str) -> str | None:
    """Turn AUTOLOAD file contents into a URL.

    A value starting with ``/`` is relative to the admin root; anything else
    is used as-is.

    :param text: File contents.
    :param base: Base URL (see :func:`base_url`).
    :returns: URL, or ``None`` if the file is blank.
    """

    value: str = text.rstrip()
    if value == "":
        return None
    if value.startswith("/"):
        return base + value[1:]
    return value


def read_autoload(exec_dir: pathlib.Path, *, logger: logging.Logger | None = None) -> str | None:
    """Read the AUTOLOAD file beside the executable, if there is one.

    An unreadable file is logged and treated as absent.
    """

    if logger is None:
        logger = logging.getLogger("flowpack")

    path: pathlib.Path = exec_dir / constants.AUTOLOAD_FILE
    if path.is_file() is False:
        return None
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning(f"flowpack: ignoring unreadable {path}: {e}")
        return None


def _bind_socket(host: str, port: int) -> socket.socket:
    """Bind the listener socket before uvicorn takes over.

    uvicorn exits the process when it cannot bind; binding here turns that
    into a :class:`LaunchError`.

    :param host: Interface address.
    :param port: TCP port.
    :returns: Bound socket, not yet listening.
    :raises LaunchError: If the address cannot be bound.
    """

    family: int = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock: socket.socket = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
    except OSError as e:
        sock.close()
        raise LaunchError(f"HTTP listener failed to bind {host}:{port}: {e}") from e
    sock.set_inheritable(True)
    return sock


async def _wait_for_listener(server: uvicorn.Server, task: asyncio.Task) -> None:
    while server.started is False:
        if task.done() is True:
            exc: BaseException | None = task.exception()
            if exc is not None:
                raise LaunchError(f"HTTP listener failed to start: {exc}") from exc
            raise LaunchError("HTTP listener stopped before it was bound")
        await asyncio.sleep(0.05)


async def serve(
    ctx: RuntimeContext,
    runtime: FlowRuntime,
    settings: dict[str, Any],
    *,
    opener: Callable[[str], Any] = webbrowser.open,
    logger: logging.Logger | None = None,
) -> None:
    """Initialize the runtime, bind the listener, start the runtime and autoload.

    Returns when the listener shuts down. A runtime whose ``start`` fails is
    logged and left in place; the listener stays bound.

    :param ctx: Runtime context.
    :param runtime: Flow runtime.
    :param settings: Merged runtime settings.
    :param opener: Callable opening a URL in the system browser.
    :param logger: Optional logger.
    :raises LaunchError: If the listener cannot bind.
    """

    if logger is None:
        logger = logging.getLogger("flowpack")

    runtime.init(settings)

    host: str = str(settings.get("uiHost", "0.0.0.0"))
    port: int = int(settings["uiPort"])
    config: uvicorn.Config = uvicorn.Config(
        runtime.app,
        host=host,
        port=port,
        log_config=None,
        lifespan="off",
    )
    sock: socket.socket = _bind_socket(host, port)
    try:
        server: uvicorn.Server = uvicorn.Server(config)
        task: asyncio.Task = asyncio.create_task(server.serve(sockets=[sock]))

        t0: float = time.perf_counter()
        await _wait_for_listener(server, task)
        t1: float = time.perf_counter()
        logger.debug(f"flowpack: listener bound on port {port} in {t1 - t0:.2f}s")

        try:
            await runtime.start()
        except Exception:
            logger.exception("flowpack: flow runtime failed to start; listener stays up")

        logger.info(f"flowpack: Run Mode : {ctx.mode.label}")

        url: str | None = None
        autoload: str | None = read_autoload(ctx.exec_dir, logger=logger)
        if autoload is not None:
            url = resolve_autoload(autoload, base_url(settings))
        if url is None and ctx.mode is RunMode.DESIGN_TIME:
            url = base_url(settings)
        if url is not None:
            logger.info(f"flowpack: Opening : {url}")
            opener(url)

        await task
    finally:
        sock.close()


def main(
    argv: Sequence[str] | None = None,
    *,
    runtime: FlowRuntime,
    source_file: str | pathlib.Path,
    project_name: str = constants.PROJECT_NAME,
    settings: dict[str, Any] | None = None,
    verbose: int = 0,
    quiet: int = 0,
) -> int:
    """Launcher entrypoint, called from the project's launcher script.

    :param argv: Arguments without the program name (defaults to ``sys.argv[1:]``).
    :param runtime: Flow runtime to boot.
    :param source_file: ``__file__`` of the launcher script.
    :param project_name: Project name (build-time substituted by default).
    :param settings: Settings override; ``None`` reads ``settings.json`` beside the launcher.
    :param verbose: Verbosity count.
    :param quiet: Quietness count.
    :returns: Process exit code.
    """

    logger: logging.Logger = configure_logging(verbose=verbose, quiet=quiet)
    if argv is None:
        argv = sys.argv[1:]

    source_dir: pathlib.Path = pathlib.Path(source_file).resolve().parent
    ctx: RuntimeContext = resolve_context(argv, source_dir=source_dir, project_name=project_name)
    os.environ[constants.RUN_MODE_ENV] = str(ctx.mode.value)

    try:
        user_settings: dict[str, Any] = (
            settings if settings is not None else load_settings(source_dir / SETTINGS_FILE)
        )
        set_console_title(console_title(ctx, user_settings))
        materialize(ctx, logger=logger)
        merged: dict[str, Any] = runtime_settings(
            ctx,
            user_settings,
            log_level="debug" if verbose >= 1 else "info",
        )
        asyncio.run(serve(ctx, runtime, merged, logger=logger))
    except (ExtractionError, SettingsError, LaunchError) as e:
        logger.error(f"flowpack: {e}")
        return 1
    except KeyboardInterrupt:
        return 130
    return 0
