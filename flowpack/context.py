"""Process-wide runtime context.

Built once at startup from the command line and the snapshot contents, then
passed by reference to every consumer. The dataclass is frozen; there is no
way to change the mode or the paths afterwards.
"""

from collections.abc import Sequence
from dataclasses import dataclass
import pathlib

from flowpack import constants
from flowpack.paths import PathSet, executable_dir, resolve_paths, snapshot_root
from flowpack.runmode import RunMode, resolve_run_mode


@dataclass(frozen=True, slots=True)
class RuntimeContext:
    """Resolved run mode and paths.

    :ivar mode: Run mode.
    :ivar paths: Paths for the flow runtime.
    :ivar project_name: Project name used in snapshot paths.
    :ivar source_dir: Directory of the launcher source.
    :ivar exec_dir: Directory of the executable.
    :ivar snapshot: Snapshot root holding the embedded build output.
    """

    mode: RunMode
    paths: PathSet
    project_name: str
    source_dir: pathlib.Path
    exec_dir: pathlib.Path
    snapshot: pathlib.Path

    def snapshot_path(self, *parts: str) -> pathlib.Path:
        """Join parts onto the snapshot root."""

        return self.snapshot.joinpath(*parts)

    @property
    def user_archive(self) -> pathlib.Path:
        """Embedded user-data archive."""

        return self.snapshot_path(f"{constants.USER_DIR}{constants.ARCHIVE_SUFFIX}")

    @property
    def locales_archive(self) -> pathlib.Path:
        """Embedded locale archive."""

        return self.snapshot_path(f"{constants.LOCALES_DIR}{constants.ARCHIVE_SUFFIX}")

    @property
    def embedded_flow_file(self) -> pathlib.Path:
        """Embedded flows file."""

        return self.snapshot_path(constants.FLOWS_FILE)


def resolve_context(
    argv: Sequence[str],
    *,
    source_dir: pathlib.Path,
    project_name: str = constants.PROJECT_NAME,
    exec_dir: pathlib.Path | None = None,
    snapshot: pathlib.Path | None = None,
    platform: str | None = None,
) -> RuntimeContext:
    """Resolve the runtime context for this process.

    :param argv: Arguments without the program name.
    :param source_dir: Directory of the launcher source.
    :param project_name: Project name (build-time substituted by default).
    :param exec_dir: Executable directory (defaults to :func:`executable_dir`).
    :param snapshot: Snapshot root (defaults to :func:`snapshot_root`).
    :param platform: ``sys.platform`` override for the snapshot prefix.
    :returns: Frozen context.
    """

    if exec_dir is None:
        exec_dir = executable_dir()
    if snapshot is None:
        snapshot = snapshot_root(project_name, platform=platform)

    mode: RunMode = resolve_run_mode(
        argv,
        embedded_flow_exists=(snapshot / constants.FLOWS_FILE).is_file(),
    )
    paths: PathSet = resolve_paths(
        mode,
        source_dir=source_dir,
        exec_dir=exec_dir,
        snapshot=snapshot,
        project_name=project_name,
    )
    return RuntimeContext(
        mode=mode,
        paths=paths,
        project_name=project_name,
        source_dir=source_dir,
        exec_dir=exec_dir,
        snapshot=snapshot,
    )
