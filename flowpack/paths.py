"""Path resolution for each run mode.

Production locale files always live beside the executable, never inside the
snapshot, so translations can be replaced without rebuilding.
"""

from dataclasses import dataclass
import pathlib
import sys

from flowpack import constants
from flowpack.runmode import RunMode


@dataclass(frozen=True, slots=True)
class PathSet:
    """Filesystem locations handed to the flow runtime.

    :ivar user_dir: User-data directory.
    :ivar flow_file: Flow-definitions file.
    :ivar locales_dir: Locale directory.
    """

    user_dir: pathlib.Path
    flow_file: pathlib.Path
    locales_dir: pathlib.Path


def volume_prefix(platform: str | None = None) -> str:
    """Return the snapshot volume prefix for a platform.

    :param platform: ``sys.platform`` value (defaults to the running one).
    :returns: ``c:/`` on Windows, ``/`` elsewhere.
    """

    if platform is None:
        platform = sys.platform
    return "c:/" if platform == "win32" else "/"


def snapshot_root(project_name: str, *, platform: str | None = None) -> pathlib.Path:
    """Return the snapshot directory holding the embedded build output.

    :param project_name: Project directory name substituted at build time.
    :param platform: ``sys.platform`` value (defaults to the running one).
    :returns: ``<prefix>snapshot/<project_name>/build``.
    """

    return pathlib.Path(f"{volume_prefix(platform)}snapshot/{project_name}/{constants.OUTPUT_DIR}")


def executable_dir() -> pathlib.Path:
    """Directory of the running executable.

    Frozen applications report their executable; a plain script reports the
    directory of the script that was started.
    """

    if getattr(sys, "frozen", False):
        return pathlib.Path(sys.executable).resolve().parent
    return pathlib.Path(sys.argv[0]).resolve().parent


def resolve_paths(
    mode: RunMode,
    *,
    source_dir: pathlib.Path,
    exec_dir: pathlib.Path,
    snapshot: pathlib.Path,
    project_name: str,
) -> PathSet:
    """Derive the path set for a run mode.

    :param mode: Resolved run mode.
    :param source_dir: Directory of the launcher source.
    :param exec_dir: Directory of the executable.
    :param snapshot: Snapshot root (see :func:`snapshot_root`).
    :param project_name: Project name substituted at build time.
    :returns: Path set.
    """

    if mode is RunMode.DESIGN_TIME:
        return PathSet(
            user_dir=source_dir / constants.USER_DIR,
            flow_file=source_dir / constants.FLOWS_FILE,
            locales_dir=source_dir / constants.LOCALES_SOURCE,
        )

    locales: pathlib.Path = exec_dir / constants.LOCALES_DIR
    if mode is RunMode.PRODUCTION_FREE_ROAM:
        unlocked: pathlib.Path = exec_dir / constants.NOLOAD_USER_DIR
        return PathSet(
            user_dir=unlocked,
            flow_file=unlocked / constants.FLOWS_FILE,
            locales_dir=locales,
        )

    return PathSet(
        user_dir=exec_dir / constants.USER_DIR / project_name,
        flow_file=snapshot / constants.FLOWS_FILE,
        locales_dir=locales,
    )
