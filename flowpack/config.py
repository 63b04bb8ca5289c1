"""Build configuration.

Turns CLI arguments (or keyword overrides from a caller) into a frozen
:class:`BuildConfig`. Every path is made absolute here so the pipeline never
depends on the working directory.
"""

from dataclasses import dataclass
import pathlib
import re
import sysconfig

from flowpack import constants


class ConfigError(ValueError):
    """Raised when build arguments cannot be resolved into a usable config."""


@dataclass(frozen=True, slots=True)
class BuildConfig:
    """Resolved build configuration.

    :ivar project_dir: Project root (holds the launcher, user data and resources).
    :ivar project_name: Name substituted for the project token in the bundle.
    :ivar entry: Launcher script to bundle.
    :ivar output_dir: Build output directory.
    :ivar output_name: File name of the bundle inside ``output_dir``.
    :ivar package_name: ``name`` written to the package descriptor.
    :ivar user_dir: User-data directory to archive.
    :ivar locales_source: Locale directory to archive.
    :ivar flows_file: Optional standalone flow-definitions file.
    :ivar deps_dir: Directory holding installed third-party packages.
    :ivar externals: Module names or ``./`` paths excluded from the bundle.
    :ivar precompile: Packages byte-compiled in place and shipped in ``site-packages``.
    :ivar collect_submodules: Packages bundled with all of their submodules.
    :ivar workers: Thread count for copying externals.
    """

    project_dir: pathlib.Path
    project_name: str
    entry: pathlib.Path
    output_dir: pathlib.Path
    output_name: str
    package_name: str
    user_dir: pathlib.Path
    locales_source: pathlib.Path
    flows_file: pathlib.Path
    deps_dir: pathlib.Path
    externals: tuple[str, ...]
    precompile: tuple[str, ...]
    collect_submodules: tuple[str, ...]
    workers: int

    @property
    def output_path(self) -> pathlib.Path:
        """Path of the bundle file."""

        return self.output_dir / self.output_name

    @property
    def user_archive(self) -> pathlib.Path:
        """Where the user-data archive is written before it is copied out."""

        return self.project_dir / f"{constants.USER_DIR}{constants.ARCHIVE_SUFFIX}"

    @property
    def locales_archive(self) -> pathlib.Path:
        """Where the locale archive is written before it is copied out."""

        return self.project_dir / f"{constants.LOCALES_DIR}{constants.ARCHIVE_SUFFIX}"


_PROJECT_NAME_RE: re.Pattern[str] = re.compile(r"^[A-Za-z0-9._-]+$")


def resolve_build_config(
    *,
    project_dir: pathlib.Path,
    entry: str | None = None,
    output_dir: str | None = None,
    output_name: str | None = None,
    package_name: str | None = None,
    flows_file: str | None = None,
    deps_dir: pathlib.Path | None = None,
    externals: list[str] | None = None,
    precompile: list[str] | None = None,
    collect_submodules: list[str] | None = None,
    workers: int = 4,
) -> BuildConfig:
    """Resolve build arguments into a :class:`BuildConfig`.

    Relative ``entry``, ``output_dir`` and ``flows_file`` values are taken
    relative to ``project_dir``.

    :param project_dir: Project root directory.
    :param entry: Launcher script (defaults to ``launcher.py``).
    :param output_dir: Output directory (defaults to ``build``).
    :param output_name: Bundle file name (defaults to ``flowpack_bundle.py``).
    :param package_name: Descriptor name (defaults to ``flowpack-app``).
    :param flows_file: Standalone flows file (defaults to ``flows.json``).
    :param deps_dir: Installed packages directory (defaults to this interpreter's purelib).
    :param externals: Externals override; ``None`` uses the defaults.
    :param precompile: Precompile list override; ``None`` uses the defaults.
    :param collect_submodules: Submodule collection override; ``None`` uses the defaults.
    :param workers: Worker threads for copying externals.
    :returns: Resolved config.
    :raises ConfigError: If the arguments are invalid.
    """

    if project_dir.is_dir() is False:
        raise ConfigError(f"Project directory does not exist: {project_dir}")
    root: pathlib.Path = project_dir.resolve()

    project_name: str = root.name
    if _PROJECT_NAME_RE.match(project_name) is None:
        raise ConfigError(
            f"Project directory name {project_name!r} cannot be used in snapshot paths; "
            "use letters, digits, '.', '_' or '-'."
        )

    entry_path: pathlib.Path = root / (entry if entry is not None else constants.INPUT_FILE)
    if entry_path.is_file() is False:
        raise ConfigError(f"Entry script does not exist: {entry_path}")
    if entry_path.suffix != ".py":
        raise ConfigError(f"Entry script must be a .py file: {entry_path}")

    name: str = output_name if output_name is not None else constants.OUTPUT_NAME
    if name.endswith(".py") is False or "/" in name or "\\" in name:
        raise ConfigError(f"Invalid output name {name!r}; expected a bare '<name>.py'.")

    if workers < 1:
        raise ConfigError(f"Invalid workers={workers}; expected at least 1.")

    resolved_deps: pathlib.Path
    if deps_dir is not None:
        resolved_deps = deps_dir.resolve()
    else:
        resolved_deps = pathlib.Path(sysconfig.get_paths()["purelib"])

    return BuildConfig(
        project_dir=root,
        project_name=project_name,
        entry=entry_path,
        output_dir=root / (output_dir if output_dir is not None else constants.OUTPUT_DIR),
        output_name=name,
        package_name=package_name if package_name is not None else constants.PACKAGE_NAME,
        user_dir=root / constants.USER_DIR,
        locales_source=root / constants.LOCALES_SOURCE,
        flows_file=root / (flows_file if flows_file is not None else constants.FLOWS_FILE),
        deps_dir=resolved_deps,
        externals=tuple(externals) if externals is not None else constants.EXTERNALS,
        precompile=tuple(precompile) if precompile is not None else constants.PRECOMPILE,
        collect_submodules=(
            tuple(collect_submodules) if collect_submodules is not None else constants.COLLECT_SUBMODULES
        ),
        workers=workers,
    )
