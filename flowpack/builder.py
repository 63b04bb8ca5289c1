"""Build pipeline.

Runs every build stage in order against a resolved :class:`BuildConfig`:

precompile -> bundle -> patch -> copy externals -> shim -> archives -> descriptor.

Only the externals copy runs in parallel, and it is joined before the next
stage starts.
"""

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
import logging
import pathlib
import shutil
import sys
import time

from flowpack import constants
from flowpack.bundler import BundleResult, bundle_entry, find_metadata_dir, precompile_packages
from flowpack.config import BuildConfig
from flowpack.descriptor import PackageDescriptor, descriptor_for, write_descriptor
from flowpack.errors import BuildError
from flowpack.packer import ArchiveEntry, PackResult, pack_archives, remove_session_tokens
from flowpack.patcher import HTTP_REQUEST_SHIM, PatchReport, apply_shim, output_rules, patch_file

__all__: list[str] = ["BuildError", "BuildResult", "build_executable", "copy_externals", "shipped_externals"]


@dataclass(frozen=True, slots=True)
class BuildResult:
    """Summary of a finished build.

    :ivar bundle: Bundler output.
    :ivar externals: External files and directories copied into the output.
    :ivar patches: Patch reports, bundle first.
    :ivar pack: Archives and flows file placed in the output.
    :ivar descriptor_path: Written package descriptor.
    """

    bundle: BundleResult
    externals: tuple[pathlib.Path, ...]
    patches: tuple[PatchReport, ...]
    pack: PackResult
    descriptor_path: pathlib.Path


def _external_paths(
    ext: str,
    *,
    project_dir: pathlib.Path,
    deps_dir: pathlib.Path,
    output_dir: pathlib.Path,
) -> tuple[pathlib.Path, pathlib.Path]:
    """Map an external specifier to its source and destination.

    ``./name`` is relative to the project, ``pkg/file`` (or ``dir/``) is a path
    inside the installed packages, and anything else is a dotted module name.

    :param ext: External specifier.
    :param project_dir: Project root.
    :param deps_dir: Installed packages directory.
    :param output_dir: Build output directory.
    :returns: ``(source, destination)``.
    """

    if ext.startswith("./") is True:
        rel: pathlib.PurePosixPath = pathlib.PurePosixPath(ext[2:])
        return project_dir.joinpath(*rel.parts), output_dir.joinpath(*rel.parts)

    site: pathlib.Path = output_dir / constants.DEPS_OUTPUT_DIR
    if "/" in ext:
        parts: tuple[str, ...] = pathlib.PurePosixPath(ext).parts
        return deps_dir.joinpath(*parts), site.joinpath(*parts)

    mod_parts: list[str] = ext.split(".")
    pkg: pathlib.Path = deps_dir.joinpath(*mod_parts)
    if pkg.is_dir() is True:
        return pkg, site.joinpath(*mod_parts)
    return pkg.with_suffix(".py"), site.joinpath(*mod_parts).with_suffix(".py")


def _copy_one(src: pathlib.Path, dest: pathlib.Path) -> pathlib.Path:
    dest.parent.mkdir(parents=True, exist_ok=True)
    if src.is_dir() is True:
        shutil.copytree(src, dest, dirs_exist_ok=True)
    else:
        shutil.copy2(src, dest)
    return dest


def shipped_externals(config: BuildConfig) -> tuple[str, ...]:
    """Externals plus every precompiled package and its metadata directory.

    Precompiled packages are loaded from ``site-packages`` at runtime, so they
    are kept out of the bundle and copied along with their ``zip-safe``
    metadata.

    :param config: Resolved build configuration.
    :returns: External specifiers, configured ones first.
    """

    specs: list[str] = list(config.externals)
    for name in config.precompile:
        if name not in specs:
            specs.append(name)
        meta: pathlib.Path | None = find_metadata_dir(name=name, deps_dir=config.deps_dir)
        if meta is not None and f"{meta.name}/" not in specs:
            specs.append(f"{meta.name}/")
    return tuple(specs)


def copy_externals(
    externals: tuple[str, ...] | list[str],
    *,
    project_dir: pathlib.Path,
    deps_dir: pathlib.Path,
    output_dir: pathlib.Path,
    workers: int = 4,
    logger: logging.Logger | None = None,
) -> list[pathlib.Path]:
    """Copy externals into the build output in parallel.

    Every copy finishes before this returns. Externals that do not exist are
    skipped; a copy that fails aborts the build.

    :param externals: External specifiers.
    :param project_dir: Project root.
    :param deps_dir: Installed packages directory.
    :param output_dir: Build output directory.
    :param workers: Worker threads.
    :param logger: Optional logger.
    :returns: Destinations, in specifier order.
    :raises BuildError: If any copy fails.
    """

    if logger is None:
        logger = logging.getLogger("flowpack")

    jobs: list[tuple[str, pathlib.Path, pathlib.Path]] = []
    for ext in externals:
        src, dest = _external_paths(ext, project_dir=project_dir, deps_dir=deps_dir, output_dir=output_dir)
        if src.exists() is False:
            logger.debug(f"flowpack: external {ext} not found at {src}, skipped")
            continue
        jobs.append((ext, src, dest))

    copied: list[pathlib.Path] = []
    errors: list[str] = []
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures: list[tuple[str, Future]] = [(ext, pool.submit(_copy_one, src, dest)) for ext, src, dest in jobs]
        for ext, fut in futures:
            try:
                copied.append(fut.result())
            except (OSError, shutil.Error) as e:
                errors.append(f"{ext}: {e}")

    if len(errors) > 0:
        raise BuildError("Failed to copy externals: " + "; ".join(errors))
    return copied


def build_executable(
    config: BuildConfig,
    *,
    search_path: list[str] | None = None,
    logger: logging.Logger | None = None,
) -> BuildResult:
    """Run the full build.

    :param config: Resolved build configuration.
    :param search_path: Module search path for the bundler (defaults to the
        packages directory followed by ``sys.path``).
    :param logger: Optional logger for build progress output.
    :returns: Build summary.
    :raises BuildError: If any stage fails.
    """

    if logger is None:
        logger = logging.getLogger("flowpack")

    t_total0: float = time.perf_counter()
    logger.info(f"flowpack: project={config.project_dir} (name={config.project_name})")
    logger.info(f"flowpack: entry={config.entry}")
    logger.info(f"flowpack: output={config.output_path}")
    if logger.isEnabledFor(logging.DEBUG) is True:
        logger.debug(f"flowpack: deps_dir={config.deps_dir}")
        logger.debug(f"flowpack: externals={list(config.externals)}")

    if search_path is None:
        search_path = [str(config.deps_dir), *(p for p in sys.path if len(p) > 0)]

    t0: float = time.perf_counter()
    precompiled: list[str] = precompile_packages(config.precompile, deps_dir=config.deps_dir, logger=logger)
    t1: float = time.perf_counter()
    logger.info(f"flowpack: precompiled {len(precompiled)}/{len(config.precompile)} packages in {t1 - t0:.2f}s")

    shipped: tuple[str, ...] = shipped_externals(config)
    bundle: BundleResult = bundle_entry(
        entry_path=config.entry,
        output_path=config.output_path,
        externals=shipped,
        search_path=search_path,
        collect_submodules=config.collect_submodules,
        logger=logger,
    )

    patches: list[PatchReport] = [
        patch_file(config.output_path, output_rules(config.project_name), logger=logger),
    ]

    t0 = time.perf_counter()
    externals: list[pathlib.Path] = copy_externals(
        shipped,
        project_dir=config.project_dir,
        deps_dir=config.deps_dir,
        output_dir=config.output_dir,
        workers=config.workers,
        logger=logger,
    )
    t1 = time.perf_counter()
    logger.info(f"flowpack: copied {len(externals)} externals in {t1 - t0:.2f}s")

    patches.append(
        apply_shim(HTTP_REQUEST_SHIM, deps_dir=config.output_dir / constants.DEPS_OUTPUT_DIR, logger=logger)
    )

    if remove_session_tokens(config.user_dir) is True:
        logger.info(f"flowpack: removed {constants.SESSIONS_FILE} from {config.user_dir.name}")

    pack: PackResult = pack_archives(
        [
            ArchiveEntry(source_dir=config.user_dir, archive_path=config.user_archive),
            ArchiveEntry(source_dir=config.locales_source, archive_path=config.locales_archive),
        ],
        output_dir=config.output_dir,
        flows_file=config.flows_file,
        logger=logger,
    )

    descriptor: PackageDescriptor = descriptor_for(
        name=config.package_name,
        binary=config.output_name,
        pack=pack,
    )
    try:
        descriptor_path: pathlib.Path = write_descriptor(descriptor, config.output_dir / constants.DESCRIPTOR_NAME)
    except OSError as e:
        raise BuildError(f"Failed to write package descriptor: {e}") from e

    t_total1: float = time.perf_counter()
    logger.info(f"flowpack: build finished in {t_total1 - t_total0:.2f}s")
    return BuildResult(
        bundle=bundle,
        externals=tuple(externals),
        patches=tuple(patches),
        pack=pack,
        descriptor_path=descriptor_path,
    )
