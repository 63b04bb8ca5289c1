"""Command line interface for flowpack."""

import argparse
import logging
import pathlib

from flowpack import __version__
from flowpack.builder import build_executable
from flowpack.config import BuildConfig, ConfigError, resolve_build_config
from flowpack.errors import BuildError
from flowpack.logs import configure_logging


def main(argv: list[str] | None = None) -> int:
    """Run the flowpack CLI.

    :param argv: Optional argv list (excluding program name).
    :returns: Exit code.
    """

    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        prog="flowpack",
        description=(
            "Bundle a flow application, its dependencies, user data and locales "
            "into a single redistributable package."
        ),
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_build = subparsers.add_parser(
        "build",
        help="Build the bundle, archives and package descriptor.",
    )
    p_build.add_argument(
        "project_dir",
        type=pathlib.Path,
        help="Project directory holding the launcher, user data and resources.",
    )
    p_build.add_argument(
        "--entry",
        type=str,
        default=None,
        help="Launcher script relative to the project directory (default: launcher.py).",
    )
    p_build.add_argument(
        "--output-dir",
        type=str,
        default=None,
        help="Output directory relative to the project directory (default: build).",
    )
    p_build.add_argument(
        "--output-name",
        type=str,
        default=None,
        help="File name of the generated bundle (default: flowpack_bundle.py).",
    )
    p_build.add_argument(
        "--package-name",
        type=str,
        default=None,
        help="Name written to the package descriptor (default: flowpack-app).",
    )
    p_build.add_argument(
        "--external",
        action="append",
        default=None,
        metavar="SPEC",
        help=(
            "Module name, package file path or ./path kept out of the bundle and copied "
            "verbatim. Repeat to add more; replaces the default list."
        ),
    )
    p_build.add_argument(
        "--precompile",
        action="append",
        default=None,
        metavar="PACKAGE",
        help=(
            "Package byte-compiled, declared zip-safe and copied into site-packages. "
            "Repeat to add more."
        ),
    )
    p_build.add_argument(
        "--collect-submodules",
        action="append",
        default=None,
        metavar="PACKAGE",
        help=(
            "Package bundled with all of its submodules, for modules imported by name at "
            "runtime. Repeat to add more; replaces the default list (uvicorn)."
        ),
    )
    p_build.add_argument(
        "--deps-dir",
        type=pathlib.Path,
        default=None,
        help="Directory holding installed packages (defaults to this interpreter's site-packages).",
    )
    p_build.add_argument(
        "--flows-file",
        type=str,
        default=None,
        help="Standalone flows file relative to the project directory (default: flows.json).",
    )
    p_build.add_argument(
        "--workers",
        type=int,
        default=4,
        help="Threads used to copy externals.",
    )
    p_build.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Enable verbose logging. Pass multiple times for more detail.",
    )
    p_build.add_argument(
        "-q",
        "--quiet",
        action="count",
        default=0,
        help="Reduce logging. Pass multiple times to suppress more output.",
    )

    ns = parser.parse_args(argv)
    if ns.command == "build":
        logger: logging.Logger = configure_logging(verbose=ns.verbose, quiet=ns.quiet)
        try:
            config: BuildConfig = resolve_build_config(
                project_dir=ns.project_dir,
                entry=ns.entry,
                output_dir=ns.output_dir,
                output_name=ns.output_name,
                package_name=ns.package_name,
                flows_file=ns.flows_file,
                deps_dir=ns.deps_dir,
                externals=ns.external,
                precompile=ns.precompile,
                collect_submodules=ns.collect_submodules,
                workers=ns.workers,
            )
            build_executable(config, logger=logger)
        except (ConfigError, BuildError) as e:
            logger.error(f"flowpack: error: {e}")
            return 1
        return 0

    raise AssertionError(f"Unhandled command: {ns.command}")
