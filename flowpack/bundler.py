"""Module bundler.

Produces one self-contained ``.py`` file from a launcher script:

- The transitive import closure of the launcher is discovered with
  :mod:`modulefinder`. The standard library and configured externals are left
  out.
- Pure Python sources are embedded as plain string literals, so later text
  patches still see them. A meta path finder in the generated file serves them
  at runtime.
- Native extension modules are copied unmodified next to the bundle and
  loaded from disk, but only when the running interpreter can load them.
- Shell scripts shipped inside packages are embedded as opaque base64 blobs.
"""

from dataclasses import dataclass
import base64
import compileall
import importlib.machinery
import logging
import modulefinder
import pathlib
import py_compile
import re
import shutil
import sys
import sysconfig
import textwrap
import time

from flowpack import constants
from flowpack.errors import BuildError


class BundleError(BuildError):
    """Raised when bundling fails."""


@dataclass(frozen=True, slots=True)
class BundledModule:
    """A file that goes into the bundle.

    :ivar name: Dotted module name (package name for ``binary`` files).
    :ivar path: Absolute on-disk path.
    :ivar kind: ``source``, ``native`` or ``binary``.
    :ivar relpath: POSIX path relative to the bundle root.
    """

    name: str
    path: pathlib.Path
    kind: str
    relpath: str


@dataclass(frozen=True, slots=True)
class BundleResult:
    """Summary of a finished bundle.

    :ivar output_path: The generated bundle file.
    :ivar modules: Everything that was bundled, entry included.
    :ivar native_files: Native modules written next to the bundle.
    """

    output_path: pathlib.Path
    modules: tuple[BundledModule, ...]
    native_files: tuple[pathlib.Path, ...]

    def of_kind(self, kind: str) -> list[BundledModule]:
        """Return bundled modules of one kind."""

        return [m for m in self.modules if m.kind == kind]


_OPAQUE_SUFFIXES: frozenset[str] = frozenset({".sh"})
_NATIVE_SUFFIXES: tuple[str, ...] = tuple(
    sorted(set(importlib.machinery.EXTENSION_SUFFIXES) | {".so", ".pyd"}, key=len, reverse=True)
)


def _stdlib_roots() -> list[pathlib.Path]:
    """Return the standard library directories of the running interpreter."""

    paths: dict[str, str] = sysconfig.get_paths()
    roots: list[pathlib.Path] = []
    for key in ("stdlib", "platstdlib"):
        value: str | None = paths.get(key)
        if value is not None:
            roots.append(pathlib.Path(value).resolve())
    return roots


def _is_stdlib(path: pathlib.Path, roots: list[pathlib.Path]) -> bool:
    """Check if a module file belongs to the standard library.

    :param path: Resolved module file path.
    :param roots: Standard library roots.
    :returns: ``True`` for stdlib files (site-packages excluded).
    """

    if "site-packages" in path.parts or "dist-packages" in path.parts:
        return False
    for root in roots:
        if path.is_relative_to(root) is True:
            return True
    return False


def _is_external(name: str, externals: tuple[str, ...]) -> bool:
    """Check if a dotted module name is covered by an external specifier.

    :param name: Dotted module name.
    :param externals: External specifiers (path specifiers are ignored here).
    :returns: ``True`` if the module must not be bundled.
    """

    for ext in externals:
        if "/" in ext:
            continue
        if name == ext or name.startswith(ext + ".") is True:
            return True
    return False


def _native_suffix(path: pathlib.Path) -> str | None:
    """Return the extension-module suffix of a file, if it has one."""

    for suffix in _NATIVE_SUFFIXES:
        if path.name.endswith(suffix) is True:
            return suffix
    return None


def _module_relpath(*, name: str, path: pathlib.Path, is_package: bool) -> str:
    """Compute the bundle-relative path of a module.

    :param name: Dotted module name.
    :param path: Module file.
    :param is_package: Whether ``path`` is a package ``__init__``.
    :returns: POSIX relative path.
    """

    parts: list[str] = name.split(".")
    if is_package is True:
        return "/".join([*parts, path.name])
    return "/".join([*parts[:-1], path.name])


def _collect_submodules(
    finder: modulefinder.ModuleFinder,
    name: str,
    *,
    externals: tuple[str, ...],
    logger: logging.Logger,
) -> int:
    """Feed a package and every module under it to the finder.

    Modules that are only imported by name at runtime (``importlib``, plugin
    registries) are invisible to static analysis; this pulls them in.

    :param finder: Finder that already ran the entry script.
    :param name: Top-level package name.
    :param externals: External specifiers; covered modules are skipped.
    :param logger: Logger for debug output.
    :returns: Number of submodules added.
    :raises ImportError: If the package itself cannot be found.
    """

    finder.import_hook(name)
    pkg = finder.modules.get(name)
    if pkg is None or pkg.__path__ is None or pkg.__file__ is None:
        return 0

    pkg_dir: pathlib.Path = pathlib.Path(pkg.__file__).parent
    added: int = 0
    for path in sorted(pkg_dir.rglob("*.py")):
        rel: pathlib.PurePath = path.relative_to(pkg_dir).with_suffix("")
        parts: list[str] = list(rel.parts)
        if parts[-1] == "__init__":
            parts = parts[:-1]
        if len(parts) == 0 or any(p.isidentifier() is False for p in parts):
            continue
        # Directories without __init__.py are not subpackages.
        if any((pkg_dir.joinpath(*parts[:i]) / "__init__.py").is_file() is False for i in range(1, len(rel.parts))):
            continue
        sub: str = ".".join([name, *parts])
        if sub in finder.modules or _is_external(sub, externals) is True:
            continue
        try:
            finder.import_hook(sub)
        except (SyntaxError, ImportError) as e:
            logger.debug(f"flowpack: submodule {sub} skipped: {e}")
            continue
        added += 1
    return added


def collect_modules(
    *,
    entry_path: pathlib.Path,
    externals: tuple[str, ...],
    search_path: list[str] | None = None,
    collect_submodules: tuple[str, ...] = (),
    logger: logging.Logger | None = None,
) -> list[BundledModule]:
    """Collect the entry script and everything it transitively imports.

    :param entry_path: Launcher script.
    :param externals: External specifiers excluded from the bundle.
    :param search_path: Module search path (defaults to ``sys.path``).
    :param collect_submodules: Packages bundled whole, including submodules
        that are only imported by name. Packages that cannot be found are
        logged and skipped.
    :param logger: Optional logger.
    :returns: Bundled modules, entry first, then sorted by relative path.
    :raises BundleError: If the import graph cannot be analysed.
    """

    if logger is None:
        logger = logging.getLogger("flowpack")

    if search_path is None:
        search_path = [p for p in sys.path if len(p) > 0]
    excludes: list[str] = [e for e in externals if "/" not in e]
    finder = modulefinder.ModuleFinder(path=[str(entry_path.parent), *search_path], excludes=excludes)
    try:
        finder.run_script(str(entry_path))
    except (SyntaxError, ImportError, OSError) as e:
        raise BundleError(f"Failed to analyse imports of {entry_path}: {e}") from e

    for name in collect_submodules:
        if _is_external(name, externals) is True:
            continue
        try:
            added: int = _collect_submodules(finder, name, externals=externals, logger=logger)
        except (SyntaxError, ImportError, OSError) as e:
            logger.warning(f"flowpack: cannot collect submodules of {name}: {e}")
            continue
        logger.debug(f"flowpack: collected {added} extra submodules of {name}")

    roots: list[pathlib.Path] = _stdlib_roots()
    found: dict[str, BundledModule] = {}

    for name, mod in finder.modules.items():
        if name == "__main__":
            continue
        if _is_external(name, externals) is True:
            continue
        file: str | None = mod.__file__
        if file is None:
            continue
        path: pathlib.Path = pathlib.Path(file).resolve()
        if _is_stdlib(path, roots) is True:
            continue

        is_package: bool = mod.__path__ is not None
        kind: str = "native" if _native_suffix(path) is not None else "source"
        relpath: str = _module_relpath(name=name, path=path, is_package=is_package)
        found[relpath] = BundledModule(name=name, path=path, kind=kind, relpath=relpath)

        if is_package is True:
            pkg_dir: pathlib.Path = path.parent
            prefix: str = relpath.rpartition("/")[0]
            for script in sorted(pkg_dir.rglob("*")):
                if script.suffix not in _OPAQUE_SUFFIXES or script.is_file() is False:
                    continue
                rel: str = f"{prefix}/{script.relative_to(pkg_dir).as_posix()}"
                found[rel] = BundledModule(name=name, path=script.resolve(), kind="binary", relpath=rel)

    missing: list[str] = sorted(n for n in finder.badmodules if _is_external(n, externals) is False)
    if len(missing) > 0 and logger.isEnabledFor(logging.DEBUG) is True:
        logger.debug(f"flowpack: unresolved imports (left to runtime) {missing}")

    entry_rel: str = entry_path.name
    entry = BundledModule(name=entry_path.stem, path=entry_path.resolve(), kind="source", relpath=entry_rel)
    found.pop(entry_rel, None)
    return [entry, *(found[k] for k in sorted(found))]


def precompile_packages(
    names: tuple[str, ...] | list[str],
    *,
    deps_dir: pathlib.Path,
    logger: logging.Logger | None = None,
) -> list[str]:
    """Byte-compile packages in place and mark them zip-safe.

    Packages that cannot be processed are logged and skipped.

    :param names: Top-level package or module names.
    :param deps_dir: Directory the packages are installed in.
    :param logger: Optional logger.
    :returns: Names that were processed.
    """

    if logger is None:
        logger = logging.getLogger("flowpack")

    done: list[str] = []
    for name in names:
        try:
            _precompile_package(name=name, deps_dir=deps_dir, logger=logger)
        except (BundleError, OSError, ValueError) as e:
            logger.warning(f"flowpack: precompile skipped for {name}: {e}")
            continue
        done.append(name)
    return done


def _precompile_package(*, name: str, deps_dir: pathlib.Path, logger: logging.Logger) -> None:
    """Byte-compile one package and rewrite its metadata.

    :param name: Package or module name.
    :param deps_dir: Installed packages directory.
    :param logger: Logger for debug output.
    :raises BundleError: If the package is missing or fails to compile.
    """

    pkg_path: pathlib.Path = deps_dir.joinpath(*name.split("."))
    mode = py_compile.PycInvalidationMode.UNCHECKED_HASH
    ok: bool
    if pkg_path.is_dir() is True:
        ok = compileall.compile_dir(str(pkg_path), quiet=2, invalidation_mode=mode)
    elif pkg_path.with_suffix(".py").is_file() is True:
        ok = compileall.compile_file(str(pkg_path.with_suffix(".py")), quiet=2, invalidation_mode=mode)
    else:
        raise BundleError(f"not installed under {deps_dir}")
    if not ok:
        raise BundleError("byte-compilation reported errors")

    meta_dir: pathlib.Path | None = find_metadata_dir(name=name, deps_dir=deps_dir)
    if meta_dir is None:
        logger.debug(f"flowpack: precompiled {name} (no metadata directory)")
        return
    changed: bool = _declare_zip_safe(meta_dir)
    logger.debug(f"flowpack: precompiled {name} (metadata {'updated' if changed else 'unchanged'})")


def _normalize_dist_name(name: str) -> str:
    """Normalize a distribution name the way wheel directory names are."""

    return re.sub(r"[-_.]+", "_", name).lower()


def find_metadata_dir(*, name: str, deps_dir: pathlib.Path) -> pathlib.Path | None:
    """Find the ``.dist-info``/``.egg-info`` directory that owns a package.

    :param name: Top-level package name.
    :param deps_dir: Installed packages directory.
    :returns: Metadata directory, or ``None``.
    """

    wanted: str = _normalize_dist_name(name.split(".")[0])
    candidates: list[pathlib.Path] = sorted(
        [*deps_dir.glob("*.dist-info"), *deps_dir.glob("*.egg-info")]
    )
    for meta in candidates:
        dist: str = meta.name.rsplit(".", 1)[0].split("-")[0]
        if _normalize_dist_name(dist) == wanted:
            return meta
    for meta in candidates:
        top_level: pathlib.Path = meta / "top_level.txt"
        if top_level.is_file() is False:
            continue
        names: list[str] = top_level.read_text(encoding="utf-8").split()
        if name.split(".")[0] in names:
            return meta
    return None


def _declare_zip_safe(meta_dir: pathlib.Path) -> bool:
    """Rewrite a metadata directory so it declares the package zip-safe.

    :param meta_dir: Metadata directory.
    :returns: ``True`` if anything was changed.
    """

    not_safe: pathlib.Path = meta_dir / "not-zip-safe"
    safe: pathlib.Path = meta_dir / "zip-safe"
    if safe.is_file() is True and not_safe.exists() is False:
        return False
    if not_safe.exists() is True:
        not_safe.unlink()
    safe.write_text("\n", encoding="utf-8")
    return True


def _emit_native(*, modules: list[BundledModule], native_dir: pathlib.Path) -> list[pathlib.Path]:
    """Copy native extension modules next to the bundle, byte for byte.

    :param modules: Native modules.
    :param native_dir: Destination root.
    :returns: Written paths.
    """

    written: list[pathlib.Path] = []
    for mod in modules:
        dest: pathlib.Path = native_dir / mod.relpath
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(mod.path, dest)
        written.append(dest)
    return written


def _render_manifest(modules: list[BundledModule]) -> str:
    """Render the module tables embedded in the bundle.

    :param modules: Bundled modules.
    :returns: Python source for ``_SOURCES``, ``_BINARIES`` and ``_NATIVE``.
    :raises BundleError: If a source file is not UTF-8.
    """

    lines: list[str] = ["_SOURCES: dict[str, str] = {"]
    for mod in modules:
        if mod.kind != "source":
            continue
        try:
            text: str = mod.path.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            raise BundleError(f"Source is not UTF-8: {mod.path}") from e
        lines.append(f"    {mod.relpath!r}: {text!r},")
    lines.append("}")

    lines.append("_BINARIES: dict[str, str] = {")
    for mod in modules:
        if mod.kind != "binary":
            continue
        b64: str = base64.b64encode(mod.path.read_bytes()).decode("ascii")
        lines.append(f"    {mod.relpath!r}: {b64!r},")
    lines.append("}")

    lines.append("_NATIVE: dict[str, str] = {")
    for mod in modules:
        if mod.kind != "native":
            continue
        lines.append(f"    {mod.name!r}: {mod.relpath!r},")
    lines.append("}")
    return "\n".join(lines)


def _write_bundle(*, output_path: pathlib.Path, modules: list[BundledModule], entry_name: str) -> None:
    """Write the bundle file.

    :param output_path: Bundle path.
    :param modules: Bundled modules (entry included).
    :param entry_name: Module name of the entry script.
    :raises BundleError: If the runtime template markers are missing.
    """

    runtime: str = _RUNTIME_TEMPLATE
    runtime = runtime.replace("__FLOWPACK_ENTRY__", entry_name)
    runtime = runtime.replace("__FLOWPACK_NATIVE_DIR__", constants.NATIVE_OUTPUT_DIR)
    runtime = runtime.replace("__FLOWPACK_DEPS_DIR__", constants.DEPS_OUTPUT_DIR)

    marker: str = "__FLOWPACK_MANIFEST__"
    idx: int = runtime.find(marker)
    if idx < 0:
        raise BundleError("Internal error: runtime template missing __FLOWPACK_MANIFEST__ marker.")

    with open(output_path, "w", encoding="utf-8") as f:
        f.write(runtime[0:idx])
        f.write(_render_manifest(modules))
        f.write(runtime[idx + len(marker) :])


def bundle_entry(
    *,
    entry_path: pathlib.Path,
    output_path: pathlib.Path,
    externals: tuple[str, ...],
    search_path: list[str] | None = None,
    collect_submodules: tuple[str, ...] = (),
    logger: logging.Logger | None = None,
) -> BundleResult:
    """Bundle a launcher script and its imports into one file.

    :param entry_path: Launcher script.
    :param output_path: Bundle file to write.
    :param externals: External specifiers excluded from the bundle.
    :param search_path: Module search path (defaults to ``sys.path``).
    :param collect_submodules: Packages bundled with all of their submodules.
    :param logger: Optional logger.
    :returns: Bundle summary.
    :raises BundleError: If bundling fails.
    """

    if logger is None:
        logger = logging.getLogger("flowpack")

    if entry_path.is_file() is False:
        raise BundleError(f"Entry script does not exist: {entry_path}")

    t0: float = time.perf_counter()
    modules: list[BundledModule] = collect_modules(
        entry_path=entry_path,
        externals=externals,
        search_path=search_path,
        collect_submodules=collect_submodules,
        logger=logger,
    )
    natives: list[BundledModule] = [m for m in modules if m.kind == "native"]
    logger.info(
        f"flowpack: collected {len(modules)} files "
        f"({len(natives)} native, {sum(1 for m in modules if m.kind == 'binary')} opaque)"
    )

    output_path.parent.mkdir(parents=True, exist_ok=True)
    try:
        native_files: list[pathlib.Path] = _emit_native(
            modules=natives,
            native_dir=output_path.parent / constants.NATIVE_OUTPUT_DIR,
        )
        _write_bundle(output_path=output_path, modules=modules, entry_name=modules[0].name)
    except OSError as e:
        raise BundleError(f"Failed to write bundle {output_path}: {e}") from e
    t1: float = time.perf_counter()

    out_size: int = output_path.stat().st_size
    logger.info(f"flowpack: wrote {output_path} ({out_size / (1024 * 1024):.1f} MiB) in {t1 - t0:.2f}s")
    return BundleResult(
        output_path=output_path,
        modules=tuple(modules),
        native_files=tuple(native_files),
    )


_RUNTIME_TEMPLATE: str = textwrap.dedent(
    r'''
    #!/usr/bin/env python3
    # This file was generated by flowpack. Manual edits may break it.
    #
    # Bundled sources are served from the tables below by an import hook.
    # Native extension modules live in a sibling directory and are loaded
    # from disk when this interpreter can load them.

    import base64
    import importlib.abc
    import importlib.machinery
    import importlib.util
    import os
    import pathlib
    import sys


    _ENTRY: str = "__FLOWPACK_ENTRY__"
    _NATIVE_DIR: str = "__FLOWPACK_NATIVE_DIR__"
    _DEPS_DIR: str = "__FLOWPACK_DEPS_DIR__"

    __FLOWPACK_MANIFEST__


    def _runtime_error(message: str) -> None:
        """Exit with a message.

        :param message: Error message.
        """

        sys.stderr.write(message)
        if message.endswith("\n") is False:
            sys.stderr.write("\n")
        raise SystemExit(2)


    def _bundle_root() -> pathlib.Path:
        """Return the directory holding this bundle."""

        return pathlib.Path(os.path.abspath(__file__)).parent


    def native_available(name: str) -> bool:
        """Report whether a bundled native module can be loaded here.

        :param name: Dotted module name.
        :returns: ``True`` if the file exists and its ABI suffix matches.
        """

        rel: str | None = _NATIVE.get(name)
        if rel is None:
            return False
        path: pathlib.Path = _bundle_root() / _NATIVE_DIR / rel
        if path.is_file() is False:
            return False
        base: str = name.rpartition(".")[2]
        suffix: str = path.name[len(base):]
        return suffix in importlib.machinery.EXTENSION_SUFFIXES


    class _BundleFinder(importlib.abc.MetaPathFinder, importlib.abc.Loader):
        """Meta path finder and loader for the embedded tables."""

        def __init__(self, root: pathlib.Path) -> None:
            self._root: str = str(root)

        def _locate(self, fullname: str) -> tuple[str, bool] | None:
            base: str = fullname.replace(".", "/")
            if f"{base}/__init__.py" in _SOURCES:
                return (f"{base}/__init__.py", True)
            if f"{base}.py" in _SOURCES:
                return (f"{base}.py", False)
            return None

        def find_spec(self, fullname, path=None, target=None):
            if fullname in _NATIVE:
                if native_available(fullname) is False:
                    return None
                native_path: pathlib.Path = pathlib.Path(self._root) / _NATIVE_DIR / _NATIVE[fullname]
                return importlib.util.spec_from_file_location(fullname, str(native_path))

            located = self._locate(fullname)
            if located is None:
                return None
            relpath, is_package = located
            origin: str = f"{self._root}/{relpath}"
            spec = importlib.machinery.ModuleSpec(fullname, self, origin=origin, is_package=is_package)
            spec.has_location = True
            if is_package is True:
                spec.submodule_search_locations.append(f"{self._root}/{relpath.rpartition('/')[0]}")
            return spec

        def create_module(self, spec):
            return None

        def exec_module(self, module) -> None:
            located = self._locate(module.__spec__.name)
            if located is None:
                raise ImportError(f"{module.__spec__.name} is not bundled")
            code = compile(_SOURCES[located[0]], module.__spec__.origin, "exec", dont_inherit=True)
            exec(code, module.__dict__)

        def is_package(self, fullname: str) -> bool:
            located = self._locate(fullname)
            return located is not None and located[1] is True

        def get_source(self, fullname: str) -> str:
            located = self._locate(fullname)
            if located is None:
                raise ImportError(f"{fullname} is not bundled")
            return _SOURCES[located[0]]

        def get_data(self, path: str) -> bytes:
            prefix: str = self._root + "/"
            norm: str = str(path).replace(os.sep, "/")
            if norm.startswith(prefix) is True:
                rel: str = norm[len(prefix):]
                if rel in _BINARIES:
                    return base64.b64decode(_BINARIES[rel].encode("ascii"))
                if rel in _SOURCES:
                    return _SOURCES[rel].encode("utf-8")
            with open(path, "rb") as f:
                return f.read()


    _INSTALLED: bool = False


    def _install() -> None:
        """Install the import hook and the external packages directory."""

        global _INSTALLED
        if _INSTALLED is True:
            return
        _INSTALLED = True

        root: pathlib.Path = _bundle_root()
        deps: pathlib.Path = root / _DEPS_DIR
        if deps.is_dir() is True and str(deps) not in sys.path:
            sys.path.insert(0, str(deps))
        sys.meta_path.insert(0, _BundleFinder(root))


    def _entry_code():
        """Compile the entry script."""

        relpath: str = f"{_ENTRY}.py"
        if relpath not in _SOURCES:
            _runtime_error(f"Entry script missing from bundle: {relpath!r}\n")
        origin: str = f"{_bundle_root()}/{relpath}"
        return origin, compile(_SOURCES[relpath], origin, "exec", dont_inherit=True)


    def main() -> None:
        """Program entrypoint."""

        _install()
        origin, code = _entry_code()
        g: dict[str, object] = {
            "__name__": "__main__",
            "__file__": origin,
            "__package__": "",
            "__builtins__": __builtins__,
        }
        exec(code, g)


    def _bootstrap_import() -> None:
        """Make importing the bundle behave like importing the entry script."""

        _install()
        origin, code = _entry_code()
        exec(code, globals())


    if __name__ == "__main__":
        main()
    else:
        _bootstrap_import()
    '''
).lstrip()
