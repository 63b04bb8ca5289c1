"""Archive packer.

Serializes the user-data directory and the locale directory into uncompressed
ZIP archives, one stage after another, and copies the finished archives (plus
an optional standalone flows file) into the build output.
"""

from dataclasses import dataclass
import logging
import os
import pathlib
import shutil
import time
import zipfile

from flowpack import constants
from flowpack.errors import BuildError


class ArchiveError(BuildError):
    """Raised when an archive cannot be produced."""


@dataclass(frozen=True, slots=True)
class ArchiveEntry:
    """One directory to serialize.

    :ivar source_dir: Directory to archive.
    :ivar archive_path: Archive file to write.
    """

    source_dir: pathlib.Path
    archive_path: pathlib.Path


@dataclass(frozen=True, slots=True)
class PackResult:
    """Files the packer placed in the build output.

    :ivar archives: Archive copies, in stage order.
    :ivar flows_file: Copied flows file, or ``None`` if there was none.
    """

    archives: tuple[pathlib.Path, ...]
    flows_file: pathlib.Path | None


def remove_session_tokens(user_dir: pathlib.Path) -> bool:
    """Delete the per-install session token file from a user directory.

    :param user_dir: User-data directory.
    :returns: ``True`` if a file was deleted.
    """

    sessions: pathlib.Path = user_dir / constants.SESSIONS_FILE
    if sessions.is_file() is False:
        return False
    sessions.unlink()
    return True


def _iter_tree(root: pathlib.Path) -> tuple[list[str], list[str]]:
    """List a directory tree as sorted POSIX relative paths.

    :param root: Directory to walk.
    :returns: ``(dirs, files)``.
    """

    dirs: list[str] = []
    files: list[str] = []
    for cur_root, cur_dirs, cur_files in os.walk(root):
        cur_dirs.sort()
        rel_root: pathlib.Path = pathlib.Path(cur_root).relative_to(root)
        for d in cur_dirs:
            dirs.append((rel_root / d).as_posix())
        for f in sorted(cur_files):
            files.append((rel_root / f).as_posix())
    return sorted(dirs), sorted(files)


def pack_directory(entry: ArchiveEntry) -> pathlib.Path:
    """Write one directory into a stored (uncompressed) ZIP archive.

    Returns only after the archive file has been closed.

    :param entry: Directory and archive path.
    :returns: The archive path.
    :raises ArchiveError: If the directory is missing or the write fails.
    """

    if entry.source_dir.is_dir() is False:
        raise ArchiveError(f"Directory to archive does not exist: {entry.source_dir}")

    dirs, files = _iter_tree(entry.source_dir)
    entry.archive_path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path: pathlib.Path = entry.archive_path.with_name(entry.archive_path.name + ".tmp")
    try:
        with zipfile.ZipFile(tmp_path, "w", compression=zipfile.ZIP_STORED) as zf:
            # Explicit directory entries keep empty directories.
            for rel_d in dirs:
                zf.writestr(zipfile.ZipInfo(rel_d + "/"), b"")
            for rel_f in files:
                zf.write(entry.source_dir / rel_f, arcname=rel_f)
        tmp_path.replace(entry.archive_path)
    except OSError as e:
        raise ArchiveError(f"Failed to write archive {entry.archive_path}: {e}") from e
    return entry.archive_path


def pack_archives(
    entries: list[ArchiveEntry],
    *,
    output_dir: pathlib.Path,
    flows_file: pathlib.Path | None = None,
    logger: logging.Logger | None = None,
) -> PackResult:
    """Pack each entry in order, then copy the results into the build output.

    A stage starts only after the previous archive is complete. Copies happen
    after the last stage completes.

    :param entries: Archives to produce, in order.
    :param output_dir: Build output directory.
    :param flows_file: Optional standalone flows file to copy verbatim.
    :param logger: Optional logger.
    :returns: What was placed in the output directory.
    :raises ArchiveError: If any stage fails.
    """

    if logger is None:
        logger = logging.getLogger("flowpack")

    completed: list[pathlib.Path] = []
    for entry in entries:
        t0: float = time.perf_counter()
        done: pathlib.Path = pack_directory(entry)
        t1: float = time.perf_counter()
        size: int = done.stat().st_size
        logger.info(f"flowpack: packed {entry.source_dir.name} -> {done.name} ({size} bytes) in {t1 - t0:.2f}s")
        completed.append(done)

    output_dir.mkdir(parents=True, exist_ok=True)
    copies: list[pathlib.Path] = []
    flows_copy: pathlib.Path | None = None
    try:
        for archive in completed:
            dest: pathlib.Path = output_dir / archive.name
            shutil.copyfile(archive, dest)
            copies.append(dest)

        if flows_file is not None and flows_file.is_file() is True:
            flows_copy = output_dir / flows_file.name
            shutil.copyfile(flows_file, flows_copy)
    except OSError as e:
        raise ArchiveError(f"Failed to copy archives into {output_dir}: {e}") from e

    if flows_copy is None:
        logger.debug("flowpack: no standalone flows file to copy")
    return PackResult(archives=tuple(copies), flows_file=flows_copy)
