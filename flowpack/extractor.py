"""Lazy extraction of embedded archives.

A directory is extracted only when it does not exist yet. Once it exists it is
never touched again, so user edits survive restarts.
"""

from dataclasses import dataclass
import logging
import os
import pathlib
import shutil
import tempfile
import zipfile

from flowpack.context import RuntimeContext
from flowpack.runmode import RunMode


class ExtractionError(RuntimeError):
    """Raised when an embedded archive cannot be materialized."""


@dataclass(frozen=True, slots=True)
class ExtractionReport:
    """What :func:`materialize` did.

    :ivar user_dir_extracted: User data was extracted in this call.
    :ivar locales_extracted: Locales were extracted in this call.
    """

    user_dir_extracted: bool
    locales_extracted: bool


def _safe_extract_zipfile(*, zip_path: pathlib.Path, dest_dir: pathlib.Path) -> None:
    """Safely extract a zip file on disk into a destination directory.

    :param zip_path: Zip file path.
    :param dest_dir: Destination directory.
    :raises ExtractionError: On unsafe member names.
    """

    dest_dir.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(zip_path, mode="r") as zf:
        for info in zf.infolist():
            name: str = info.filename
            if "\\" in name:
                raise ExtractionError(f"Refusing to extract backslash path: {name!r}")
            if ":" in name:
                raise ExtractionError(f"Refusing to extract drive-like path: {name!r}")
            p = pathlib.PurePosixPath(name)
            if p.is_absolute() is True:
                raise ExtractionError(f"Refusing to extract absolute path: {name!r}")
            if ".." in p.parts:
                raise ExtractionError(f"Refusing to extract parent-traversal path: {name!r}")

            out_path: pathlib.Path = dest_dir.joinpath(*p.parts)
            if info.is_dir() is True:
                out_path.mkdir(parents=True, exist_ok=True)
                continue

            out_path.parent.mkdir(parents=True, exist_ok=True)
            with zf.open(info, mode="r") as src, open(out_path, "wb") as dst:
                shutil.copyfileobj(src, dst)


def extract_archive(*, archive: pathlib.Path, target: pathlib.Path) -> bool:
    """Extract an archive into a directory that must not exist yet.

    Members are written to a temporary sibling first and the directory is
    renamed into place, so ``target`` is either absent or complete. If another
    process created ``target`` in the meantime, the local copy is discarded.

    :param archive: Zip archive.
    :param target: Directory to create.
    :returns: ``True`` if this call created ``target``.
    :raises ExtractionError: If the archive is missing, corrupt or unwritable.
    """

    if archive.is_file() is False:
        raise ExtractionError(f"Embedded archive not found: {archive}")

    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        staging: pathlib.Path = pathlib.Path(
            tempfile.mkdtemp(prefix=f".{target.name}.partial-", dir=target.parent)
        )
    except OSError as e:
        raise ExtractionError(f"Cannot prepare extraction into {target}: {e}") from e

    try:
        _safe_extract_zipfile(zip_path=archive, dest_dir=staging)
    except (zipfile.BadZipFile, OSError, ExtractionError) as e:
        shutil.rmtree(staging, ignore_errors=True)
        if isinstance(e, ExtractionError):
            raise
        raise ExtractionError(f"Failed to extract {archive} into {target}: {e}") from e

    try:
        os.rename(staging, target)
    except OSError as e:
        shutil.rmtree(staging, ignore_errors=True)
        if target.is_dir() is True:
            return False
        raise ExtractionError(f"Failed to move extracted files into {target}: {e}") from e
    return True


def ensure_extracted(
    *,
    archive: pathlib.Path,
    target: pathlib.Path,
    required: bool = True,
    create_empty: bool = False,
    logger: logging.Logger | None = None,
) -> bool:
    """Extract ``archive`` into ``target`` unless ``target`` already exists.

    :param archive: Embedded archive.
    :param target: Real filesystem directory.
    :param required: Whether a missing archive is fatal.
    :param create_empty: Create an empty ``target`` when an optional archive is missing.
    :param logger: Optional logger.
    :returns: ``True`` if extraction happened in this call.
    :raises ExtractionError: If extraction fails, or a required archive is missing.
    """

    if logger is None:
        logger = logging.getLogger("flowpack")

    if target.exists() is True:
        logger.debug(f"flowpack: {target} exists, extraction skipped")
        return False

    if archive.is_file() is False and required is False:
        logger.warning(f"flowpack: embedded archive {archive.name} not found; {target} not populated")
        if create_empty is True:
            target.mkdir(parents=True, exist_ok=True)
        return False

    extracted: bool = extract_archive(archive=archive, target=target)
    if extracted is True:
        logger.info(f"flowpack: extracted {archive.name} -> {target}")
    return extracted


def materialize(ctx: RuntimeContext, *, logger: logging.Logger | None = None) -> ExtractionReport:
    """Extract the embedded user data and locales for a production run.

    :param ctx: Runtime context.
    :param logger: Optional logger.
    :returns: Extraction report.
    :raises ExtractionError: If a required archive cannot be extracted.
    """

    if ctx.mode is RunMode.DESIGN_TIME:
        return ExtractionReport(user_dir_extracted=False, locales_extracted=False)

    locked: bool = ctx.mode is RunMode.PRODUCTION_LOCKED
    user: bool = ensure_extracted(
        archive=ctx.user_archive,
        target=ctx.paths.user_dir,
        required=locked,
        create_empty=True,
        logger=logger,
    )
    locales: bool = ensure_extracted(
        archive=ctx.locales_archive,
        target=ctx.paths.locales_dir,
        required=False,
        logger=logger,
    )
    return ExtractionReport(user_dir_extracted=user, locales_extracted=locales)
