"""Bundle a finished export directory into a single ZIP archive."""

from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path
from zipfile import ZIP_DEFLATED, BadZipFile, ZipFile, ZipInfo

import structlog

from .errors import ArchiveError

__all__ = ["ARCHIVE_EXTENSION", "ArchiveFinalizer", "package_directory_as_zip"]

ARCHIVE_EXTENSION = ".zip"

log = structlog.get_logger("archive")


def package_directory_as_zip(source_dir: Path, destination: Path) -> Path:
    """Write every regular file under *source_dir* into a ZIP at *destination*.

    Entries are relative to *source_dir*, sorted, and keep their POSIX mode bits.
    """
    source = source_dir.resolve()
    if not source.is_dir():
        raise ArchiveError(f"archive source must be a directory (got {source})")

    with ZipFile(destination, mode="w", compression=ZIP_DEFLATED, compresslevel=9) as archive:
        for path in sorted(p for p in source.rglob("*") if p.is_file()):
            info = ZipInfo.from_file(path, arcname=path.relative_to(source).as_posix())
            info.compress_type = ZIP_DEFLATED
            with path.open("rb") as data, archive.open(info, "w") as zip_file:
                shutil.copyfileobj(data, zip_file, length=1 << 20)
    return destination


def _verify(archive_path: Path, expected: int) -> None:
    try:
        with ZipFile(archive_path) as archive:
            bad = archive.testzip()
            count = sum(1 for info in archive.infolist() if not info.is_dir())
    except BadZipFile as exc:
        raise ArchiveError(f"archive {archive_path.name} is unreadable: {exc}") from exc
    if bad is not None:
        raise ArchiveError(f"archive entry {bad} failed its CRC check")
    if count != expected:
        raise ArchiveError(f"archive holds {count} files, expected {expected}")


class ArchiveFinalizer:
    """Replaces the loose export directory with ``<name>.zip`` beside it."""

    def archive_path_for(self, export_root: Path) -> Path:
        return export_root.parent / f"{export_root.name}{ARCHIVE_EXTENSION}"

    def bundle(self, export_root: Path) -> Path:
        if not export_root.is_dir():
            raise ArchiveError(f"export directory {export_root} does not exist")
        final_path = self.archive_path_for(export_root)
        expected = sum(1 for p in export_root.rglob("*") if p.is_file())

        fd, tmp_name = tempfile.mkstemp(prefix=f".{export_root.name}.", suffix=".zip.tmp", dir=export_root.parent)
        os.close(fd)
        tmp_path = Path(tmp_name)
        try:
            package_directory_as_zip(export_root, tmp_path)
            _verify(tmp_path, expected)
            os.replace(tmp_path, final_path)
        except OSError as exc:
            tmp_path.unlink(missing_ok=True)
            raise ArchiveError(f"could not write archive {final_path}: {exc}") from exc
        except ArchiveError:
            tmp_path.unlink(missing_ok=True)
            raise

        # Only now that the archive is in place is the loose copy redundant.
        shutil.rmtree(export_root)
        log.info("archive_written", path=str(final_path), files=expected)
        return final_path
