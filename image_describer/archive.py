import io
import logging
import zipfile
import zlib
from dataclasses import dataclass
from typing import Iterator, Optional

from .processing import is_image_name

logger = logging.getLogger(__name__)

ARCHIVE_CONTENT_TYPES = ("application/zip", "application/x-zip-compressed")


class ArchiveError(Exception):
    """The uploaded container could not be opened. Fatal for the whole batch."""


@dataclass(frozen=True)
class ArchiveEntry:
    name: str
    data: bytes


def is_archive(content_type: Optional[str], filename: Optional[str]) -> bool:
    if content_type in ARCHIVE_CONTENT_TYPES:
        return True
    return bool(filename) and filename.lower().endswith(".zip")


def iter_image_entries(data: bytes) -> Iterator[ArchiveEntry]:
    """
    Yields the image members of a zip archive in container order.

    Directories and members without a jpg/jpeg/png/gif extension are skipped.
    The archive is opened eagerly so a corrupt container fails before the
    first entry is produced.
    """
    try:
        archive = zipfile.ZipFile(io.BytesIO(data))
    except (zipfile.BadZipFile, OSError, ValueError) as e:
        raise ArchiveError(f"Could not open archive: {e}") from e

    return _entries(archive)


def _entries(archive: zipfile.ZipFile) -> Iterator[ArchiveEntry]:
    with archive:
        for info in archive.infolist():
            if info.is_dir() or not is_image_name(info.filename):
                logger.debug("Ignoring archive member %s", info.filename)
                continue
            try:
                payload = archive.read(info)
            except (zipfile.BadZipFile, zlib.error, OSError, ValueError, RuntimeError) as e:
                raise ArchiveError(f"Could not read {info.filename}: {e}") from e
            yield ArchiveEntry(name=info.filename, data=payload)
