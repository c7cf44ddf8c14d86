import asyncio
import io
import re
import uuid
from pathlib import Path
from typing import Optional

from PIL import Image, UnidentifiedImageError


DATA_DIR = Path("data")

IMAGE_NAME_RE = re.compile(r"\.(jpg|jpeg|png|gif)$", re.IGNORECASE)

# Pillow format name -> media subtype
_PIL_SUBTYPES = {"JPEG": "jpeg", "PNG": "png", "GIF": "gif", "WEBP": "webp", "BMP": "bmp"}


def uploads_dir(data_dir: Path = DATA_DIR) -> Path:
    return data_dir / "uploads"


def staging_dir(data_dir: Path = DATA_DIR) -> Path:
    return data_dir / "tmp"


def originals_dir(data_dir: Path = DATA_DIR) -> Path:
    return data_dir / "originals"


def ensure_dirs(data_dir: Path = DATA_DIR) -> None:
    uploads_dir(data_dir).mkdir(parents=True, exist_ok=True)
    staging_dir(data_dir).mkdir(parents=True, exist_ok=True)
    originals_dir(data_dir).mkdir(parents=True, exist_ok=True)


def is_image_name(name: str) -> bool:
    return bool(IMAGE_NAME_RE.search(name))


def unique_name(filename: str) -> str:
    """
    Collision-free local name for a file, e.g. '3f2a..._cat.jpg'.
    Directory parts of archive member names are dropped.
    """
    base = Path(filename).name or "upload"
    return f"{uuid.uuid4().hex}_{base}"


def _extension(filename: str) -> Optional[str]:
    suffix = Path(filename).suffix.lower().lstrip(".")
    return suffix or None


def sniff_subtype(data: bytes) -> Optional[str]:
    try:
        with Image.open(io.BytesIO(data)) as im:
            return _PIL_SUBTYPES.get((im.format or "").upper())
    except (UnidentifiedImageError, OSError):
        return None


def media_type_for(filename: str, data: Optional[bytes] = None) -> str:
    """
    Returns the image media subtype used in the data URI ('jpeg', 'png', ...).
    When the bytes are given, the format Pillow reads from them wins over the
    file extension, so a PNG named photo.jpg is sent as image/png.
    """
    if data:
        sniffed = sniff_subtype(data)
        if sniffed:
            return sniffed
    ext = _extension(filename)
    if ext:
        return "jpeg" if ext == "jpg" else ext
    return "jpeg"


def content_type_for(filename: str) -> str:
    return f"image/{media_type_for(filename)}"


async def write_temp_file(directory: Path, filename: str, data: bytes) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / unique_name(filename)
    await asyncio.to_thread(path.write_bytes, data)
    return path


async def read_file(path: Path) -> bytes:
    return await asyncio.to_thread(path.read_bytes)


async def remove_file(path: Path) -> None:
    await asyncio.to_thread(path.unlink, True)
