"""Small helpers shared by the session, API and local script."""

from __future__ import annotations

from pathlib import PurePath
from typing import Optional

from .formats import extension_for_mime

ACCEPTED_CONTENT_TYPES = frozenset(
    {
        "image/jpeg",
        "image/jpg",
        "image/png",
        "image/webp",
        "image/gif",
        "image/avif",
        "image/tiff",
    }
)

SIZE_UNITS = ("Bytes", "KB", "MB", "GB")


def format_file_size(size_bytes: int) -> str:
    """`1536` -> `1.5 KB`."""
    if size_bytes == 0:
        return "0 Bytes"
    if size_bytes < 0:
        raise ValueError("size_bytes must be non-negative")
    value = float(size_bytes)
    i = 0
    while value >= 1024 and i < len(SIZE_UNITS) - 1:
        value /= 1024
        i += 1
    value = round(value, 2)
    if value == int(value):
        value = int(value)
    return f"{value} {SIZE_UNITS[i]}"


def calculate_progress(current: int, total: int) -> int:
    if total <= 0:
        return 0
    return round(current / total * 100)


def savings_percent(original_size: int, optimized_size: int) -> int:
    if original_size <= 0:
        return 0
    return round((original_size - optimized_size) / original_size * 100)


def is_accepted_content_type(content_type: Optional[str]) -> bool:
    if not content_type:
        return False
    return content_type.split(";", 1)[0].strip().lower() in ACCEPTED_CONTENT_TYPES


def download_filename(
    original_name: str,
    suffix: str,
    mime_type: Optional[str] = None,
    width: Optional[int] = None,
) -> str:
    """
    `<name>-<width>w-<suffix>.<ext>` for renditions, `<name>-<suffix>.<ext>`
    for the unmodified original (extension kept from the original name).
    """
    path = PurePath(original_name or "image")
    stem = path.stem
    if width is not None:
        extension = extension_for_mime(mime_type)
        return f"{stem}-{width}w-{suffix}.{extension}"
    extension = path.suffix.lstrip(".") or "jpg"
    return f"{stem}-{suffix}.{extension}"
