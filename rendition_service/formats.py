"""Output format table used by the codec adapter."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutputFormat:
    key: str
    pillow_format: str
    mime_type: str
    extension: str
    lossy: bool  # False: quality is accepted but ignored
    supports_exif: bool = True
    supports_icc: bool = True


FORMATS = {
    "jpeg": OutputFormat("jpeg", "JPEG", "image/jpeg", "jpg", lossy=True),
    "png": OutputFormat("png", "PNG", "image/png", "png", lossy=False),
    "webp": OutputFormat("webp", "WEBP", "image/webp", "webp", lossy=True),
    "avif": OutputFormat("avif", "AVIF", "image/avif", "avif", lossy=True),
    "gif": OutputFormat("gif", "GIF", "image/gif", "gif", lossy=False, supports_exif=False, supports_icc=False),
    "tiff": OutputFormat("tiff", "TIFF", "image/tiff", "tiff", lossy=False, supports_exif=False),
}

ALIASES = {"jpg": "jpeg", "tif": "tiff"}

FALLBACK_FORMAT = FORMATS["webp"]


def resolve_format(name: Optional[str]) -> OutputFormat:
    """Map a user-supplied format string to a table entry, falling back to WEBP."""
    key = (name or "").strip().lower()
    key = ALIASES.get(key, key)
    fmt = FORMATS.get(key)
    if fmt is None:
        logger.debug("Unrecognized output format %r, falling back to %s", name, FALLBACK_FORMAT.key)
        return FALLBACK_FORMAT
    return fmt


def extension_for_mime(mime_type: Optional[str], default: str = "webp") -> str:
    """`image/jpeg; q=1` -> `jpeg`. Mirrors how downloads name their files."""
    if not mime_type or "/" not in mime_type:
        return default
    subtype = mime_type.split("/", 1)[1].split(";", 1)[0].strip()
    return subtype or default
