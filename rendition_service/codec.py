"""
Image codec adapter on top of Pillow.

Stateless helpers: decode bytes, compute target dimensions, resize, drop or
carry metadata, and encode to one of the table formats in `formats`.
"""

from __future__ import annotations

from dataclasses import dataclass
from io import BytesIO
import logging
from typing import Optional, Tuple

from PIL import Image, UnidentifiedImageError

from . import config
from .errors import DecodeError, EncodeError
from .formats import OutputFormat

logger = logging.getLogger(__name__)

DECODE_ERRORS = (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, ValueError)

# Metadata keys Pillow keeps in `Image.info` and re-emits on save for some formats.
METADATA_KEYS = ("exif", "icc_profile", "comment", "xmp", "XML:com.adobe.xmp")

# Modes written without conversion; anything else goes through RGB(A) first.
NATIVE_MODES = {
    "PNG": frozenset({"1", "L", "LA", "P", "RGB", "RGBA", "I", "I;16"}),
    "GIF": frozenset({"1", "L", "LA", "P", "RGB", "RGBA", "I", "I;16"}),
    "WEBP": frozenset({"RGB", "RGBA"}),
    "AVIF": frozenset({"RGB", "RGBA"}),
}


@dataclass
class EncodedImage:
    data: bytes
    width: int
    height: int
    mime_type: str


def decode_image(image_bytes: bytes) -> Image.Image:
    """Decode and fully load an image, raising DecodeError for bad input."""
    try:
        image = Image.open(BytesIO(image_bytes))
        image.load()
    except DECODE_ERRORS as exc:
        raise DecodeError(f"Invalid image data: {exc}") from exc
    return image


def probe_dimensions(image_bytes: bytes) -> Tuple[int, int]:
    """Return (width, height) without decoding pixel data."""
    try:
        with Image.open(BytesIO(image_bytes)) as image:
            return image.size
    except DECODE_ERRORS as exc:
        raise DecodeError(f"Invalid image data: {exc}") from exc


def compute_target_size(
    width: int,
    height: int,
    target_width: int,
    allow_enlarge: bool = True,
) -> Tuple[int, int]:
    """
    Dimensions for a width-only resize.

    Only the width is constrained, so the height always follows the source
    aspect ratio. Without enlargement the source size is kept as-is.
    """
    if target_width <= 0 or width <= 0:
        raise EncodeError(f"Invalid target width {target_width} for {width}px source")
    if target_width >= width and not allow_enlarge:
        return width, height
    scale = target_width / width
    new_h = max(1, round(height * scale))
    return target_width, new_h


def resize_image(image: Image.Image, size: Tuple[int, int]) -> Image.Image:
    if image.mode == "P":
        image = image.convert("RGBA")
    if image.size == size:
        return image.copy()
    resized = image.resize(size, Image.Resampling.LANCZOS)
    resized.info = dict(image.info)
    return resized


def strip_metadata(image: Image.Image) -> Image.Image:
    """Drop EXIF, ICC profile, XMP and comments carried in `Image.info`."""
    image.info = {k: v for k, v in image.info.items() if k not in METADATA_KEYS}
    return image


def _to_rgb(image: Image.Image) -> Image.Image:
    has_alpha = "A" in image.getbands() or "transparency" in image.info
    return image.convert("RGBA" if has_alpha else "RGB")


def _prepare_mode(image: Image.Image, fmt: OutputFormat) -> Image.Image:
    if fmt.pillow_format == "JPEG":
        if image.mode in ("RGBA", "LA", "PA"):
            background = Image.new("RGB", image.size, (255, 255, 255))
            background.paste(image, mask=image.getchannel("A"))
            background.info = image.info
            return background
        if image.mode not in ("RGB", "L", "CMYK"):
            return image.convert("RGB")
    elif fmt.pillow_format == "TIFF":
        if image.mode in ("I;16", "I;16B"):
            return image.convert("I")
    elif image.mode not in NATIVE_MODES.get(fmt.pillow_format, ()):
        # CMYK, YCbCr, LAB and friends
        return _to_rgb(image)
    return image


def _save_options(
    image: Image.Image,
    fmt: OutputFormat,
    quality: int,
    keep_metadata: bool,
    settings: config.Settings,
) -> dict:
    options: dict = {"quality": quality} if fmt.lossy else {}
    if fmt.pillow_format == "JPEG":
        options.update(optimize=True, progressive=settings.jpeg_progressive)
    elif fmt.pillow_format == "PNG":
        options.update(optimize=True, compress_level=settings.png_compress_level)
    elif fmt.pillow_format == "WEBP":
        options.update(method=settings.webp_method)
    elif fmt.pillow_format == "AVIF":
        options.update(speed=settings.avif_speed)
    elif fmt.pillow_format == "GIF":
        options.update(optimize=True)
    elif fmt.pillow_format == "TIFF":
        options.update(compression=settings.tiff_compression)

    if keep_metadata:
        exif = image.getexif()
        if fmt.supports_exif and exif:
            options["exif"] = exif.tobytes()
        icc_profile = image.info.get("icc_profile")
        if fmt.supports_icc and icc_profile:
            options["icc_profile"] = icc_profile
    return options


def encode_image(
    image: Image.Image,
    fmt: OutputFormat,
    quality: int,
    keep_metadata: bool,
    settings: Optional[config.Settings] = None,
) -> EncodedImage:
    """Encode `image` to `fmt`; quality is ignored by lossless formats."""
    settings = settings or config.get_settings()
    if not keep_metadata:
        image = strip_metadata(image)
    prepared = _prepare_mode(image, fmt)
    options = _save_options(prepared, fmt, quality, keep_metadata, settings)

    buf = BytesIO()
    try:
        prepared.save(buf, format=fmt.pillow_format, **options)
    except (OSError, ValueError, KeyError, TypeError) as exc:
        raise EncodeError(f"Failed to encode {fmt.key}: {exc}") from exc

    logger.debug(
        "codec: encoded %dx%d %s quality=%d bytes=%d",
        prepared.width,
        prepared.height,
        fmt.key,
        quality,
        buf.tell(),
    )
    return EncodedImage(
        data=buf.getvalue(),
        width=prepared.width,
        height=prepared.height,
        mime_type=fmt.mime_type,
    )
