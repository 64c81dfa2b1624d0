"""
Rendition executor.

`execute` turns one source image and one RenditionSpec into an encoded
rendition. The wire endpoint calls it directly; the batch orchestrator
calls it from a worker thread, once per planned width.
"""

from __future__ import annotations

import logging
from typing import Optional

from . import codec, config
from .formats import resolve_format
from .models import RenditionResult, RenditionSpec, SourceImage
from .planner import resolve

logger = logging.getLogger(__name__)


def execute(
    source: SourceImage,
    spec: RenditionSpec,
    settings: Optional[config.Settings] = None,
) -> RenditionResult:
    """
    Produce one rendition of `source`.

    The source is decoded again rather than trusting `source.width`, so the
    upscale rule always sees the real pixel width.

    Raises:
        DecodeError: the source bytes cannot be decoded.
        EncodeError: the encoder rejects the parameter combination.
    """
    image = codec.decode_image(source.data)
    job = resolve(spec, image.width)

    size = codec.compute_target_size(
        image.width,
        image.height,
        job.effective_target_width,
        allow_enlarge=not spec.prevent_upscaling,
    )
    resized = codec.resize_image(image, size)

    fmt = resolve_format(spec.output_format)
    encoded = codec.encode_image(
        resized,
        fmt,
        quality=spec.quality,
        keep_metadata=not spec.strip_metadata,
        settings=settings,
    )
    logger.debug(
        "Rendered %s: requested=%d effective=%d mode=%s -> %dx%d %s (%d bytes)",
        source.filename,
        spec.target_width_requested,
        job.effective_target_width,
        spec.resize_mode.value,
        encoded.width,
        encoded.height,
        encoded.mime_type,
        len(encoded.data),
    )
    return RenditionResult(
        effective_width=encoded.width,
        height=encoded.height,
        encoded_bytes=encoded.data,
        mime_type=encoded.mime_type,
        requested_width=spec.target_width_requested,
    )
