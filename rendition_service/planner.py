"""
Rendition planning.

`plan` turns the live settings into an ordered list of specs for one image;
`resolve` binds a spec to a source width and applies upscale prevention.
Both are pure.
"""

from __future__ import annotations

from typing import List, Optional

from .models import (
    OptimizeSettings,
    RenditionSpec,
    ResizeMode,
    ResolvedRenditionJob,
    SourceImage,
)


def _valid_custom_width(value: Optional[object]) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value if value > 0 else None


def target_widths(settings: OptimizeSettings) -> List[int]:
    """Predefined widths plus the custom width, deduplicated and ascending."""
    widths = set(settings.predefined_widths)
    custom = _valid_custom_width(settings.custom_width)
    if custom is not None:
        widths.add(custom)
    return sorted(widths)


def plan(settings: OptimizeSettings, source: Optional[SourceImage] = None) -> List[RenditionSpec]:
    """
    Build one spec per target width, ascending.

    `source` is accepted for callers that plan per image; specs only depend
    on settings, so planning twice with the same settings is always identical.
    An empty list means there is nothing to do for the image.
    """
    mode = ResizeMode.FIT_INSIDE if settings.preserve_aspect_ratio else ResizeMode.EXACT_WIDTH
    return [
        RenditionSpec(
            target_width_requested=width,
            resize_mode=mode,
            prevent_upscaling=settings.prevent_upscaling,
            output_format=settings.output_format,
            quality=settings.quality,
            strip_metadata=not settings.preserve_metadata,
        )
        for width in target_widths(settings)
    ]


def resolve(spec: RenditionSpec, source_width: int) -> ResolvedRenditionJob:
    """Clamp the requested width to the source width when upscaling is prevented."""
    effective = spec.target_width_requested
    if spec.prevent_upscaling and effective > source_width:
        effective = source_width
    return ResolvedRenditionJob(spec=spec, source_width=source_width, effective_target_width=effective)
