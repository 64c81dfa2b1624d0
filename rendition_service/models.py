"""
Value types flowing between the planner, executor and registry.

All of them are immutable once built; the registry owns the only mutable
state (see `registry.ImageJob`).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Optional

DEFAULT_WIDTHS = frozenset({400, 800})


class ResizeMode(str, Enum):
    FIT_INSIDE = "fit-inside"
    EXACT_WIDTH = "exact-width"


@dataclass(frozen=True)
class SourceImage:
    """User-submitted bytes plus the dimensions probed at submission time."""

    filename: str
    data: bytes = field(repr=False)
    width: int
    height: int
    content_type: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class OptimizeSettings:
    """Live user settings; only the orchestrator reads them, at job start."""

    output_format: str = "jpeg"
    predefined_widths: FrozenSet[int] = DEFAULT_WIDTHS
    custom_width: Optional[int] = None
    quality: int = 80
    preserve_aspect_ratio: bool = True
    prevent_upscaling: bool = True
    preserve_metadata: bool = False

    def __post_init__(self) -> None:
        if not 1 <= self.quality <= 100:
            raise ValueError("quality must be between 1 and 100")
        widths = frozenset(self.predefined_widths)
        if any(w <= 0 for w in widths):
            raise ValueError("predefined widths must be positive integers")
        object.__setattr__(self, "predefined_widths", widths)


@dataclass(frozen=True)
class RenditionSpec:
    target_width_requested: int
    resize_mode: ResizeMode
    prevent_upscaling: bool
    output_format: str
    quality: int
    strip_metadata: bool


@dataclass(frozen=True)
class ResolvedRenditionJob:
    spec: RenditionSpec
    source_width: int
    effective_target_width: int


@dataclass(frozen=True)
class RenditionResult:
    effective_width: int
    height: int
    encoded_bytes: bytes = field(repr=False)
    mime_type: str
    requested_width: Optional[int] = None

    @property
    def byte_size(self) -> int:
        return len(self.encoded_bytes)


@dataclass(frozen=True)
class RenditionFailure:
    requested_width: int
    error_type: str
    message: str
