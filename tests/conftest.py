"""Pytest configuration.

Images are synthesized in memory with Pillow so the suite needs no fixture
files. Textured content (gradient plus noise) keeps encoded sizes realistic.
"""

from __future__ import annotations

from io import BytesIO

import pytest
from PIL import Image

from rendition_service import config


def _textured(width: int, height: int) -> Image.Image:
    gradient = Image.linear_gradient("L").resize((width, height))
    noise = Image.effect_noise((width, height), 48).convert("L")
    mirrored = gradient.transpose(Image.Transpose.FLIP_LEFT_RIGHT)
    return Image.merge("RGB", (gradient, noise, mirrored))


@pytest.fixture
def make_image():
    """Factory: encoded image bytes of the given size/format/mode."""

    def _make(width: int, height: int, fmt: str = "PNG", mode: str = "RGB", **save_kwargs) -> bytes:
        image = _textured(width, height)
        if mode == "RGBA":
            image.putalpha(Image.linear_gradient("L").resize((width, height)))
        elif mode != "RGB":
            image = image.convert(mode)
        buf = BytesIO()
        image.save(buf, format=fmt, **save_kwargs)
        return buf.getvalue()

    return _make


@pytest.fixture
def service_settings() -> config.Settings:
    return config.Settings()


@pytest.fixture(autouse=True)
def _fresh_settings_cache():
    config.get_settings.cache_clear()
    yield
    config.get_settings.cache_clear()
