"""
Configuration loader for the rendition optimizer service.

Service-level knobs read from the environment (or `.env`): defaults for the
single-rendition wire endpoint, upload and concurrency limits, and encoder
tunables. User-facing optimization settings live in the session instead.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SUPPORTED_FORMATS = ("jpeg", "png", "webp", "avif", "gif", "tiff")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Wire-format defaults for absent/unparseable form fields
    default_width: int = Field(1920, gt=0)
    default_quality: int = 80
    default_format: str = "webp"

    # Session
    download_suffix: str = "isolay"
    max_upload_bytes: int = Field(50 * 1024 * 1024, gt=0)
    max_concurrent_jobs: int = 1

    # Encoder tunables
    jpeg_progressive: bool = True
    png_compress_level: int = 9
    webp_method: int = Field(6, ge=0, le=6)
    avif_speed: int = Field(6, ge=0, le=10)
    tiff_compression: str = "tiff_lzw"

    # API
    log_level: str = "INFO"

    @field_validator("default_format")
    @classmethod
    def validate_default_format(cls, v: str) -> str:
        v = v.lower()
        if v not in SUPPORTED_FORMATS:
            raise ValueError(f"DEFAULT_FORMAT must be one of {'|'.join(SUPPORTED_FORMATS)}")
        return v

    @field_validator("default_quality")
    @classmethod
    def validate_default_quality(cls, v: int) -> int:
        if not 1 <= v <= 100:
            raise ValueError("DEFAULT_QUALITY must be between 1 and 100")
        return v

    @field_validator("png_compress_level")
    @classmethod
    def validate_png_compress_level(cls, v: int) -> int:
        if not 0 <= v <= 9:
            raise ValueError("PNG_COMPRESS_LEVEL must be between 0 and 9")
        return v

    @field_validator("max_concurrent_jobs")
    @classmethod
    def validate_max_concurrent_jobs(cls, v: int) -> int:
        if v < 1:
            raise ValueError("MAX_CONCURRENT_JOBS must be at least 1")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Settings are parsed once per process; tests clear the cache."""
    return Settings()
