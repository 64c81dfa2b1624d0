"""
Session facade used by the API and the local script.

Holds the job registry and the live user settings, validates submissions,
triggers batches and resolves downloads.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from threading import Lock
from typing import Iterable, List, Optional, Tuple

from . import codec, config
from .errors import BatchInProgressError, DecodeError, JobNotFoundError, ValidationError
from .executor import execute
from .models import OptimizeSettings, SourceImage
from .orchestrator import BatchReport, Executor, run_batch
from .registry import ImageJob, ImageJobRegistry
from .utils import download_filename, is_accepted_content_type

logger = logging.getLogger(__name__)


@dataclass
class UploadedFile:
    filename: str
    data: bytes
    content_type: Optional[str] = None


@dataclass
class SubmissionResult:
    accepted: List[ImageJob] = field(default_factory=list)
    rejected: List[Tuple[str, str]] = field(default_factory=list)  # (filename, reason)


class SettingsStore:
    """Current user settings; replaced atomically, read at job start."""

    def __init__(self, initial: Optional[OptimizeSettings] = None) -> None:
        self._settings = initial or OptimizeSettings()
        self._lock = Lock()

    def current(self) -> OptimizeSettings:
        with self._lock:
            return self._settings

    def replace(self, settings: OptimizeSettings) -> OptimizeSettings:
        with self._lock:
            self._settings = settings
            return settings


class OptimizerSession:
    def __init__(
        self,
        registry: Optional[ImageJobRegistry] = None,
        settings_store: Optional[SettingsStore] = None,
        service_settings: Optional[config.Settings] = None,
        executor: Executor = execute,
    ) -> None:
        self.registry = registry or ImageJobRegistry()
        self.settings_store = settings_store or SettingsStore()
        self.service_settings = service_settings or config.get_settings()
        self.executor = executor
        self._running = False

    @property
    def batch_running(self) -> bool:
        return self._running

    def validate_upload(self, upload: UploadedFile) -> SourceImage:
        """Build a SourceImage or raise ValidationError; nothing is registered."""
        if not upload.data:
            raise ValidationError(f"{upload.filename or 'upload'}: empty or missing file")
        if upload.content_type and not is_accepted_content_type(upload.content_type):
            raise ValidationError(f"{upload.filename}: unsupported type {upload.content_type}")
        if len(upload.data) > self.service_settings.max_upload_bytes:
            raise ValidationError(
                f"{upload.filename}: {len(upload.data)} bytes exceeds limit of "
                f"{self.service_settings.max_upload_bytes}"
            )
        try:
            width, height = codec.probe_dimensions(upload.data)
        except DecodeError as exc:
            raise ValidationError(f"{upload.filename}: not a decodable image") from exc
        return SourceImage(
            filename=upload.filename,
            data=upload.data,
            width=width,
            height=height,
            content_type=upload.content_type,
        )

    def submit_image(self, upload: UploadedFile) -> ImageJob:
        source = self.validate_upload(upload)
        job = self.registry.add(source)
        logger.info("Queued %s (%dx%d, %d bytes) as %s", source.filename, source.width, source.height, source.size, job.id)
        return job

    def submit_images(self, uploads: Iterable[UploadedFile]) -> SubmissionResult:
        result = SubmissionResult()
        for upload in uploads:
            try:
                result.accepted.append(self.submit_image(upload))
            except ValidationError as exc:
                logger.info("Rejected upload: %s", exc)
                result.rejected.append((upload.filename, str(exc)))
        return result

    async def optimize(self, settings: Optional[OptimizeSettings] = None) -> BatchReport:
        """Optionally replace the live settings, then process all idle jobs."""
        if self._running:
            raise BatchInProgressError("A batch is already running")
        self._running = True
        try:
            if settings is not None:
                self.settings_store.replace(settings)
            return await run_batch(
                self.registry,
                self.settings_store.current,
                executor=self.executor,
                service_settings=self.service_settings,
            )
        finally:
            self._running = False

    def download(self, job_id: str, width: Optional[int] = None) -> Tuple[str, str, bytes]:
        """Return (filename, mime type, bytes) for the original or one rendition."""
        job = self.registry.get(job_id)
        suffix = self.service_settings.download_suffix
        if width is None:
            source = job.source
            mime_type = source.content_type or "application/octet-stream"
            return download_filename(source.filename, suffix), mime_type, source.data
        result = job.rendition(width)
        if result is None:
            raise JobNotFoundError(job_id, width)
        filename = download_filename(job.source.filename, suffix, result.mime_type, result.effective_width)
        return filename, result.mime_type, result.encoded_bytes
