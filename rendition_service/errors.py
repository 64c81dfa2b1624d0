"""Error taxonomy shared by the planner, executor, orchestrator and API."""

from __future__ import annotations


class RenditionServiceError(Exception):
    """Base class for every error raised by the service."""


class ValidationError(RenditionServiceError, ValueError):
    """Submitted input is missing, too large, or not a decodable image."""


class DecodeError(RenditionServiceError, ValueError):
    """Source bytes could not be decoded (corrupt or unsupported input)."""


class EncodeError(RenditionServiceError, ValueError):
    """The encoder rejected the requested output parameters."""


class JobLevelError(RenditionServiceError):
    """A job failed before any rendition was attempted."""


class NoRenditionsPlanned(RenditionServiceError):
    """No target widths were selected, so the job has nothing to do."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"No renditions planned for job {job_id}")
        self.job_id = job_id


class JobNotFoundError(RenditionServiceError, KeyError):
    def __init__(self, job_id: str, width: int | None = None) -> None:
        message = f"Unknown job {job_id}" if width is None else f"Job {job_id} has no {width}px rendition"
        super().__init__(message)
        self.job_id = job_id
        self.width = width

    def __str__(self) -> str:
        return self.args[0]


class InvalidTransitionError(RenditionServiceError):
    def __init__(self, job_id: str, current: str, target: str) -> None:
        super().__init__(f"Job {job_id} cannot move from {current} to {target}")
        self.job_id = job_id
        self.current = current
        self.target = target


class BatchInProgressError(RenditionServiceError):
    """Raised when a batch is requested while another one is still running."""
