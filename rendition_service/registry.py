"""
In-memory image job registry.

Single writer (the orchestrator, plus explicit user actions), many readers.
Readers get snapshots; no isolation is offered across separate reads.
Updates addressed to a job id that has since been removed are dropped.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
import logging
from threading import RLock
from typing import Callable, Dict, List, Optional
import uuid

from .errors import InvalidTransitionError, JobNotFoundError
from .models import RenditionFailure, RenditionResult, SourceImage

logger = logging.getLogger(__name__)


class JobState(str, Enum):
    IDLE = "idle"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"
    NO_OP = "no_op"


TERMINAL_STATES = frozenset({JobState.COMPLETE, JobState.ERROR, JobState.NO_OP})

TRANSITIONS = {
    JobState.IDLE: frozenset({JobState.PROCESSING}),
    JobState.PROCESSING: TERMINAL_STATES,
    JobState.COMPLETE: frozenset({JobState.IDLE}),
    JobState.ERROR: frozenset({JobState.IDLE}),
    JobState.NO_OP: frozenset({JobState.IDLE}),
}


class RegistryEvent(str, Enum):
    ADDED = "added"
    UPDATED = "updated"
    REMOVED = "removed"
    RENDITION_REMOVED = "rendition_removed"


@dataclass
class ImageJob:
    id: str
    source: SourceImage
    state: JobState = JobState.IDLE
    progress: int = 0
    renditions: List[RenditionResult] = field(default_factory=list)
    failures: List[RenditionFailure] = field(default_factory=list)
    error: Optional[str] = None

    def snapshot(self) -> "ImageJob":
        return replace(self, renditions=list(self.renditions), failures=list(self.failures))

    def rendition(self, width: int) -> Optional[RenditionResult]:
        for result in self.renditions:
            if result.effective_width == width:
                return result
        return None


Observer = Callable[[RegistryEvent, ImageJob], None]


class ImageJobRegistry:
    def __init__(self) -> None:
        self._jobs: Dict[str, ImageJob] = {}
        self._observers: List[Observer] = []
        self._lock = RLock()

    def __len__(self) -> int:
        return len(self._jobs)

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._jobs

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register `observer`; the returned callable unsubscribes it."""
        with self._lock:
            self._observers.append(observer)

        def unsubscribe() -> None:
            with self._lock:
                if observer in self._observers:
                    self._observers.remove(observer)

        return unsubscribe

    def _notify(self, event: RegistryEvent, job: ImageJob) -> None:
        snapshot = job.snapshot()
        for observer in list(self._observers):
            try:
                observer(event, snapshot)
            except Exception:  # noqa: BLE001
                logger.exception("Registry observer failed on %s for job %s", event.value, job.id)

    def get(self, job_id: str) -> ImageJob:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            return job.snapshot()

    def jobs(self) -> List[ImageJob]:
        """All jobs in insertion order."""
        with self._lock:
            return [job.snapshot() for job in self._jobs.values()]

    def idle_job_ids(self) -> List[str]:
        with self._lock:
            return [job.id for job in self._jobs.values() if job.state is JobState.IDLE]

    def add(self, source: SourceImage, job_id: Optional[str] = None) -> ImageJob:
        job = ImageJob(id=job_id or uuid.uuid4().hex, source=source)
        with self._lock:
            if job.id in self._jobs:
                raise ValueError(f"Duplicate job id {job.id}")
            self._jobs[job.id] = job
            self._notify(RegistryEvent.ADDED, job)
            return job.snapshot()

    def remove(self, job_id: str) -> bool:
        with self._lock:
            job = self._jobs.pop(job_id, None)
            if job is None:
                return False
            self._notify(RegistryEvent.REMOVED, job)
            return True

    def clear(self) -> None:
        with self._lock:
            for job_id in list(self._jobs):
                self.remove(job_id)

    def transition(self, job_id: str, target: JobState, **fields) -> Optional[ImageJob]:
        """
        Move a job to `target` and apply `fields` in the same update.

        Returns None when the job no longer exists.
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                logger.debug("Dropping %s transition for removed job %s", target.value, job_id)
                return None
            if target not in TRANSITIONS[job.state]:
                raise InvalidTransitionError(job_id, job.state.value, target.value)
            job.state = target
            for name, value in fields.items():
                setattr(job, name, value)
            self._notify(RegistryEvent.UPDATED, job)
            return job.snapshot()

    def set_progress(self, job_id: str, progress: int) -> Optional[ImageJob]:
        """Progress only moves forward while a job is processing."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None
            progress = min(max(progress, 0), 100)
            if job.state is JobState.PROCESSING and progress < job.progress:
                return job.snapshot()
            job.progress = progress
            self._notify(RegistryEvent.UPDATED, job)
            return job.snapshot()

    def attach_result(self, job_id: str, result: RenditionResult) -> bool:
        """Add a rendition; one already present at the same width is replaced."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return False
            for index, existing in enumerate(job.renditions):
                if existing.effective_width == result.effective_width:
                    job.renditions[index] = result
                    break
            else:
                job.renditions.append(result)
            self._notify(RegistryEvent.UPDATED, job)
            return True

    def record_failure(self, job_id: str, failure: RenditionFailure) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return False
            job.failures.append(failure)
            self._notify(RegistryEvent.UPDATED, job)
            return True

    def remove_rendition(self, job_id: str, width: int) -> RenditionResult:
        """Discard the rendition at `width`, leaving the rest of the job untouched."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            result = job.rendition(width)
            if result is None:
                raise JobNotFoundError(job_id, width)
            job.renditions.remove(result)
            self._notify(RegistryEvent.RENDITION_REMOVED, job)
            return result

    def requeue(self, job_id: str) -> ImageJob:
        """Explicit resubmission: back to idle with results cleared."""
        job = self.transition(
            job_id,
            JobState.IDLE,
            progress=0,
            renditions=[],
            failures=[],
            error=None,
        )
        if job is None:
            raise JobNotFoundError(job_id)
        return job

