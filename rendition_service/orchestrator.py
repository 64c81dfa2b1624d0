"""
Batch orchestrator.

Runs every idle job in the registry: plan its renditions from the settings
current at the moment the job starts, execute them one by one in ascending
width order, and record progress after each attempt. A failing rendition
is skipped; a failing job never stops the batch.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from dataclasses import dataclass, field
import logging
from typing import Callable, Dict, List, Optional

from . import config, planner
from .errors import DecodeError, EncodeError, JobLevelError, NoRenditionsPlanned
from .executor import execute
from .models import OptimizeSettings, RenditionFailure, RenditionResult, RenditionSpec, SourceImage
from .registry import ImageJobRegistry, JobState
from .utils import calculate_progress

logger = logging.getLogger(__name__)

SettingsProvider = Callable[[], OptimizeSettings]
Executor = Callable[[SourceImage, RenditionSpec, Optional[config.Settings]], RenditionResult]


@dataclass
class BatchReport:
    outcomes: Dict[str, Optional[JobState]] = field(default_factory=dict)

    @property
    def counts(self) -> Counter:
        return Counter(state.value if state else "removed" for state in self.outcomes.values())


def _plan(job_id: str, source: SourceImage, get_settings: SettingsProvider) -> List[RenditionSpec]:
    try:
        specs = planner.plan(get_settings(), source)
    except Exception as exc:  # noqa: BLE001
        raise JobLevelError(f"{type(exc).__name__}: {exc}") from exc
    if not specs:
        raise NoRenditionsPlanned(job_id)
    return specs


async def _process_job(
    registry: ImageJobRegistry,
    job_id: str,
    get_settings: SettingsProvider,
    executor: Executor,
    service_settings: config.Settings,
) -> Optional[JobState]:
    """Run one job to a terminal state. Returns None if it was removed meanwhile."""
    job = registry.transition(
        job_id,
        JobState.PROCESSING,
        progress=0,
        renditions=[],
        failures=[],
        error=None,
    )
    if job is None:
        return None

    try:
        specs = _plan(job_id, job.source, get_settings)
    except NoRenditionsPlanned as exc:
        logger.info("%s: %s", job.source.filename, exc)
        registry.transition(job_id, JobState.NO_OP, progress=0, error=str(exc))
        return JobState.NO_OP
    except JobLevelError as exc:
        logger.exception("Job %s failed before any rendition was attempted", job_id)
        registry.transition(job_id, JobState.ERROR, progress=0, error=str(exc))
        return JobState.ERROR

    total = len(specs)
    succeeded = 0
    for attempted, spec in enumerate(specs, start=1):
        if job_id not in registry:
            logger.info("Job %s was removed mid-batch; skipping remaining renditions", job_id)
            return None
        width = spec.target_width_requested
        try:
            result = await asyncio.to_thread(executor, job.source, spec, service_settings)
        except (DecodeError, EncodeError) as exc:
            logger.warning("%s: %dpx rendition failed: %s", job.source.filename, width, exc)
            registry.record_failure(job_id, RenditionFailure(width, type(exc).__name__, str(exc)))
        except Exception as exc:  # noqa: BLE001
            logger.exception("%s: %dpx rendition raised unexpectedly", job.source.filename, width)
            registry.record_failure(job_id, RenditionFailure(width, type(exc).__name__, str(exc)))
        else:
            succeeded += 1
            registry.attach_result(job_id, result)
        registry.set_progress(job_id, calculate_progress(attempted, total))

    if succeeded:
        if registry.transition(job_id, JobState.COMPLETE, progress=100) is None:
            return None
        logger.info("%s: %d/%d renditions produced", job.source.filename, succeeded, total)
        return JobState.COMPLETE

    if registry.transition(job_id, JobState.ERROR, progress=0, error=f"All {total} renditions failed") is None:
        return None
    logger.warning("%s: all %d renditions failed", job.source.filename, total)
    return JobState.ERROR


async def _guarded(
    registry: ImageJobRegistry,
    job_id: str,
    get_settings: SettingsProvider,
    executor: Executor,
    service_settings: config.Settings,
) -> Optional[JobState]:
    try:
        return await _process_job(registry, job_id, get_settings, executor, service_settings)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Job %s aborted", job_id)
        try:
            registry.transition(job_id, JobState.ERROR, progress=0, error=str(exc))
        except Exception:  # noqa: BLE001
            logger.exception("Could not mark job %s as failed", job_id)
            return None
        return JobState.ERROR


async def run_batch(
    registry: ImageJobRegistry,
    get_settings: SettingsProvider,
    executor: Executor = execute,
    service_settings: Optional[config.Settings] = None,
    max_concurrent_jobs: Optional[int] = None,
) -> BatchReport:
    """
    Process all jobs that are idle when the batch starts.

    With `max_concurrent_jobs` of 1 (the default from config) jobs run
    sequentially in submission order; above 1 independent jobs overlap, but
    renditions inside a job stay sequential so its progress is monotonic.
    """
    service_settings = service_settings or config.get_settings()
    limit = max_concurrent_jobs or service_settings.max_concurrent_jobs
    job_ids = registry.idle_job_ids()
    report = BatchReport()
    logger.info("Starting batch of %d job(s), concurrency=%d", len(job_ids), limit)

    if limit <= 1:
        for job_id in job_ids:
            report.outcomes[job_id] = await _guarded(
                registry, job_id, get_settings, executor, service_settings
            )
    else:
        semaphore = asyncio.Semaphore(limit)

        async def bounded(job_id: str) -> Optional[JobState]:
            async with semaphore:
                return await _guarded(registry, job_id, get_settings, executor, service_settings)

        outcomes = await asyncio.gather(*(bounded(job_id) for job_id in job_ids))
        report.outcomes.update(zip(job_ids, outcomes))

    logger.info("Batch finished: %s", dict(report.counts))
    return report
