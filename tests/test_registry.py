from __future__ import annotations

import pytest

from rendition_service.errors import InvalidTransitionError, JobNotFoundError
from rendition_service.models import RenditionFailure, RenditionResult, SourceImage
from rendition_service.registry import ImageJobRegistry, JobState, RegistryEvent


def _source(name: str = "photo.png") -> SourceImage:
    return SourceImage(filename=name, data=b"bytes", width=1000, height=500)


def _result(width: int, payload: bytes = b"x") -> RenditionResult:
    return RenditionResult(effective_width=width, height=width // 2, encoded_bytes=payload, mime_type="image/webp")


@pytest.fixture
def registry() -> ImageJobRegistry:
    return ImageJobRegistry()


def test_jobs_start_idle_in_insertion_order(registry):
    first = registry.add(_source("a.png"))
    second = registry.add(_source("b.png"))
    assert first.id != second.id
    assert [j.source.filename for j in registry.jobs()] == ["a.png", "b.png"]
    assert all(j.state is JobState.IDLE and j.progress == 0 for j in registry.jobs())
    assert registry.idle_job_ids() == [first.id, second.id]


def test_illegal_transition_rejected(registry):
    job = registry.add(_source())
    with pytest.raises(InvalidTransitionError):
        registry.transition(job.id, JobState.COMPLETE)


def test_full_lifecycle(registry):
    job = registry.add(_source())
    registry.transition(job.id, JobState.PROCESSING, progress=0)
    registry.transition(job.id, JobState.COMPLETE, progress=100)
    assert registry.get(job.id).state is JobState.COMPLETE
    with pytest.raises(InvalidTransitionError):
        registry.transition(job.id, JobState.PROCESSING)


def test_same_width_replaces_previous_result(registry):
    job = registry.add(_source())
    registry.attach_result(job.id, _result(400, b"old"))
    registry.attach_result(job.id, _result(800))
    registry.attach_result(job.id, _result(400, b"new"))
    renditions = registry.get(job.id).renditions
    assert [r.effective_width for r in renditions] == [400, 800]
    assert renditions[0].encoded_bytes == b"new"


def test_remove_single_rendition_leaves_rest_untouched(registry):
    job = registry.add(_source())
    registry.transition(job.id, JobState.PROCESSING)
    for width in (400, 800, 1200):
        registry.attach_result(job.id, _result(width))
    registry.transition(job.id, JobState.COMPLETE, progress=100)

    removed = registry.remove_rendition(job.id, 800)

    after = registry.get(job.id)
    assert removed.effective_width == 800
    assert [r.effective_width for r in after.renditions] == [400, 1200]
    assert after.state is JobState.COMPLETE
    assert after.progress == 100


def test_remove_unknown_rendition(registry):
    job = registry.add(_source())
    with pytest.raises(JobNotFoundError):
        registry.remove_rendition(job.id, 123)
    with pytest.raises(JobNotFoundError):
        registry.remove_rendition("missing", 400)


def test_updates_to_removed_job_are_dropped(registry):
    job = registry.add(_source())
    registry.transition(job.id, JobState.PROCESSING)
    assert registry.remove(job.id) is True

    assert registry.transition(job.id, JobState.COMPLETE) is None
    assert registry.attach_result(job.id, _result(400)) is False
    assert registry.set_progress(job.id, 50) is None
    assert registry.record_failure(job.id, RenditionFailure(400, "EncodeError", "x")) is False
    assert registry.remove(job.id) is False
    assert len(registry) == 0


def test_progress_never_decreases_while_processing(registry):
    job = registry.add(_source())
    registry.transition(job.id, JobState.PROCESSING, progress=0)
    registry.set_progress(job.id, 50)
    registry.set_progress(job.id, 25)
    assert registry.get(job.id).progress == 50


def test_snapshots_are_isolated(registry):
    job = registry.add(_source())
    snapshot = registry.get(job.id)
    snapshot.renditions.append(_result(400))
    snapshot.state = JobState.ERROR
    live = registry.get(job.id)
    assert live.renditions == []
    assert live.state is JobState.IDLE


def test_requeue_resets_a_finished_job(registry):
    job = registry.add(_source())
    registry.transition(job.id, JobState.PROCESSING)
    registry.attach_result(job.id, _result(400))
    registry.transition(job.id, JobState.COMPLETE, progress=100)

    requeued = registry.requeue(job.id)

    assert requeued.state is JobState.IDLE
    assert requeued.progress == 0
    assert requeued.renditions == []


def test_requeue_requires_finished_job(registry):
    job = registry.add(_source())
    with pytest.raises(InvalidTransitionError):
        registry.requeue(job.id)
    with pytest.raises(JobNotFoundError):
        registry.requeue("missing")


def test_observers_receive_snapshots_and_can_unsubscribe(registry):
    events = []
    unsubscribe = registry.subscribe(lambda event, job: events.append((event, job.state)))

    job = registry.add(_source())
    registry.transition(job.id, JobState.PROCESSING)
    unsubscribe()
    registry.remove(job.id)

    assert events == [
        (RegistryEvent.ADDED, JobState.IDLE),
        (RegistryEvent.UPDATED, JobState.PROCESSING),
    ]


def test_failing_observer_does_not_break_writes(registry):
    def broken(event, job):
        raise RuntimeError("observer bug")

    registry.subscribe(broken)
    job = registry.add(_source())
    assert registry.get(job.id).state is JobState.IDLE


def test_clear_removes_everything(registry):
    removed = []
    registry.subscribe(lambda event, job: event is RegistryEvent.REMOVED and removed.append(job.id))
    ids = [registry.add(_source()).id for _ in range(3)]
    registry.clear()
    assert removed == ids
    assert registry.jobs() == []
