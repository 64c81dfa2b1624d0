from __future__ import annotations

import asyncio
import threading

from rendition_service.errors import DecodeError, EncodeError
from rendition_service.executor import execute
from rendition_service.models import OptimizeSettings, SourceImage
from rendition_service.orchestrator import run_batch
from rendition_service.registry import ImageJobRegistry, JobState, RegistryEvent


def _settings(*widths: int, **kwargs) -> OptimizeSettings:
    kwargs.setdefault("output_format", "webp")
    return OptimizeSettings(predefined_widths=frozenset(widths), **kwargs)


def _add(registry: ImageJobRegistry, data: bytes, width: int, height: int, name: str = "photo.png") -> str:
    return registry.add(SourceImage(filename=name, data=data, width=width, height=height)).id


def _run(registry, settings, service_settings, **kwargs):
    provider = settings if callable(settings) else (lambda: settings)
    return asyncio.run(run_batch(registry, provider, service_settings=service_settings, **kwargs))


def test_completed_job_has_all_renditions(make_image, service_settings):
    registry = ImageJobRegistry()
    job_id = _add(registry, make_image(600, 400), 600, 400)

    report = _run(registry, _settings(100, 200), service_settings)

    job = registry.get(job_id)
    assert report.outcomes == {job_id: JobState.COMPLETE}
    assert job.state is JobState.COMPLETE
    assert job.progress == 100
    assert [r.effective_width for r in job.renditions] == [100, 200]
    assert job.failures == []


def test_progress_is_reported_incrementally_and_monotonic(make_image, service_settings):
    registry = ImageJobRegistry()
    job_id = _add(registry, make_image(600, 400), 600, 400)
    seen = []
    registry.subscribe(
        lambda event, job: event is RegistryEvent.UPDATED and job.state is JobState.PROCESSING and seen.append(job.progress)
    )

    _run(registry, _settings(100, 200, 300), service_settings)

    assert seen == sorted(seen)
    assert {0, 33, 67, 100} <= set(seen)


def test_no_widths_selected_ends_in_no_op_state(make_image, service_settings):
    registry = ImageJobRegistry()
    job_id = _add(registry, make_image(60, 40), 60, 40)

    report = _run(registry, _settings(custom_width=None), service_settings)

    job = registry.get(job_id)
    assert report.outcomes[job_id] is JobState.NO_OP
    assert job.state is JobState.NO_OP
    assert job.progress == 0
    assert job.renditions == []
    assert job.error


def test_one_failed_width_still_completes(make_image, service_settings):
    def flaky(source, spec, settings=None):
        if spec.target_width_requested == 200:
            raise EncodeError("unsupported parameter combination")
        return execute(source, spec, settings)

    registry = ImageJobRegistry()
    job_id = _add(registry, make_image(600, 400), 600, 400)

    _run(registry, _settings(100, 200), service_settings, executor=flaky)

    job = registry.get(job_id)
    assert job.state is JobState.COMPLETE
    assert job.progress == 100
    assert [r.effective_width for r in job.renditions] == [100]
    assert [(f.requested_width, f.error_type) for f in job.failures] == [(200, "EncodeError")]


def test_all_failed_widths_mark_job_error(service_settings):
    def broken(source, spec, settings=None):
        raise DecodeError("corrupt")

    registry = ImageJobRegistry()
    job_id = _add(registry, b"junk", 600, 400)

    _run(registry, _settings(100, 200), service_settings, executor=broken)

    job = registry.get(job_id)
    assert job.state is JobState.ERROR
    assert job.progress == 0
    assert job.renditions == []
    assert len(job.failures) == 2


def test_failing_job_does_not_stop_the_batch(make_image, service_settings):
    registry = ImageJobRegistry()
    bad = _add(registry, b"not an image", 600, 400, name="bad.png")
    good = _add(registry, make_image(600, 400), 600, 400, name="good.png")

    report = _run(registry, _settings(100), service_settings)

    assert report.outcomes == {bad: JobState.ERROR, good: JobState.COMPLETE}
    assert report.counts == {"error": 1, "complete": 1}


def test_unexpected_rendition_exception_is_contained(make_image, service_settings):
    def exploding(source, spec, settings=None):
        raise MemoryError("out of memory")

    registry = ImageJobRegistry()
    job_id = _add(registry, make_image(60, 40), 60, 40)

    _run(registry, _settings(10), service_settings, executor=exploding)

    assert registry.get(job_id).state is JobState.ERROR


def test_job_level_failure_sets_error_before_any_rendition(make_image, service_settings):
    calls = {"n": 0}

    def provider():
        calls["n"] += 1
        if calls["n"] == 1:
            raise RuntimeError("settings unavailable")
        return _settings(50)

    registry = ImageJobRegistry()
    first = _add(registry, make_image(60, 40), 60, 40)
    second = _add(registry, make_image(60, 40), 60, 40)

    _run(registry, provider, service_settings)

    assert registry.get(first).state is JobState.ERROR
    assert registry.get(first).failures == []
    assert "settings unavailable" in registry.get(first).error
    assert registry.get(second).state is JobState.COMPLETE


def test_settings_are_read_when_each_job_starts(make_image, service_settings):
    widths = iter([_settings(100), _settings(200)])
    registry = ImageJobRegistry()
    first = _add(registry, make_image(600, 400), 600, 400)
    second = _add(registry, make_image(600, 400), 600, 400)

    _run(registry, lambda: next(widths), service_settings)

    assert [r.effective_width for r in registry.get(first).renditions] == [100]
    assert [r.effective_width for r in registry.get(second).renditions] == [200]


def test_only_idle_jobs_are_processed(make_image, service_settings):
    registry = ImageJobRegistry()
    done = _add(registry, make_image(60, 40), 60, 40)
    _run(registry, _settings(30), service_settings)
    fresh = _add(registry, make_image(60, 40), 60, 40)

    report = _run(registry, _settings(20), service_settings)

    assert list(report.outcomes) == [fresh]
    assert [r.effective_width for r in registry.get(done).renditions] == [30]


def test_job_removed_mid_flight_is_dropped(make_image, service_settings):
    registry = ImageJobRegistry()

    def removing(source, spec, settings=None):
        result = execute(source, spec, settings)
        if source.filename == "gone.png":
            registry.remove(victim)
        return result

    victim = _add(registry, make_image(60, 40), 60, 40, name="gone.png")
    survivor = _add(registry, make_image(60, 40), 60, 40, name="kept.png")

    report = _run(registry, _settings(10, 20), service_settings, executor=removing)

    assert victim not in registry
    assert report.outcomes[victim] is None
    assert registry.get(survivor).state is JobState.COMPLETE


def test_bounded_concurrency_processes_every_job(make_image, service_settings):
    registry = ImageJobRegistry()
    threads = set()

    def tracking(source, spec, settings=None):
        threads.add(threading.get_ident())
        return execute(source, spec, settings)

    ids = [_add(registry, make_image(60, 40), 60, 40, name=f"{i}.png") for i in range(4)]

    report = _run(registry, _settings(10, 20), service_settings, executor=tracking, max_concurrent_jobs=2)

    assert list(report.outcomes) == ids
    for job_id in ids:
        job = registry.get(job_id)
        assert job.state is JobState.COMPLETE
        assert [r.effective_width for r in job.renditions] == [10, 20]
    assert threads


def test_widths_clamped_to_source_keep_one_rendition(make_image, service_settings):
    registry = ImageJobRegistry()
    job_id = _add(registry, make_image(300, 200), 300, 200)

    _run(registry, _settings(400, 800, prevent_upscaling=True), service_settings)

    job = registry.get(job_id)
    assert job.state is JobState.COMPLETE
    assert job.progress == 100
    assert [(r.effective_width, r.height) for r in job.renditions] == [(300, 200)]
    assert job.renditions[0].requested_width == 800
    assert job.failures == []
