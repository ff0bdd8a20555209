from types import SimpleNamespace

import pytest

from models.errors import PollTimeoutError
from models.job import GenerationJob, GenerationMode, JobStatus
from services.job_poller import JobPoller


class FakeClock:
    """Monotonic clock that only moves when the fake sleep is awaited."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def _operation(done: bool = False, error=None) -> SimpleNamespace:
    return SimpleNamespace(done=done, error=error)


def _refresh_sequence(*handles):
    calls = []

    async def refresh(handle):
        calls.append(handle)
        return handles[min(len(calls), len(handles)) - 1]

    refresh.calls = calls
    return refresh


def test_deadline_is_fixed_at_submission() -> None:
    clock = FakeClock(start=50.0)
    poller = JobPoller(poll_interval_seconds=10, max_wait_seconds=120, clock=clock, sleep=clock.sleep)
    job = poller.submit(GenerationMode.TEXT_TO_VIDEO, payload=None, handle=_operation())
    assert job.status is JobStatus.SUBMITTED
    assert job.deadline == 170.0
    with pytest.raises(AttributeError):
        job.deadline = 999.0


@pytest.mark.asyncio
async def test_completes_when_provider_reports_done() -> None:
    clock = FakeClock()
    poller = JobPoller(poll_interval_seconds=10, max_wait_seconds=600, clock=clock, sleep=clock.sleep)
    done = _operation(done=True)
    refresh = _refresh_sequence(_operation(), _operation(), done)

    job = poller.submit(GenerationMode.TEXT_TO_VIDEO, payload=None, handle=_operation())
    job = await poller.wait(job, refresh)

    assert job.status is JobStatus.COMPLETED
    assert job.handle is done
    assert len(refresh.calls) == 3
    assert clock.sleeps == [10, 10, 10]


@pytest.mark.asyncio
async def test_error_object_marks_job_failed() -> None:
    clock = FakeClock()
    poller = JobPoller(poll_interval_seconds=5, max_wait_seconds=600, clock=clock, sleep=clock.sleep)
    refresh = _refresh_sequence(_operation(done=True, error={"message": "quota"}))

    job = poller.submit(GenerationMode.EXTEND_VIDEO, payload=None, handle=_operation())
    job = await poller.wait(job, refresh)

    assert job.status is JobStatus.FAILED


@pytest.mark.asyncio
@pytest.mark.parametrize("interval,max_wait", [(10, 60), (7, 30), (30, 30), (1, 0.5)])
async def test_times_out_within_max_wait_plus_one_interval(interval, max_wait) -> None:
    clock = FakeClock()
    poller = JobPoller(poll_interval_seconds=interval, max_wait_seconds=max_wait, clock=clock, sleep=clock.sleep)
    refresh = _refresh_sequence(_operation())

    job = poller.submit(GenerationMode.TEXT_TO_VIDEO, payload=None, handle=_operation())
    start = clock.now
    with pytest.raises(PollTimeoutError) as exc_info:
        await poller.wait(job, refresh)

    elapsed = clock.now - start
    assert max_wait <= elapsed <= max_wait + interval
    assert exc_info.value.elapsed_seconds == elapsed
    assert job.status is JobStatus.TIMED_OUT


def test_job_transitions_only_once() -> None:
    job = GenerationJob.submit(GenerationMode.LIVE_PHOTO, None, None, max_wait_seconds=10, now=0)
    with pytest.raises(RuntimeError):
        job.transition(JobStatus.COMPLETED)
    job.transition(JobStatus.POLLING)
    job.transition(JobStatus.COMPLETED)
    with pytest.raises(RuntimeError):
        job.transition(JobStatus.FAILED)
