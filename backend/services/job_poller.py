import asyncio
import logging
import time
from typing import Any, Awaitable, Callable

from models.errors import PollTimeoutError
from models.job import GenerationJob, GenerationMode, JobStatus

logger = logging.getLogger("job_poller")

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[Any]]
Refresh = Callable[[Any], Awaitable[Any]]


def operation_done(handle: Any) -> bool:
    return bool(getattr(handle, "done", False))


def operation_failed(handle: Any) -> bool:
    return bool(getattr(handle, "error", None))


class JobPoller:
    """Drives a submitted provider job to a terminal state before its deadline.

    The clock and sleep are injected so the state machine can run against a
    fake timeline in tests.
    """

    def __init__(
        self,
        poll_interval_seconds: float,
        max_wait_seconds: float,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ):
        self.poll_interval_seconds = poll_interval_seconds
        self.max_wait_seconds = max_wait_seconds
        self.clock = clock
        self.sleep = sleep

    def submit(self, mode: GenerationMode, payload: Any, handle: Any) -> GenerationJob:
        job = GenerationJob.submit(
            mode=mode,
            payload=payload,
            handle=handle,
            max_wait_seconds=self.max_wait_seconds,
            now=self.clock(),
        )
        logger.info(
            f"[{job.job_id[:8]}] {mode.value} job submitted, "
            f"polling every {self.poll_interval_seconds}s for up to {self.max_wait_seconds}s"
        )
        return job

    async def wait(
        self,
        job: GenerationJob,
        refresh: Refresh,
        is_done: Callable[[Any], bool] = operation_done,
        is_failed: Callable[[Any], bool] = operation_failed,
    ) -> GenerationJob:
        jid = job.job_id[:8]
        job.transition(JobStatus.POLLING)

        while True:
            await self.sleep(self.poll_interval_seconds)
            job.handle = await refresh(job.handle)

            if is_done(job.handle):
                job.transition(JobStatus.FAILED if is_failed(job.handle) else JobStatus.COMPLETED)
                elapsed = self.clock() - job.submitted_at
                logger.info(f"[{jid}] job finished with status={job.status.value} after {elapsed:.1f}s")
                return job

            now = self.clock()
            if now >= job.deadline:
                job.transition(JobStatus.TIMED_OUT)
                elapsed = now - job.submitted_at
                logger.error(f"[{jid}] job timed out after {elapsed:.1f}s")
                raise PollTimeoutError(elapsed, self.max_wait_seconds)

            logger.debug(f"[{jid}] still processing...")
