"""Background job dispatcher for fire-and-forget remote-control operations.

Some remote-control operations must be issued right after a companion
application starts, before its control socket is ready to accept
connections. The dispatcher runs each such operation (connect → authenticate
→ send) on its own asyncio task after a startup delay, so the session flow
never waits on it. Outcomes are only reported through logs; failed jobs are
not retried within the same session.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable
from uuid import uuid4

from pydantic import BaseModel, Field

from gamedeck.logging import get_logger
from gamedeck.remote.protocol import RemoteControlConnection

logger = get_logger(__name__)

JobFactory = Callable[[], Awaitable[Any]]
ConnectionFactory = Callable[[], RemoteControlConnection]
RemoteOperation = Callable[[RemoteControlConnection], Awaitable[Any]]


class JobStatus(str, Enum):
    """Lifecycle of a background job."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"


class BackgroundJob(BaseModel):
    """Record of one dispatched job.

    Attributes:
        job_id: Unique job identifier
        name: Human-readable job name used in logs
        delay_seconds: Startup delay before the job body runs
        status: Current job status
        error: Error message if the job failed
        submitted_at: Submission timestamp
        finished_at: Completion timestamp, if finished
    """

    job_id: str = Field(default_factory=lambda: uuid4().hex[:8])
    name: str
    delay_seconds: float = Field(default=0.0, ge=0.0)
    status: JobStatus = Field(default=JobStatus.PENDING)
    error: str | None = Field(default=None)
    submitted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = Field(default=None)


class BackgroundJobDispatcher:
    """Runs delayed, bounded, fire-and-forget jobs.

    Attributes:
        job_timeout: Upper bound on a job's lifetime after its delay, in seconds
    """

    def __init__(self, job_timeout: float = 60.0) -> None:
        self.job_timeout = job_timeout
        self._jobs: dict[str, BackgroundJob] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._logger = logger.bind(component="BackgroundJobDispatcher")

    @property
    def jobs(self) -> list[BackgroundJob]:
        return list(self._jobs.values())

    @property
    def active_count(self) -> int:
        return sum(1 for t in self._tasks.values() if not t.done())

    def submit(self, name: str, job: JobFactory, delay_seconds: float = 0.0) -> BackgroundJob:
        """Schedule a job and return immediately.

        Args:
            name: Job name for logs
            job: Zero-argument callable producing the awaitable to run
            delay_seconds: Seconds to sleep before running the job

        Returns:
            The job record, updated in place as the job progresses
        """
        record = BackgroundJob(name=name, delay_seconds=delay_seconds)
        self._jobs[record.job_id] = record
        task = asyncio.create_task(self._run(record, job), name=f"job-{name}-{record.job_id}")
        self._tasks[record.job_id] = task
        task.add_done_callback(lambda _t, job_id=record.job_id: self._tasks.pop(job_id, None))

        self._logger.info(
            "background_job_submitted",
            job_id=record.job_id,
            job_name=name,
            delay_seconds=delay_seconds,
        )
        return record

    def submit_remote(
        self,
        name: str,
        connection_factory: ConnectionFactory,
        operation: RemoteOperation,
        delay_seconds: float = 0.0,
    ) -> BackgroundJob:
        """Schedule a connect → authenticate → operate → close job.

        Args:
            name: Job name for logs
            connection_factory: Creates a fresh, unconnected connection
            operation: Coroutine function run against the ready connection
            delay_seconds: Seconds to wait before connecting

        Returns:
            The job record
        """

        async def _remote_job() -> Any:
            async with connection_factory() as connection:
                return await operation(connection)

        return self.submit(name, _remote_job, delay_seconds)

    async def _run(self, record: BackgroundJob, job: JobFactory) -> None:
        log = self._logger.bind(job_id=record.job_id, job_name=record.name)
        try:
            if record.delay_seconds > 0:
                await asyncio.sleep(record.delay_seconds)
            record.status = JobStatus.RUNNING
            log.debug("background_job_running")
            await asyncio.wait_for(job(), timeout=self.job_timeout)
        except asyncio.CancelledError:
            record.status = JobStatus.CANCELLED
            log.info("background_job_cancelled")
            raise
        except asyncio.TimeoutError:
            record.status = JobStatus.TIMED_OUT
            record.error = f"Job exceeded {self.job_timeout}s"
            log.warning("background_job_timed_out", timeout_seconds=self.job_timeout)
        except Exception as e:
            record.status = JobStatus.FAILED
            record.error = str(e)
            log.warning("background_job_failed", error=str(e), error_type=type(e).__name__)
        else:
            record.status = JobStatus.SUCCEEDED
            log.info("background_job_succeeded")
        finally:
            record.finished_at = datetime.now(timezone.utc)

    async def cancel_all(self) -> int:
        """Cancel every unfinished job and wait for them to unwind.

        Returns:
            Number of jobs that were cancelled
        """
        pending = {job_id: t for job_id, t in self._tasks.items() if not t.done()}
        for task in pending.values():
            task.cancel()
        if pending:
            await asyncio.gather(*pending.values(), return_exceptions=True)
            # A task cancelled before its first step never reaches _run
            for job_id in pending:
                record = self._jobs[job_id]
                if record.status in (JobStatus.PENDING, JobStatus.RUNNING):
                    record.status = JobStatus.CANCELLED
                    record.finished_at = datetime.now(timezone.utc)
            self._logger.info("background_jobs_cancelled", count=len(pending))
        return len(pending)
