"""Job queue contract and an in-process asyncio implementation.

The crawler and training orchestrator only depend on the JobQueue
protocol: enqueue a JSON payload on a named queue with an attempt count and
backoff policy. Delivery is at-least-once; a handler that raises is retried
until its attempts are exhausted, then the job is dead-lettered.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Literal, Protocol

import logfire
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class BackoffPolicy(BaseModel):
    """Delay between attempts of a failed job."""

    type: Literal["exponential", "fixed"] = "exponential"
    delay_seconds: float = Field(default=3.0, ge=0.0)

    def delay_for(self, attempt: int) -> float:
        """Delay before the retry that follows failed attempt number `attempt` (1-based)."""
        if self.type == "fixed":
            return self.delay_seconds
        return self.delay_seconds * (2 ** (attempt - 1))


class JobOptions(BaseModel):
    """Retry configuration for one enqueued job."""

    attempts: int = Field(default=3, ge=1)
    backoff: BackoffPolicy = Field(default_factory=BackoffPolicy)


@dataclass
class JobContext:
    """What a handler knows about the job it is running."""

    job_id: str
    queue_name: str
    payload: Dict[str, Any]
    attempt: int
    max_attempts: int

    @property
    def is_final_attempt(self) -> bool:
        return self.attempt >= self.max_attempts


JobHandler = Callable[[JobContext], Awaitable[None]]


class JobQueue(Protocol):
    """Enqueue side of a job queue."""

    async def enqueue(
        self,
        queue_name: str,
        payload: Dict[str, Any],
        options: JobOptions | None = None,
    ) -> str:
        """Durably enqueue a job. Raises if the job cannot be accepted."""
        ...


@dataclass
class _QueuedJob:
    job_id: str
    queue_name: str
    payload: Dict[str, Any]
    options: JobOptions


@dataclass
class DeadLetter:
    """A job whose attempts were all exhausted."""

    job_id: str
    queue_name: str
    payload: Dict[str, Any]
    attempts: int
    error: str
    failed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class AsyncioJobQueue:
    """
    In-process job queue on asyncio.Queue.

    One handler per queue name, `concurrency` worker tasks per queue. A
    worker retries a failing job itself, sleeping per the job's backoff
    policy between attempts, so jobs of one queue never run ahead of their
    own retries.
    """

    def __init__(self, concurrency: int = 1, sleep: Callable[[float], Awaitable[None]] | None = None):
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self._concurrency = concurrency
        self._sleep = sleep or asyncio.sleep
        self._handlers: Dict[str, JobHandler] = {}
        self._queues: Dict[str, asyncio.Queue[_QueuedJob]] = {}
        self._workers: List[asyncio.Task] = []
        self._closed = False
        self.dead_letters: List[DeadLetter] = []

    def register_handler(self, queue_name: str, handler: JobHandler) -> None:
        """Register the consumer for a queue name."""
        if queue_name in self._handlers:
            raise ValueError(f"Handler already registered for queue: {queue_name}")
        self._handlers[queue_name] = handler
        self._queues[queue_name] = asyncio.Queue()
        logger.info(f"Registered handler for queue: {queue_name}")

    async def enqueue(
        self,
        queue_name: str,
        payload: Dict[str, Any],
        options: JobOptions | None = None,
    ) -> str:
        if self._closed:
            raise RuntimeError("Job queue is closed")
        if queue_name not in self._handlers:
            raise ValueError(f"No handler registered for queue: {queue_name}")

        job = _QueuedJob(
            job_id=str(uuid.uuid4()),
            queue_name=queue_name,
            payload=dict(payload),
            options=options or JobOptions(),
        )
        await self._queues[queue_name].put(job)
        logfire.debug(
            "Job enqueued",
            queue=queue_name,
            job_id=job.job_id,
            attempts=job.options.attempts,
        )
        return job.job_id

    def start(self) -> None:
        """Spawn worker tasks for every registered queue."""
        if self._workers:
            return
        for queue_name in self._handlers:
            for index in range(self._concurrency):
                task = asyncio.create_task(
                    self._worker(queue_name), name=f"{queue_name}-worker-{index}"
                )
                self._workers.append(task)

    async def join(self) -> None:
        """Wait until every queued job (including retries) has finished."""
        for queue in list(self._queues.values()):
            await queue.join()

    async def stop(self) -> None:
        """Stop accepting jobs and cancel the workers."""
        self._closed = True
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()

    async def _worker(self, queue_name: str) -> None:
        queue = self._queues[queue_name]
        while True:
            job = await queue.get()
            try:
                await self._run_with_retries(job)
            finally:
                queue.task_done()

    async def _run_with_retries(self, job: _QueuedJob) -> None:
        handler = self._handlers[job.queue_name]
        max_attempts = job.options.attempts
        for attempt in range(1, max_attempts + 1):
            context = JobContext(
                job_id=job.job_id,
                queue_name=job.queue_name,
                payload=job.payload,
                attempt=attempt,
                max_attempts=max_attempts,
            )
            try:
                await handler(context)
                return
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if attempt >= max_attempts:
                    self.dead_letters.append(
                        DeadLetter(
                            job_id=job.job_id,
                            queue_name=job.queue_name,
                            payload=job.payload,
                            attempts=attempt,
                            error=str(e),
                        )
                    )
                    logfire.error(
                        "Job failed after all attempts",
                        queue=job.queue_name,
                        job_id=job.job_id,
                        attempts=attempt,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    return
                delay = job.options.backoff.delay_for(attempt)
                logfire.warning(
                    "Job attempt failed, retrying",
                    queue=job.queue_name,
                    job_id=job.job_id,
                    attempt=attempt,
                    max_attempts=max_attempts,
                    retry_in_seconds=delay,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                await self._sleep(delay)
