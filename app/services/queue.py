"""Redis-backed task queue for webhook processing and list sends.

Jobs are JSON documents LPUSHed onto a Redis list and BRPOPed by the worker:
{"job_id", "job_type", "payload", "attempts"}. A job whose handler raises is
re-enqueued until it has been attempted `max_attempts` times, then dropped
with an error log. Delivery is at-least-once; handlers must be idempotent.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass, field
from typing import Any

import structlog

from app.core.config import settings
from app.core.exceptions import QueueError, RedisConnectionError
from app.db.redis import RedisClient

logger = structlog.get_logger(__name__)

QUEUE_KEY = "dispatcher:jobs"

JOB_INBOUND_MESSAGE = "inbound-message"
JOB_STATUS_UPDATE = "status-update"
JOB_LIST_MESSAGE_SEND = "list-message-send"

JobHandler = Callable[[dict[str, Any]], Awaitable[None]]


@dataclass
class Job:
    job_type: str
    payload: dict[str, Any]
    attempts: int = 0
    job_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def dumps(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def loads(cls, raw: str) -> "Job":
        data = json.loads(raw)
        return cls(
            job_type=data["job_type"],
            payload=data.get("payload") or {},
            attempts=int(data.get("attempts", 0)),
            job_id=data.get("job_id") or str(uuid.uuid4()),
        )


class TaskQueue:
    def __init__(self, redis: RedisClient, key: str = QUEUE_KEY) -> None:
        self._redis = redis
        self._key = key

    async def enqueue(self, job_type: str, payload: dict[str, Any]) -> str:
        """Push a new job. Returns its id."""
        job = Job(job_type=job_type, payload=payload)
        await self.push(job)
        logger.info("job_enqueued", job_id=job.job_id, job_type=job_type)
        return job.job_id

    async def push(self, job: Job) -> None:
        try:
            await self._redis.lpush(self._key, job.dumps())
        except RedisConnectionError as e:
            raise QueueError(f"Could not enqueue {job.job_type}: {e.message}") from e

    async def pop(self, timeout_seconds: int) -> Job | None:
        raw = await self._redis.brpop(self._key, timeout_seconds)
        if raw is None:
            return None
        try:
            return Job.loads(raw)
        except (ValueError, KeyError, TypeError) as e:
            logger.error("job_malformed", raw=raw, error=str(e))
            return None

    async def depth(self) -> int:
        return await self._redis.llen(self._key)


class TaskWorker:
    """Consumes jobs and dispatches them to handlers by job_type."""

    def __init__(
        self,
        queue: TaskQueue,
        handlers: dict[str, JobHandler],
        max_attempts: int | None = None,
        poll_timeout_seconds: int | None = None,
    ) -> None:
        self._queue = queue
        self._handlers = handlers
        self._max_attempts = max_attempts or settings.queue_max_attempts
        self._poll_timeout = poll_timeout_seconds or settings.queue_poll_timeout_seconds
        self._stopping = False

    async def process(self, job: Job) -> bool:
        """Run one job. Returns True when it succeeded."""
        handler = self._handlers.get(job.job_type)
        if handler is None:
            logger.error("job_unknown_type", job_id=job.job_id, job_type=job.job_type)
            return False

        job.attempts += 1
        try:
            await handler(job.payload)
        except Exception as e:
            if job.attempts < self._max_attempts:
                logger.warning(
                    "job_failed_retrying",
                    job_id=job.job_id,
                    job_type=job.job_type,
                    attempt=job.attempts,
                    error=str(e),
                )
                await self._queue.push(job)
            else:
                logger.error(
                    "job_failed_permanently",
                    job_id=job.job_id,
                    job_type=job.job_type,
                    attempts=job.attempts,
                    error=str(e),
                )
            return False

        logger.info(
            "job_completed",
            job_id=job.job_id,
            job_type=job.job_type,
            attempt=job.attempts,
        )
        return True

    async def run_once(self) -> bool | None:
        """Pop and process a single job. None when the queue was empty."""
        job = await self._queue.pop(self._poll_timeout)
        if job is None:
            return None
        return await self.process(job)

    async def run_forever(self) -> None:
        logger.info("task_worker_started")
        while not self._stopping:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # Redis outage: back off and keep polling.
                logger.error("task_worker_poll_failed", error=str(e))
                await asyncio.sleep(self._poll_timeout)
        logger.info("task_worker_stopped")

    def stop(self) -> None:
        self._stopping = True
