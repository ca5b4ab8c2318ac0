"""
Jobs: Delayed-Action Scheduler (Redis)

Two entry points:

    schedule_once(operation, delay, **kwargs)  run once, after ``delay``
    enqueue(operation, **kwargs)               run as soon as a worker is free

A job is the JSON payload ``{"id", "operation", "kwargs"}``. Delayed jobs sit
in the sorted set ``jobs:scheduled`` scored by their due UNIX time; the worker
moves them to the list ``jobs:ready`` once due. There is no cancellation:
every handler is safe to run when its target has already moved on.
"""

import json
import logging
import time
import uuid
from datetime import timedelta
from typing import Protocol, runtime_checkable

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

SCHEDULED_KEY = "jobs:scheduled"
READY_KEY = "jobs:ready"
PROCESSING_KEY = "jobs:processing"


@runtime_checkable
class Scheduler(Protocol):
    async def schedule_once(self, operation: str, delay: timedelta, **kwargs) -> str:
        ...

    async def enqueue(self, operation: str, **kwargs) -> str:
        ...


def build_job(operation: str, kwargs: dict) -> tuple[str, str]:
    job_id = str(uuid.uuid4())
    payload = json.dumps({"id": job_id, "operation": operation, "kwargs": kwargs}, default=str)
    return job_id, payload


class RedisScheduler:
    def __init__(self, redis: aioredis.Redis) -> None:
        self.redis = redis

    async def schedule_once(self, operation: str, delay: timedelta, **kwargs) -> str:
        job_id, payload = build_job(operation, kwargs)
        due = time.time() + delay.total_seconds()
        await self.redis.zadd(SCHEDULED_KEY, {payload: due})
        logger.info("Scheduled %s (job %s) in %ss with %s", operation, job_id, int(delay.total_seconds()), kwargs)
        return job_id

    async def enqueue(self, operation: str, **kwargs) -> str:
        job_id, payload = build_job(operation, kwargs)
        await self.redis.rpush(READY_KEY, payload)
        logger.info("Enqueued %s (job %s) with %s", operation, job_id, kwargs)
        return job_id
