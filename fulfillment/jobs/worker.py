"""
Jobs: worker loop

Polls Redis until ``shutdown_event`` is set. Each pass promotes due delayed
jobs to the ready list, then takes one ready job and awaits its handler.

A taken job is moved, not popped, onto ``jobs:processing`` and removed from
there only after its handler returns. Jobs left behind by a worker that died
or was cancelled mid-handler go back to the ready list when the next worker
starts, so delivery is at-least-once. A handler that raises is logged and the
job is dropped; unknown operations are dropped the same way.
"""

import asyncio
import json
import logging
import time
from typing import Awaitable, Callable

import redis.asyncio as aioredis

from .scheduler import PROCESSING_KEY, READY_KEY, SCHEDULED_KEY

logger = logging.getLogger(__name__)

Handler = Callable[..., Awaitable[None]]

PROMOTE_BATCH = 100

# ZREM and RPUSH in one step: the member is pushed only by the caller that
# removed it, and never lost between the two.
PROMOTE_SCRIPT = """
if redis.call('ZREM', KEYS[1], ARGV[1]) == 1 then
    redis.call('RPUSH', KEYS[2], ARGV[1])
    return 1
end
return 0
"""


async def promote_due_jobs(redis: aioredis.Redis, now: float | None = None) -> int:
    """Move due members of the scheduled set onto the ready list."""
    now = time.time() if now is None else now
    due = await redis.zrangebyscore(SCHEDULED_KEY, "-inf", now, start=0, num=PROMOTE_BATCH)
    moved = 0
    for payload in due:
        if await redis.eval(PROMOTE_SCRIPT, 2, SCHEDULED_KEY, READY_KEY, payload):
            moved += 1
    return moved


async def requeue_in_flight(redis: aioredis.Redis) -> int:
    """Put every job still marked as processing back on the ready list."""
    requeued = 0
    while await redis.lmove(PROCESSING_KEY, READY_KEY, "LEFT", "RIGHT") is not None:
        requeued += 1
    if requeued:
        logger.warning("Requeued %s unfinished job(s)", requeued)
    return requeued


async def dispatch(payload: str, handlers: dict[str, Handler]) -> None:
    job = json.loads(payload)
    operation = job.get("operation")
    handler = handlers.get(operation)
    if handler is None:
        logger.warning("No handler for job %s (%s); dropping it", job.get("id"), operation)
        return
    await handler(**job.get("kwargs", {}))
    logger.info("Job %s (%s) done", job.get("id"), operation)


async def run_worker(
    redis: aioredis.Redis,
    handlers: dict[str, Handler],
    shutdown_event: asyncio.Event,
    poll_interval: float = 1.0,
) -> None:
    logger.info("Job worker started (%s)", ", ".join(sorted(handlers)))

    # Assumes one worker per Redis: another live worker's jobs would be requeued too.
    try:
        await requeue_in_flight(redis)
    except aioredis.RedisError:
        logger.exception("Could not requeue unfinished jobs")

    while not shutdown_event.is_set():
        try:
            await promote_due_jobs(redis)
            payload = await redis.lmove(READY_KEY, PROCESSING_KEY, "LEFT", "RIGHT")
        except aioredis.RedisError:
            logger.exception("Job queue unavailable")
            await asyncio.sleep(poll_interval)
            continue

        if payload is None:
            await asyncio.sleep(poll_interval)
            continue

        try:
            await dispatch(payload, handlers)
        except Exception:
            logger.exception("Failed to process job %s", payload)

        try:
            await redis.lrem(PROCESSING_KEY, 1, payload)
        except aioredis.RedisError:
            logger.exception("Could not clear finished job %s; it will run again", payload)

    logger.info("Job worker stopped")
