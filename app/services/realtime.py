"""Realtime progress channel over Redis pub/sub.

Publish-only from the services' point of view; the SSE endpoints subscribe
on behalf of browsers. Publishing is best-effort: a Redis hiccup must never
fail a sync job or a scan chunk.
"""

import enum
import json
import logging
from collections.abc import AsyncIterator
from datetime import UTC, datetime
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "oneclicktag"
BATCH_TTL_SECONDS = 24 * 3600


class RealtimeEvent(str, enum.Enum):
    JOB_PROCESSING = "job_processing"
    JOB_COMPLETED = "job_completed"
    JOB_FAILED = "job_failed"
    BATCH_PAUSED = "batch_paused"
    BATCH_RESUMED = "batch_resumed"
    BATCH_COMPLETED = "batch_completed"
    HEALTH_CHECKED = "health_checked"
    SCAN_PROGRESS = "scan_progress"
    LOGIN_DETECTED = "login_detected"


def customer_channel(customer_id: Any) -> str:
    return f"customer:{customer_id}"


def batch_channel(batch_id: Any) -> str:
    return f"batch:{batch_id}"


def scan_channel(scan_id: Any) -> str:
    return f"scan:{scan_id}"


class RealtimeChannel:
    """Typed event broadcast keyed by customer, batch or scan id."""

    def __init__(self, redis: aioredis.Redis) -> None:
        self.redis = redis

    async def publish(self, key: str, event: RealtimeEvent, data: dict[str, Any]) -> None:
        message = json.dumps(
            {"type": event.value, "timestamp": datetime.now(UTC).isoformat(), "data": data},
            default=str,
        )
        try:
            await self.redis.publish(f"{CHANNEL_PREFIX}:{key}", message)
        except RedisError as e:
            logger.warning("Failed to publish %s on %s: %s", event.value, key, e)

    async def subscribe(self, key: str) -> AsyncIterator[dict[str, Any]]:
        """Yield decoded events for ``key`` until the consumer stops iterating."""
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(f"{CHANNEL_PREFIX}:{key}")
        try:
            while True:
                message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=15.0)
                if message is None:
                    yield {"type": "ping"}
                    continue
                data = message.get("data")
                if isinstance(data, bytes):
                    data = data.decode()
                yield json.loads(data)
        finally:
            await pubsub.unsubscribe()
            await pubsub.aclose()

    # === Batch progress ===

    async def start_batch(self, batch_id: str, total: int, tenant_id: Any) -> None:
        key = f"{CHANNEL_PREFIX}:batch-state:{batch_id}"
        await self.redis.hset(
            key,
            mapping={"tenant_id": str(tenant_id), "total": total, "completed": 0, "failed": 0, "paused": 0},
        )
        await self.redis.expire(key, BATCH_TTL_SECONDS)

    async def batch_owner(self, batch_id: str) -> str | None:
        """Tenant that started the batch; None when unknown or expired."""
        owner = await self.redis.hget(f"{CHANNEL_PREFIX}:batch-state:{batch_id}", "tenant_id")
        if isinstance(owner, bytes):
            return owner.decode()
        return owner

    async def batch_job_finished(self, batch_id: str, *, succeeded: bool) -> None:
        """Count a finished job; publish batch_completed when all are done."""
        key = f"{CHANNEL_PREFIX}:batch-state:{batch_id}"
        try:
            await self.redis.hincrby(key, "completed" if succeeded else "failed", 1)
            state = await self.redis.hgetall(key)
        except RedisError as e:
            logger.warning("Batch %s progress update failed: %s", batch_id, e)
            return
        if not state:
            return
        total = int(state.get("total", 0))
        completed = int(state.get("completed", 0))
        failed = int(state.get("failed", 0))
        if total and completed + failed >= total:
            await self.publish(
                batch_channel(batch_id),
                RealtimeEvent.BATCH_COMPLETED,
                {"batchId": batch_id, "total": total, "completed": completed, "failed": failed},
            )

    async def batch_paused(self, batch_id: str, cooldown_seconds: int, reason: str) -> None:
        try:
            await self.redis.hset(f"{CHANNEL_PREFIX}:batch-state:{batch_id}", "paused", 1)
        except RedisError as e:
            logger.warning("Batch %s pause flag failed: %s", batch_id, e)
        await self.publish(
            batch_channel(batch_id),
            RealtimeEvent.BATCH_PAUSED,
            {"batchId": batch_id, "resumeInSeconds": cooldown_seconds, "reason": reason},
        )

    async def batch_resumed_if_paused(self, batch_id: str) -> None:
        key = f"{CHANNEL_PREFIX}:batch-state:{batch_id}"
        try:
            was_paused = await self.redis.hget(key, "paused")
            if was_paused in ("1", b"1"):
                await self.redis.hset(key, "paused", 0)
            else:
                return
        except RedisError as e:
            logger.warning("Batch %s resume check failed: %s", batch_id, e)
            return
        await self.publish(batch_channel(batch_id), RealtimeEvent.BATCH_RESUMED, {"batchId": batch_id})
