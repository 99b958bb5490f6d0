"""Celery tasks for GTM and Google Ads tracking sync."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import redis.asyncio as aioredis

from app.core.config import settings
from app.core.database import async_session_maker
from app.core.logging_config import job_id_var
from app.services.job_queue import ADS_SYNC_TASK, GTM_SYNC_TASK, SyncJobPayload
from app.services.realtime import RealtimeChannel
from app.services.sync_service import TrackingSyncService, TransientSyncError
from app.services.token_service import GoogleClientFactory
from app.workers.celery_app import BaseTask, celery_app

JobRunner = Callable[[TrackingSyncService, SyncJobPayload, int, int], Awaitable[dict[str, Any]]]


async def _run_sync_job_async(
    runner: JobRunner, payload: SyncJobPayload, attempt: int, max_attempts: int
) -> dict[str, Any]:
    """Run one sync job with a fresh session, client factory and realtime channel."""
    redis_client = aioredis.from_url(str(settings.redis_url), decode_responses=True)
    try:
        async with async_session_maker() as db:
            service = TrackingSyncService(
                db,
                GoogleClientFactory(db),
                RealtimeChannel(redis_client),
            )
            return await runner(service, payload, attempt, max_attempts)
    finally:
        await redis_client.aclose()


def _run_in_loop(task: Any, runner: JobRunner, payload: SyncJobPayload) -> dict[str, Any]:
    job_id_var.set(str(task.request.id or ""))
    attempt = task.request.retries + 1
    max_attempts = task.max_retries + 1

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(
            _run_sync_job_async(runner, payload, attempt, max_attempts)
        )
    except TransientSyncError as e:
        raise task.retry(exc=e, countdown=e.delay_seconds)
    finally:
        loop.close()


async def _gtm_runner(
    service: TrackingSyncService, payload: SyncJobPayload, attempt: int, max_attempts: int
) -> dict[str, Any]:
    return await service.run_gtm_job(payload, attempt, max_attempts)


async def _ads_runner(
    service: TrackingSyncService, payload: SyncJobPayload, attempt: int, max_attempts: int
) -> dict[str, Any]:
    return await service.run_ads_job(payload, attempt, max_attempts)


@celery_app.task(name=GTM_SYNC_TASK, base=BaseTask, bind=True)
def gtm_sync(self: Any, payload: SyncJobPayload) -> dict[str, Any]:
    """Create, update or delete a tracking's GTM trigger and tags."""
    return _run_in_loop(self, _gtm_runner, payload)


@celery_app.task(name=ADS_SYNC_TASK, base=BaseTask, bind=True)
def ads_sync(self: Any, payload: SyncJobPayload) -> dict[str, Any]:
    """Create, update or remove a tracking's Google Ads conversion action."""
    return _run_in_loop(self, _ads_runner, payload)
