"""Streaq worker for stream session maintenance.

Runs the reconciliation sweep and the upload cleanup on cron schedules. Every
replica registers the crons; a Redis lease keeps sweeps from overlapping
across replicas.
"""

from __future__ import annotations

from typing import Any

from loguru import logger
from streaq import Worker

from app.app_config import get_app_environ_config
from app.domain.stream import StreamService
from app.services.upload_storage import UploadStorage, get_upload_storage
from app.shared.lock import LockManager
from app.workers.base import (
    LOCK_KEY_SWEEP,
    QUEUE_KEY_STREAM_JOBS,
    WorkerContext,
    base_lifespan,
    get_lock_redis,
    queue_url,
)

cfg = get_app_environ_config()

worker: Worker[WorkerContext] = Worker(
    redis_url=queue_url,
    lifespan=base_lifespan,  # type: ignore[arg-type]
    queue_name=QUEUE_KEY_STREAM_JOBS,
)


async def run_sweep(service: StreamService, lock: LockManager) -> dict[str, Any]:
    """Run one reconciliation pass if no other replica is running it."""
    if not await lock.acquire(LOCK_KEY_SWEEP, ttl=cfg.STREAM_LAUNCH_TIMEOUT_SECONDS):
        return {"status": "skipped", "reason": "locked"}

    async with lock:
        report = await service.sweep()

    return {"status": "completed", **report.model_dump()}


async def run_upload_cleanup(storage: UploadStorage, hours: float) -> dict[str, Any]:
    removed = storage.cleanup_older_than(hours)
    return {"status": "completed", "removed": removed}


@worker.cron(cfg.STREAM_SWEEP_CRON)
async def reconcile_sessions() -> dict[str, Any]:
    """Repair sessions whose unit crashed or never launched, and remove orphan units."""
    try:
        return await run_sweep(worker.context.stream_service, LockManager(get_lock_redis()))
    except Exception as e:
        logger.exception(f"Reconciliation sweep failed: {e}")
        raise


@worker.cron("0 * * * *")
async def cleanup_old_uploads() -> dict[str, Any]:
    """Delete uploaded videos past the retention window."""
    return await run_upload_cleanup(get_upload_storage(), cfg.UPLOAD_RETENTION_HOURS)
