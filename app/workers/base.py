from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from loguru import logger

from app.app_config import get_app_environ_config
from app.domain.stream import StreamService, build_stream_service
from app.schemas.init_schemas import init_schema
from app.services.execution import build_execution_backend
from app.shared.api.utils import init_logger
from app.shared.storage.mongo import get_mongo_manager
from app.shared.storage.redis import get_redis_client, get_redis_manager

redis_manager = get_redis_manager()
redis_info = redis_manager.get_connection_info()
redis_label = get_app_environ_config().STREAMAX_REDIS_LABEL

queue_url = redis_info[redis_label]["original_url"] if redis_label in redis_info else ""


SVC_KEY = "streamax"

QUEUE_KEY = f"{SVC_KEY}:streaq"
QUEUE_KEY_STREAM_JOBS = f"{QUEUE_KEY}:stream-jobs"

LOCK_KEY_SWEEP = "sweep"


@dataclass
class WorkerContext:
    """Services shared by worker tasks."""

    stream_service: StreamService


@asynccontextmanager
async def base_lifespan() -> AsyncIterator[WorkerContext]:
    """Base lifespan context manager for workers."""
    init_logger()
    logger.info("Startup worker")

    await init_schema()
    backend = build_execution_backend()

    try:
        yield WorkerContext(stream_service=build_stream_service(backend))
    finally:
        logger.info("Shutdown worker")
        await backend.close()
        await redis_manager.close_all()
        get_mongo_manager().close_all()


def get_lock_redis():
    return get_redis_client(redis_label)
