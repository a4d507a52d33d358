"""Celery worker configuration and periodic tasks."""

import asyncio
import logging

from celery import Celery, Task

from lorastudio.config import get_settings

settings = get_settings()

logger = logging.getLogger(__name__)

# Create Celery app
celery_app = Celery(
    "lorastudio_worker",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=600,  # 10 minutes max per task
    task_soft_time_limit=540,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_default_queue="default",
    beat_schedule={
        "refresh-processing-models": {
            "task": "lorastudio.worker.refresh_processing_models",
            "schedule": float(settings.training_poll_interval_seconds),
        },
    },
)


class BaseTask(Task):
    """Base task with retry configuration."""

    autoretry_for = (Exception,)
    retry_backoff = True
    retry_backoff_max = 600
    retry_jitter = True
    max_retries = 3


async def _refresh_processing_models() -> int:
    from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

    from lorastudio.clients.replicate import ReplicateClient
    from lorastudio.services.training_service import TrainingService

    # Each run owns its event loop, so the engine and HTTP client are
    # created here instead of reusing the process-wide ones.
    engine = create_async_engine(settings.database_url)
    session_factory = async_sessionmaker(engine, expire_on_commit=False)
    client = ReplicateClient()
    try:
        service = TrainingService(client_factory=lambda: client)
        return await service.refresh_processing_models(session_factory)
    finally:
        await client.close()
        await engine.dispose()


@celery_app.task(bind=True, base=BaseTask, name="lorastudio.worker.refresh_processing_models")
def refresh_processing_models(self) -> int:
    """
    Periodic task that polls every model still in training.

    Returns:
        Number of models whose status changed
    """
    changed = asyncio.run(_refresh_processing_models())
    logger.info(f"Status refresh finished: {changed} models changed")
    return changed
