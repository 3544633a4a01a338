"""Celery worker configuration and tasks."""

import asyncio
import logging

from celery import Celery, Task
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

from diary_media.config import get_settings
from diary_media.db.session import build_engine
from diary_media.services.enrichment import (
    EnrichmentJob,
    EnrichmentWorker,
    JobState,
    requeue_stale_pending,
)
from diary_media.services.storage import get_blob_store
from diary_media.services.transcription import TranscriptionEngineClient

logger = logging.getLogger(__name__)

settings = get_settings()

# Create Celery app
celery_app = Celery(
    "diary_media_worker",
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
    task_soft_time_limit=540,  # Soft limit at 9 minutes
    worker_prefetch_multiplier=1,  # Fetch one task at a time
    task_acks_late=True,  # Ack after task completes
    task_reject_on_worker_lost=True,
    task_default_queue="default",
    task_queues={
        "default": {"exchange": "default", "routing_key": "default"},
        "enrichment": {"exchange": "enrichment", "routing_key": "enrichment"},
    },
    task_routes={
        "diary_media.worker.enrich_media_task": {"queue": "enrichment"},
        "diary_media.worker.requeue_stale_pending_task": {"queue": "default"},
    },
    beat_schedule={
        "requeue-stale-pending": {
            "task": "diary_media.worker.requeue_stale_pending_task",
            "schedule": 300.0,  # Every 5 minutes
        },
    },
)


class BaseTask(Task):
    """
    Base task retrying on infrastructure errors.

    These redeliveries have their own limit and resend the same payload, so
    they never use up a transcription attempt.
    """

    autoretry_for = (SQLAlchemyError, ConnectionError)
    retry_backoff = True
    retry_backoff_max = 600
    retry_jitter = True
    max_retries = settings.infrastructure_max_retries


async def _run_with_worker(fn):
    """
    Build a worker bound to this event loop, run ``fn(worker)`` and clean up.

    Each task runs in a fresh loop (``asyncio.run``), so engine and HTTP
    client are created per call rather than shared at module level.
    """
    engine = build_engine(settings.database_url, poolclass=NullPool)
    try:
        session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        worker = EnrichmentWorker(
            session_maker=session_maker,
            blob_store=get_blob_store(),
            engine_client=TranscriptionEngineClient(),
        )
        return await fn(worker)
    finally:
        await engine.dispose()


@celery_app.task(bind=True, base=BaseTask, name="diary_media.worker.enrich_media_task")
def enrich_media_task(self, payload: dict) -> dict:
    """
    Run one enrichment attempt for an audio media file.

    Args:
        payload: Dict with ``media_file_id``, ``storage_key`` and ``attempt``

    Returns:
        Dict with the state of this delivery. A retryable failure enqueues
        the next attempt after its backoff delay.
    """
    job = EnrichmentJob.from_payload(payload)

    outcome = asyncio.run(_run_with_worker(lambda worker: worker.run_attempt(job)))

    if outcome.state == JobState.FAILED_RETRYABLE:
        next_job = job.next_attempt()
        self.apply_async(
            args=[next_job.to_payload()],
            countdown=outcome.retry_in,
            queue="enrichment",
        )
        logger.info(
            f"Scheduled attempt {next_job.attempt} for media file {job.media_file_id} "
            f"in {outcome.retry_in:.1f}s"
        )

    return {
        "media_file_id": job.media_file_id,
        "state": outcome.state.value,
        "attempt": job.attempt,
        "error": outcome.error,
    }


@celery_app.task(name="diary_media.worker.requeue_stale_pending_task")
def requeue_stale_pending_task() -> int:
    """Periodic task re-enqueueing audio stuck in ``pending``."""

    async def do_requeue():
        engine = build_engine(settings.database_url, poolclass=NullPool)
        try:
            session_maker = async_sessionmaker(
                engine, class_=AsyncSession, expire_on_commit=False
            )
            return await requeue_stale_pending(session_maker, enqueue_enrichment)
        finally:
            await engine.dispose()

    return asyncio.run(do_requeue())


def enqueue_enrichment(job: EnrichmentJob):
    """Default scheduler: hand the job to the enrichment queue."""
    enrich_media_task.apply_async(args=[job.to_payload()], queue="enrichment")
    logger.info(f"Enqueued enrichment for media file {job.media_file_id}")
