"""Enrichment worker: transcribes pending audio and records the outcome."""

import asyncio
import enum
import logging
import random
import tempfile
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from diary_media.config import get_settings
from diary_media.db.models import EnrichmentState
from diary_media.errors import (
    BlobNotFound,
    TranscriptionPermanent,
    TranscriptionTransient,
)
from diary_media.services.media_service import EnrichmentResult, media_service

logger = logging.getLogger(__name__)

settings = get_settings()

# Blobs up to this size stay in memory while being handed to the engine
SPOOL_MAX_BYTES = 1024 * 1024


class JobState(str, enum.Enum):
    """State of one enrichment job."""

    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED_RETRYABLE = "failed_retryable"
    FAILED_PERMANENT = "failed_permanent"
    SKIPPED = "skipped"  # media deleted or no longer pending


@dataclass(frozen=True)
class EnrichmentJob:
    """
    Work item handed from the ingestion coordinator to the worker.

    ``attempt`` is the 1-based transcription attempt this delivery runs.
    It travels with the job so broker redeliveries never advance it.
    """

    media_file_id: str
    storage_key: str
    attempt: int = 1

    def to_payload(self) -> dict:
        return asdict(self)

    @classmethod
    def from_payload(cls, payload: dict) -> "EnrichmentJob":
        return cls(
            media_file_id=payload["media_file_id"],
            storage_key=payload["storage_key"],
            attempt=int(payload.get("attempt", 1)),
        )

    def next_attempt(self) -> "EnrichmentJob":
        return replace(self, attempt=self.attempt + 1)


EnrichmentScheduler = Callable[[EnrichmentJob], None]


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff with proportional jitter."""

    base_seconds: float = 2.0
    cap_seconds: float = 60.0
    jitter: float = 0.2

    @classmethod
    def from_settings(cls) -> "BackoffPolicy":
        return cls(
            base_seconds=settings.enrichment_backoff_base_seconds,
            cap_seconds=settings.enrichment_backoff_cap_seconds,
            jitter=settings.enrichment_backoff_jitter,
        )

    def delay(self, attempt: int, rng: Callable[[], float] = random.random) -> float:
        """
        Seconds to wait after the given (1-based) failed attempt.

        attempt 1 -> ~2s, 2 -> ~4s, 3 -> ~8s ... capped at ``cap_seconds``,
        then scaled by a factor in [1 - jitter, 1 + jitter].
        """
        raw = min(self.cap_seconds, self.base_seconds * (2 ** max(0, attempt - 1)))
        factor = 1 + self.jitter * (2 * rng() - 1)
        return max(0.0, raw * factor)


@dataclass
class AttemptOutcome:
    """Result of a single enrichment attempt."""

    state: JobState
    attempt: int
    retry_in: Optional[float] = None
    error: Optional[str] = None


class EnrichmentWorker:
    """
    Runs enrichment jobs against the transcription engine.

    Holds no state between attempts beyond the attempt number the caller
    passes in; every registry write goes through ``mark_enriched``, which is
    idempotent, so redelivered jobs are harmless.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        blob_store,
        engine_client,
        max_retries: Optional[int] = None,
        backoff: Optional[BackoffPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.session_maker = session_maker
        self.blob_store = blob_store
        self.engine_client = engine_client
        self.max_retries = max_retries if max_retries is not None else settings.enrichment_max_retries
        self.backoff = backoff or BackoffPolicy.from_settings()
        self._sleep = sleep

    async def _mark(self, media_file_id: str, result: EnrichmentResult):
        async with self.session_maker() as db:
            await media_service.mark_enriched(db, media_file_id, result)

    async def _begin_attempt(self, job: EnrichmentJob) -> bool:
        """Check the media is still pending and count the attempt."""
        async with self.session_maker() as db:
            media = await media_service.get_media_file(db, job.media_file_id)
            if media is None:
                logger.info(f"Media file {job.media_file_id} was deleted; skipping enrichment")
                return False
            if media.enrichment_state != EnrichmentState.PENDING:
                logger.info(
                    f"Media file {job.media_file_id} is {media.enrichment_state.value}; "
                    f"skipping duplicate enrichment job"
                )
                return False
            await media_service.record_attempt(db, job.media_file_id)
            await db.commit()
        return True

    async def run_attempt(
        self, job: EnrichmentJob, attempt: Optional[int] = None
    ) -> AttemptOutcome:
        """
        Run one attempt of a job.

        Args:
            job: The job to run
            attempt: 1-based attempt number; defaults to ``job.attempt``

        Returns:
            AttemptOutcome. ``FAILED_RETRYABLE`` carries the backoff delay
            before the next attempt; every other state is final.
        """
        attempt = attempt or job.attempt
        if not await self._begin_attempt(job):
            return AttemptOutcome(state=JobState.SKIPPED, attempt=attempt)

        logger.info(
            f"Enriching media file {job.media_file_id} (attempt {attempt}/{self.max_retries})"
        )

        with tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_BYTES) as spool:
            try:
                await asyncio.to_thread(self.blob_store.download_to, job.storage_key, spool)
                spool.seek(0)
            except BlobNotFound:
                error = f"Original blob {job.storage_key} is missing"
                logger.warning(f"{error}; marking media file {job.media_file_id} failed")
                await self._mark(job.media_file_id, EnrichmentResult.failed(error))
                return AttemptOutcome(JobState.FAILED_PERMANENT, attempt, error=error)
            except Exception as e:
                return await self._transient_failure(
                    job, attempt, f"Blob fetch failed: {e}"
                )

            try:
                transcript = await self.engine_client.transcribe(spool, job.storage_key)
            except TranscriptionPermanent as e:
                logger.warning(f"Permanent transcription failure for {job.media_file_id}: {e}")
                await self._mark(job.media_file_id, EnrichmentResult.failed(str(e)))
                return AttemptOutcome(JobState.FAILED_PERMANENT, attempt, error=str(e))
            except TranscriptionTransient as e:
                return await self._transient_failure(job, attempt, str(e))

        await self._mark(
            job.media_file_id,
            EnrichmentResult.succeeded(
                text=transcript.text,
                duration_seconds=transcript.duration_seconds,
                language=transcript.language,
                confidence=transcript.confidence,
            ),
        )
        return AttemptOutcome(JobState.SUCCEEDED, attempt)

    async def _transient_failure(
        self, job: EnrichmentJob, attempt: int, error: str
    ) -> AttemptOutcome:
        if attempt >= self.max_retries:
            message = f"Gave up after {attempt} attempt(s): {error}"
            logger.error(f"Enrichment of {job.media_file_id} failed: {message}")
            await self._mark(job.media_file_id, EnrichmentResult.failed(message))
            return AttemptOutcome(JobState.FAILED_PERMANENT, attempt, error=message)

        delay = self.backoff.delay(attempt)
        logger.warning(
            f"Transient failure enriching {job.media_file_id} (attempt {attempt}): "
            f"{error}; retrying in {delay:.1f}s"
        )
        return AttemptOutcome(JobState.FAILED_RETRYABLE, attempt, retry_in=delay, error=error)

    async def process(self, job: EnrichmentJob) -> JobState:
        """Run a job to a final state in-process, sleeping between retries."""
        attempt = job.attempt
        while True:
            outcome = await self.run_attempt(job, attempt)
            if outcome.state != JobState.FAILED_RETRYABLE:
                return outcome.state
            await self._sleep(outcome.retry_in or 0)
            attempt += 1


async def requeue_stale_pending(
    session_maker: async_sessionmaker[AsyncSession],
    scheduler: EnrichmentScheduler,
    older_than_seconds: Optional[int] = None,
) -> int:
    """
    Re-enqueue audio that has been pending for too long.

    Covers jobs lost between the registry commit and the broker. Each
    re-enqueued file restarts its pending clock, so it is picked up again
    only after another full interval. Returns the number of jobs scheduled.
    """
    age = older_than_seconds if older_than_seconds is not None else settings.pending_requeue_after_seconds
    cutoff = datetime.now(timezone.utc) - timedelta(seconds=age)

    async with session_maker() as db:
        stale = await media_service.list_stale_pending(db, cutoff)

        scheduled = []
        for media in stale:
            try:
                scheduler(EnrichmentJob(media_file_id=media.id, storage_key=media.storage_key))
                scheduled.append(media.id)
            except Exception as e:
                logger.error(f"Failed to re-enqueue enrichment for {media.id}: {e}")

        await media_service.rearm_pending(db, scheduled)
        await db.commit()

    if scheduled:
        logger.info(f"Re-enqueued {len(scheduled)} stale pending enrichment job(s)")
    return len(scheduled)
