"""Tests for the Celery task wrappers."""

import pytest
from sqlalchemy.exc import OperationalError

from diary_media import worker as worker_module
from diary_media.services.enrichment import AttemptOutcome, EnrichmentJob, JobState
from diary_media.worker import enqueue_enrichment, enrich_media_task

JOB = EnrichmentJob(media_file_id="3f1c0d8e-0000-4000-8000-000000000001", storage_key="1-abc.webm")


class FakeWorker:
    """Returns (or raises) the scripted outcomes in order; the last one repeats."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.attempts = []

    async def run_attempt(self, job, attempt=None):
        self.attempts.append((job, attempt or job.attempt))
        outcome = self.outcomes[min(len(self.attempts), len(self.outcomes)) - 1]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def fake_worker(monkeypatch):
    """Replace the per-task worker factory with a scripted worker."""

    def _install(*outcomes) -> FakeWorker:
        fake = FakeWorker(*outcomes)

        async def run_with_fake(fn):
            return await fn(fake)

        monkeypatch.setattr(worker_module, "_run_with_worker", run_with_fake)
        return fake

    return _install


def test_enqueue_routes_to_enrichment_queue(monkeypatch):
    calls = []
    monkeypatch.setattr(enrich_media_task, "apply_async", lambda **kwargs: calls.append(kwargs))

    enqueue_enrichment(JOB)

    assert calls == [{"args": [JOB.to_payload()], "queue": "enrichment"}]


def test_task_reports_final_state(fake_worker):
    fake = fake_worker(AttemptOutcome(JobState.SUCCEEDED, 1))

    result = enrich_media_task.apply(args=[JOB.to_payload()]).get()

    assert result["state"] == "succeeded"
    assert result["attempt"] == 1
    assert fake.attempts == [(JOB, 1)]


def test_permanent_failure_is_not_retried(fake_worker):
    fake_worker(AttemptOutcome(JobState.FAILED_PERMANENT, 1, error="unsupported format"))

    result = enrich_media_task.apply(args=[JOB.to_payload()]).get()

    assert result["state"] == "failed_permanent"
    assert result["error"] == "unsupported format"


def test_retryable_outcome_enqueues_next_attempt(fake_worker, monkeypatch):
    fake_worker(AttemptOutcome(JobState.FAILED_RETRYABLE, 1, retry_in=2.1, error="timeout"))
    calls = []
    monkeypatch.setattr(enrich_media_task, "apply_async", lambda **kwargs: calls.append(kwargs))

    result = enrich_media_task.apply(args=[JOB.to_payload()]).get()

    assert result["state"] == "failed_retryable"
    assert calls == [
        {"args": [JOB.next_attempt().to_payload()], "countdown": 2.1, "queue": "enrichment"}
    ]
    assert calls[0]["args"][0]["attempt"] == 2


def test_attempt_number_comes_from_payload(fake_worker):
    fake = fake_worker(AttemptOutcome(JobState.SUCCEEDED, 3))
    third = EnrichmentJob(JOB.media_file_id, JOB.storage_key, attempt=3)

    result = enrich_media_task.apply(args=[third.to_payload()]).get()

    assert result["attempt"] == 3
    assert fake.attempts == [(third, 3)]


def test_infrastructure_retry_keeps_attempt_number(fake_worker):
    fake = fake_worker(
        OperationalError("SELECT 1", {}, ConnectionError("database restarting")),
        AttemptOutcome(JobState.SUCCEEDED, 1),
    )

    first = enrich_media_task.apply(args=[JOB.to_payload()])
    assert first.state == "RETRY"

    # The broker redelivers the same payload with a bumped retry counter
    second = enrich_media_task.apply(args=[JOB.to_payload()], retries=1).get()

    assert second["attempt"] == 1
    assert fake.attempts == [(JOB, 1), (JOB, 1)]


def test_payload_without_attempt_defaults_to_first():
    payload = {"media_file_id": JOB.media_file_id, "storage_key": JOB.storage_key}
    assert EnrichmentJob.from_payload(payload).attempt == 1


def test_beat_schedules_stale_pending_sweep():
    schedule = worker_module.celery_app.conf.beat_schedule
    assert schedule["requeue-stale-pending"]["task"] == "diary_media.worker.requeue_stale_pending_task"
