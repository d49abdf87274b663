"""Unit tests for service module."""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest

from sendguard.config import SendGuardConfig
from sendguard.errors import JobNotFoundError
from sendguard.models import JobStatus, JobType
from sendguard.service import JobService
from sendguard.store import LEASE_EXPIRED_ERROR


@pytest.fixture
def service(config, job_store, clock, logger):
    return JobService(config, logger=logger, store=job_store, clock=clock)


@pytest.mark.asyncio
async def test_enqueue_job_defaults(service, job_store, clock):
    job_id = await service.enqueue(job_type=JobType.RECONCILE_CREDENTIALS, payload={"a": 1})

    job = await service.get_job(job_id)
    assert job.status == JobStatus.QUEUED
    assert job.run_at == clock()
    assert job.attempts == 0
    assert job.max_attempts == 3
    assert job.payload == {"a": 1}


@pytest.mark.asyncio
async def test_enqueue_accepts_type_tag_string(service):
    job_id = await service.enqueue(job_type="sync-usage", max_attempts=5)

    job = await service.get_job(job_id)
    assert job.job_type is JobType.SYNC_USAGE
    assert job.max_attempts == 5
    assert job.payload == {}


@pytest.mark.asyncio
async def test_enqueue_unknown_type_rejected(service, job_store):
    with pytest.raises(ValueError):
        await service.enqueue(job_type="send-newsletter")

    assert job_store.jobs == {}


@pytest.mark.asyncio
async def test_enqueue_non_positive_max_attempts_rejected(service):
    with pytest.raises(ValueError, match="max_attempts"):
        await service.enqueue(job_type=JobType.SYNC_USAGE, max_attempts=0)


@pytest.mark.asyncio
async def test_enqueue_passes_values_to_store():
    """Test that enqueue hands the store a serializable type tag."""
    mock_config = MagicMock(spec=SendGuardConfig)
    mock_config.job_max_attempts = 3
    service = JobService(mock_config, AsyncMock())
    run_at = service.clock() + timedelta(minutes=5)

    with patch.object(service.store, "insert_job") as mock_insert:
        job_id = await service.enqueue(job_type=JobType.VALIDATE_WEBHOOKS, run_at=run_at)

    call_kwargs = mock_insert.call_args[1]
    assert call_kwargs["id"] == job_id
    assert call_kwargs["job_type"] == "validate-webhooks"
    assert call_kwargs["run_at"] == run_at
    assert call_kwargs["max_attempts"] == 3


@pytest.mark.asyncio
async def test_get_job_not_found(service):
    """Test getting a non-existent job."""
    with pytest.raises(JobNotFoundError):
        await service.get_job(uuid4())


@pytest.mark.asyncio
async def test_recurring_enqueue_is_idempotent(service, job_store):
    created = await service.enqueue_recurring_jobs()
    again = await service.enqueue_recurring_jobs()

    assert {job.job_type for job in created} == {JobType.SYNC_USAGE, JobType.VALIDATE_WEBHOOKS}
    assert again == []
    assert len(job_store.jobs) == 2


@pytest.mark.asyncio
async def test_recurring_enqueue_skips_running_instance(service, job_store, clock):
    await service.enqueue_recurring_jobs()
    await service.claim_due_jobs()
    clock.advance(30)

    assert await service.enqueue_recurring_jobs() == []


@pytest.mark.asyncio
async def test_recurring_enqueue_after_completion(service, job_store, clock):
    await service.enqueue_recurring_jobs()
    for job in await service.claim_due_jobs():
        await service.mark_job_completed(job)
    clock.advance(30)

    created = await service.enqueue_recurring_jobs()

    assert len(created) == 2
    assert len(job_store.jobs) == 4


@pytest.mark.asyncio
async def test_recurring_enqueue_ignores_instances_beyond_tolerance(service, job_store, clock):
    """A retry parked further out than the window does not block a fresh instance."""
    await service.enqueue(
        job_type=JobType.SYNC_USAGE, run_at=clock() + timedelta(seconds=300)
    )

    created = await service.enqueue_recurring_jobs()

    assert {job.job_type for job in created} == {JobType.SYNC_USAGE, JobType.VALIDATE_WEBHOOKS}


@pytest.mark.asyncio
async def test_claim_due_jobs_orders_and_limits(service, job_store, clock):
    base = clock()
    ids = []
    for offset in (40, 10, 30, 20, 50, 0, 60):
        ids.append(
            (
                offset,
                await service.enqueue(
                    job_type=JobType.RECONCILE_CREDENTIALS,
                    run_at=base - timedelta(seconds=offset),
                ),
            )
        )
    future_id = await service.enqueue(
        job_type=JobType.RECONCILE_CREDENTIALS, run_at=base + timedelta(seconds=5)
    )

    claimed = await service.claim_due_jobs()

    expected = [job_id for _, job_id in sorted(ids, key=lambda pair: -pair[0])][:5]
    assert [job.id for job in claimed] == expected
    assert all(job.status == JobStatus.RUNNING for job in claimed)
    assert job_store.jobs[future_id].status == JobStatus.QUEUED


@pytest.mark.asyncio
async def test_claimed_job_is_not_claimed_twice(service):
    await service.enqueue(job_type=JobType.RECONCILE_CREDENTIALS)

    assert len(await service.claim_due_jobs()) == 1
    assert await service.claim_due_jobs() == []


@pytest.mark.asyncio
async def test_mark_job_retry(service, clock):
    job_id = await service.enqueue(job_type=JobType.RECONCILE_CREDENTIALS)
    (job,) = await service.claim_due_jobs()

    next_run_at = await service.mark_job_retry(job, "boom", 60)

    stored = await service.get_job(job_id)
    assert next_run_at == clock() + timedelta(seconds=60)
    assert stored.status == JobStatus.QUEUED
    assert stored.attempts == 1
    assert stored.last_error == "boom"
    assert stored.run_at == next_run_at


@pytest.mark.asyncio
async def test_mark_job_failed_records_max_attempts(service):
    job_id = await service.enqueue(job_type=JobType.RECONCILE_CREDENTIALS, max_attempts=4)
    (job,) = await service.claim_due_jobs()

    await service.mark_job_failed(job, "No handler")

    stored = await service.get_job(job_id)
    assert stored.status == JobStatus.FAILED
    assert stored.attempts == 4
    assert stored.last_error == "No handler"


@pytest.mark.asyncio
async def test_terminal_jobs_are_not_updated(service):
    job_id = await service.enqueue(job_type=JobType.RECONCILE_CREDENTIALS)
    (job,) = await service.claim_due_jobs()
    await service.mark_job_completed(job)

    await service.mark_job_retry(job, "late failure", 60)

    stored = await service.get_job(job_id)
    assert stored.status == JobStatus.COMPLETED
    assert stored.attempts == 1


@pytest.mark.asyncio
async def test_list_jobs_filters(service):
    await service.enqueue(job_type=JobType.SYNC_USAGE)
    await service.enqueue(job_type=JobType.RECONCILE_CREDENTIALS)

    jobs = await service.list_jobs(job_type="sync-usage", status="queued")

    assert [job.job_type for job in jobs] == [JobType.SYNC_USAGE]


@pytest.mark.asyncio
async def test_claim_sets_lease(service, clock):
    await service.enqueue(job_type=JobType.SYNC_USAGE)

    (job,) = await service.claim_due_jobs()

    assert job.lease_expires_at == clock() + timedelta(seconds=600)


@pytest.mark.asyncio
async def test_crashed_recurring_jobs_do_not_block_enqueue(service, clock):
    """Running rows left behind by a dead scheduler stop counting once their lease ends."""
    await service.enqueue_recurring_jobs()
    await service.claim_due_jobs()
    clock.advance(7 * 24 * 3600)

    created = await service.enqueue_recurring_jobs()

    assert {job.job_type for job in created} == {JobType.SYNC_USAGE, JobType.VALIDATE_WEBHOOKS}


@pytest.mark.asyncio
async def test_revert_expired_leases_requeues_then_fails(service, clock):
    job_id = await service.enqueue(job_type=JobType.SYNC_USAGE)

    observed = []
    for _ in range(3):
        await service.claim_due_jobs()
        clock.advance(601)
        assert await service.revert_expired_leases() == 1
        job = await service.get_job(job_id)
        observed.append((job.status, job.attempts))

    assert observed == [
        (JobStatus.QUEUED, 1),
        (JobStatus.QUEUED, 2),
        (JobStatus.FAILED, 3),
    ]
    assert job.last_error == LEASE_EXPIRED_ERROR
    assert job.lease_expires_at is None


@pytest.mark.asyncio
async def test_revert_leaves_live_leases_alone(service, clock):
    job_id = await service.enqueue(job_type=JobType.SYNC_USAGE)
    await service.claim_due_jobs()
    clock.advance(599)

    assert await service.revert_expired_leases() == 0
    assert (await service.get_job(job_id)).status == JobStatus.RUNNING


@pytest.mark.asyncio
async def test_mark_job_failed_logs_recorded_attempts(service):
    await service.enqueue(job_type=JobType.SYNC_USAGE)
    (job,) = await service.claim_due_jobs()

    with patch.object(service.logger, "error") as mock_error:
        await service.mark_job_failed(job, "No handler for type sync-usage")

    assert "attempts recorded: 3" in mock_error.call_args[0][0]
