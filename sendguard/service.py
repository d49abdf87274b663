"""High-level service layer for job queue operations."""

import logging
from datetime import datetime, timedelta
from typing import Any, Optional, Union
from uuid import UUID, uuid4

import asyncpg

from sendguard.clock import Clock, utcnow
from sendguard.config import SendGuardConfig
from sendguard.models import RECURRING_JOB_TYPES, Job, JobType
from sendguard.store import JobStore


class JobService:
    """High-level API for job operations."""

    def __init__(
        self,
        config: SendGuardConfig,
        db_pool: Optional[asyncpg.Pool] = None,
        logger: Optional[logging.Logger] = None,
        store: Optional[JobStore] = None,
        clock: Optional[Clock] = None,
    ):
        self.config = config
        self.store = store or JobStore(db_pool)
        self.logger = logger or logging.getLogger(__name__)
        self.clock = clock or utcnow

    async def enqueue(
        self,
        *,
        job_type: Union[JobType, str],
        payload: Optional[dict[str, Any]] = None,
        run_at: Optional[datetime] = None,
        max_attempts: Optional[int] = None,
    ) -> UUID:
        """
        Enqueue an ad-hoc job.

        Args:
            job_type: A known JobType
            payload: Job payload as dictionary
            run_at: Earliest execution time (defaults to now)
            max_attempts: Attempts before the job is marked failed

        Returns:
            UUID: The created job ID

        Raises:
            ValueError: unknown job type or non-positive max_attempts
        """
        job_type = JobType(job_type)
        if max_attempts is None:
            max_attempts = self.config.job_max_attempts
        if max_attempts <= 0:
            raise ValueError("max_attempts must be positive")
        if run_at is None:
            run_at = self.clock()

        job_id = uuid4()
        await self.store.insert_job(
            id=job_id,
            job_type=job_type.value,
            payload=payload or {},
            run_at=run_at,
            max_attempts=max_attempts,
        )

        self.logger.info(f"Enqueued job {job_id} of type {job_type.value}")
        return job_id

    async def enqueue_recurring_jobs(self) -> list[Job]:
        """
        Ensure one pending instance of every recurring job type.

        A type is skipped when a queued job of that type is due within the
        tolerance window, or a running one still holds its lease, so repeated
        ticks never pile up backlog. A run whose lease lapsed no longer blocks.
        """
        now = self.clock()
        horizon = now + timedelta(seconds=self.config.recurring_tolerance_seconds)

        created = []
        for job_type in RECURRING_JOB_TYPES:
            job = await self.store.insert_recurring_job_if_absent(
                id=uuid4(),
                job_type=job_type.value,
                now=now,
                horizon=horizon,
                max_attempts=self.config.job_max_attempts,
            )
            if job is not None:
                self.logger.debug(f"Enqueued recurring job {job.id} ({job_type.value})")
                created.append(job)
        return created

    async def get_job(self, job_id: UUID) -> Job:
        """Get a job by ID."""
        return await self.store.get_job(job_id)

    async def list_jobs(
        self,
        *,
        job_type: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 50,
    ) -> list[Job]:
        """List jobs with optional filters."""
        return await self.store.list_jobs(job_type=job_type, status=status, limit=limit)

    async def claim_due_jobs(self, limit: Optional[int] = None) -> list[Job]:
        """
        Claim due queued jobs, marking them running before they execute.

        Each claim carries a lease of ``job_lease_seconds``; a job still running
        when its lease runs out is settled by revert_expired_leases.
        """
        if limit is None:
            limit = self.config.job_batch_size
        now = self.clock()
        lease_expires_at = now + timedelta(seconds=self.config.job_lease_seconds)
        return await self.store.claim_due_jobs(limit, now, lease_expires_at)

    async def revert_expired_leases(self) -> int:
        """
        Requeue or fail jobs left running by a scheduler that went away.

        Returns the number of jobs settled.
        """
        count = await self.store.revert_expired_leases(self.clock())
        if count > 0:
            self.logger.warning(f"Reverted {count} jobs with expired leases")
        return count

    async def mark_job_completed(self, job: Job) -> None:
        """Mark a job completed, counting the successful run as an attempt."""
        await self.store.update_job_completed(job.id, job.attempts + 1)
        self.logger.info(f"Job {job.id} completed")

    async def mark_job_retry(self, job: Job, error: str, backoff_seconds: int) -> datetime:
        """Requeue a failed attempt; returns the next run time."""
        next_run_at = self.clock() + timedelta(seconds=backoff_seconds)
        await self.store.update_job_retry(job.id, job.attempts + 1, error, next_run_at)
        self.logger.info(f"Job {job.id} scheduled for retry at {next_run_at}")
        return next_run_at

    async def mark_job_failed(self, job: Job, error: str) -> None:
        """
        Mark a job as permanently failed.

        Failed jobs always record ``attempts == max_attempts``, including jobs
        failed early because no handler can run them.
        """
        await self.store.update_job_failed(job.id, job.max_attempts, error)
        self.logger.error(
            f"Job {job.id} marked as failed (attempts recorded: {job.max_attempts})"
        )
