"""Database store layer for the job queue."""

import json
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

import asyncpg

from sendguard.errors import JobNotFoundError
from sendguard.models import Job, JobStatus

LEASE_EXPIRED_ERROR = "Lease expired - scheduler may have crashed"


class JobStore:
    """Database layer for job operations."""

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    async def insert_job(
        self,
        id: UUID,
        job_type: str,
        payload: dict[str, Any],
        run_at: datetime,
        max_attempts: int,
    ) -> Job:
        """Insert a new queued job."""
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO job_queue (
                    id, job_type, payload, status, run_at, attempts, max_attempts
                ) VALUES ($1, $2, $3, $4, $5, 0, $6)
                RETURNING *
                """,
                id,
                job_type,
                json.dumps(payload),
                JobStatus.QUEUED.value,
                run_at,
                max_attempts,
            )

        return self._row_to_job(row)

    async def insert_recurring_job_if_absent(
        self,
        id: UUID,
        job_type: str,
        now: datetime,
        horizon: datetime,
        max_attempts: int,
    ) -> Optional[Job]:
        """
        Insert a queued job of ``job_type`` unless one is already pending.

        "Pending" means queued with ``run_at`` before ``horizon``, or running
        under a lease that has not yet expired. A running row whose lease ran
        out belongs to a scheduler that died and does not block the type.
        The check and insert run under a transaction-scoped advisory lock per
        job type, so concurrent ticks cannot both insert. Returns the new job,
        or None when one already existed.
        """
        async with self.db_pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(
                    "SELECT pg_advisory_xact_lock(hashtext($1))",
                    f"job_queue:recurring:{job_type}",
                )
                existing = await conn.fetchval(
                    """
                    SELECT id FROM job_queue
                    WHERE job_type = $1
                      AND (
                        (status = $2 AND run_at < $4)
                        OR (status = $3 AND lease_expires_at > $5)
                      )
                    LIMIT 1
                    """,
                    job_type,
                    JobStatus.QUEUED.value,
                    JobStatus.RUNNING.value,
                    horizon,
                    now,
                )
                if existing:
                    return None

                row = await conn.fetchrow(
                    """
                    INSERT INTO job_queue (
                        id, job_type, payload, status, run_at, attempts, max_attempts
                    ) VALUES ($1, $2, $3, $4, $5, 0, $6)
                    RETURNING *
                    """,
                    id,
                    job_type,
                    json.dumps({}),
                    JobStatus.QUEUED.value,
                    now,
                    max_attempts,
                )

        return self._row_to_job(row)

    async def get_job(self, job_id: UUID) -> Job:
        """Get a job by ID."""
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM job_queue WHERE id = $1", job_id)

        if not row:
            raise JobNotFoundError(job_id)

        return self._row_to_job(row)

    async def list_jobs(
        self,
        job_type: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 50,
    ) -> list[Job]:
        """List jobs with optional filters."""
        query = "SELECT * FROM job_queue WHERE 1=1"
        params = []
        param_idx = 1

        if job_type:
            query += f" AND job_type = ${param_idx}"
            params.append(job_type)
            param_idx += 1

        if status:
            query += f" AND status = ${param_idx}"
            params.append(status)
            param_idx += 1

        query += f" ORDER BY created_at DESC LIMIT ${param_idx}"
        params.append(limit)

        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(query, *params)

        return [self._row_to_job(row) for row in rows]

    async def claim_due_jobs(
        self, limit: int, now: datetime, lease_expires_at: datetime
    ) -> list[Job]:
        """
        Atomically move up to ``limit`` due queued jobs to running.

        Uses FOR UPDATE SKIP LOCKED so two schedulers never claim the same job.
        Returned jobs are ordered by run_at, then id.
        """
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                """
                UPDATE job_queue
                SET status = $1, lease_expires_at = $5, updated_at = now()
                WHERE id IN (
                    SELECT id FROM job_queue
                    WHERE status = $2
                      AND run_at <= $3
                    ORDER BY run_at ASC, id ASC
                    LIMIT $4
                    FOR UPDATE SKIP LOCKED
                )
                RETURNING *
                """,
                JobStatus.RUNNING.value,
                JobStatus.QUEUED.value,
                now,
                limit,
                lease_expires_at,
            )

        jobs = [self._row_to_job(row) for row in rows]
        jobs.sort(key=lambda job: (job.run_at, str(job.id)))
        return jobs

    async def update_job_completed(self, job_id: UUID, attempts: int) -> None:
        """Mark a running job as completed."""
        async with self.db_pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE job_queue
                SET status = $1,
                    attempts = $2,
                    lease_expires_at = NULL,
                    updated_at = now()
                WHERE id = $3 AND status = $4
                """,
                JobStatus.COMPLETED.value,
                attempts,
                job_id,
                JobStatus.RUNNING.value,
            )

    async def update_job_retry(
        self, job_id: UUID, attempts: int, error: str, next_run_at: datetime
    ) -> None:
        """Return a running job to the queue with its attempt recorded."""
        async with self.db_pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE job_queue
                SET status = $1,
                    attempts = $2,
                    last_error = $3,
                    run_at = $4,
                    lease_expires_at = NULL,
                    updated_at = now()
                WHERE id = $5 AND status = $6
                """,
                JobStatus.QUEUED.value,
                attempts,
                error,
                next_run_at,
                job_id,
                JobStatus.RUNNING.value,
            )

    async def update_job_failed(self, job_id: UUID, attempts: int, error: str) -> None:
        """Mark a running job as failed (terminal)."""
        async with self.db_pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE job_queue
                SET status = $1,
                    attempts = $2,
                    last_error = $3,
                    lease_expires_at = NULL,
                    updated_at = now()
                WHERE id = $4 AND status = $5
                """,
                JobStatus.FAILED.value,
                attempts,
                error,
                job_id,
                JobStatus.RUNNING.value,
            )

    async def revert_expired_leases(self, now: datetime) -> int:
        """
        Settle running jobs whose lease expired before ``now``.

        The abandoned run counts as an attempt: jobs with attempts left go back
        to the queue due immediately, the rest are marked failed with
        ``attempts == max_attempts``. Returns the number of jobs settled.
        """
        async with self.db_pool.acquire() as conn:
            async with conn.transaction():
                requeued = await conn.execute(
                    """
                    UPDATE job_queue
                    SET status = $1,
                        attempts = attempts + 1,
                        last_error = $2,
                        run_at = $4,
                        lease_expires_at = NULL,
                        updated_at = now()
                    WHERE status = $3
                      AND lease_expires_at < $4
                      AND attempts + 1 < max_attempts
                    """,
                    JobStatus.QUEUED.value,
                    LEASE_EXPIRED_ERROR,
                    JobStatus.RUNNING.value,
                    now,
                )
                failed = await conn.execute(
                    """
                    UPDATE job_queue
                    SET status = $1,
                        attempts = max_attempts,
                        last_error = $2,
                        lease_expires_at = NULL,
                        updated_at = now()
                    WHERE status = $3
                      AND lease_expires_at < $4
                    """,
                    JobStatus.FAILED.value,
                    LEASE_EXPIRED_ERROR,
                    JobStatus.RUNNING.value,
                    now,
                )

        # Status strings look like "UPDATE 5"
        return int(requeued.split()[-1]) + int(failed.split()[-1])

    def _row_to_job(self, row: asyncpg.Record) -> Job:
        """Convert a database row to a Job model."""
        return Job(
            id=row["id"],
            job_type=row["job_type"],
            payload=json.loads(row["payload"])
            if isinstance(row["payload"], str)
            else row["payload"],
            status=JobStatus(row["status"]),
            run_at=row["run_at"],
            attempts=row["attempts"],
            max_attempts=row["max_attempts"],
            last_error=row["last_error"],
            lease_expires_at=row["lease_expires_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
