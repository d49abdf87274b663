"""Executes claimed jobs through the handler registry."""

import logging
from typing import Any, Optional

from sendguard.models import Job, JobStatus
from sendguard.registry import JobRegistry
from sendguard.service import JobService

MAX_BACKOFF_SECONDS = 3600


async def process_queued_jobs(
    job_service: JobService,
    registry: JobRegistry,
    logger: logging.Logger,
    services: Optional[dict[str, Any]] = None,
    batch_size: Optional[int] = None,
) -> list[Job]:
    """
    Claim due jobs and run each through its handler.

    Every job is claimed (marked running) before its handler is invoked. A
    handler raising only affects that job's bookkeeping; the rest of the
    batch still runs.

    Args:
        job_service: Job service for claim and completion bookkeeping
        registry: Job handler registry
        logger: Logger instance, also handed to handlers
        services: Extra collaborators exposed to handlers through the context
        batch_size: Maximum jobs to claim (defaults to config.job_batch_size)

    Returns:
        The claimed jobs, in execution order
    """
    jobs = await job_service.claim_due_jobs(batch_size)
    if jobs:
        logger.info(f"Claimed {len(jobs)} jobs")

    for job in jobs:
        try:
            await execute_job(job_service, registry, job, logger, services or {})
        except Exception as e:
            # Bookkeeping itself failed; the job stays visibly running.
            logger.error(f"Error finishing job {job.id}: {str(e)}", exc_info=True)

    return jobs


async def execute_job(
    job_service: JobService,
    registry: JobRegistry,
    job: Job,
    logger: logging.Logger,
    services: dict[str, Any],
) -> JobStatus:
    """Run one claimed job and record its outcome; returns the resulting status."""
    job_type = getattr(job.job_type, "value", job.job_type)
    handler = registry.get_handler(job.job_type)
    if not handler:
        logger.error(f"No handler found for job type {job_type}")
        await job_service.mark_job_failed(job, f"No handler for type {job_type}")
        return JobStatus.FAILED

    logger.info(f"Executing job {job.id} (type={job_type}, attempt={job.attempts + 1})")

    try:
        ctx = {"job": job, "logger": logger, **services}
        await handler(ctx, job.payload)
    except Exception as e:
        logger.error(f"Job {job.id} failed: {str(e)}", exc_info=True)
        error = f"{type(e).__name__}: {str(e)}"

        next_attempt = job.attempts + 1
        if next_attempt < job.max_attempts:
            backoff_seconds = _calculate_backoff(
                job_service.config.job_backoff_policy, next_attempt
            )
            await job_service.mark_job_retry(job, error, backoff_seconds)
            logger.info(
                f"Job {job.id} will retry (attempt {next_attempt}/"
                f"{job.max_attempts}) after {backoff_seconds}s"
            )
            return JobStatus.QUEUED

        await job_service.mark_job_failed(job, error)
        return JobStatus.FAILED

    await job_service.mark_job_completed(job)
    return JobStatus.COMPLETED


def _calculate_backoff(backoff_policy: dict[str, Any], attempt: int) -> int:
    """
    Calculate backoff delay based on policy and attempt number.

    Args:
        backoff_policy: Backoff policy configuration
        attempt: Current attempt number (1-indexed)

    Returns:
        Backoff delay in seconds
    """
    policy_type = backoff_policy.get("type", "constant")
    base_seconds = backoff_policy.get("base_seconds", 60)

    if policy_type == "exponential":
        delay = base_seconds * (2 ** (attempt - 1))
    elif policy_type == "linear":
        delay = base_seconds * attempt
    else:
        delay = base_seconds
    return min(delay, MAX_BACKOFF_SECONDS)
