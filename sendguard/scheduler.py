"""Scheduler loop for the job queue."""

import asyncio
import logging
from typing import Any, Optional

from sendguard.registry import JobRegistry
from sendguard.service import JobService
from sendguard.worker import process_queued_jobs


async def run_scheduler_tick(
    job_service: JobService,
    registry: JobRegistry,
    logger: logging.Logger,
    services: Optional[dict[str, Any]] = None,
) -> None:
    """One tick: settle expired leases, enqueue recurring jobs, then run due jobs."""
    await job_service.revert_expired_leases()
    await job_service.enqueue_recurring_jobs()
    await process_queued_jobs(job_service, registry, logger, services)


async def run_scheduler_loop(
    job_service: JobService,
    registry: JobRegistry,
    logger: logging.Logger,
    services: Optional[dict[str, Any]] = None,
    loop_interval_seconds: Optional[float] = None,
    shutdown_event: asyncio.Event = None,
) -> None:
    """
    Run scheduler ticks until shut down.

    Args:
        job_service: Job service
        registry: Job handler registry
        logger: Logger instance
        services: Collaborators exposed to handlers (e.g. "credentials")
        loop_interval_seconds: Time between ticks (defaults to config)
        shutdown_event: Optional event to signal shutdown
    """
    if loop_interval_seconds is None:
        loop_interval_seconds = job_service.config.scheduler_tick_seconds

    logger.info("Starting scheduler loop")

    while True:
        # Check for shutdown signal
        if shutdown_event and shutdown_event.is_set():
            logger.info("Shutdown signal received, exiting scheduler loop")
            break

        try:
            await run_scheduler_tick(job_service, registry, logger, services)
        except Exception as e:
            logger.error(f"Error in scheduler loop: {str(e)}", exc_info=True)

        # Sleep before next iteration, waking early on shutdown
        if shutdown_event:
            try:
                await asyncio.wait_for(shutdown_event.wait(), loop_interval_seconds)
            except asyncio.TimeoutError:
                pass
        else:
            await asyncio.sleep(loop_interval_seconds)
