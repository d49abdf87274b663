"""CLI entrypoint for the scheduler."""

import asyncio
import logging
import os
import signal
import sys

import asyncpg

from sendguard.config import SendGuardConfig
from sendguard.connectors import create_mailchannels_connector
from sendguard.credentials import CredentialRotationManager
from sendguard.handlers import create_default_registry
from sendguard.scheduler import run_scheduler_loop
from sendguard.service import JobService


def setup_logging():
    """Setup logging configuration."""
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


async def create_db_pool(config: SendGuardConfig):
    """Create database connection pool."""
    return await asyncpg.create_pool(config.db_dsn, min_size=2, max_size=10)


def main():
    """Main entrypoint for scheduler."""
    setup_logging()
    logger = logging.getLogger(__name__)

    try:
        config = SendGuardConfig.from_env()
    except Exception as e:
        logger.error(f"Failed to load config: {e}")
        sys.exit(1)

    connector = create_mailchannels_connector(config)
    registry = create_default_registry()

    shutdown_event = asyncio.Event()

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        shutdown_event.set()

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    async def run():
        """Async main function."""
        db_pool = None
        try:
            logger.info("Creating database connection pool...")
            db_pool = await create_db_pool(config)

            job_service = JobService(config, db_pool, logger)
            credentials = CredentialRotationManager(
                config, connector, db_pool, logger, job_service=job_service
            )

            logger.info(f"Starting scheduler loop (connector mode: {config.connector_mode})...")
            await run_scheduler_loop(
                job_service,
                registry,
                logger,
                services={"credentials": credentials},
                shutdown_event=shutdown_event,
            )
        except Exception as e:
            logger.error(f"Fatal error in scheduler: {e}", exc_info=True)
            sys.exit(1)
        finally:
            if db_pool:
                logger.info("Closing database connection pool...")
                await db_pool.close()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
