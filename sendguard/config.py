"""Configuration for the sendguard safety layer."""

import json
import os
from typing import Any, Dict, Optional

CONNECTOR_MODES = ("mock", "live")


class SendGuardConfig:
    """Configuration object for sendguard."""

    def __init__(
        self,
        db_dsn: str,
        encryption_key: Optional[str] = None,
        connector_mode: str = "mock",
        mailchannels_base_url: str = "https://api.mailchannels.net/tx/v1",
        provider_timeout_seconds: float = 10.0,
        rate_window_seconds: int = 60,
        daily_cap_timezone: Optional[str] = None,
        scheduler_tick_seconds: int = 30,
        job_batch_size: int = 5,
        job_max_attempts: int = 3,
        recurring_tolerance_seconds: int = 60,
        job_lease_seconds: int = 600,
        job_backoff_policy: Optional[Dict[str, Any]] = None,
        webhook_shared_secret: Optional[str] = None,
        mailchannels_webhook_verify: bool = False,
    ):
        if connector_mode not in CONNECTOR_MODES:
            raise ValueError(
                f"connector_mode must be one of {CONNECTOR_MODES}, got {connector_mode!r}"
            )
        self.db_dsn = db_dsn
        self.encryption_key = encryption_key
        self.connector_mode = connector_mode
        self.mailchannels_base_url = mailchannels_base_url.rstrip("/")
        self.provider_timeout_seconds = provider_timeout_seconds
        self.rate_window_seconds = rate_window_seconds
        # None means the host's local zone
        self.daily_cap_timezone = daily_cap_timezone
        self.scheduler_tick_seconds = scheduler_tick_seconds
        self.job_batch_size = job_batch_size
        self.job_max_attempts = job_max_attempts
        self.recurring_tolerance_seconds = recurring_tolerance_seconds
        self.job_lease_seconds = job_lease_seconds
        self.job_backoff_policy = job_backoff_policy or {
            "type": "constant",
            "base_seconds": 60,
        }
        self.webhook_shared_secret = webhook_shared_secret
        self.mailchannels_webhook_verify = mailchannels_webhook_verify

    @classmethod
    def from_env(cls) -> "SendGuardConfig":
        """Create config from environment variables."""
        db_dsn = os.getenv("SENDGUARD_DB_DSN")
        if not db_dsn:
            raise ValueError("SENDGUARD_DB_DSN environment variable is required")

        backoff_policy_str = os.getenv("SENDGUARD_JOB_BACKOFF_POLICY")
        job_backoff_policy = None
        if backoff_policy_str:
            try:
                job_backoff_policy = json.loads(backoff_policy_str)
            except json.JSONDecodeError as e:
                raise ValueError(
                    f"Invalid JSON in SENDGUARD_JOB_BACKOFF_POLICY: {e}"
                ) from e

        return cls(
            db_dsn=db_dsn,
            encryption_key=os.getenv("SENDGUARD_ENCRYPTION_KEY"),
            connector_mode=os.getenv("SENDGUARD_CONNECTOR_MODE", "mock"),
            mailchannels_base_url=os.getenv(
                "SENDGUARD_MAILCHANNELS_BASE_URL", "https://api.mailchannels.net/tx/v1"
            ),
            provider_timeout_seconds=float(
                os.getenv("SENDGUARD_PROVIDER_TIMEOUT_SECONDS", "10")
            ),
            rate_window_seconds=int(os.getenv("SENDGUARD_RATE_WINDOW_SECONDS", "60")),
            daily_cap_timezone=os.getenv("SENDGUARD_DAILY_CAP_TIMEZONE") or None,
            scheduler_tick_seconds=int(
                os.getenv("SENDGUARD_SCHEDULER_TICK_SECONDS", "30")
            ),
            job_batch_size=int(os.getenv("SENDGUARD_JOB_BATCH_SIZE", "5")),
            job_max_attempts=int(os.getenv("SENDGUARD_JOB_MAX_ATTEMPTS", "3")),
            recurring_tolerance_seconds=int(
                os.getenv("SENDGUARD_RECURRING_TOLERANCE_SECONDS", "60")
            ),
            job_lease_seconds=int(os.getenv("SENDGUARD_JOB_LEASE_SECONDS", "600")),
            job_backoff_policy=job_backoff_policy,
            webhook_shared_secret=os.getenv("SENDGUARD_WEBHOOK_SHARED_SECRET") or None,
            mailchannels_webhook_verify=os.getenv(
                "SENDGUARD_MAILCHANNELS_WEBHOOK_VERIFY", "false"
            ).lower()
            == "true",
        )
