"""Operational safety layer for multi-tenant email sending."""

from sendguard.config import SendGuardConfig
from sendguard.credentials import CredentialRotationManager
from sendguard.crypto import SecretBox
from sendguard.ddl import SCHEMA_DDL
from sendguard.errors import (
    ConflictError,
    ErrorCode,
    ForbiddenError,
    InvalidRequestError,
    JobNotFoundError,
    NotFoundError,
    PolicyViolationError,
    ProviderError,
    ProviderHttpError,
    RateExceededError,
    SendGuardError,
    WebhookAuthError,
)
from sendguard.gateway import SendGateway
from sendguard.handlers import create_default_registry
from sendguard.models import (
    CredentialStatus,
    Job,
    JobStatus,
    JobType,
    OutboundMessage,
    SendPolicy,
    WebhookProvider,
)
from sendguard.policy import PolicyEngine
from sendguard.registry import JobRegistry
from sendguard.scheduler import run_scheduler_loop, run_scheduler_tick
from sendguard.service import JobService
from sendguard.webhooks import WebhookIngestor, compute_dedupe_key
from sendguard.worker import process_queued_jobs

__version__ = "0.1.0"

__all__ = [
    "SendGuardConfig",
    "CredentialRotationManager",
    "SecretBox",
    "SCHEMA_DDL",
    "ConflictError",
    "ErrorCode",
    "ForbiddenError",
    "InvalidRequestError",
    "JobNotFoundError",
    "NotFoundError",
    "PolicyViolationError",
    "ProviderError",
    "ProviderHttpError",
    "RateExceededError",
    "SendGuardError",
    "WebhookAuthError",
    "SendGateway",
    "create_default_registry",
    "CredentialStatus",
    "Job",
    "JobStatus",
    "JobType",
    "OutboundMessage",
    "SendPolicy",
    "WebhookProvider",
    "PolicyEngine",
    "JobRegistry",
    "run_scheduler_loop",
    "run_scheduler_tick",
    "JobService",
    "WebhookIngestor",
    "compute_dedupe_key",
    "process_queued_jobs",
]
