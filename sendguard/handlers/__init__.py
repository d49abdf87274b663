"""Built-in job handlers."""

from sendguard.handlers.credentials import reconcile_credentials
from sendguard.handlers.usage import sync_usage
from sendguard.handlers.webhooks import validate_webhooks
from sendguard.models import JobType
from sendguard.registry import JobRegistry


def register_default_handlers(registry: JobRegistry) -> JobRegistry:
    """Register a handler for every JobType."""
    registry.handler(JobType.SYNC_USAGE)(sync_usage)
    registry.handler(JobType.VALIDATE_WEBHOOKS)(validate_webhooks)
    registry.handler(JobType.RECONCILE_CREDENTIALS)(reconcile_credentials)
    return registry


def create_default_registry() -> JobRegistry:
    return register_default_handlers(JobRegistry())


__all__ = [
    "create_default_registry",
    "register_default_handlers",
    "reconcile_credentials",
    "sync_usage",
    "validate_webhooks",
]
