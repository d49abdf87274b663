"""Job handler registry."""

from collections.abc import Callable
from typing import Optional, Union

from sendguard.models import JobType


class JobRegistry:
    """Registry mapping job types to handlers."""

    def __init__(self):
        self._handlers: dict[JobType, Callable] = {}

    def handler(self, job_type: Union[JobType, str]):
        """
        Decorator to register a job handler.

        Usage:
            @registry.handler(JobType.SYNC_USAGE)
            async def sync_usage(ctx, payload):
                ...

        Raises:
            ValueError: if ``job_type`` is not a known JobType
        """
        key = JobType(job_type)

        def decorator(func: Callable):
            self._handlers[key] = func
            return func

        return decorator

    def get_handler(self, job_type: Union[JobType, str]) -> Optional[Callable]:
        """Get a handler by job type; None for unknown or unregistered types."""
        try:
            key = JobType(job_type)
        except ValueError:
            return None
        return self._handlers.get(key)

    def all_handlers(self) -> dict[JobType, Callable]:
        """Get all registered handlers."""
        return self._handlers.copy()
