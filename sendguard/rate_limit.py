"""Fixed-window per-owner send counter."""

import logging
from datetime import datetime
from typing import Optional

from sendguard.clock import Clock, utcnow
from sendguard.errors import RateExceededError
from sendguard.policy_store import PolicyStore

PER_MINUTE_LIMIT_MESSAGE = "Per-minute sending limit exceeded for this instance."


def window_key(now: datetime, window_seconds: int = 60) -> str:
    """Whole windows since the epoch, as a string."""
    return str(int(now.timestamp()) // window_seconds)


class FixedWindowRateLimiter:
    """
    Counts accepted sends per owner in fixed, epoch-aligned windows.

    The counter resets fully when the window key changes, so up to twice the
    limit can pass across a boundary (limit reached at :59, again at :00).
    """

    def __init__(
        self,
        store: PolicyStore,
        window_seconds: int = 60,
        clock: Optional[Clock] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.store = store
        self.window_seconds = window_seconds
        self.clock = clock or utcnow
        self.logger = logger or logging.getLogger(__name__)

    async def consume(self, owner_id: str, limit: int) -> int:
        """
        Take one unit of the owner's budget in the current window.

        Returns the count after consumption.

        Raises:
            RateExceededError: if the window is already at ``limit``; nothing
                is incremented in that case.
        """
        key = window_key(self.clock(), self.window_seconds)
        count = await self.store.increment_window_count(owner_id, key, limit)
        if count is None:
            self.logger.info(f"Per-minute limit {limit} reached for owner {owner_id}")
            raise RateExceededError(PER_MINUTE_LIMIT_MESSAGE)
        return count

    async def current_count(self, owner_id: str) -> int:
        key = window_key(self.clock(), self.window_seconds)
        return await self.store.get_window_count(owner_id, key)
