"""Synchronous send-policy gate."""

import logging
from typing import Iterable, Optional

import asyncpg

from sendguard.clock import Clock, start_of_day, utcnow
from sendguard.config import SendGuardConfig
from sendguard.errors import NotFoundError, PolicyViolationError, RateExceededError
from sendguard.models import OutboundMessage, SendPolicy
from sendguard.policy_store import PolicyStore
from sendguard.rate_limit import FixedWindowRateLimiter

DAILY_CAP_MESSAGE = "Daily cap exceeded for this instance."


def recipient_domain(address: str) -> str:
    """Text between the first and second "@"; empty when there is no "@"."""
    parts = address.split("@")
    domain = parts[1] if len(parts) > 1 else ""
    return domain.strip().lower()


def domain_matches(patterns: Iterable[str], domain: str) -> bool:
    """True when ``domain`` equals a pattern or is a subdomain of one."""
    for pattern in patterns:
        normalized = pattern.strip().lower()
        if domain == normalized or domain.endswith("." + normalized):
            return True
    return False


def check_recipient_count(policy: SendPolicy, message: OutboundMessage) -> None:
    if not message.to:
        raise PolicyViolationError("At least one recipient is required.")
    if len(message.to) > policy.max_recipients_per_message:
        raise PolicyViolationError(
            "Message exceeds max recipients per message policy."
        )


def check_required_headers(policy: SendPolicy, message: OutboundMessage) -> None:
    present = {name.lower() for name in message.headers}
    for required in policy.required_headers:
        if required.lower() not in present:
            raise PolicyViolationError(f"Missing required header: {required}")


def check_domains(policy: SendPolicy, message: OutboundMessage) -> None:
    domains = [recipient_domain(address) for address in message.to]

    if policy.allow_list:
        if not all(domain_matches(policy.allow_list, domain) for domain in domains):
            raise PolicyViolationError(
                "At least one recipient is not in the allow list."
            )

    for domain in domains:
        if domain_matches(policy.deny_list, domain):
            raise PolicyViolationError(
                f"Recipient domain {domain} is blocked by deny list policy."
            )


class PolicyEngine:
    """Validates candidate sends and consumes their rate budget."""

    def __init__(
        self,
        config: SendGuardConfig,
        db_pool: Optional[asyncpg.Pool] = None,
        logger: Optional[logging.Logger] = None,
        store: Optional[PolicyStore] = None,
        clock: Optional[Clock] = None,
    ):
        self.config = config
        self.store = store or PolicyStore(db_pool)
        self.logger = logger or logging.getLogger(__name__)
        self.clock = clock or utcnow
        self.rate_limiter = FixedWindowRateLimiter(
            self.store,
            window_seconds=config.rate_window_seconds,
            clock=self.clock,
            logger=self.logger,
        )

    async def set_policy(self, owner_id: str, policy: SendPolicy) -> SendPolicy:
        """Create or replace the owner's policy."""
        await self.store.upsert_policy(owner_id, policy)
        self.logger.info(f"Send policy updated for owner {owner_id}")
        return policy

    async def get_policy(self, owner_id: str) -> SendPolicy:
        policy = await self.store.get_policy(owner_id)
        if policy is None:
            raise NotFoundError("Policy not found for instance.")
        return policy

    async def enforce_send_policy(
        self, owner_id: str, policy: SendPolicy, message: OutboundMessage
    ) -> None:
        """
        Gate a send against static rules, the per-minute limit and the daily cap.

        Static checks run first so a rejected message never consumes rate
        budget. The send log is not written here; the caller appends it only
        after the provider accepts the message.

        Raises:
            PolicyViolationError: static rule violated (BAD_REQUEST)
            RateExceededError: per-minute limit or daily cap hit (TOO_MANY_REQUESTS)
        """
        check_recipient_count(policy, message)
        check_required_headers(policy, message)
        check_domains(policy, message)

        await self.rate_limiter.consume(owner_id, policy.per_minute_limit)
        await self.check_daily_cap(owner_id, policy)

    async def check_daily_cap(self, owner_id: str, policy: SendPolicy) -> None:
        """Reject once today's logged sends reach the cap."""
        since = start_of_day(self.clock(), self.config.daily_cap_timezone)
        sent_today = await self.store.count_sends_since(owner_id, since)
        if sent_today >= policy.daily_cap:
            self.logger.info(
                f"Daily cap {policy.daily_cap} reached for owner {owner_id}"
            )
            raise RateExceededError(DAILY_CAP_MESSAGE)
