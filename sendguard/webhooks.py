"""Exactly-once admission of inbound provider webhooks."""

import hashlib
import hmac
import logging
from typing import Any, Awaitable, Callable, Optional, Union
from uuid import UUID, uuid4

import asyncpg
from pydantic import BaseModel, ConfigDict, Field

from sendguard.config import SendGuardConfig
from sendguard.errors import WebhookAuthError
from sendguard.models import WebhookEvent, WebhookProvider
from sendguard.webhook_store import WebhookEventStore


class MailChannelsWebhookEvent(BaseModel):
    """Delivery event posted by MailChannels."""

    model_config = ConfigDict(extra="allow")

    request_id: str = Field(min_length=1)
    event: str = Field(min_length=1)
    customer_handle: Optional[str] = None
    payload: Any = None


class AgentMailWebhookEvent(BaseModel):
    """Inbox event posted by AgentMail."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = Field(min_length=1)
    event: str = Field(min_length=1)
    instance_id: Optional[str] = Field(default=None, alias="instanceId")
    payload: Any = None


class StoredWebhook(BaseModel):
    id: UUID
    duplicate: bool


def compute_dedupe_key(
    provider: Union[WebhookProvider, str], provider_event_id: str, event_type: str
) -> str:
    """Stable fingerprint of one logical provider event."""
    provider = WebhookProvider(provider).value
    return hashlib.sha256(
        f"{provider}:{provider_event_id}:{event_type}".encode("utf-8")
    ).hexdigest()


class WebhookIngestor:
    """
    Admits each (provider, event id, event type) exactly once.

    The ingestor only stores and reports duplicates; the caller runs the
    event's side effects for non-duplicates and then calls mark_processed.
    """

    def __init__(
        self,
        config: SendGuardConfig,
        db_pool: Optional[asyncpg.Pool] = None,
        logger: Optional[logging.Logger] = None,
        store: Optional[WebhookEventStore] = None,
    ):
        self.config = config
        self.store = store or WebhookEventStore(db_pool)
        self.logger = logger or logging.getLogger(__name__)

    def verify_shared_secret(self, header_value: Optional[str]) -> None:
        """No-op unless a shared secret is configured."""
        secret = self.config.webhook_shared_secret
        if not secret:
            return
        if not header_value or not hmac.compare_digest(
            header_value.encode("utf-8"), secret.encode("utf-8")
        ):
            raise WebhookAuthError("Webhook secret validation failed.")

    def verify_mailchannels_headers(
        self,
        content_digest: Optional[str],
        signature: Optional[str],
        signature_input: Optional[str],
    ) -> None:
        """
        Require the provider's signature headers when verification is enabled.

        Only header presence is checked; full Ed25519 verification needs the
        provider's published key and is left to the HTTP layer.
        """
        if not self.config.mailchannels_webhook_verify:
            return
        if not content_digest or not signature or not signature_input:
            raise WebhookAuthError("Missing MailChannels signature headers.")

    async def store_webhook_event(
        self,
        provider: Union[WebhookProvider, str],
        provider_event_id: str,
        event_type: str,
        payload: Any,
        owner_id: Optional[str] = None,
    ) -> StoredWebhook:
        """
        Record an event unless it was seen before.

        Returns ``duplicate=True`` with the existing row's id for repeats; the
        caller must not re-run side effects for those.
        """
        provider = WebhookProvider(provider)
        dedupe_key = compute_dedupe_key(provider, provider_event_id, event_type)

        existing = await self.store.find_by_dedupe_key(dedupe_key)
        if existing:
            self.logger.debug(f"Duplicate webhook {provider.value}/{provider_event_id}")
            return StoredWebhook(id=existing.id, duplicate=True)

        event_id = uuid4()
        inserted = await self.store.insert_event(
            id=event_id,
            provider=provider.value,
            provider_event_id=provider_event_id,
            event_type=event_type,
            payload=payload,
            dedupe_key=dedupe_key,
            owner_id=owner_id,
        )
        if not inserted:
            # Lost an insert race with a concurrent delivery of the same event.
            winner = await self.store.find_by_dedupe_key(dedupe_key)
            self.logger.debug(f"Concurrent duplicate webhook {provider.value}/{provider_event_id}")
            return StoredWebhook(id=winner.id, duplicate=True)

        return StoredWebhook(id=event_id, duplicate=False)

    async def mark_processed(self, event_id: UUID) -> bool:
        """Stamp processed_at; returns False if it had already been stamped."""
        return await self.store.mark_processed(event_id)

    async def ingest(
        self,
        provider: Union[WebhookProvider, str],
        provider_event_id: str,
        event_type: str,
        payload: Any,
        owner_id: Optional[str] = None,
        side_effect: Optional[Callable[[WebhookEvent], Awaitable[None]]] = None,
    ) -> StoredWebhook:
        """
        Store an event and, for first deliveries only, run ``side_effect``
        and mark the event processed.

        If ``side_effect`` raises, the event stays unprocessed and the error
        propagates.
        """
        stored = await self.store_webhook_event(
            provider, provider_event_id, event_type, payload, owner_id=owner_id
        )
        if stored.duplicate:
            return stored

        if side_effect is not None:
            event = await self.store.get_event(stored.id)
            await side_effect(event)

        await self.mark_processed(stored.id)
        return stored

    async def ingest_mailchannels(
        self, body: dict[str, Any], owner_id: Optional[str] = None, side_effect=None
    ) -> StoredWebhook:
        """Validate a MailChannels callback body and ingest it."""
        event = MailChannelsWebhookEvent.model_validate(body)
        return await self.ingest(
            WebhookProvider.MAILCHANNELS,
            event.request_id,
            event.event,
            event.model_dump(),
            owner_id=owner_id,
            side_effect=side_effect,
        )

    async def ingest_agentmail(self, body: dict[str, Any], side_effect=None) -> StoredWebhook:
        """Validate an AgentMail callback body and ingest it."""
        event = AgentMailWebhookEvent.model_validate(body)
        return await self.ingest(
            WebhookProvider.AGENTMAIL,
            event.id,
            event.event,
            event.model_dump(by_alias=True),
            owner_id=event.instance_id,
            side_effect=side_effect,
        )

    async def find_by_provider_event(
        self, provider: Union[WebhookProvider, str], provider_event_id: str
    ) -> Optional[WebhookEvent]:
        return await self.store.find_by_provider_event(
            WebhookProvider(provider).value, provider_event_id
        )

    async def list_events(self, owner_id: str, limit: int = 50) -> list[WebhookEvent]:
        return await self.store.list_events_for_owner(owner_id, limit)
