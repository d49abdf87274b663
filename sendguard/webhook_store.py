"""Database layer for inbound webhook events."""

import json
from typing import Any, Optional
from uuid import UUID

import asyncpg

from sendguard.models import WebhookEvent


class WebhookEventStore:
    """Database layer for webhook events."""

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    async def find_by_dedupe_key(self, dedupe_key: str) -> Optional[WebhookEvent]:
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM webhook_events WHERE dedupe_key = $1", dedupe_key
            )
        return self._row_to_event(row) if row else None

    async def find_by_provider_event(
        self, provider: str, provider_event_id: str
    ) -> Optional[WebhookEvent]:
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT * FROM webhook_events
                WHERE provider = $1 AND provider_event_id = $2
                ORDER BY received_at ASC
                LIMIT 1
                """,
                provider,
                provider_event_id,
            )
        return self._row_to_event(row) if row else None

    async def get_event(self, event_id: UUID) -> Optional[WebhookEvent]:
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM webhook_events WHERE id = $1", event_id
            )
        return self._row_to_event(row) if row else None

    async def insert_event(
        self,
        id: UUID,
        provider: str,
        provider_event_id: str,
        event_type: str,
        payload: Any,
        dedupe_key: str,
        owner_id: Optional[str] = None,
    ) -> bool:
        """
        Insert a new event.

        Returns False when an event with ``dedupe_key`` already exists. The
        unique index decides, so of two concurrent inserts exactly one wins.
        """
        async with self.db_pool.acquire() as conn:
            try:
                await conn.execute(
                    """
                    INSERT INTO webhook_events (
                        id, provider, provider_event_id, event_type, owner_id,
                        payload, dedupe_key
                    ) VALUES ($1, $2, $3, $4, $5, $6, $7)
                    """,
                    id,
                    provider,
                    provider_event_id,
                    event_type,
                    owner_id,
                    json.dumps(payload, default=str),
                    dedupe_key,
                )
            except asyncpg.UniqueViolationError:
                return False
        return True

    async def mark_processed(self, event_id: UUID) -> bool:
        """Set processed_at once; returns False if it was already set or the row is missing."""
        async with self.db_pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE webhook_events
                SET processed_at = now()
                WHERE id = $1 AND processed_at IS NULL
                """,
                event_id,
            )
        # Extract count from result string like "UPDATE 1"
        return int(result.split()[-1]) == 1 if result else False

    async def list_events_for_owner(
        self, owner_id: str, limit: int = 50
    ) -> list[WebhookEvent]:
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM webhook_events
                WHERE owner_id = $1
                ORDER BY received_at DESC
                LIMIT $2
                """,
                owner_id,
                limit,
            )
        return [self._row_to_event(row) for row in rows]

    def _row_to_event(self, row: asyncpg.Record) -> WebhookEvent:
        return WebhookEvent(
            id=row["id"],
            provider=row["provider"],
            provider_event_id=row["provider_event_id"],
            event_type=row["event_type"],
            payload=json.loads(row["payload"])
            if isinstance(row["payload"], str)
            else row["payload"],
            dedupe_key=row["dedupe_key"],
            owner_id=row["owner_id"],
            received_at=row["received_at"],
            processed_at=row["processed_at"],
        )
