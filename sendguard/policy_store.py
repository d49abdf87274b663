"""Database layer for send policies, rate-limit buckets and the send log."""

import json
from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

import asyncpg

from sendguard.models import SendPolicy


class PolicyStore:
    """Database layer for the send path."""

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    async def upsert_policy(self, owner_id: str, policy: SendPolicy) -> SendPolicy:
        """Create the owner's policy or update it in place."""
        async with self.db_pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO send_policies (
                    id, owner_id, max_recipients_per_message, per_minute_limit,
                    daily_cap, required_headers, allow_list, deny_list
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                ON CONFLICT (owner_id) DO UPDATE
                SET max_recipients_per_message = EXCLUDED.max_recipients_per_message,
                    per_minute_limit = EXCLUDED.per_minute_limit,
                    daily_cap = EXCLUDED.daily_cap,
                    required_headers = EXCLUDED.required_headers,
                    allow_list = EXCLUDED.allow_list,
                    deny_list = EXCLUDED.deny_list,
                    updated_at = now()
                """,
                uuid4(),
                owner_id,
                policy.max_recipients_per_message,
                policy.per_minute_limit,
                policy.daily_cap,
                json.dumps(policy.required_headers),
                json.dumps(policy.allow_list),
                json.dumps(policy.deny_list),
            )
        return policy

    async def get_policy(self, owner_id: str) -> Optional[SendPolicy]:
        """Load the owner's policy, or None when none has been set."""
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM send_policies WHERE owner_id = $1", owner_id
            )

        if not row:
            return None

        return SendPolicy(
            max_recipients_per_message=row["max_recipients_per_message"],
            per_minute_limit=row["per_minute_limit"],
            daily_cap=row["daily_cap"],
            required_headers=_json_list(row["required_headers"]),
            allow_list=_json_list(row["allow_list"]),
            deny_list=_json_list(row["deny_list"]),
        )

    async def increment_window_count(
        self, owner_id: str, window_key: str, limit: int
    ) -> Optional[int]:
        """
        Consume one unit from the (owner, window) bucket.

        The row is created with count=1 on first use; otherwise it is
        incremented only while below ``limit``. Returns the new count, or
        None when the bucket was already full. A single statement, so two
        callers for the same owner cannot both take the last slot.
        """
        async with self.db_pool.acquire() as conn:
            return await conn.fetchval(
                """
                INSERT INTO rate_limit_buckets (id, owner_id, window_key, count)
                VALUES ($1, $2, $3, 1)
                ON CONFLICT (owner_id, window_key) DO UPDATE
                SET count = rate_limit_buckets.count + 1, updated_at = now()
                WHERE rate_limit_buckets.count < $4
                RETURNING count
                """,
                uuid4(),
                owner_id,
                window_key,
                limit,
            )

    async def get_window_count(self, owner_id: str, window_key: str) -> int:
        async with self.db_pool.acquire() as conn:
            count = await conn.fetchval(
                """
                SELECT count FROM rate_limit_buckets
                WHERE owner_id = $1 AND window_key = $2
                """,
                owner_id,
                window_key,
            )
        return count or 0

    async def count_sends_since(self, owner_id: str, since: datetime) -> int:
        """Count send log entries for an owner at or after ``since``."""
        async with self.db_pool.acquire() as conn:
            count = await conn.fetchval(
                """
                SELECT COUNT(*) FROM send_log
                WHERE owner_id = $1 AND created_at >= $2
                """,
                owner_id,
                since,
            )
        return count

    async def append_send_log(
        self,
        owner_id: str,
        request_id: str,
        from_email: str,
        recipients: list[str],
        subject_hash: str,
        provider_status: str,
        provider_request_id: Optional[str] = None,
    ) -> dict[str, Any]:
        """Append an accepted send to the log."""
        entry_id = uuid4()
        async with self.db_pool.acquire() as conn:
            created_at = await conn.fetchval(
                """
                INSERT INTO send_log (
                    id, owner_id, request_id, provider_request_id, from_email,
                    recipients, subject_hash, provider_status
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                RETURNING created_at
                """,
                entry_id,
                owner_id,
                request_id,
                provider_request_id,
                from_email,
                json.dumps(recipients),
                subject_hash,
                provider_status,
            )
        return {
            "id": entry_id,
            "owner_id": owner_id,
            "request_id": request_id,
            "provider_request_id": provider_request_id,
            "recipient_count": len(recipients),
            "provider_status": provider_status,
            "created_at": created_at,
        }


def _json_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = json.loads(value)
    return [str(item) for item in value]
