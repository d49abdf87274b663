"""Database layer for provider connections, subaccounts and their keys."""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional
from uuid import UUID, uuid4

import asyncpg

from sendguard.models import CredentialStatus, Subaccount, SubaccountKey


class CredentialStore:
    """Database layer for credential operations."""

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    @asynccontextmanager
    async def subaccount_lock(
        self, owner_id: str, handle: str
    ) -> AsyncIterator[asyncpg.Connection]:
        """
        Hold a session advisory lock for one subaccount.

        Yields the connection holding the lock. Statements inside the locked
        section must pass it as ``conn``: borrowing another pool connection
        while queued rotations hold the rest would never return.

        Rotations on the same subaccount queue up behind each other; rotations
        on different subaccounts use different lock keys and never block.
        """
        lock_name = f"subaccount_keys:{owner_id}:{handle}"
        async with self.db_pool.acquire() as conn:
            await conn.execute("SELECT pg_advisory_lock(hashtext($1))", lock_name)
            try:
                yield conn
            finally:
                await conn.execute("SELECT pg_advisory_unlock(hashtext($1))", lock_name)

    @asynccontextmanager
    async def _connection(
        self, conn: Optional[asyncpg.Connection]
    ) -> AsyncIterator[asyncpg.Connection]:
        if conn is not None:
            yield conn
            return
        async with self.db_pool.acquire() as pooled:
            yield pooled

    async def upsert_connection(
        self, owner_id: str, encrypted_api_key: str, account_id: str
    ) -> None:
        async with self.db_pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO provider_connections (owner_id, encrypted_api_key, account_id)
                VALUES ($1, $2, $3)
                ON CONFLICT (owner_id) DO UPDATE
                SET encrypted_api_key = EXCLUDED.encrypted_api_key,
                    account_id = EXCLUDED.account_id,
                    updated_at = now()
                """,
                owner_id,
                encrypted_api_key,
                account_id,
            )

    async def get_connection(self, owner_id: str) -> Optional[asyncpg.Record]:
        async with self.db_pool.acquire() as conn:
            return await conn.fetchrow(
                "SELECT * FROM provider_connections WHERE owner_id = $1", owner_id
            )

    async def list_connection_owners(self) -> list[str]:
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT owner_id FROM provider_connections ORDER BY owner_id"
            )
        return [row["owner_id"] for row in rows]

    async def get_subaccount(
        self, owner_id: str, handle: Optional[str] = None
    ) -> Optional[Subaccount]:
        """Find an owner's subaccount, optionally pinned to a handle."""
        query = "SELECT * FROM subaccounts WHERE owner_id = $1"
        params = [owner_id]
        if handle is not None:
            query += " AND handle = $2"
            params.append(handle)

        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(query, *params)

        return self._row_to_subaccount(row) if row else None

    async def list_subaccounts(self) -> list[Subaccount]:
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch("SELECT * FROM subaccounts ORDER BY created_at")
        return [self._row_to_subaccount(row) for row in rows]

    async def create_subaccount_with_key(
        self,
        owner_id: str,
        handle: str,
        limit: int,
        provider_key_id: str,
        redacted_value: str,
        encrypted_value: Optional[str],
        enabled: bool = True,
    ) -> Subaccount:
        """Record a freshly provisioned subaccount and its first active key."""
        subaccount_id = uuid4()
        async with self.db_pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    """
                    INSERT INTO subaccounts (id, owner_id, handle, "limit", enabled)
                    VALUES ($1, $2, $3, $4, $5)
                    RETURNING *
                    """,
                    subaccount_id,
                    owner_id,
                    handle,
                    limit,
                    enabled,
                )
                await self._insert_key(
                    conn,
                    owner_id,
                    handle,
                    provider_key_id,
                    redacted_value,
                    encrypted_value,
                )
        return self._row_to_subaccount(row)

    async def update_usage(self, subaccount_id: UUID, usage: int) -> None:
        async with self.db_pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE subaccounts
                SET usage_current_period = $1, updated_at = now()
                WHERE id = $2
                """,
                usage,
                subaccount_id,
            )

    async def set_subaccount_enabled(self, subaccount_id: UUID, enabled: bool) -> None:
        async with self.db_pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE subaccounts
                SET enabled = $1, updated_at = now()
                WHERE id = $2
                """,
                enabled,
                subaccount_id,
            )

    async def set_subaccount_limit(self, subaccount_id: UUID, limit: int) -> None:
        """Record the provider-side send limit; -1 means unlimited."""
        async with self.db_pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE subaccounts
                SET "limit" = $1, updated_at = now()
                WHERE id = $2
                """,
                limit,
                subaccount_id,
            )

    async def list_keys(
        self, owner_id: str, handle: str, conn: Optional[asyncpg.Connection] = None
    ) -> list[SubaccountKey]:
        """All keys for a subaccount, newest first."""
        async with self._connection(conn) as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM subaccount_keys
                WHERE owner_id = $1 AND subaccount_handle = $2
                ORDER BY created_at DESC, id DESC
                """,
                owner_id,
                handle,
            )
        return [self._row_to_key(row) for row in rows]

    async def get_active_key(self, owner_id: str, handle: str) -> Optional[SubaccountKey]:
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT * FROM subaccount_keys
                WHERE owner_id = $1 AND subaccount_handle = $2 AND status = $3
                """,
                owner_id,
                handle,
                CredentialStatus.ACTIVE.value,
            )
        return self._row_to_key(row) if row else None

    async def mark_key_revoked(
        self, key_id: UUID, conn: Optional[asyncpg.Connection] = None
    ) -> None:
        async with self._connection(conn) as conn:
            await conn.execute(
                """
                UPDATE subaccount_keys
                SET status = $1, updated_at = now()
                WHERE id = $2
                """,
                CredentialStatus.REVOKED.value,
                key_id,
            )

    async def demote_active_and_insert(
        self,
        owner_id: str,
        handle: str,
        provider_key_id: str,
        redacted_value: str,
        encrypted_value: Optional[str],
        conn: Optional[asyncpg.Connection] = None,
    ) -> SubaccountKey:
        """Demote the current active key to retiring and insert the new active key."""
        async with self._connection(conn) as conn:
            async with conn.transaction():
                await conn.execute(
                    """
                    UPDATE subaccount_keys
                    SET status = $1, updated_at = now()
                    WHERE owner_id = $2 AND subaccount_handle = $3 AND status = $4
                    """,
                    CredentialStatus.RETIRING.value,
                    owner_id,
                    handle,
                    CredentialStatus.ACTIVE.value,
                )
                return await self._insert_key(
                    conn,
                    owner_id,
                    handle,
                    provider_key_id,
                    redacted_value,
                    encrypted_value,
                )

    async def _insert_key(
        self,
        conn: asyncpg.Connection,
        owner_id: str,
        handle: str,
        provider_key_id: str,
        redacted_value: str,
        encrypted_value: Optional[str],
    ) -> SubaccountKey:
        row = await conn.fetchrow(
            """
            INSERT INTO subaccount_keys (
                id, owner_id, subaccount_handle, provider_key_id,
                redacted_value, encrypted_value, status
            ) VALUES ($1, $2, $3, $4, $5, $6, $7)
            RETURNING *
            """,
            uuid4(),
            owner_id,
            handle,
            provider_key_id,
            redacted_value,
            encrypted_value,
            CredentialStatus.ACTIVE.value,
        )
        return self._row_to_key(row)

    def _row_to_subaccount(self, row: asyncpg.Record) -> Subaccount:
        return Subaccount(
            id=row["id"],
            owner_id=row["owner_id"],
            handle=row["handle"],
            enabled=row["enabled"],
            limit=row["limit"],
            usage_current_period=row["usage_current_period"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _row_to_key(self, row: asyncpg.Record) -> SubaccountKey:
        return SubaccountKey(
            id=row["id"],
            owner_id=row["owner_id"],
            subaccount_handle=row["subaccount_handle"],
            provider_key_id=row["provider_key_id"],
            redacted_value=row["redacted_value"],
            status=CredentialStatus(row["status"]),
            encrypted_value=row["encrypted_value"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
