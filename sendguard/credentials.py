"""Provider subaccount and API key lifecycle."""

import logging
from typing import Any, Optional

import asyncpg

from sendguard.config import SendGuardConfig
from sendguard.connectors.base import MailChannelsConnector, WebhookValidation
from sendguard.credential_store import CredentialStore
from sendguard.crypto import SecretBox
from sendguard.errors import (
    ConflictError,
    ErrorCode,
    InvalidRequestError,
    NotFoundError,
    ProviderError,
)
from sendguard.models import (
    CredentialStatus,
    JobType,
    ProviderConnection,
    Subaccount,
    SubaccountKey,
)
from sendguard.provider_errors import with_provider_error_mapping


class CredentialRotationManager:
    """
    Keeps provider API keys and their local mirror consistent.

    At most two generations are kept per subaccount: one ``active`` key and,
    between rotations, one ``retiring`` key still usable by in-flight sends.
    """

    def __init__(
        self,
        config: SendGuardConfig,
        connector: MailChannelsConnector,
        db_pool: Optional[asyncpg.Pool] = None,
        logger: Optional[logging.Logger] = None,
        store: Optional[CredentialStore] = None,
        secret_box: Optional[SecretBox] = None,
        job_service: Any = None,
    ):
        self.config = config
        self.connector = connector
        self.store = store or CredentialStore(db_pool)
        self.logger = logger or logging.getLogger(__name__)
        self.secret_box = secret_box or SecretBox(config.encryption_key)
        # JobService; used only to schedule reconciliation after a failed commit
        self.job_service = job_service

    async def set_connection(self, owner_id: str, api_key: str, account_id: str) -> None:
        """
        Check the owner's parent provider key upstream and store it, encrypted.

        Raises:
            InvalidRequestError: blank key or account id
            ProviderError: the provider rejected the key
        """
        api_key = api_key.strip()
        account_id = account_id.strip()
        if not account_id:
            raise InvalidRequestError("MailChannels account ID is required.")
        if not api_key:
            raise InvalidRequestError("MailChannels parent API key is required.")

        await with_provider_error_mapping(
            lambda: self.connector.list_subaccounts(api_key),
            "Unable to validate the MailChannels parent API key.",
        )
        await self.store.upsert_connection(
            owner_id, self.secret_box.encrypt(api_key), account_id
        )

    async def require_connection(self, owner_id: str) -> ProviderConnection:
        row = await self.store.get_connection(owner_id)
        if not row:
            raise NotFoundError("MailChannels is not connected for this owner.")
        return ProviderConnection(
            owner_id=owner_id,
            api_key=self.secret_box.decrypt(row["encrypted_api_key"]),
            account_id=row["account_id"],
        )

    async def require_subaccount(
        self, owner_id: str, handle: Optional[str] = None
    ) -> Subaccount:
        subaccount = await self.store.get_subaccount(owner_id, handle)
        if subaccount is None:
            raise NotFoundError("Sub-account not found.")
        return subaccount

    async def provision_subaccount(
        self,
        owner_id: str,
        handle: str,
        limit: int = -1,
        persist_raw_key: bool = False,
        suspended: bool = False,
    ) -> dict[str, str]:
        """
        Create a subaccount upstream with its first key and record both locally.

        A negative ``limit`` leaves the provider default in place. With
        ``suspended`` the subaccount is created disabled and cannot send until
        activated. Returns the raw key for one-time display along with its
        preview.
        """
        connection = await self.require_connection(owner_id)
        if await self.store.get_subaccount(owner_id) is not None:
            raise ConflictError("Owner already has a MailChannels sub-account.")

        parent_key = connection.api_key
        await with_provider_error_mapping(
            lambda: self.connector.create_subaccount(parent_key, handle),
            "Failed to create MailChannels sub-account",
        )
        if limit >= 0:
            await with_provider_error_mapping(
                lambda: self.connector.set_subaccount_limit(parent_key, handle, limit),
                "Failed to set MailChannels sub-account limit",
            )
        if suspended:
            await with_provider_error_mapping(
                lambda: self.connector.suspend_subaccount(parent_key, handle),
                "Failed to suspend MailChannels sub-account",
            )
        key = await with_provider_error_mapping(
            lambda: self.connector.create_subaccount_api_key(parent_key, handle),
            "Failed to create MailChannels sub-account key",
        )

        await self.store.create_subaccount_with_key(
            owner_id=owner_id,
            handle=handle,
            limit=limit,
            provider_key_id=key.provider_key_id,
            redacted_value=key.redacted_value,
            encrypted_value=self._maybe_encrypt(key.key_value, persist_raw_key),
            enabled=not suspended,
        )
        self.logger.info(f"Provisioned sub-account {handle} for owner {owner_id}")

        return {
            "handle": handle,
            "key_value": key.key_value,
            "redacted_value": key.redacted_value,
            "provider_key_id": key.provider_key_id,
            "account_id": connection.account_id,
        }

    async def suspend(self, owner_id: str) -> Subaccount:
        """Suspend the owner's subaccount upstream; sends are refused until activated."""
        subaccount, parent_key = await self._require_provisioned(owner_id)
        await with_provider_error_mapping(
            lambda: self.connector.suspend_subaccount(parent_key, subaccount.handle),
            "Failed to suspend MailChannels sub-account",
        )
        await self.store.set_subaccount_enabled(subaccount.id, False)
        subaccount.enabled = False
        self.logger.info(f"Suspended sub-account {subaccount.handle}")
        return subaccount

    async def activate(self, owner_id: str) -> Subaccount:
        subaccount, parent_key = await self._require_provisioned(owner_id)
        await with_provider_error_mapping(
            lambda: self.connector.activate_subaccount(parent_key, subaccount.handle),
            "Failed to activate MailChannels sub-account",
        )
        await self.store.set_subaccount_enabled(subaccount.id, True)
        subaccount.enabled = True
        self.logger.info(f"Activated sub-account {subaccount.handle}")
        return subaccount

    async def set_limit(self, owner_id: str, limit: int) -> Subaccount:
        """
        Set the subaccount's sending limit upstream and locally.

        Raises:
            InvalidRequestError: ``limit`` is negative; use ``delete_limit``
        """
        if limit < 0:
            raise InvalidRequestError("Limit must be zero or greater.")
        subaccount, parent_key = await self._require_provisioned(owner_id)
        await with_provider_error_mapping(
            lambda: self.connector.set_subaccount_limit(
                parent_key, subaccount.handle, limit
            ),
            "Failed to set MailChannels sub-account limit",
        )
        await self.store.set_subaccount_limit(subaccount.id, limit)
        subaccount.limit = limit
        return subaccount

    async def delete_limit(self, owner_id: str) -> Subaccount:
        """Drop the subaccount's limit so the provider default applies again."""
        subaccount, parent_key = await self._require_provisioned(owner_id)
        await with_provider_error_mapping(
            lambda: self.connector.delete_subaccount_limit(parent_key, subaccount.handle),
            "Failed to delete MailChannels sub-account limit",
        )
        await self.store.set_subaccount_limit(subaccount.id, -1)
        subaccount.limit = -1
        return subaccount

    async def rotate(
        self, owner_id: str, subaccount_handle: str, persist_raw_key: bool = False
    ) -> dict[str, str]:
        """
        Mint a new active key, keeping the previous one as retiring.

        A key still retiring from the previous rotation is deleted upstream and
        marked revoked first; if that delete fails nothing new is minted. A
        retiring key the provider no longer knows about counts as deleted.

        Raises:
            NotFoundError: no such subaccount (or provider connection) for the owner
            ProviderError: an upstream call failed
        """
        await self.require_subaccount(owner_id, subaccount_handle)
        connection = await self.require_connection(owner_id)
        parent_key = connection.api_key
        failure: Optional[Exception] = None

        async with self.store.subaccount_lock(owner_id, subaccount_handle) as conn:
            keys = await self.store.list_keys(owner_id, subaccount_handle, conn=conn)
            for stale in [k for k in keys if k.status == CredentialStatus.RETIRING]:
                await self._revoke(parent_key, stale, conn)

            key = await with_provider_error_mapping(
                lambda: self.connector.create_subaccount_api_key(
                    parent_key, subaccount_handle
                ),
                "Failed to create MailChannels sub-account key",
            )

            try:
                await self.store.demote_active_and_insert(
                    owner_id=owner_id,
                    handle=subaccount_handle,
                    provider_key_id=key.provider_key_id,
                    redacted_value=key.redacted_value,
                    encrypted_value=self._maybe_encrypt(key.key_value, persist_raw_key),
                    conn=conn,
                )
            except Exception as e:
                self.logger.error(
                    f"Key {key.provider_key_id} minted for {subaccount_handle} "
                    f"but not recorded locally",
                    exc_info=True,
                )
                failure = e

        if failure is not None:
            await self._schedule_reconciliation(
                owner_id, subaccount_handle, key.provider_key_id
            )
            raise failure

        self.logger.info(f"Rotated API key for sub-account {subaccount_handle}")
        return {"key_value": key.key_value, "redacted_value": key.redacted_value}

    async def reconcile_orphaned_key(
        self, owner_id: str, subaccount_handle: str, provider_key_id: str
    ) -> bool:
        """
        Delete an upstream key that never made it into the local store.

        Returns True when the key was deleted (or was already gone), False
        when the key turned out to be recorded locally and was left alone.
        """
        connection = await self.require_connection(owner_id)

        async with self.store.subaccount_lock(owner_id, subaccount_handle) as conn:
            keys = await self.store.list_keys(owner_id, subaccount_handle, conn=conn)
            if any(k.provider_key_id == provider_key_id for k in keys):
                return False
            try:
                await with_provider_error_mapping(
                    lambda: self.connector.delete_subaccount_api_key(
                        connection.api_key, subaccount_handle, provider_key_id
                    ),
                    "Failed to delete orphaned MailChannels key",
                )
            except ProviderError as e:
                if e.code != ErrorCode.NOT_FOUND:
                    raise

        self.logger.info(f"Reconciled orphaned key {provider_key_id}")
        return True

    async def sync_usage(self, owner_id: str, handle: Optional[str] = None) -> int:
        """Overwrite the stored usage counter with the provider's figure."""
        subaccount = await self.require_subaccount(owner_id, handle)
        connection = await self.require_connection(owner_id)

        usage = await with_provider_error_mapping(
            lambda: self.connector.retrieve_subaccount_usage(
                connection.api_key, subaccount.handle
            ),
            "Failed to retrieve MailChannels usage",
        )
        await self.store.update_usage(subaccount.id, usage)
        return usage

    async def validate_webhook(self, owner_id: str) -> WebhookValidation:
        connection = await self.require_connection(owner_id)
        return await with_provider_error_mapping(
            lambda: self.connector.validate_webhook(connection.api_key),
            "Failed to validate MailChannels webhook",
        )

    async def resolve_sending_key(self, owner_id: str) -> tuple[str, str]:
        """
        Return ``(api_key, account_id)`` to send with.

        Uses the active subaccount key when its raw value was persisted,
        otherwise the owner's parent key scoped to the subaccount handle.
        """
        subaccount = await self.require_subaccount(owner_id)
        active = await self.store.get_active_key(owner_id, subaccount.handle)
        if active is not None and active.encrypted_value:
            return self.secret_box.decrypt(active.encrypted_value), subaccount.handle

        connection = await self.require_connection(owner_id)
        return connection.api_key, subaccount.handle

    async def list_keys(self, owner_id: str, handle: str) -> list[SubaccountKey]:
        return await self.store.list_keys(owner_id, handle)

    async def _require_provisioned(self, owner_id: str) -> tuple[Subaccount, str]:
        subaccount = await self.require_subaccount(owner_id)
        connection = await self.require_connection(owner_id)
        return subaccount, connection.api_key

    async def _revoke(
        self, parent_key: str, key: SubaccountKey, conn: Optional[asyncpg.Connection]
    ) -> None:
        try:
            await with_provider_error_mapping(
                lambda: self.connector.delete_subaccount_api_key(
                    parent_key, key.subaccount_handle, key.provider_key_id
                ),
                "Failed to delete retiring MailChannels key",
            )
        except ProviderError as e:
            if e.code != ErrorCode.NOT_FOUND:
                raise
            self.logger.warning(
                f"Retiring key {key.provider_key_id} already gone upstream"
            )
        await self.store.mark_key_revoked(key.id, conn=conn)
        self.logger.info(f"Revoked retiring key {key.provider_key_id}")

    async def _schedule_reconciliation(
        self, owner_id: str, handle: str, provider_key_id: str
    ) -> None:
        if self.job_service is None:
            return
        try:
            await self.job_service.enqueue(
                job_type=JobType.RECONCILE_CREDENTIALS,
                payload={
                    "owner_id": owner_id,
                    "subaccount_handle": handle,
                    "provider_key_id": provider_key_id,
                },
            )
        except Exception:
            # The original failure is re-raised by the caller.
            self.logger.error(
                f"Could not schedule reconciliation for key {provider_key_id}",
                exc_info=True,
            )

    def _maybe_encrypt(self, key_value: str, persist_raw_key: bool) -> Optional[str]:
        return self.secret_box.encrypt(key_value) if persist_raw_key else None
