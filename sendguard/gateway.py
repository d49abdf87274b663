"""Outbound send path: policy gate, provider call, send log."""

import logging
from typing import Any, Optional

from sendguard.connectors.base import MailChannelsConnector
from sendguard.credentials import CredentialRotationManager
from sendguard.crypto import hash_string
from sendguard.errors import ForbiddenError
from sendguard.models import OutboundMessage
from sendguard.policy import PolicyEngine
from sendguard.provider_errors import with_provider_error_mapping


class SendGateway:
    """Sends one message on behalf of an owner."""

    def __init__(
        self,
        policy_engine: PolicyEngine,
        credentials: CredentialRotationManager,
        connector: MailChannelsConnector,
        logger: Optional[logging.Logger] = None,
    ):
        self.policy_engine = policy_engine
        self.credentials = credentials
        self.connector = connector
        self.logger = logger or logging.getLogger(__name__)

    async def send(
        self, owner_id: str, message: OutboundMessage, request_id: str
    ) -> dict[str, Any]:
        """
        Gate, send and log a message.

        The send log entry is written only after the provider accepts the
        message, so provider failures never count against the daily cap.

        Raises:
            NotFoundError: no policy, subaccount or provider connection
            ForbiddenError: the owner's subaccount is suspended
            PolicyViolationError: a static policy rule is broken
            RateExceededError: per-minute limit or daily cap reached
            ProviderError: the provider rejected the send
        """
        subaccount = await self.credentials.require_subaccount(owner_id)
        if not subaccount.enabled:
            raise ForbiddenError("Instance is not active and cannot send.")

        policy = await self.policy_engine.get_policy(owner_id)
        await self.policy_engine.enforce_send_policy(owner_id, policy, message)

        api_key, account_id = await self.credentials.resolve_sending_key(owner_id)
        result = await with_provider_error_mapping(
            lambda: self.connector.send_email(
                api_key,
                account_id,
                message.from_email,
                message.to,
                message.subject,
                message.text_body,
                html_body=message.html_body,
                headers=message.headers,
            ),
            "Failed to send via MailChannels",
        )

        await self.policy_engine.store.append_send_log(
            owner_id=owner_id,
            request_id=request_id,
            from_email=message.from_email,
            recipients=message.to,
            subject_hash=hash_string(message.subject),
            provider_status=result.status,
            provider_request_id=result.request_id,
        )

        self.logger.info(
            "Gateway send accepted",
            extra={
                "owner_id": owner_id,
                "request_id": request_id,
                "recipient_count": len(message.to),
            },
        )
        return {"provider_request_id": result.request_id, "status": result.status}
