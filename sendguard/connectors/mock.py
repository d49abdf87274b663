"""In-memory MailChannels stand-in for local development."""

from typing import Dict, List, Optional
from uuid import uuid4

from sendguard.connectors.base import (
    MAILCHANNELS,
    MailChannelsConnector,
    ProviderApiKey,
    SendResult,
    WebhookValidation,
    redact_key,
)
from sendguard.errors import ProviderHttpError


class MockMailChannelsConnector(MailChannelsConnector):
    """Keeps subaccounts and keys in memory and accepts every send."""

    def __init__(self):
        self.subaccounts: Dict[str, Dict[str, object]] = {}
        self.keys: Dict[str, set] = {}
        self.sent: List[Dict[str, object]] = []

    def _require(self, handle: str, path: str) -> Dict[str, object]:
        subaccount = self.subaccounts.get(handle)
        if subaccount is None:
            raise ProviderHttpError(MAILCHANNELS, 404, path, "sub-account not found")
        return subaccount

    async def list_subaccounts(self, parent_api_key: str) -> List[str]:
        return list(self.subaccounts)

    async def create_subaccount(self, parent_api_key: str, handle: str) -> None:
        if handle in self.subaccounts:
            raise ProviderHttpError(
                MAILCHANNELS, 409, "/sub-account", "sub-account already exists"
            )
        self.subaccounts[handle] = {"enabled": True, "limit": -1, "usage": 0}
        self.keys[handle] = set()

    async def set_subaccount_limit(
        self, parent_api_key: str, handle: str, limit: int
    ) -> None:
        self._require(handle, f"/sub-account/{handle}/limit")["limit"] = limit

    async def delete_subaccount_limit(self, parent_api_key: str, handle: str) -> None:
        self._require(handle, f"/sub-account/{handle}/limit")["limit"] = -1

    async def suspend_subaccount(self, parent_api_key: str, handle: str) -> None:
        self._require(handle, f"/sub-account/{handle}/suspend")["enabled"] = False

    async def activate_subaccount(self, parent_api_key: str, handle: str) -> None:
        self._require(handle, f"/sub-account/{handle}/activate")["enabled"] = True

    async def create_subaccount_api_key(
        self, parent_api_key: str, handle: str
    ) -> ProviderApiKey:
        self._require(handle, f"/sub-account/{handle}/api-key")
        key_value = f"mc_{uuid4().hex}"
        provider_key_id = str(uuid4())
        self.keys[handle].add(provider_key_id)
        return ProviderApiKey(
            provider_key_id=provider_key_id,
            key_value=key_value,
            redacted_value=redact_key(key_value),
        )

    async def delete_subaccount_api_key(
        self, parent_api_key: str, handle: str, provider_key_id: str
    ) -> None:
        path = f"/sub-account/{handle}/api-key/{provider_key_id}"
        self._require(handle, path)
        if provider_key_id not in self.keys[handle]:
            raise ProviderHttpError(MAILCHANNELS, 404, path, "api key not found")
        self.keys[handle].discard(provider_key_id)

    async def retrieve_subaccount_usage(self, parent_api_key: str, handle: str) -> int:
        return int(self._require(handle, f"/sub-account/{handle}/usage")["usage"])

    async def validate_webhook(self, parent_api_key: str) -> WebhookValidation:
        return WebhookValidation(ok=True, message="Mock webhook validation succeeded.")

    async def send_email(
        self,
        api_key: str,
        account_id: str,
        from_email: str,
        to: List[str],
        subject: str,
        text_body: str,
        html_body: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> SendResult:
        self.sent.append({"account_id": account_id, "from": from_email, "to": list(to)})
        return SendResult(request_id=str(uuid4()), status="queued")
