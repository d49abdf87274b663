"""HTTP connector for the MailChannels API."""

import json
from typing import Any, Dict, List, Optional

import aiohttp

from sendguard.connectors.base import (
    MAILCHANNELS,
    MailChannelsConnector,
    ProviderApiKey,
    SendResult,
    WebhookValidation,
)
from sendguard.errors import ProviderHttpError

_HANDLE_KEYS = ("customer_handle", "handle", "subaccount_handle")


class LiveMailChannelsConnector(MailChannelsConnector):
    """Calls the MailChannels REST API."""

    def __init__(self, base_url: str, timeout: float = 10.0):
        """
        Initialize the connector.

        Args:
            base_url: API root (e.g., "https://api.mailchannels.net/tx/v1")
            timeout: Request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    async def _request(
        self,
        method: str,
        path: str,
        api_key: str,
        body: Optional[Dict[str, Any]] = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_key}",
        }

        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            try:
                async with session.request(
                    method, url, json=body, headers=headers
                ) as resp:
                    response_body = await resp.text()

                    if resp.status >= 400:
                        raise ProviderHttpError(
                            provider=MAILCHANNELS,
                            status=resp.status,
                            path=path,
                            body=response_body,
                        )

                    if not response_body:
                        return {}
                    return json.loads(response_body)

            except aiohttp.ClientError as e:
                raise ProviderHttpError(
                    provider=MAILCHANNELS,
                    status=0,
                    path=path,
                    body=f"Network error: {str(e)}",
                ) from e

    async def list_subaccounts(self, parent_api_key: str) -> List[str]:
        response = await self._request("GET", "/sub-account", parent_api_key)

        if isinstance(response, list):
            entries = response
        elif isinstance(response, dict):
            entries = response.get("sub_accounts") or response.get("subaccounts") or []
        else:
            entries = []

        handles = []
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            handle = next(
                (entry[key] for key in _HANDLE_KEYS if isinstance(entry.get(key), str)),
                None,
            )
            if handle:
                handles.append(handle)
        return handles

    async def create_subaccount(self, parent_api_key: str, handle: str) -> None:
        await self._request(
            "POST", "/sub-account", parent_api_key, {"customer_handle": handle}
        )

    async def set_subaccount_limit(
        self, parent_api_key: str, handle: str, limit: int
    ) -> None:
        await self._request(
            "POST", f"/sub-account/{handle}/limit", parent_api_key, {"limit": limit}
        )

    async def delete_subaccount_limit(self, parent_api_key: str, handle: str) -> None:
        await self._request("DELETE", f"/sub-account/{handle}/limit", parent_api_key)

    async def suspend_subaccount(self, parent_api_key: str, handle: str) -> None:
        await self._request("POST", f"/sub-account/{handle}/suspend", parent_api_key)

    async def activate_subaccount(self, parent_api_key: str, handle: str) -> None:
        await self._request("POST", f"/sub-account/{handle}/activate", parent_api_key)

    async def create_subaccount_api_key(
        self, parent_api_key: str, handle: str
    ) -> ProviderApiKey:
        response = await self._request(
            "POST", f"/sub-account/{handle}/api-key", parent_api_key
        )
        return ProviderApiKey(
            provider_key_id=str(response["id"]),
            key_value=response["value"],
            redacted_value=response["redacted"],
        )

    async def delete_subaccount_api_key(
        self, parent_api_key: str, handle: str, provider_key_id: str
    ) -> None:
        await self._request(
            "DELETE",
            f"/sub-account/{handle}/api-key/{provider_key_id}",
            parent_api_key,
        )

    async def retrieve_subaccount_usage(self, parent_api_key: str, handle: str) -> int:
        response = await self._request(
            "GET", f"/sub-account/{handle}/usage", parent_api_key
        )
        return int(response.get("usage", 0))

    async def validate_webhook(self, parent_api_key: str) -> WebhookValidation:
        response = await self._request("POST", "/webhook/validate", parent_api_key)
        return WebhookValidation(
            ok=bool(response.get("ok")), message=str(response.get("message", ""))
        )

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
        response = await self._request(
            "POST",
            "/send",
            api_key,
            {
                "to": to,
                "from": from_email,
                "subject": subject,
                "text": text_body,
                "html": html_body,
                "headers": headers,
                "customer_handle": account_id,
            },
        )
        status = response.get("status")
        if status not in ("accepted", "rejected"):
            status = "queued"
        return SendResult(request_id=str(response.get("request_id", "")), status=status)
