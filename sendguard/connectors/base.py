"""Provider connector interfaces."""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from pydantic import BaseModel

MAILCHANNELS = "mailchannels"


class ProviderApiKey(BaseModel):
    """A freshly minted provider key. ``key_value`` is only ever shown once."""

    provider_key_id: str
    key_value: str
    redacted_value: str


class SendResult(BaseModel):
    request_id: str
    status: str


class WebhookValidation(BaseModel):
    ok: bool
    message: str


class MailChannelsConnector(ABC):
    """Operations the safety layer needs from the mail-sending provider."""

    @abstractmethod
    async def list_subaccounts(self, parent_api_key: str) -> List[str]:
        """Return the handles of all subaccounts under the parent account."""

    @abstractmethod
    async def create_subaccount(self, parent_api_key: str, handle: str) -> None:
        ...

    @abstractmethod
    async def set_subaccount_limit(
        self, parent_api_key: str, handle: str, limit: int
    ) -> None:
        ...

    @abstractmethod
    async def delete_subaccount_limit(self, parent_api_key: str, handle: str) -> None:
        ...

    @abstractmethod
    async def suspend_subaccount(self, parent_api_key: str, handle: str) -> None:
        ...

    @abstractmethod
    async def activate_subaccount(self, parent_api_key: str, handle: str) -> None:
        ...

    @abstractmethod
    async def create_subaccount_api_key(
        self, parent_api_key: str, handle: str
    ) -> ProviderApiKey:
        ...

    @abstractmethod
    async def delete_subaccount_api_key(
        self, parent_api_key: str, handle: str, provider_key_id: str
    ) -> None:
        ...

    @abstractmethod
    async def retrieve_subaccount_usage(self, parent_api_key: str, handle: str) -> int:
        ...

    @abstractmethod
    async def validate_webhook(self, parent_api_key: str) -> WebhookValidation:
        ...

    @abstractmethod
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
        ...


def redact_key(value: str) -> str:
    """Safe-to-display preview of a secret."""
    if len(value) <= 6:
        return "******"
    return f"{value[:4]}...{value[-2:]}"
