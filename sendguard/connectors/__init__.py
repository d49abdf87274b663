"""Provider connectors."""

from sendguard.connectors.base import (
    MailChannelsConnector,
    ProviderApiKey,
    SendResult,
    WebhookValidation,
    redact_key,
)
from sendguard.connectors.factory import create_mailchannels_connector
from sendguard.connectors.mailchannels import LiveMailChannelsConnector
from sendguard.connectors.mock import MockMailChannelsConnector

__all__ = [
    "MailChannelsConnector",
    "ProviderApiKey",
    "SendResult",
    "WebhookValidation",
    "redact_key",
    "create_mailchannels_connector",
    "LiveMailChannelsConnector",
    "MockMailChannelsConnector",
]
