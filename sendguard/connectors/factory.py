"""Builds provider connectors from configuration."""

from sendguard.config import SendGuardConfig
from sendguard.connectors.base import MailChannelsConnector
from sendguard.connectors.mailchannels import LiveMailChannelsConnector
from sendguard.connectors.mock import MockMailChannelsConnector


def create_mailchannels_connector(config: SendGuardConfig) -> MailChannelsConnector:
    if config.connector_mode == "live":
        return LiveMailChannelsConnector(
            config.mailchannels_base_url, timeout=config.provider_timeout_seconds
        )
    return MockMailChannelsConnector()
