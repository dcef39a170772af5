"""Expose constructed client wrappers."""

from .broker_gateway import BrokerGatewayClient
from .broker_oauth import BrokerOAuthClient, OAuthTokenExchangeError
from .credential_store import CredentialStore

__all__ = [
    "BrokerGatewayClient",
    "BrokerOAuthClient",
    "CredentialStore",
    "OAuthTokenExchangeError",
]
