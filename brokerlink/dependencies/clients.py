"""
Factory functions to provide shared clients and services as FastAPI dependencies.

Each factory is cached so one process holds exactly one rate limiter, one
quote cache and one lifecycle manager; tests replace them through
``app.dependency_overrides``.
"""

from functools import lru_cache

from brokerlink.clients import BrokerGatewayClient, BrokerOAuthClient, CredentialStore
from brokerlink.core.config import get_settings
from brokerlink.services import (
    CredentialCipher,
    QuoteCache,
    QuoteService,
    RateLimiter,
    SymbolDirectory,
    SymbolService,
    TokenLifecycleManager,
)


@lru_cache()
def _settings():
    """Internal helper to cache settings for client factories."""
    return get_settings()


@lru_cache()
def get_credential_cipher() -> CredentialCipher:
    """Provide symmetric encryption helper for credential storage."""
    security = _settings().security
    return CredentialCipher(
        secret=security.token_encryption_secret,
        previous_secrets=security.previous_encryption_secrets,
    )


@lru_cache()
def get_credential_store() -> CredentialStore:
    """Provide the shared SQLite credential store."""
    return CredentialStore(_settings().database_path, get_credential_cipher())


@lru_cache()
def get_oauth_client() -> BrokerOAuthClient:
    return BrokerOAuthClient(_settings().broker)


@lru_cache()
def get_token_manager() -> TokenLifecycleManager:
    """Provide the process-wide credential lifecycle manager."""
    return TokenLifecycleManager(
        store=get_credential_store(),
        oauth_client=get_oauth_client(),
        settings=_settings().broker,
        rate_limiter=get_rate_limiter(),
    )


@lru_cache()
def get_rate_limiter() -> RateLimiter:
    """Provide the process-wide upstream request budget."""
    limits = _settings().rate_limit
    return RateLimiter(
        max_per_second=limits.max_per_second,
        max_concurrent=limits.max_concurrent,
    )


@lru_cache()
def get_gateway_client() -> BrokerGatewayClient:
    return BrokerGatewayClient(
        token_manager=get_token_manager(),
        rate_limiter=get_rate_limiter(),
        settings=_settings().broker,
    )


@lru_cache()
def get_quote_cache() -> QuoteCache:
    """Provide a process-local quote cache."""
    return QuoteCache(ttl_seconds=_settings().market.quote_cache_ttl_seconds)


@lru_cache()
def get_symbol_directory() -> SymbolDirectory:
    """Provide the ticker directory shared by the quote and symbol services."""
    return SymbolDirectory(get_gateway_client())


@lru_cache()
def get_quote_service() -> QuoteService:
    return QuoteService(
        gateway=get_gateway_client(),
        token_manager=get_token_manager(),
        cache=get_quote_cache(),
        directory=get_symbol_directory(),
    )


@lru_cache()
def get_symbol_service() -> SymbolService:
    return SymbolService(
        gateway=get_gateway_client(),
        token_manager=get_token_manager(),
        directory=get_symbol_directory(),
    )


__all__ = [
    "get_credential_cipher",
    "get_credential_store",
    "get_gateway_client",
    "get_oauth_client",
    "get_quote_cache",
    "get_quote_service",
    "get_rate_limiter",
    "get_symbol_directory",
    "get_symbol_service",
    "get_token_manager",
]
