"""Expose dependency helpers for FastAPI routers."""

from .clients import (
    get_credential_cipher,
    get_credential_store,
    get_gateway_client,
    get_oauth_client,
    get_quote_cache,
    get_quote_service,
    get_rate_limiter,
    get_symbol_directory,
    get_symbol_service,
    get_token_manager,
)
from .config import SettingsDependency, get_app_settings, require_internal_api_key

__all__ = [
    "SettingsDependency",
    "get_app_settings",
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
    "require_internal_api_key",
]
