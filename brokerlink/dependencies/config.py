"""
FastAPI dependency utilities for injecting configuration and guarding routes.
"""

import hmac
from functools import lru_cache
from http import HTTPStatus
from typing import Optional

from fastapi import Depends, Header, HTTPException

from brokerlink.core.config import AppSettings, get_settings


@lru_cache()
def _settings_singleton() -> AppSettings:
    """Ensure configuration is created once per process."""
    return get_settings()


def get_app_settings() -> AppSettings:
    """FastAPI dependency returning application settings."""
    return _settings_singleton()


def require_internal_api_key(
    settings: AppSettings = Depends(get_app_settings),
    x_api_key: Optional[str] = Header(default=None),
) -> None:
    """Reject callers without the shared internal key, when one is configured."""
    expected = settings.security.internal_api_key
    if not expected:
        return
    if not x_api_key or not hmac.compare_digest(x_api_key, expected):
        raise HTTPException(status_code=HTTPStatus.FORBIDDEN, detail="Invalid API key")


SettingsDependency = Depends(get_app_settings)

__all__ = ["SettingsDependency", "get_app_settings", "require_internal_api_key"]
