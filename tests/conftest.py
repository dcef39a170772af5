"""Pytest configuration shared across the suite."""

try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import pytest

from brokerlink.clients.credential_store import CredentialStore
from brokerlink.core.config import BrokerSettings
from brokerlink.services.credential_cipher import CredentialCipher


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO-powered tests to run against asyncio backend only."""
    return "asyncio"


@pytest.fixture
def cipher() -> CredentialCipher:
    return CredentialCipher(secret="secret-key")


@pytest.fixture
def store(tmp_path, cipher) -> CredentialStore:
    return CredentialStore(str(tmp_path / "credentials.db"), cipher)


@pytest.fixture
def broker_settings() -> BrokerSettings:
    return BrokerSettings(
        BROKER_AUTH_URL="https://login.example.com/",
        BROKER_REQUEST_TIMEOUT=2.0,
        BROKER_OAUTH_TIMEOUT=2.0,
    )
