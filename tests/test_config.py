from __future__ import annotations

import pytest

from brokerlink.core.config import AppSettings, BrokerSettings, SecuritySettings


def test_previous_secrets_accept_comma_separated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TOKEN_ENCRYPTION_SECRET", "current")
    monkeypatch.setenv("TOKEN_ENCRYPTION_PREVIOUS_SECRETS", "old-one, old-two,,")

    settings = SecuritySettings()

    assert settings.token_encryption_secret == "current"
    assert settings.previous_encryption_secrets == ("old-one", "old-two")


def test_broker_settings_strip_trailing_slash() -> None:
    settings = BrokerSettings(BROKER_AUTH_URL=" https://login.example.com/ ")

    assert settings.auth_url == "https://login.example.com"


def test_app_settings_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TOKEN_ENCRYPTION_SECRET", "current")
    monkeypatch.delenv("RATE_LIMIT_PER_SECOND", raising=False)
    monkeypatch.delenv("QUOTE_CACHE_TTL", raising=False)
    monkeypatch.delenv("REFRESH_TOKEN_TTL_DAYS", raising=False)

    settings = AppSettings(_env_file=None)

    assert settings.rate_limit.max_per_second == 20
    assert settings.rate_limit.max_concurrent == 5
    assert settings.market.quote_cache_ttl_seconds == 10.0
    assert settings.broker.refresh_token_ttl_days == 7


def test_rate_limits_must_be_positive(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RATE_LIMIT_PER_SECOND", "0")

    with pytest.raises(ValueError):
        AppSettings(_env_file=None)
