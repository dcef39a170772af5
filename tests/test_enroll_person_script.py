"""Tests for the operator enrollment script."""

from __future__ import annotations

import io

import pytest

from brokerlink.clients.broker_oauth import OAuthTokenExchangeError
from brokerlink.clients.credential_store import CredentialStore
from brokerlink.core.config import BrokerSettings
from brokerlink.models.credentials import TokenGrant, TokenKind
from brokerlink.services.token_manager import TokenLifecycleManager
from scripts import enroll_person

ENROLL_TOKEN = "operator-refresh-token-0001"


class DummyOAuthClient:
    def __init__(self) -> None:
        self.calls: list[str] = []
        self.failure: OAuthTokenExchangeError | None = None

    async def refresh_token(self, refresh_token: str) -> TokenGrant:
        self.calls.append(refresh_token)
        if self.failure is not None:
            raise self.failure
        return TokenGrant(
            access_token="access",
            refresh_token="rotated-refresh-token-0001",
            api_server="https://api01.example.com",
            expires_in=1800,
        )


@pytest.fixture
def oauth(monkeypatch: pytest.MonkeyPatch, store: CredentialStore) -> DummyOAuthClient:
    client = DummyOAuthClient()
    manager = TokenLifecycleManager(store, client, BrokerSettings())
    monkeypatch.setattr(enroll_person, "get_token_manager", lambda: manager)
    monkeypatch.setattr(enroll_person, "get_credential_store", lambda: store)
    return client


def test_enroll_stores_credentials(oauth, store, capsys) -> None:
    exit_code = enroll_person.main(
        ["enroll", "--person", "alice", "--refresh-token", ENROLL_TOKEN]
    )

    assert exit_code == enroll_person.EXIT_OK
    assert oauth.calls == [ENROLL_TOKEN]
    assert store.find_active("alice", TokenKind.REFRESH) is not None
    assert "Enrolled alice" in capsys.readouterr().out


def test_enroll_reads_token_from_stdin(oauth, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("sys.stdin", io.StringIO(f"{ENROLL_TOKEN}\n"))

    exit_code = enroll_person.main(["enroll", "--person", "alice", "--stdin"])

    assert exit_code == enroll_person.EXIT_OK
    assert oauth.calls == [ENROLL_TOKEN]


def test_enroll_rejects_short_token(oauth) -> None:
    exit_code = enroll_person.main(["enroll", "--person", "alice", "--refresh-token", "abc"])

    assert exit_code == enroll_person.EXIT_INVALID_INPUT
    assert oauth.calls == []


def test_enroll_reports_upstream_rejection(oauth, store) -> None:
    oauth.failure = OAuthTokenExchangeError("invalid_grant", status_code=400)

    exit_code = enroll_person.main(
        ["enroll", "--person", "alice", "--refresh-token", ENROLL_TOKEN]
    )

    assert exit_code == enroll_person.EXIT_UPSTREAM_ERROR
    assert store.get_person("alice") is None


def test_status_and_revoke(oauth, capsys) -> None:
    assert enroll_person.main(["status", "--person", "alice"]) == enroll_person.EXIT_UNHEALTHY

    enroll_person.main(["enroll", "--person", "alice", "--refresh-token", ENROLL_TOKEN])
    assert enroll_person.main(["status", "--person", "alice"]) == enroll_person.EXIT_OK
    assert '"is_healthy": true' in capsys.readouterr().out

    assert enroll_person.main(["revoke", "--person", "alice"]) == enroll_person.EXIT_OK
    assert enroll_person.main(["status", "--person", "alice"]) == enroll_person.EXIT_UNHEALTHY


def test_rotate_key_counts_active_rows(oauth) -> None:
    enroll_person.main(["enroll", "--person", "alice", "--refresh-token", ENROLL_TOKEN])

    assert enroll_person.main(["rotate-key"]) == enroll_person.EXIT_OK


def test_enroll_requires_a_token_source() -> None:
    with pytest.raises(SystemExit):
        enroll_person.main(["enroll", "--person", "alice"])
