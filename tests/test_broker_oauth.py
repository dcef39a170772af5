from __future__ import annotations

from urllib.parse import parse_qs

import httpx
import pytest

from brokerlink.clients.broker_oauth import BrokerOAuthClient, OAuthTokenExchangeError
from brokerlink.core.errors import UpstreamUnavailableError
from brokerlink.models.credentials import TokenGrant, normalize_api_server

GOOD_PAYLOAD = {
    "access_token": "new-access",
    "refresh_token": "new-refresh",
    "api_server": "https://api05.example.com/",
    "expires_in": 1800,
    "token_type": "Bearer",
}


def _client(broker_settings, handler) -> BrokerOAuthClient:
    return BrokerOAuthClient(broker_settings, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_refresh_token_posts_form_and_parses_grant(broker_settings) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=GOOD_PAYLOAD)

    grant = await _client(broker_settings, handler).refresh_token("old-refresh")

    assert grant.access_token == "new-access"
    assert grant.api_server == "https://api05.example.com"
    assert grant.expires_in == 1800
    [request] = seen
    assert str(request.url) == "https://login.example.com/oauth2/token"
    assert request.method == "POST"
    form = parse_qs(request.content.decode())
    assert form == {"grant_type": ["refresh_token"], "refresh_token": ["old-refresh"]}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status_code, transient",
    [(400, False), (401, False), (429, False), (500, True), (503, True)],
)
async def test_refresh_token_non_200_is_classified(
    broker_settings, status_code: int, transient: bool
) -> None:
    client = _client(broker_settings, lambda request: httpx.Response(status_code, text="nope"))

    with pytest.raises(OAuthTokenExchangeError) as excinfo:
        await client.refresh_token("old-refresh")

    assert excinfo.value.status_code == status_code
    assert excinfo.value.transient is transient


@pytest.mark.asyncio
async def test_refresh_token_network_error_is_transient(broker_settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(OAuthTokenExchangeError) as excinfo:
        await _client(broker_settings, handler).refresh_token("old-refresh")

    assert excinfo.value.transient is True
    assert excinfo.value.status_code is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {**GOOD_PAYLOAD, "api_server": ""},
        {key: value for key, value in GOOD_PAYLOAD.items() if key != "refresh_token"},
        {**GOOD_PAYLOAD, "expires_in": "soon"},
    ],
)
async def test_refresh_token_incomplete_payload(broker_settings, payload) -> None:
    client = _client(broker_settings, lambda request: httpx.Response(200, json=payload))

    with pytest.raises(OAuthTokenExchangeError) as excinfo:
        await client.refresh_token("old-refresh")

    assert excinfo.value.transient is False


@pytest.mark.asyncio
async def test_fetch_server_time_sends_bearer_token(broker_settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer access"
        assert str(request.url) == "https://api05.example.com/v1/time"
        return httpx.Response(200, json={"time": "2024-03-01T07:00:00.000000-05:00"})

    server_time = await _client(broker_settings, handler).fetch_server_time(
        "https://api05.example.com", "access"
    )

    assert server_time == "2024-03-01T07:00:00.000000-05:00"


@pytest.mark.asyncio
async def test_fetch_server_time_failure(broker_settings) -> None:
    client = _client(broker_settings, lambda request: httpx.Response(500))

    with pytest.raises(UpstreamUnavailableError) as excinfo:
        await client.fetch_server_time("https://api05.example.com", "access")

    assert excinfo.value.status_code == 500


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("https://api01.example.com/", "https://api01.example.com"),
        ("  api01.example.com ", "https://api01.example.com"),
        ("http://localhost:8080", "http://localhost:8080"),
    ],
)
def test_normalize_api_server(raw: str, expected: str) -> None:
    assert normalize_api_server(raw) == expected


def test_token_grant_rejects_non_positive_lifetime() -> None:
    assert TokenGrant.from_payload({**GOOD_PAYLOAD, "expires_in": 0}) is None
    assert TokenGrant.from_payload(["not", "a", "dict"]) is None
