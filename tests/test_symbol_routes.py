try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover
    import _bootstrap  # type: ignore # noqa: F401

import httpx
import pytest

from brokerlink.core.errors import NoAvailablePersonError
from brokerlink.main import app
from brokerlink.services.symbol_service import SymbolDirectory, SymbolService


class FakeGateway:
    async def search_symbols(self, person_name: str, prefix: str) -> list[dict]:
        return [
            {"symbol": "AAPL", "symbolId": 8049, "listingExchange": "NASDAQ"},
            {"symbol": "AAP", "symbolId": 8040},
        ]

    async def get_symbol(self, person_name: str, symbol_id: int):
        if symbol_id != 27426:
            return None
        return {"symbol": "MSFT", "symbolId": 27426, "currency": "USD", "isQuotable": True}


class FakeTokenManager:
    def __init__(self) -> None:
        self.available = True

    def find_available_person(self) -> str:
        if not self.available:
            raise NoAvailablePersonError()
        return "alice"


@pytest.fixture()
def tokens():
    from brokerlink import dependencies

    gateway = FakeGateway()
    tokens = FakeTokenManager()
    service = SymbolService(gateway, tokens, SymbolDirectory(gateway))
    app.dependency_overrides[dependencies.get_symbol_service] = lambda: service

    yield tokens

    app.dependency_overrides.clear()


def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://testserver"
    )


@pytest.mark.anyio
async def test_search_returns_matching_symbols(tokens):
    async with _client() as client:
        response = await client.get("/api/symbols/search", params={"prefix": "AA", "limit": 1})

    assert response.status_code == 200
    assert response.json()["symbols"] == [
        {
            "symbol": "AAPL",
            "symbol_id": 8049,
            "description": None,
            "security_type": None,
            "exchange": "NASDAQ",
            "currency": None,
            "is_tradable": None,
            "is_quotable": None,
            "has_options": None,
        }
    ]


@pytest.mark.anyio
async def test_search_requires_a_prefix(tokens):
    async with _client() as client:
        missing = await client.get("/api/symbols/search")
        blank = await client.get("/api/symbols/search", params={"prefix": "   "})

    assert missing.status_code == 422
    assert blank.status_code == 400


@pytest.mark.anyio
async def test_symbol_details_by_id(tokens):
    async with _client() as client:
        response = await client.get("/api/symbols/27426")

    assert response.status_code == 200
    body = response.json()
    assert body["symbol"] == "MSFT"
    assert body["is_quotable"] is True


@pytest.mark.anyio
async def test_unknown_symbol_id_is_404(tokens):
    async with _client() as client:
        response = await client.get("/api/symbols/1")

    assert response.status_code == 404


@pytest.mark.anyio
async def test_symbol_lookup_without_healthy_person_is_503(tokens):
    tokens.available = False

    async with _client() as client:
        response = await client.get("/api/symbols/search", params={"prefix": "AA"})

    assert response.status_code == 503
