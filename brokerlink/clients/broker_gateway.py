"""
Authenticated, rate-limited access to the brokerage resource API.

Every upstream resource call goes through :class:`BrokerGatewayClient`, which
obtains a token from the lifecycle manager, waits for a rate limiter slot and
recovers from exactly one 401 per request by refreshing and retrying once.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional

import httpx

from fastapi import status

from brokerlink.core.config import BrokerSettings
from brokerlink.core.errors import AuthenticationFailedError, UpstreamUnavailableError
from brokerlink.models.credentials import AccessGrant

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from brokerlink.services.rate_limiter import RateLimiter
    from brokerlink.services.token_manager import TokenLifecycleManager

logger = logging.getLogger(__name__)


class BrokerGatewayClient:
    """Wrap upstream calls with token management and throttling."""

    API_PREFIX = "/v1/"

    def __init__(
        self,
        token_manager: TokenLifecycleManager,
        rate_limiter: RateLimiter,
        settings: BrokerSettings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._tokens = token_manager
        self._limiter = rate_limiter
        self._settings = settings
        self._transport = transport

    async def request(
        self,
        person_name: str,
        endpoint: str,
        method: str = "GET",
        body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Issue ``method`` against ``{api_server}/v1/{endpoint}`` for a person."""
        async with self._limiter.slot():
            grant = await self._tokens.get_valid_access_token(person_name)
            response = await self._send(grant, endpoint, method, body, params)

        if response.status_code == status.HTTP_401_UNAUTHORIZED:
            logger.info("Token rejected for %s on %s, refreshing", person_name, endpoint)
            grant = await self._tokens.refresh_access_token(
                person_name, invalidated_token=grant.access_token
            )
            async with self._limiter.slot():
                response = await self._send(grant, endpoint, method, body, params)
            if response.status_code == status.HTTP_401_UNAUTHORIZED:
                logger.error(
                    "Upstream rejected refreshed token for %s on %s", person_name, endpoint
                )
                raise AuthenticationFailedError(person_name, endpoint)

        return self._parse(response, person_name, endpoint)

    async def _send(
        self,
        grant: AccessGrant,
        endpoint: str,
        method: str,
        body: Optional[Dict[str, Any]],
        params: Optional[Dict[str, Any]],
    ) -> httpx.Response:
        url = f"{grant.api_server}{self.API_PREFIX}{endpoint.lstrip('/')}"
        try:
            async with httpx.AsyncClient(
                timeout=self._settings.request_timeout_seconds, transport=self._transport
            ) as client:
                return await client.request(
                    method,
                    url,
                    headers={"Authorization": f"Bearer {grant.access_token}"},
                    json=body,
                    params=params,
                )
        except httpx.TimeoutException as exc:
            raise UpstreamUnavailableError(f"Upstream timed out on {endpoint}") from exc
        except httpx.HTTPError as exc:
            raise UpstreamUnavailableError(
                f"Upstream unreachable on {endpoint}: {exc.__class__.__name__}"
            ) from exc

    @staticmethod
    def _parse(response: httpx.Response, person_name: str, endpoint: str) -> Dict[str, Any]:
        if not response.is_success:
            logger.error(
                "Broker API error for %s: endpoint=%s status=%s",
                person_name,
                endpoint,
                response.status_code,
            )
            raise UpstreamUnavailableError(
                f"Upstream returned HTTP {response.status_code} on {endpoint}",
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamUnavailableError(
                f"Upstream returned invalid JSON on {endpoint}",
                status_code=response.status_code,
            ) from exc
        if not isinstance(payload, dict):
            raise UpstreamUnavailableError(
                f"Upstream returned unexpected payload on {endpoint}",
                status_code=response.status_code,
            )
        return payload

    # Account endpoints

    async def get_accounts(self, person_name: str) -> List[Dict[str, Any]]:
        response = await self.request(person_name, "accounts")
        return response.get("accounts") or []

    async def get_account_balances(self, person_name: str, account_id: str) -> Dict[str, Any]:
        return await self.request(person_name, f"accounts/{account_id}/balances")

    async def get_account_positions(
        self, person_name: str, account_id: str
    ) -> List[Dict[str, Any]]:
        response = await self.request(person_name, f"accounts/{account_id}/positions")
        return response.get("positions") or []

    async def get_account_activities(
        self,
        person_name: str,
        account_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {}
        if start:
            params["startTime"] = start.isoformat()
        if end:
            params["endTime"] = end.isoformat()
        response = await self.request(
            person_name, f"accounts/{account_id}/activities", params=params or None
        )
        return response.get("activities") or []

    async def get_account_orders(
        self,
        person_name: str,
        account_id: str,
        *,
        state_filter: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {}
        if state_filter:
            params["stateFilter"] = state_filter
        if start:
            params["startTime"] = start.isoformat()
        if end:
            params["endTime"] = end.isoformat()
        response = await self.request(
            person_name, f"accounts/{account_id}/orders", params=params or None
        )
        return response.get("orders") or []

    # Market data endpoints

    async def get_symbol(self, person_name: str, symbol_id: int) -> Optional[Dict[str, Any]]:
        response = await self.request(person_name, f"symbols/{symbol_id}")
        symbols = response.get("symbols") or []
        return symbols[0] if symbols else None

    async def search_symbols(self, person_name: str, prefix: str) -> List[Dict[str, Any]]:
        response = await self.request(person_name, "symbols/search", params={"prefix": prefix})
        return response.get("symbols") or []

    async def get_quotes(
        self, person_name: str, symbol_ids: Iterable[int]
    ) -> List[Dict[str, Any]]:
        ids = ",".join(str(symbol_id) for symbol_id in symbol_ids)
        response = await self.request(person_name, "markets/quotes", params={"ids": ids})
        return response.get("quotes") or []

    async def get_server_time(self, person_name: str) -> Optional[str]:
        response = await self.request(person_name, "time")
        return response.get("time")


__all__ = ["BrokerGatewayClient"]
