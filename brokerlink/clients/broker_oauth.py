"""
Brokerage OAuth utilities.

These helpers exchange refresh tokens for new token pairs and check the
resource server with a freshly minted access token.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from fastapi import status

from brokerlink.core.config import BrokerSettings
from brokerlink.core.errors import UpstreamUnavailableError
from brokerlink.models.credentials import TokenGrant

logger = logging.getLogger(__name__)


class OAuthTokenExchangeError(Exception):
    """Raised when the token endpoint fails or returns an unusable payload."""

    def __init__(
        self,
        detail: str,
        *,
        status_code: Optional[int] = None,
        transient: bool = False,
    ) -> None:
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code
        self.transient = transient


class BrokerOAuthClient:
    """Exchange refresh tokens against the brokerage login server."""

    TOKEN_PATH = "/oauth2/token"
    TIME_PATH = "/v1/time"

    def __init__(
        self,
        settings: BrokerSettings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._settings = settings
        self._transport = transport

    @property
    def token_url(self) -> str:
        return f"{self._settings.auth_url}{self.TOKEN_PATH}"

    async def refresh_token(self, refresh_token: str) -> TokenGrant:
        """
        Redeem a refresh token for a new access/refresh pair.

        The submitted refresh token is consumed upstream whether or not the
        caller manages to persist the returned pair.
        """
        payload = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        }

        try:
            async with httpx.AsyncClient(
                timeout=self._settings.oauth_timeout_seconds, transport=self._transport
            ) as client:
                response = await client.post(self.token_url, data=payload)
        except httpx.HTTPError as exc:
            raise OAuthTokenExchangeError(
                f"Token endpoint unreachable: {exc.__class__.__name__}", transient=True
            ) from exc

        if response.status_code != status.HTTP_200_OK:
            logger.warning("Token endpoint returned status %s", response.status_code)
            raise OAuthTokenExchangeError(
                response.text or f"HTTP {response.status_code}",
                status_code=response.status_code,
                transient=response.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise OAuthTokenExchangeError("Token endpoint returned invalid JSON.") from exc

        grant = TokenGrant.from_payload(body)
        if grant is None:
            raise OAuthTokenExchangeError("Incomplete token payload returned from broker.")
        return grant

    async def fetch_server_time(self, api_server: str, access_token: str) -> Optional[str]:
        """Call the lightweight time endpoint to validate an access token end to end."""
        try:
            async with httpx.AsyncClient(
                timeout=self._settings.request_timeout_seconds, transport=self._transport
            ) as client:
                response = await client.get(
                    f"{api_server}{self.TIME_PATH}",
                    headers={"Authorization": f"Bearer {access_token}"},
                )
        except httpx.HTTPError as exc:
            raise UpstreamUnavailableError(
                f"Time endpoint unreachable: {exc.__class__.__name__}"
            ) from exc

        if response.status_code != status.HTTP_200_OK:
            raise UpstreamUnavailableError(
                f"Time endpoint returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        try:
            return response.json().get("time")
        except (ValueError, AttributeError) as exc:
            raise UpstreamUnavailableError("Time endpoint returned invalid JSON.") from exc


__all__ = [
    "BrokerOAuthClient",
    "OAuthTokenExchangeError",
]
