"""
Domain exceptions shared by the credential, gateway and quote layers.

Routes translate these into HTTP responses; services raise them unchanged.
"""

from __future__ import annotations

from typing import Optional


class BrokerlinkError(Exception):
    """Base class for all brokerlink domain failures."""


class NoRefreshTokenError(BrokerlinkError):
    """Raised when a person has no active refresh token on record."""

    def __init__(self, person_name: str) -> None:
        super().__init__(f"No active refresh token found for {person_name}")
        self.person_name = person_name


class InvalidRefreshTokenFormat(BrokerlinkError):
    """Raised when a refresh token is missing or implausibly short."""

    def __init__(self, person_name: Optional[str] = None) -> None:
        message = "Invalid refresh token format"
        if person_name:
            message = f"{message} for {person_name}"
        super().__init__(message)
        self.person_name = person_name


class UpstreamAuthError(BrokerlinkError):
    """Raised when the upstream token endpoint rejects a refresh."""

    REENROLL_STATUSES = frozenset({400, 401})

    def __init__(
        self,
        person_name: str,
        *,
        status_code: Optional[int],
        detail: str = "",
    ) -> None:
        self.person_name = person_name
        self.status_code = status_code
        self.detail = detail
        if self.requires_reenrollment:
            message = (
                f"Invalid or expired refresh token for {person_name}. "
                "Please update the refresh token."
            )
        else:
            message = f"Token refresh rejected for {person_name} (status {status_code})"
        super().__init__(message)

    @property
    def requires_reenrollment(self) -> bool:
        return self.status_code in self.REENROLL_STATUSES


class AuthenticationFailedError(BrokerlinkError):
    """Raised when a request is still unauthorized after one refresh and retry."""

    def __init__(self, person_name: str, endpoint: str) -> None:
        super().__init__(
            f"Upstream rejected refreshed credentials for {person_name} on {endpoint}"
        )
        self.person_name = person_name
        self.endpoint = endpoint


class UpstreamUnavailableError(BrokerlinkError):
    """Raised for network failures, timeouts and non-auth upstream errors."""

    def __init__(self, detail: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(detail)
        self.status_code = status_code


class SymbolNotFoundError(BrokerlinkError):
    """Raised when the upstream has no instrument matching a ticker."""

    def __init__(self, symbol: str) -> None:
        super().__init__(f"Symbol {symbol} not found")
        self.symbol = symbol


class NoAvailablePersonError(BrokerlinkError):
    """Raised when no enrolled person currently holds a usable token."""

    def __init__(self) -> None:
        super().__init__("No active persons with valid tokens available")


__all__ = [
    "AuthenticationFailedError",
    "BrokerlinkError",
    "InvalidRefreshTokenFormat",
    "NoAvailablePersonError",
    "NoRefreshTokenError",
    "SymbolNotFoundError",
    "UpstreamAuthError",
    "UpstreamUnavailableError",
]
