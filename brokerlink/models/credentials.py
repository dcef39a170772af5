"""
Domain models for credential persistence and the token lifecycle.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr


class TokenKind(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


class Credential(BaseModel):
    """Represents a decrypted credential row loaded from the credential store."""

    model_config = ConfigDict(frozen=True)

    id: int
    person_name: str
    kind: TokenKind
    token_value: SecretStr
    api_server: Optional[str] = None
    expires_at: datetime
    is_active: bool = True
    error_count: int = 0
    last_error: Optional[str] = None
    last_used: Optional[datetime] = None
    last_successful_use: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


class NewCredential(BaseModel):
    """A credential about to be written; the store assigns id and timestamps."""

    model_config = ConfigDict(frozen=True)

    kind: TokenKind
    token_value: SecretStr
    expires_at: datetime
    api_server: Optional[str] = None


class PersonHealth(BaseModel):
    """Denormalized health view over a person's credentials."""

    model_config = ConfigDict(frozen=True)

    person_name: str
    has_valid_token: bool = False
    last_token_refresh: Optional[datetime] = None
    last_token_error: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AccessGrant(BaseModel):
    """A usable access token handed to callers of the lifecycle manager."""

    model_config = ConfigDict(frozen=True)

    person_name: str
    access_token: str = Field(repr=False)
    api_server: str
    expires_at: datetime


class TokenGrant(BaseModel):
    """Parsed response of the upstream OAuth token endpoint."""

    model_config = ConfigDict(frozen=True)

    access_token: str = Field(repr=False)
    refresh_token: str = Field(repr=False)
    api_server: str
    expires_in: int

    @classmethod
    def from_payload(cls, payload: Any) -> Optional["TokenGrant"]:
        """Return a grant when every field is present and well typed, else None."""
        if not isinstance(payload, dict):
            return None
        access_token = payload.get("access_token")
        refresh_token = payload.get("refresh_token")
        api_server = payload.get("api_server")
        expires_in = payload.get("expires_in")
        if not isinstance(access_token, str) or not access_token:
            return None
        if not isinstance(refresh_token, str) or not refresh_token:
            return None
        if not isinstance(api_server, str) or not api_server.strip():
            return None
        try:
            expires_seconds = int(expires_in)
        except (TypeError, ValueError):
            return None
        if expires_seconds <= 0:
            return None
        return cls(
            access_token=access_token,
            refresh_token=refresh_token,
            api_server=normalize_api_server(api_server),
            expires_in=expires_seconds,
        )


class RefreshTokenStatus(BaseModel):
    exists: bool
    expires_at: Optional[datetime] = None
    last_used: Optional[datetime] = None
    error_count: int = 0
    last_error: Optional[str] = None


class AccessTokenStatus(BaseModel):
    exists: bool
    expires_at: Optional[datetime] = None
    last_used: Optional[datetime] = None
    api_server: Optional[str] = None


class TokenStatus(BaseModel):
    """Read-only projection of a person's credential health."""

    person_name: str
    refresh_token: RefreshTokenStatus
    access_token: AccessTokenStatus
    has_valid_token: bool = False
    last_token_refresh: Optional[datetime] = None
    last_token_error: Optional[str] = None
    is_healthy: bool


class EnrollmentResult(BaseModel):
    person_name: str
    api_server: str


class ConnectionTestResult(BaseModel):
    person_name: str
    api_server: str
    server_time: Optional[str] = None


def normalize_api_server(value: str) -> str:
    """Trim, drop trailing slashes and default the scheme to https."""
    cleaned = value.strip().rstrip("/")
    if not cleaned:
        raise ValueError("api_server must not be empty")
    if "://" not in cleaned:
        cleaned = f"https://{cleaned}"
    return cleaned


__all__ = [
    "AccessGrant",
    "AccessTokenStatus",
    "ConnectionTestResult",
    "Credential",
    "EnrollmentResult",
    "NewCredential",
    "PersonHealth",
    "RefreshTokenStatus",
    "TokenGrant",
    "TokenKind",
    "TokenStatus",
    "normalize_api_server",
]
