"""Schemas for the credential lifecycle routes."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class SetupPersonRequest(BaseModel):
    """Payload sent by an operator to enroll or re-enroll a person."""

    person_name: str = Field(..., min_length=1, max_length=64)
    refresh_token: str = Field(
        ..., min_length=1, description="Refresh token issued by the broker's API hub."
    )


class AccessTokenResponse(BaseModel):
    """A usable access token for internal data-fetching services."""

    access_token: str
    api_server: str
    person_name: str
    expires_at: datetime


class RefreshTokenResponse(BaseModel):
    """Metadata of a freshly rotated token pair; the token itself is withheld."""

    message: str = "Token refreshed successfully"
    person_name: str
    api_server: str
    expires_at: datetime


class SetupPersonResponse(BaseModel):
    message: str = "Person and token setup successfully"
    person_name: str
    api_server: str


class ConnectionTestResponse(BaseModel):
    message: str = "Connection test successful"
    person_name: str
    api_server: str
    server_time: Optional[str] = None


__all__ = [
    "AccessTokenResponse",
    "ConnectionTestResponse",
    "RefreshTokenResponse",
    "SetupPersonRequest",
    "SetupPersonResponse",
]
