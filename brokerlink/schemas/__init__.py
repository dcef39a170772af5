"""Public schema exports."""

from .auth import (
    AccessTokenResponse,
    ConnectionTestResponse,
    RefreshTokenResponse,
    SetupPersonRequest,
    SetupPersonResponse,
)
from .market import CacheClearResponse, QuoteListResponse, QuoteResponse, SymbolListResponse

__all__ = [
    "AccessTokenResponse",
    "CacheClearResponse",
    "ConnectionTestResponse",
    "QuoteListResponse",
    "QuoteResponse",
    "RefreshTokenResponse",
    "SetupPersonRequest",
    "SetupPersonResponse",
    "SymbolListResponse",
]
