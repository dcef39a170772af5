"""
Pydantic models for the quote read path.
"""

from datetime import datetime
from typing import List, Literal

from pydantic import BaseModel, Field

from brokerlink.models.market import Quote, QuoteResult, Symbol


class QuoteResponse(BaseModel):
    """A single quote, flagged when served from a stale cache entry."""

    symbol: str
    quote: Quote
    fetched_at: datetime
    source: Literal["cache", "live", "fallback"]
    stale: bool = Field(
        False, description="True when the quote is older than the freshness TTL."
    )

    @classmethod
    def from_result(cls, result: QuoteResult) -> "QuoteResponse":
        return cls(
            symbol=result.symbol,
            quote=result.quote,
            fetched_at=result.fetched_at,
            source=result.source,
            stale=result.stale,
        )


class QuoteListResponse(BaseModel):
    quotes: List[QuoteResponse] = Field(default_factory=list)
    missing: List[str] = Field(
        default_factory=list, description="Requested symbols that could not be served."
    )


class CacheClearResponse(BaseModel):
    cleared: int


class SymbolListResponse(BaseModel):
    symbols: List[Symbol] = Field(default_factory=list)


__all__ = ["CacheClearResponse", "QuoteListResponse", "QuoteResponse", "SymbolListResponse"]
