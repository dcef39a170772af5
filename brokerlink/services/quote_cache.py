"""In-memory per-symbol quote cache with a freshness TTL."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Dict, Optional

from brokerlink.models.market import CachedQuote, Quote


class QuoteCache:
    """Latest quote per symbol.

    Entries are only replaced by newer fetches or dropped by :meth:`clear`;
    there is no eviction, so memory grows with the number of distinct
    symbols ever requested.
    """

    def __init__(self, *, ttl_seconds: float) -> None:
        self._ttl = timedelta(seconds=ttl_seconds)
        self._entries: Dict[str, CachedQuote] = {}

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def get(self, symbol: str) -> Optional[CachedQuote]:
        return self._entries.get(symbol.upper())

    def put(self, quote: Quote, *, fetched_at: datetime) -> CachedQuote:
        entry = CachedQuote(symbol=quote.symbol.upper(), payload=quote, fetched_at=fetched_at)
        self._entries[entry.symbol] = entry
        return entry

    def is_fresh(self, entry: CachedQuote, now: datetime) -> bool:
        return now - entry.fetched_at < self._ttl

    def clear(self) -> int:
        """Drop every entry and return how many were held."""
        count = len(self._entries)
        self._entries.clear()
        return count

    def __len__(self) -> int:
        return len(self._entries)


__all__ = ["QuoteCache"]
