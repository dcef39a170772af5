"""
Quote read path: cache first, live fetch through the gateway, stale fallback.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Set, Tuple

from brokerlink.clients.broker_gateway import BrokerGatewayClient
from brokerlink.core.errors import (
    BrokerlinkError,
    SymbolNotFoundError,
    UpstreamUnavailableError,
)
from brokerlink.models.market import CachedQuote, MalformedPayloadError, Quote, QuoteResult
from brokerlink.services.quote_cache import QuoteCache
from brokerlink.services.symbol_service import SymbolDirectory
from brokerlink.services.token_manager import TokenLifecycleManager

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QuoteService:
    """Serve quotes from the cache, refreshing through the gateway when stale."""

    def __init__(
        self,
        gateway: BrokerGatewayClient,
        token_manager: TokenLifecycleManager,
        cache: QuoteCache,
        directory: SymbolDirectory,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._gateway = gateway
        self._tokens = token_manager
        self._cache = cache
        self._directory = directory
        self._clock = clock

    async def get_quote(self, symbol: str, force_refresh: bool = False) -> QuoteResult:
        key = symbol.strip().upper()
        if not key:
            raise SymbolNotFoundError(symbol)

        if not force_refresh:
            cached = self._cache.get(key)
            if cached is not None and self._cache.is_fresh(cached, self._clock()):
                logger.debug("Returning cached quote for %s", key)
                return self._from_cache(cached, source="cache")

        try:
            quote = await self._fetch_one(key)
        except BrokerlinkError as exc:
            logger.error("Failed to get quote for %s: %s", key, exc)
            cached = self._cache.get(key)
            if cached is None:
                raise
            logger.warning("Returning stale quote for %s due to error", key)
            return self._from_cache(cached, source="fallback")

        entry = self._cache.put(quote, fetched_at=self._clock())
        return QuoteResult(
            symbol=entry.symbol, quote=entry.payload, fetched_at=entry.fetched_at, source="live"
        )

    async def get_multiple_quotes(
        self, symbols: Iterable[str], force_refresh: bool = False
    ) -> List[QuoteResult]:
        """Serve several quotes, batching every cache miss into one upstream call.

        Symbols that cannot be served (unknown, or failed with no cached entry)
        are logged and omitted. The batch error is raised only when nothing at
        all could be served.
        """
        keys: List[str] = []
        for symbol in symbols:
            key = symbol.strip().upper()
            if key and key not in keys:
                keys.append(key)

        results: Dict[str, QuoteResult] = {}
        misses: List[str] = []
        now = self._clock()
        for key in keys:
            cached = self._cache.get(key)
            if not force_refresh and cached is not None and self._cache.is_fresh(cached, now):
                results[key] = self._from_cache(cached, source="cache")
            else:
                misses.append(key)

        if not misses:
            return [results[key] for key in keys]

        batch_error: BrokerlinkError | None = None
        fetched: Dict[str, Quote] = {}
        unresolved: Set[str] = set()
        try:
            fetched, unresolved = await self._fetch_batch(misses)
        except BrokerlinkError as exc:
            logger.error("Failed to fetch quotes for %s: %s", ",".join(misses), exc)
            batch_error = exc

        fetched_at = self._clock()
        for key, quote in fetched.items():
            entry = self._cache.put(quote, fetched_at=fetched_at)
            results[key] = QuoteResult(
                symbol=key, quote=entry.payload, fetched_at=entry.fetched_at, source="live"
            )

        for key in misses:
            if key in results:
                continue
            if batch_error is not None or key in unresolved:
                cached = self._cache.get(key)
                if cached is not None:
                    logger.warning("Returning stale quote for %s due to error", key)
                    results[key] = self._from_cache(cached, source="fallback")
                continue
            # Absent from an otherwise successful batch response.
            try:
                results[key] = await self.get_quote(key, force_refresh=True)
            except BrokerlinkError as exc:
                logger.warning("Skipping quote for %s: %s", key, exc)

        if batch_error is not None and not results:
            raise batch_error
        return [results[key] for key in keys if key in results]

    async def refresh_quote(self, symbol: str) -> QuoteResult:
        return await self.get_quote(symbol, force_refresh=True)

    def clear_cache(self) -> int:
        cleared = self._cache.clear()
        logger.info("Cleared %d cached quotes", cleared)
        return cleared

    async def _fetch_one(self, key: str) -> Quote:
        person_name = self._tokens.find_available_person()
        resolved = await self._directory.resolve(key, person_name)
        raw_quotes = await self._gateway.get_quotes(person_name, [resolved.symbol_id])
        if not raw_quotes:
            raise UpstreamUnavailableError(f"No quote returned for {key}")
        try:
            return Quote.from_upstream(raw_quotes[0])
        except MalformedPayloadError as exc:
            raise UpstreamUnavailableError(f"Malformed quote returned for {key}") from exc

    async def _fetch_batch(self, keys: List[str]) -> Tuple[Dict[str, Quote], Set[str]]:
        person_name = self._tokens.find_available_person()

        ids: Dict[int, str] = {}
        unresolved: Set[str] = set()
        for key in keys:
            try:
                resolved = await self._directory.resolve(key, person_name)
            except SymbolNotFoundError:
                logger.warning("Symbol %s not found", key)
                unresolved.add(key)
                continue
            ids[resolved.symbol_id] = key

        if not ids:
            return {}, unresolved

        quotes: Dict[str, Quote] = {}
        for raw in await self._gateway.get_quotes(person_name, ids.keys()):
            try:
                quote = Quote.from_upstream(raw)
            except MalformedPayloadError:
                logger.warning("Ignoring malformed quote in batch response")
                continue
            key = ids.get(quote.symbol_id) if quote.symbol_id is not None else None
            key = key or quote.symbol.upper()
            if key in ids.values():
                quotes[key] = quote
        return quotes, unresolved

    def _from_cache(self, entry: CachedQuote, *, source: str) -> QuoteResult:
        return QuoteResult(
            symbol=entry.symbol,
            quote=entry.payload,
            fetched_at=entry.fetched_at,
            source=source,
            stale=not self._cache.is_fresh(entry, self._clock()),
        )


__all__ = ["QuoteService"]
