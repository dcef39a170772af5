"""
Instrument lookup: ticker resolution for the quote path, plus symbol search
and details served through the gateway.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from brokerlink.clients.broker_gateway import BrokerGatewayClient
from brokerlink.core.errors import SymbolNotFoundError, UpstreamUnavailableError
from brokerlink.models.market import MalformedPayloadError, Symbol
from brokerlink.services.token_manager import TokenLifecycleManager

logger = logging.getLogger(__name__)


class SymbolDirectory:
    """Resolve tickers to upstream instrument ids, remembering hits."""

    def __init__(self, gateway: BrokerGatewayClient) -> None:
        self._gateway = gateway
        self._symbols: Dict[str, Symbol] = {}
        self._by_id: Dict[int, Symbol] = {}

    def get(self, symbol: str) -> Optional[Symbol]:
        return self._symbols.get(symbol.upper())

    def get_by_id(self, symbol_id: int) -> Optional[Symbol]:
        return self._by_id.get(symbol_id)

    def remember(self, symbol: Symbol) -> None:
        self._symbols[symbol.symbol.upper()] = symbol
        self._by_id[symbol.symbol_id] = symbol

    async def resolve(self, symbol: str, person_name: str) -> Symbol:
        key = symbol.upper()
        cached = self._symbols.get(key)
        if cached is not None:
            return cached

        for raw in await self._gateway.search_symbols(person_name, key):
            if not isinstance(raw, dict) or str(raw.get("symbol", "")).upper() != key:
                continue
            try:
                resolved = Symbol.from_upstream(raw)
            except MalformedPayloadError:
                logger.warning("Ignoring malformed symbol search result for %s", key)
                continue
            self.remember(resolved)
            return resolved
        raise SymbolNotFoundError(key)


class SymbolService:
    """Symbol search and details on behalf of the first healthy person."""

    def __init__(
        self,
        gateway: BrokerGatewayClient,
        token_manager: TokenLifecycleManager,
        directory: SymbolDirectory,
    ) -> None:
        self._gateway = gateway
        self._tokens = token_manager
        self._directory = directory

    async def search_symbols(self, prefix: str, limit: int = 10) -> List[Symbol]:
        """Return up to ``limit`` instruments whose ticker starts with ``prefix``."""
        person_name = self._tokens.find_available_person()
        results: List[Symbol] = []
        for raw in await self._gateway.search_symbols(person_name, prefix.strip()):
            if len(results) >= limit:
                break
            try:
                symbol = Symbol.from_upstream(raw)
            except MalformedPayloadError:
                logger.warning("Ignoring malformed symbol search result for %s", prefix)
                continue
            self._directory.remember(symbol)
            results.append(symbol)
        return results

    async def get_symbol_details(self, symbol_id: int) -> Symbol:
        cached = self._directory.get_by_id(symbol_id)
        if cached is not None:
            return cached

        person_name = self._tokens.find_available_person()
        raw = await self._gateway.get_symbol(person_name, symbol_id)
        if raw is None:
            raise SymbolNotFoundError(str(symbol_id))
        try:
            symbol = Symbol.from_upstream(raw)
        except MalformedPayloadError as exc:
            raise UpstreamUnavailableError(
                f"Malformed symbol returned for {symbol_id}"
            ) from exc
        self._directory.remember(symbol)
        return symbol


__all__ = ["SymbolDirectory", "SymbolService"]
