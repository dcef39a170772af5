"""
Market data models: instruments, quotes and cache entries.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

_NUMERIC_FIELDS = (
    "lastTradePrice",
    "lastTradeSize",
    "bidPrice",
    "bidSize",
    "askPrice",
    "askSize",
    "openPrice",
    "highPrice",
    "lowPrice",
    "closePrice",
    "previousClosePrice",
    "volume",
    "averageVolume",
    "VWAP",
    "high52w",
    "low52w",
)


class MalformedPayloadError(ValueError):
    """Raised when an upstream payload cannot be mapped onto a model."""


class Symbol(BaseModel):
    """An instrument resolved from the upstream symbol search."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    symbol: str
    symbol_id: int = Field(validation_alias="symbolId")
    description: Optional[str] = None
    security_type: Optional[str] = Field(None, validation_alias="securityType")
    exchange: Optional[str] = Field(None, validation_alias="listingExchange")
    currency: Optional[str] = None
    is_tradable: Optional[bool] = Field(None, validation_alias="isTradable")
    is_quotable: Optional[bool] = Field(None, validation_alias="isQuotable")
    has_options: Optional[bool] = Field(None, validation_alias="hasOptions")

    @classmethod
    def from_upstream(cls, raw: Any) -> "Symbol":
        if not isinstance(raw, dict):
            raise MalformedPayloadError("Symbol payload must be an object")
        try:
            return cls.model_validate(raw)
        except ValidationError as exc:
            raise MalformedPayloadError(str(exc)) from exc


class Quote(BaseModel):
    """Level 1 quote normalized from the upstream payload."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    symbol: str
    symbol_id: Optional[int] = Field(None, validation_alias="symbolId")
    last_trade_price: float = Field(0.0, validation_alias="lastTradePrice")
    last_trade_size: float = Field(0.0, validation_alias="lastTradeSize")
    last_trade_tick: Optional[str] = Field(None, validation_alias="lastTradeTick")
    last_trade_time: Optional[datetime] = Field(None, validation_alias="lastTradeTime")
    bid_price: float = Field(0.0, validation_alias="bidPrice")
    bid_size: float = Field(0.0, validation_alias="bidSize")
    ask_price: float = Field(0.0, validation_alias="askPrice")
    ask_size: float = Field(0.0, validation_alias="askSize")
    open_price: float = Field(0.0, validation_alias="openPrice")
    high_price: float = Field(0.0, validation_alias="highPrice")
    low_price: float = Field(0.0, validation_alias="lowPrice")
    close_price: float = Field(0.0, validation_alias="closePrice")
    previous_close_price: float = Field(0.0, validation_alias="previousClosePrice")
    change: float = 0.0
    change_percent: float = 0.0
    volume: float = 0.0
    average_volume: float = Field(0.0, validation_alias="averageVolume")
    volume_weighted_average_price: float = Field(0.0, validation_alias="VWAP")
    week52_high: float = Field(0.0, validation_alias="high52w")
    week52_low: float = Field(0.0, validation_alias="low52w")
    exchange: Optional[str] = None
    is_halted: bool = Field(False, validation_alias="isHalted")
    delay: int = 0
    is_real_time: bool = True

    @classmethod
    def from_upstream(cls, raw: Any) -> "Quote":
        """Map an upstream quote object, zero-filling absent numeric fields."""
        if not isinstance(raw, dict) or not raw.get("symbol"):
            raise MalformedPayloadError("Quote payload must be an object with a symbol")

        data: Dict[str, Any] = dict(raw)
        for key in _NUMERIC_FIELDS:
            if data.get(key) is None:
                data[key] = 0.0
        if not data.get("lastTradeTime"):
            data["lastTradeTime"] = None
        if data.get("isHalted") is None:
            data["isHalted"] = False
        delay = data.get("delay") or 0
        data["delay"] = delay

        last = data["lastTradePrice"]
        previous = data["previousClosePrice"]
        try:
            data["change"] = float(last) - float(previous)
            data["change_percent"] = (
                (float(last) - float(previous)) / float(previous) * 100
                if float(previous) > 0
                else 0.0
            )
        except (TypeError, ValueError) as exc:
            raise MalformedPayloadError(f"Non-numeric price in quote: {exc}") from exc
        data["is_real_time"] = not delay

        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise MalformedPayloadError(str(exc)) from exc


@dataclass(frozen=True, slots=True)
class CachedQuote:
    """A quote together with the moment it was fetched."""

    symbol: str
    payload: Quote
    fetched_at: datetime


@dataclass(frozen=True, slots=True)
class QuoteResult:
    """A quote as served to callers, flagged when it came from a stale entry."""

    symbol: str
    quote: Quote
    fetched_at: datetime
    source: str
    stale: bool = False


__all__ = [
    "CachedQuote",
    "MalformedPayloadError",
    "Quote",
    "QuoteResult",
    "Symbol",
]
