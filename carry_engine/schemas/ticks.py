"""Pydantic v2 schema for inbound market data ticks.

Feeds deliver ticks either flat (``last_traded_price``, ``bid_price`` ...)
or Kite-style nested (``last_price``, ``ohlc``, ``depth``). normalize_tick()
folds both shapes into the flat field names of TickPayload, which then
enforces presence and sign constraints.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Epoch values below this are seconds, above are milliseconds
_EPOCH_MS_THRESHOLD = 100_000_000_000


class TickPayload(BaseModel):
    """Validated, normalised tick ready to become a market_data row."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    instrument_token: str = Field(..., min_length=1)
    trading_symbol: Optional[str] = None
    last_traded_price: float = Field(..., ge=0)
    open_price: Optional[float] = Field(default=None, ge=0)
    high_price: Optional[float] = Field(default=None, ge=0)
    low_price: Optional[float] = Field(default=None, ge=0)
    close_price: Optional[float] = Field(default=None, ge=0)
    volume: int = Field(default=0, ge=0)
    open_interest: int = Field(default=0, ge=0)
    bid_price: Optional[float] = Field(default=None, ge=0)
    ask_price: Optional[float] = Field(default=None, ge=0)
    bid_quantity: int = Field(default=0, ge=0)
    ask_quantity: int = Field(default=0, ge=0)
    exchange_timestamp: int = Field(..., gt=0, description="Epoch milliseconds")

    @field_validator("instrument_token", mode="before")
    @classmethod
    def _token_to_str(cls, v: Any) -> Any:
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("exchange_timestamp", mode="before")
    @classmethod
    def _to_epoch_ms(cls, v: Any) -> Any:
        if isinstance(v, str):
            try:
                v = datetime.fromisoformat(v)
            except ValueError:
                return v
        if isinstance(v, datetime):
            if v.tzinfo is None:
                v = v.replace(tzinfo=timezone.utc)
            return int(v.timestamp() * 1000)
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            if v < _EPOCH_MS_THRESHOLD:
                return int(v * 1000)
            return int(v)
        return v


def _first_level(depth: dict[str, Any], side: str) -> dict[str, Any]:
    levels = depth.get(side) or []
    return levels[0] if levels else {}


def normalize_tick(raw: dict[str, Any]) -> dict[str, Any]:
    """Fold flat and Kite-style tick shapes into TickPayload field names.

    Flat keys win over nested ones when both are present.

    Args:
        raw: Tick as delivered by a market-data feed.

    Returns:
        A new dict keyed by TickPayload field names.
    """
    out: dict[str, Any] = {
        "instrument_token": raw.get("instrument_token"),
        "trading_symbol": raw.get("trading_symbol") or raw.get("tradingsymbol"),
        "last_traded_price": raw.get("last_traded_price", raw.get("last_price")),
        "exchange_timestamp": raw.get(
            "exchange_timestamp", raw.get("timestamp", raw.get("last_trade_time"))
        ),
    }

    ohlc = raw.get("ohlc") or {}
    for field in ("open", "high", "low", "close"):
        value = raw.get(f"{field}_price", ohlc.get(field))
        if value is not None:
            out[f"{field}_price"] = value

    volume = raw.get("volume", raw.get("volume_traded"))
    if volume is not None:
        out["volume"] = volume
    oi = raw.get("open_interest", raw.get("oi"))
    if oi is not None:
        out["open_interest"] = oi

    depth = raw.get("depth") or {}
    best_bid = _first_level(depth, "buy")
    best_ask = _first_level(depth, "sell")
    for key, value in (
        ("bid_price", raw.get("bid_price", best_bid.get("price"))),
        ("ask_price", raw.get("ask_price", best_ask.get("price"))),
        ("bid_quantity", raw.get("bid_quantity", best_bid.get("quantity"))),
        ("ask_quantity", raw.get("ask_quantity", best_ask.get("quantity"))),
    ):
        if value is not None:
            out[key] = value

    return {k: v for k, v in out.items() if v is not None}
