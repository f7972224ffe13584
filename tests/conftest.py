"""Root pytest configuration and shared fixtures.

Provides common test fixtures used across all test modules:
- test_settings: Settings with a zero-wait retry budget
- repo: in-memory stand-in for CarryRepository (no database needed)
- seeded_repo: repo pre-loaded with the NIFTY index and a June 2024 chain
- make_tick: builder for raw feed ticks stamped relative to a base instant
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Optional
from zoneinfo import ZoneInfo

import pytest
from pydantic import ValidationError as PydanticValidationError

from carry_engine.core.config import Settings
from carry_engine.core.enums import InstrumentType, OptionType
from carry_engine.core.exceptions import ValidationError
from carry_engine.core.models import (
    ComputedData,
    ExpiryChange,
    Instrument,
    MarketData,
    StrikeChange,
)
from carry_engine.schemas.instruments import InstrumentSpec

IST = ZoneInfo("Asia/Kolkata")

# Monday 2024-06-10, 10:00 IST: weekly 06-13, monthly 06-27
BASE_NOW = datetime(2024, 6, 10, 10, 0, tzinfo=IST)

SPOT_TOKEN = "256265"
SPOT_SYMBOL = "NIFTY 50"
CHAIN_EXPIRIES = [date(2024, 6, 13), date(2024, 6, 20), date(2024, 6, 27), date(2024, 7, 25)]
CHAIN_STRIKES = [19450.0, 19500.0, 19550.0]


def option_symbol(expiry: date, strike: float, option_type: OptionType) -> str:
    return f"NIFTY{expiry:%y%m%d}{int(strike)}{option_type.value}"


def option_token(expiry: date, strike: float, option_type: OptionType) -> str:
    suffix = "1" if option_type is OptionType.CALL else "2"
    return f"{expiry:%m%d}{int(strike)}{suffix}"


class InMemoryRepository:
    """Dict-backed implementation of the CarryRepository surface.

    Mirrors the natural-key semantics of the real store: market_data is
    keyed on (instrument_token, exchange_timestamp) and the first write
    wins; instruments are keyed on instrument_token.
    """

    def __init__(self) -> None:
        self.instruments: dict[str, Instrument] = {}
        self.market_data: dict[tuple[str, int], MarketData] = {}
        self.computed: list[ComputedData] = []
        self.strike_changes: list[StrikeChange] = []
        self.expiry_changes: list[ExpiryChange] = []

    # Instruments --------------------------------------------------------
    async def register_instrument(
        self, spec: InstrumentSpec | dict[str, Any], now: datetime | None = None
    ) -> bool:
        return self.add_instrument(spec, now)

    def add_instrument(
        self, spec: InstrumentSpec | dict[str, Any], now: datetime | None = None
    ) -> bool:
        if not isinstance(spec, InstrumentSpec):
            try:
                spec = InstrumentSpec.model_validate(spec)
            except PydanticValidationError as exc:
                raise ValidationError(str(exc)) from exc
        if spec.instrument_token in self.instruments:
            return False
        values = spec.model_dump()
        values["instrument_type"] = spec.instrument_type.value
        values["option_type"] = spec.option_type.value if spec.option_type else None
        values["created_at"] = values["updated_at"] = now or datetime.now(timezone.utc)
        self.instruments[spec.instrument_token] = Instrument(**values)
        return True

    async def get_instrument(self, token: str) -> Optional[Instrument]:
        return self.instruments.get(token)

    def _options(self, underlying: str):
        return [
            i for i in self.instruments.values()
            if i.is_active
            and i.underlying == underlying
            and i.instrument_type == InstrumentType.OPTION.value
        ]

    async def list_expiries(self, underlying: str, from_date: date) -> list[date]:
        return sorted({i.expiry_date for i in self._options(underlying) if i.expiry_date >= from_date})

    async def list_strikes(
        self, underlying: str, expiry: date, option_type: OptionType
    ) -> list[float]:
        return sorted(
            {
                i.strike_price for i in self._options(underlying)
                if i.expiry_date == expiry and i.option_type == option_type.value
            }
        )

    async def find_option(
        self, underlying: str, strike: float, expiry: date, option_type: OptionType
    ) -> Optional[Instrument]:
        for i in self._options(underlying):
            if (
                i.strike_price == strike
                and i.expiry_date == expiry
                and i.option_type == option_type.value
            ):
                return i
        return None

    async def deactivate_instruments(
        self, underlying: str, expired_before: date, now: datetime | None = None
    ) -> int:
        count = 0
        for i in self._options(underlying):
            if i.expiry_date < expired_before:
                i.is_active = False
                i.updated_at = now
                count += 1
        return count

    # Market data --------------------------------------------------------
    async def insert_market_data(self, record: dict[str, Any]) -> bool:
        key = (record["instrument_token"], record["exchange_timestamp"])
        if key in self.market_data:
            return False
        self.market_data[key] = MarketData(**record)
        return True

    def _latest(self, rows) -> Optional[MarketData]:
        rows = list(rows)
        if not rows:
            return None
        return max(rows, key=lambda r: (r.server_timestamp, r.exchange_timestamp))

    async def get_latest_by_symbol(self, symbol: str) -> Optional[MarketData]:
        return self._latest(r for r in self.market_data.values() if r.trading_symbol == symbol)

    async def get_latest_by_symbols(self, symbols: list[str]) -> dict[str, MarketData]:
        latest = {}
        for symbol in symbols:
            row = await self.get_latest_by_symbol(symbol)
            if row is not None:
                latest[symbol] = row
        return latest

    async def get_latest_by_token(self, token: str) -> Optional[MarketData]:
        return self._latest(r for r in self.market_data.values() if r.instrument_token == token)

    # Snapshots ----------------------------------------------------------
    async def insert_computed_snapshot(self, values: dict[str, Any]) -> ComputedData:
        row = ComputedData(**values)
        self.computed.append(row)
        return row

    async def get_current_computed_snapshot(self) -> Optional[ComputedData]:
        history = await self.get_computed_history(limit=1)
        return history[0] if history else None

    async def get_computed_history(
        self, start: datetime | None = None, end: datetime | None = None, limit: int = 1000
    ) -> list[ComputedData]:
        rows = [
            r for r in self.computed
            if (start is None or r.calculation_timestamp >= start)
            and (end is None or r.calculation_timestamp <= end)
        ]
        rows.sort(key=lambda r: r.calculation_timestamp, reverse=True)
        return rows[:limit]

    # Audit logs ---------------------------------------------------------
    async def insert_strike_change(self, values: dict[str, Any]) -> StrikeChange:
        row = StrikeChange(**values)
        self.strike_changes.append(row)
        return row

    async def insert_expiry_change(self, values: dict[str, Any]) -> ExpiryChange:
        row = ExpiryChange(**values)
        self.expiry_changes.append(row)
        return row


@pytest.fixture
def test_settings() -> Settings:
    """Settings tuned for tests: instant retries, short spread warm-up."""
    return Settings(
        underlying="NIFTY",
        spot_token=SPOT_TOKEN,
        spot_symbol=SPOT_SYMBOL,
        strike_interval=50,
        risk_free_rate=0.065,
        staleness_seconds=30,
        storage_max_retries=3,
        storage_retry_initial_seconds=0,
        storage_retry_max_seconds=0,
        storage_retry_jitter_seconds=0,
        spread_min_points=3,
    )


@pytest.fixture
def repo() -> InMemoryRepository:
    return InMemoryRepository()


def add_option(
    repo: InMemoryRepository, expiry: date, strike: float, option_type: OptionType
) -> bool:
    """Register one NIFTY option contract in *repo*."""
    return repo.add_instrument(
        {
            "instrument_token": option_token(expiry, strike, option_type),
            "trading_symbol": option_symbol(expiry, strike, option_type),
            "name": "NIFTY",
            "segment": "NFO-OPT",
            "instrument_type": "OPTION",
            "underlying": "NIFTY",
            "strike_price": strike,
            "option_type": option_type.value,
            "expiry_date": expiry,
            "lot_size": 50,
        }
    )


@pytest.fixture
def seeded_repo(repo: InMemoryRepository) -> InMemoryRepository:
    """Repo with the NIFTY 50 index plus CE/PE at every chain strike and expiry."""
    repo.add_instrument(
        {
            "instrument_token": SPOT_TOKEN,
            "trading_symbol": SPOT_SYMBOL,
            "name": "NIFTY 50",
            "segment": "INDICES",
            "instrument_type": "INDEX",
            "underlying": "NIFTY",
            "lot_size": 50,
        }
    )
    for expiry in CHAIN_EXPIRIES:
        for strike in CHAIN_STRIKES:
            for option_type in OptionType:
                add_option(repo, expiry, strike, option_type)
    return repo


@pytest.fixture
def make_tick():
    """Return a callable building raw ticks stamped *age_seconds* before *now*."""

    def _make(
        token: str,
        price: float,
        now: datetime = BASE_NOW,
        age_seconds: float = 1.0,
        **extra: Any,
    ) -> dict[str, Any]:
        tick = {
            "instrument_token": token,
            "last_traded_price": price,
            "exchange_timestamp": int((now.timestamp() - age_seconds) * 1000),
        }
        tick.update(extra)
        return tick

    return _make
