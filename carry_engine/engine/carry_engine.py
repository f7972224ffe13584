"""Cost-of-carry computation engine.

One cycle reads the latest spot and ATM option quotes, derives the weekly
and monthly synthetic futures, annualised carry, calendar spread, premiums
and implied volatilities, and appends one computed_data row.

Cycle rules:

- At most one cycle runs at a time. A trigger arriving while a cycle is in
  flight is dropped, not queued.
- A missing or stale leg skips the whole cycle; partial snapshots are
  never written.
- Implied volatility that fails to converge is stored as NULL and the
  cycle carries on.
- A background cycle that raises (storage retry budget spent) marks the
  engine failed; the owner stops and re-raises via raise_if_failed().
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Optional

import structlog

from carry_engine.core.config import Settings, settings as default_settings
from carry_engine.core.enums import ExpiryType, OptionType
from carry_engine.core.exceptions import StalenessError
from carry_engine.core.models import ComputedData, MarketData
from carry_engine.core.utils.calendars import is_market_open, year_fraction_to_expiry
from carry_engine.resolver.instrument_resolver import (
    LEG_KEYS,
    InstrumentResolver,
    ResolverState,
)
from carry_engine.storage.repository import CarryRepository
from carry_engine.transforms.carry import (
    calendar_spread,
    cost_of_carry,
    option_premium,
    synthetic_future,
)
from carry_engine.transforms.implied_vol import implied_volatility_or_none
from carry_engine.transforms.spread_stats import SpreadAnalyzer


class CostOfCarryEngine:
    """Computes and persists cost-of-carry snapshots.

    Args:
        repository: Storage interface.
        resolver: Source of the current ATM strike, expiries and legs.
        config: Settings supplying staleness, pricing and cadence knobs.
        spread_analyzer: Rolling z-score window; a fresh one by default.
    """

    def __init__(
        self,
        repository: CarryRepository,
        resolver: InstrumentResolver,
        config: Settings | None = None,
        spread_analyzer: SpreadAnalyzer | None = None,
    ) -> None:
        self._repository = repository
        self._resolver = resolver
        self._settings = config or default_settings
        self._spreads = spread_analyzer or SpreadAnalyzer(
            max_history=self._settings.spread_history_size,
            min_points=self._settings.spread_min_points,
        )
        self._running = False
        self._pending: asyncio.Task | None = None
        self.failed = asyncio.Event()
        self.fatal_error: BaseException | None = None
        self.cycles_run = 0
        self.cycles_skipped = 0
        self.cycles_coalesced = 0
        self.log = structlog.get_logger().bind(component="carry_engine")

    @property
    def is_running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------
    def trigger(self, now: datetime | None = None) -> asyncio.Task | None:
        """Start a cycle in the background unless one is already in flight.

        Returns:
            The task running the cycle, or None if the trigger was coalesced.
        """
        if self._running:
            self.cycles_coalesced += 1
            self.log.debug("cycle_coalesced")
            return None
        self._running = True
        self._pending = asyncio.create_task(self._guarded_cycle(now))
        self._pending.add_done_callback(self._on_cycle_done)
        return self._pending

    def _on_cycle_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        self.fatal_error = exc
        self.log.error("cycle_failed", error=str(exc), error_type=type(exc).__name__)
        self.failed.set()

    def raise_if_failed(self) -> None:
        """Re-raise the error of a failed background cycle, if any."""
        if self.fatal_error is not None:
            raise self.fatal_error

    async def drain(self) -> None:
        """Wait for an in-flight background cycle to finish."""
        if self._pending is not None and not self._pending.done():
            await asyncio.wait([self._pending])

    async def run_cycle(self, now: datetime | None = None) -> Optional[ComputedData]:
        """Run one cycle inline; returns None if coalesced or skipped."""
        if self._running:
            self.cycles_coalesced += 1
            self.log.debug("cycle_coalesced")
            return None
        self._running = True
        return await self._guarded_cycle(now)

    async def _guarded_cycle(self, now: datetime | None) -> Optional[ComputedData]:
        try:
            return await self._cycle(now or datetime.now(timezone.utc))
        finally:
            self._running = False

    async def run_forever(self, stop: asyncio.Event) -> None:
        """Timer loop: one cycle every ``compute_interval_seconds`` until *stop*."""
        interval = self._settings.compute_interval_seconds
        self.log.info("engine_started", interval_seconds=interval)
        while not stop.is_set():
            now = datetime.now(timezone.utc)
            cfg = self._settings
            if cfg.run_outside_market_hours or is_market_open(now, cfg):
                await self.run_cycle(now)
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
        self.log.info(
            "engine_stopped",
            cycles_run=self.cycles_run,
            cycles_skipped=self.cycles_skipped,
            cycles_coalesced=self.cycles_coalesced,
        )

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------
    async def _cycle(self, now: datetime) -> Optional[ComputedData]:
        state = self._resolver.snapshot()
        if state is None:
            self.cycles_skipped += 1
            self.log.info("cycle_skipped", reason="resolver_not_ready")
            return None

        try:
            spot_row, leg_rows = await self._fetch_inputs(state, now)
        except StalenessError as exc:
            self.cycles_skipped += 1
            self.log.warning("cycle_skipped", reason=str(exc), version=state.version)
            return None

        values = self.compute(state, spot_row, leg_rows, now)
        snapshot = await self._repository.insert_computed_snapshot(values)
        self.cycles_run += 1
        self.log.info(
            "snapshot_written",
            spot=values["spot_price"],
            atm_strike=values["atm_strike"],
            weekly_carry=values["weekly_cost_of_carry"],
            monthly_carry=values["monthly_cost_of_carry"],
            calendar_spread=values["calendar_spread"],
        )
        return snapshot

    async def _fetch_inputs(
        self, state: ResolverState, now: datetime
    ) -> tuple[MarketData, dict[tuple[ExpiryType, OptionType], MarketData]]:
        """Latest rows for spot and every leg, or StalenessError."""
        if not state.is_complete:
            raise StalenessError("resolver state is missing one or more legs")

        spot_symbol = self._settings.spot_symbol
        legs = {key: state.leg(*key) for key in LEG_KEYS}
        symbols = [spot_symbol] + [leg.trading_symbol for leg in legs.values()]
        latest = await self._repository.get_latest_by_symbols(symbols)

        now_ms = int(now.timestamp() * 1000)
        max_age_ms = int(self._settings.staleness_seconds * 1000)

        def fresh(symbol: str) -> MarketData:
            row = latest.get(symbol)
            if row is None:
                raise StalenessError(f"no market data for {symbol}")
            age_ms = now_ms - row.exchange_timestamp
            if age_ms > max_age_ms:
                raise StalenessError(
                    f"{symbol} is {age_ms / 1000:.1f}s old "
                    f"(limit {self._settings.staleness_seconds:g}s)"
                )
            return row

        spot_row = fresh(spot_symbol)
        leg_rows = {key: fresh(leg.trading_symbol) for key, leg in legs.items()}
        return spot_row, leg_rows

    def compute(
        self,
        state: ResolverState,
        spot_row: MarketData,
        leg_rows: dict[tuple[ExpiryType, OptionType], MarketData],
        now: datetime,
    ) -> dict:
        """Derive all snapshot columns from validated inputs."""
        cfg = self._settings
        spot = spot_row.last_traded_price
        values: dict = {
            "spot_price": spot,
            "atm_strike": state.atm_strike,
            "weekly_expiry": state.weekly_expiry,
            "monthly_expiry": state.monthly_expiry,
            "calculation_timestamp": now,
            "market_timestamp": spot_row.exchange_timestamp,
            "created_at": now,
            "substitutions": ",".join(state.substitutions) or None,
        }

        carries: dict[ExpiryType, float | None] = {}
        for expiry_type in (ExpiryType.WEEKLY, ExpiryType.MONTHLY):
            prefix = expiry_type.value.lower()
            call_leg = state.leg(expiry_type, OptionType.CALL)
            put_leg = state.leg(expiry_type, OptionType.PUT)
            call_price = leg_rows[(expiry_type, OptionType.CALL)].last_traded_price
            put_price = leg_rows[(expiry_type, OptionType.PUT)].last_traded_price
            years = year_fraction_to_expiry(
                state.expiry(expiry_type), now, self._settings
            )

            # Resolver keeps CE and PE of one expiry on the same strike
            synthetic = synthetic_future(call_leg.strike, call_price, put_price)
            carry = cost_of_carry(synthetic, spot, years)
            carries[expiry_type] = carry

            call_iv = put_iv = None
            if years > 0:
                call_iv = implied_volatility_or_none(
                    call_price, spot, call_leg.strike, years, cfg.risk_free_rate,
                    OptionType.CALL, dividend=cfg.dividend_yield,
                    max_iterations=cfg.iv_max_iterations, tolerance=cfg.iv_tolerance,
                )
                put_iv = implied_volatility_or_none(
                    put_price, spot, put_leg.strike, years, cfg.risk_free_rate,
                    OptionType.PUT, dividend=cfg.dividend_yield,
                    max_iterations=cfg.iv_max_iterations, tolerance=cfg.iv_tolerance,
                )
            if call_iv is None or put_iv is None:
                self.log.debug(
                    "iv_not_converged",
                    expiry_type=expiry_type.value,
                    call_iv=call_iv,
                    put_iv=put_iv,
                )

            values.update(
                {
                    f"{prefix}_call_price": call_price,
                    f"{prefix}_put_price": put_price,
                    f"{prefix}_call_iv": call_iv,
                    f"{prefix}_put_iv": put_iv,
                    f"{prefix}_synthetic_future": synthetic,
                    f"{prefix}_cost_of_carry": carry,
                    f"{prefix}_call_premium": option_premium(
                        call_price, spot, call_leg.strike, OptionType.CALL
                    ),
                    f"{prefix}_put_premium": option_premium(
                        put_price, spot, put_leg.strike, OptionType.PUT
                    ),
                }
            )

        spread = calendar_spread(carries[ExpiryType.MONTHLY], carries[ExpiryType.WEEKLY])
        values["calendar_spread"] = spread
        values["spread_z_score"] = (
            self._spreads.update(spread).z_score if spread is not None else None
        )
        return values
