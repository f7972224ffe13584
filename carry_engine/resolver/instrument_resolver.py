"""ATM strike and expiry resolution over the instrument master.

The resolver turns each spot update into a ResolverState: the ATM strike
on the strike grid, the live weekly and monthly expiries, and the listed
CE/PE instrument for each of the four legs. States are immutable and
versioned; a new one is published by swapping a single reference while
holding an asyncio.Lock, so readers never see a strike from one resolution
paired with expiries from another.

Change events are emitted (and logged through ChangeLogger) only when the
published state actually changes, which makes repeated evaluation with
unchanged inputs side-effect free.
"""

from __future__ import annotations

import asyncio
import inspect
import math
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Optional, Sequence

import structlog

from carry_engine.core.config import Settings, settings as default_settings
from carry_engine.core.enums import ChangeReason, ExpiryType, OptionType
from carry_engine.core.exceptions import ResolutionError
from carry_engine.core.utils.calendars import (
    is_expired,
    market_tz,
    next_monthly_expiry,
    next_weekly_expiry,
)
from carry_engine.resolver.change_logger import (
    ChangeLogger,
    ExpiryChangeEvent,
    StrikeChangeEvent,
)
from carry_engine.storage.repository import CarryRepository

LegKey = tuple[ExpiryType, OptionType]
Listener = Callable[[Any], Any]

LEG_KEYS: tuple[LegKey, ...] = (
    (ExpiryType.WEEKLY, OptionType.CALL),
    (ExpiryType.WEEKLY, OptionType.PUT),
    (ExpiryType.MONTHLY, OptionType.CALL),
    (ExpiryType.MONTHLY, OptionType.PUT),
)


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------
def resolve_atm_strike(spot: float, strikes: Iterable[float]) -> float:
    """Strike minimising |strike - spot|; equidistant ties go to the lower strike.

    Raises:
        ResolutionError: If *strikes* is empty.
    """
    candidates = sorted(set(strikes))
    if not candidates:
        raise ResolutionError(f"no strikes available near spot {spot}")
    return min(candidates, key=lambda k: (abs(k - spot), k))


def strike_grid(spot: float, interval: float) -> list[float]:
    """The two grid strikes bracketing *spot* (one if spot sits on the grid)."""
    lower = math.floor(spot / interval) * interval
    upper = lower + interval
    return [lower] if lower == spot else [lower, upper]


def select_expiries(
    listed: Sequence[date], now: datetime, config: Settings | None = None
) -> tuple[date, date]:
    """Pick the live weekly and monthly expiries.

    Weekly is the nearest listed expiry that has not expired; monthly is the
    last listed expiry in that same calendar month. Without listed expiries
    the calendar rules apply.
    """
    live = sorted(e for e in set(listed) if not is_expired(e, now, config))
    if live:
        weekly = live[0]
        monthly = max(e for e in live if (e.year, e.month) == (weekly.year, weekly.month))
        return weekly, monthly

    today = now.astimezone(market_tz(config)).date()
    weekly = next_weekly_expiry(today, config)
    if is_expired(weekly, now, config):
        weekly = next_weekly_expiry(today + timedelta(days=1), config)
    monthly = next_monthly_expiry(today, config)
    if is_expired(monthly, now, config):
        monthly = next_monthly_expiry(monthly + timedelta(days=1), config)
    return weekly, monthly


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class LegInstrument:
    expiry_type: ExpiryType
    option_type: OptionType
    instrument_token: str
    trading_symbol: str
    strike: float
    expiry: date
    substituted: bool = False

    @property
    def label(self) -> str:
        return f"{self.expiry_type.value}_{self.option_type.value}"


@dataclass(frozen=True)
class ResolverState:
    """Immutable result of one resolution; compare by version."""

    version: int
    atm_strike: float
    weekly_expiry: date
    monthly_expiry: date
    trigger_spot: float
    resolved_at: datetime
    legs: tuple[LegInstrument, ...] = field(default_factory=tuple)

    def expiry(self, expiry_type: ExpiryType) -> date:
        if expiry_type is ExpiryType.WEEKLY:
            return self.weekly_expiry
        return self.monthly_expiry

    def leg(self, expiry_type: ExpiryType, option_type: OptionType) -> Optional[LegInstrument]:
        for leg in self.legs:
            if leg.expiry_type is expiry_type and leg.option_type is option_type:
                return leg
        return None

    @property
    def is_complete(self) -> bool:
        return all(self.leg(*key) is not None for key in LEG_KEYS)

    @property
    def substitutions(self) -> list[str]:
        return [f"{leg.label}:{leg.strike:g}" for leg in self.legs if leg.substituted]


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------
class InstrumentResolver:
    """Owns ATM strike / expiry state and the option instrument lifecycle.

    Args:
        repository: Storage interface for instrument lookups.
        change_logger: Recorder for strike and expiry transitions.
        config: Settings supplying underlying and strike interval.
    """

    def __init__(
        self,
        repository: CarryRepository,
        change_logger: ChangeLogger,
        config: Settings | None = None,
    ) -> None:
        self._repository = repository
        self._change_logger = change_logger
        self._settings = config or default_settings
        self._lock = asyncio.Lock()
        self._state: ResolverState | None = None
        self._listeners: dict[str, Listener] = {}
        self.log = structlog.get_logger().bind(
            component="resolver", underlying=self._settings.underlying
        )

    # ------------------------------------------------------------------
    # Read API
    # ------------------------------------------------------------------
    def snapshot(self) -> ResolverState | None:
        """Latest published state (None before the first spot update)."""
        return self._state

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------
    def subscribe(self, callback: Listener) -> str:
        """Register a callback for StrikeChangeEvent / ExpiryChangeEvent."""
        subscription_id = uuid.uuid4().hex
        self._listeners[subscription_id] = callback
        return subscription_id

    def unsubscribe(self, subscription_id: str) -> None:
        self._listeners.pop(subscription_id, None)

    async def _notify(self, event: Any) -> None:
        for subscription_id, callback in list(self._listeners.items()):
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                self.log.exception(
                    "listener_failed",
                    subscription_id=subscription_id,
                    event=type(event).__name__,
                )

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------
    async def on_spot(self, spot: float, now: datetime | None = None) -> ResolverState:
        """Re-evaluate ATM strike and expiries for a new spot price.

        Returns the published state, which is the previous one unchanged when
        neither the ATM strike nor any expiry moved. A previous state with
        missing or substituted legs is re-resolved on every call and
        republished, without change events, once its legs improve.
        """
        now = now or datetime.now(timezone.utc)
        async with self._lock:
            prev = self._state
            today = now.astimezone(market_tz(self._settings)).date()
            listed = await self._repository.list_expiries(self._settings.underlying, today)
            weekly, monthly = select_expiries(listed, now, self._settings)
            atm = resolve_atm_strike(spot, strike_grid(spot, self._settings.strike_interval))

            strike_events: list[StrikeChangeEvent] = []
            if prev is None or prev.atm_strike != atm:
                strike_events.append(
                    StrikeChangeEvent(
                        old_strike=prev.atm_strike if prev else None,
                        new_strike=atm,
                        spot_price=spot,
                        reason=ChangeReason.SPOT_MOVEMENT if prev else ChangeReason.INITIAL,
                        timestamp=now,
                    )
                )

            expiry_events: list[ExpiryChangeEvent] = []
            if prev is not None:
                for expiry_type, new_expiry in (
                    (ExpiryType.WEEKLY, weekly),
                    (ExpiryType.MONTHLY, monthly),
                ):
                    old_expiry = prev.expiry(expiry_type)
                    if old_expiry != new_expiry:
                        expiry_events.append(
                            ExpiryChangeEvent(
                                expiry_type=expiry_type,
                                old_expiry=old_expiry,
                                new_expiry=new_expiry,
                                reason=ChangeReason.AUTO_ROLLOVER,
                                timestamp=now,
                            )
                        )

            moved = bool(strike_events or expiry_events)
            degraded = prev is not None and (
                not prev.is_complete or bool(prev.substitutions)
            )
            if prev is not None and not moved and not degraded:
                return prev

            legs = await self._resolve_legs(spot, atm, weekly, monthly)
            if prev is not None and not moved and legs == prev.legs:
                return prev
            state = ResolverState(
                version=(prev.version + 1) if prev else 1,
                atm_strike=atm,
                weekly_expiry=weekly,
                monthly_expiry=monthly,
                trigger_spot=spot,
                resolved_at=now,
                legs=legs,
            )

            for event in strike_events:
                await self._change_logger.record_strike_change(event)
            for event in expiry_events:
                await self._change_logger.record_expiry_change(event)
            self._state = state

        self.log.info(
            "resolver_state_published",
            version=state.version,
            atm_strike=atm,
            weekly_expiry=str(weekly),
            monthly_expiry=str(monthly),
            substitutions=state.substitutions,
        )
        for event in (*strike_events, *expiry_events):
            await self._notify(event)
        return state

    async def _resolve_legs(
        self, spot: float, atm: float, weekly: date, monthly: date
    ) -> tuple[LegInstrument, ...]:
        """CE/PE pair per expiry, both legs always at the same strike."""
        legs: list[LegInstrument] = []
        for expiry_type, expiry in ((ExpiryType.WEEKLY, weekly), (ExpiryType.MONTHLY, monthly)):
            try:
                pair = [
                    await self._lookup_leg(atm, expiry, expiry_type, option_type)
                    for option_type in (OptionType.CALL, OptionType.PUT)
                ]
            except ResolutionError as exc:
                pair = await self._nearest_listed_pair(spot, expiry, expiry_type)
                if not pair:
                    self.log.error(
                        "legs_unresolved",
                        expiry_type=expiry_type.value,
                        expiry=str(expiry),
                        error=str(exc),
                    )
                    continue
                self.log.warning(
                    "strike_substituted",
                    expiry_type=expiry_type.value,
                    requested_strike=exc.strike,
                    substituted_strike=pair[0].strike,
                    expiry=str(expiry),
                )
            legs.extend(pair)
        return tuple(legs)

    async def _lookup_leg(
        self,
        strike: float,
        expiry: date,
        expiry_type: ExpiryType,
        option_type: OptionType,
        substituted: bool = False,
    ) -> LegInstrument:
        instrument = await self._repository.find_option(
            self._settings.underlying, strike, expiry, option_type
        )
        if instrument is None:
            raise ResolutionError(
                f"no listed {option_type.value} at strike {strike:g} "
                f"for expiry {expiry}",
                strike=strike,
            )
        return LegInstrument(
            expiry_type=expiry_type,
            option_type=option_type,
            instrument_token=instrument.instrument_token,
            trading_symbol=instrument.trading_symbol,
            strike=float(instrument.strike_price),
            expiry=expiry,
            substituted=substituted,
        )

    async def _nearest_listed_pair(
        self, spot: float, expiry: date, expiry_type: ExpiryType
    ) -> list[LegInstrument]:
        """Legs at the listed strike nearest spot that has both a CE and a PE."""
        underlying = self._settings.underlying
        calls = await self._repository.list_strikes(underlying, expiry, OptionType.CALL)
        puts = await self._repository.list_strikes(underlying, expiry, OptionType.PUT)
        common = set(calls) & set(puts)
        if not common:
            return []
        nearest = resolve_atm_strike(spot, common)
        try:
            return [
                await self._lookup_leg(
                    nearest, expiry, expiry_type, option_type, substituted=True
                )
                for option_type in (OptionType.CALL, OptionType.PUT)
            ]
        except ResolutionError:
            return []

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def deactivate_expired(self, now: datetime | None = None) -> int:
        """Soft-delete option instruments whose expiry day is over."""
        now = now or datetime.now(timezone.utc)
        today = now.astimezone(market_tz(self._settings)).date()
        count = await self._repository.deactivate_instruments(
            self._settings.underlying, today, now
        )
        if count:
            self.log.info("instruments_deactivated", count=count, before=str(today))
        return count
