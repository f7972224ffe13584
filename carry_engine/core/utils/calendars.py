"""Exchange calendar utilities for the Indian equity derivatives market.

Uses exchange_calendars (XBOM session calendar, which shares NSE's trading
holidays) for trading days and zoneinfo for the IST session clock. Calendars
are lazily loaded on first access.

Expiry conventions::

    weekly   -> Thursday of the week, moved back to the previous session
                when Thursday is a holiday
    monthly  -> last Thursday of the month, same holiday adjustment
    expired  -> at market close (15:30 IST) on the expiry day

Every helper takes an optional ``config``; components pass their own
Settings so injected session times and calendars apply, and the global
settings are used only when none is given.

Examples::

    >>> from datetime import date
    >>> is_trading_day(date(2024, 6, 15))  # Saturday
    False
    >>> next_weekly_expiry(date(2024, 6, 10))
    datetime.date(2024, 6, 13)
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

import exchange_calendars as xcals
import pandas as pd
from exchange_calendars.errors import DateOutOfBounds, InvalidCalendarName

from carry_engine.core.config import Settings, settings
from carry_engine.core.enums import MarketStatus
from carry_engine.core.exceptions import ConfigurationError

THURSDAY = 3
SECONDS_PER_YEAR = 365 * 24 * 60 * 60  # actual/365

# ---------------------------------------------------------------------------
# Lazy calendar singletons
# ---------------------------------------------------------------------------
_calendars: dict[str, object] = {}


def _get_calendar(name: str | None = None):  # -> exchange_calendars.ExchangeCalendar
    """Return the named exchange calendar, loading on first call.

    Raises:
        ConfigurationError: If the calendar name is unknown.
    """
    name = name or settings.trading_calendar
    if name not in _calendars:
        try:
            _calendars[name] = xcals.get_calendar(name)
        except InvalidCalendarName as exc:
            raise ConfigurationError(f"Unknown trading calendar: {name}") from exc
    return _calendars[name]


def _cfg(config: Settings | None) -> Settings:
    return config or settings


def market_tz(config: Settings | None = None) -> ZoneInfo:
    """Return the exchange timezone from *config* (global settings by default)."""
    return ZoneInfo(_cfg(config).market_timezone)


# ---------------------------------------------------------------------------
# Trading days
# ---------------------------------------------------------------------------
def is_trading_day(d: date, config: Settings | None = None) -> bool:
    """Check if a date is a trading session on the exchange calendar.

    Dates outside the calendar's loaded bounds fall back to a plain
    weekday check.
    """
    try:
        calendar = _get_calendar(_cfg(config).trading_calendar)
        return bool(calendar.is_session(pd.Timestamp(d)))
    except DateOutOfBounds:
        return d.weekday() < 5


def previous_trading_day(d: date, config: Settings | None = None) -> date:
    """Return d itself if it is a trading day, else the closest earlier one."""
    while not is_trading_day(d, config):
        d -= timedelta(days=1)
    return d


def market_status(now: datetime, config: Settings | None = None) -> MarketStatus:
    """Classify the exchange session state at *now*.

    Args:
        now: Timezone-aware instant.
        config: Session times, timezone and calendar; global settings if omitted.

    Returns:
        OPEN between open and close on a trading day; otherwise WEEKEND,
        HOLIDAY, PRE_MARKET or CLOSED.
    """
    cfg = _cfg(config)
    local = now.astimezone(market_tz(cfg))
    today = local.date()
    if today.weekday() >= 5:
        return MarketStatus.WEEKEND
    if not is_trading_day(today, cfg):
        return MarketStatus.HOLIDAY
    clock = local.time()
    if clock < cfg.market_open:
        return MarketStatus.PRE_MARKET
    if clock >= cfg.market_close:
        return MarketStatus.CLOSED
    return MarketStatus.OPEN


def is_market_open(now: datetime, config: Settings | None = None) -> bool:
    return market_status(now, config) is MarketStatus.OPEN


# ---------------------------------------------------------------------------
# Expiries
# ---------------------------------------------------------------------------
def expiry_close(expiry: date, config: Settings | None = None) -> datetime:
    """Market close on the expiry day, as an aware datetime."""
    cfg = _cfg(config)
    return datetime.combine(expiry, cfg.market_close, tzinfo=market_tz(cfg))


def is_expired(expiry: date, now: datetime, config: Settings | None = None) -> bool:
    """An expiry is gone once its expiry-day market close has passed."""
    return now >= expiry_close(expiry, config)


def year_fraction_to_expiry(
    expiry: date, now: datetime, config: Settings | None = None
) -> float:
    """Time from *now* to expiry-day close in years (actual/365).

    Negative once the contract has expired.
    """
    return (expiry_close(expiry, config) - now).total_seconds() / SECONDS_PER_YEAR


def next_weekly_expiry(today: date, config: Settings | None = None) -> date:
    """Nearest weekly expiry on or after *today* (holiday adjusted)."""
    candidate = today + timedelta(days=(THURSDAY - today.weekday()) % 7)
    while True:
        adjusted = previous_trading_day(candidate, config)
        if adjusted >= today:
            return adjusted
        candidate += timedelta(days=7)


def monthly_expiry_for(year: int, month: int, config: Settings | None = None) -> date:
    """Last Thursday of the month, moved to the previous session on holidays."""
    if month == 12:
        last_day = date(year, 12, 31)
    else:
        last_day = date(year, month + 1, 1) - timedelta(days=1)
    last_thursday = last_day - timedelta(days=(last_day.weekday() - THURSDAY) % 7)
    return previous_trading_day(last_thursday, config)


def next_monthly_expiry(today: date, config: Settings | None = None) -> date:
    """This month's expiry if still ahead of *today*, else next month's."""
    expiry = monthly_expiry_for(today.year, today.month, config)
    if expiry >= today:
        return expiry
    if today.month == 12:
        return monthly_expiry_for(today.year + 1, 1, config)
    return monthly_expiry_for(today.year, today.month + 1, config)
