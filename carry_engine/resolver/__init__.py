"""Instrument resolution: ATM strike, expiries, legs and change logging."""

from .change_logger import ChangeLogger, ExpiryChangeEvent, StrikeChangeEvent
from .instrument_resolver import (
    InstrumentResolver,
    LegInstrument,
    ResolverState,
    resolve_atm_strike,
    select_expiries,
    strike_grid,
)

__all__ = [
    "ChangeLogger",
    "ExpiryChangeEvent",
    "StrikeChangeEvent",
    "InstrumentResolver",
    "LegInstrument",
    "ResolverState",
    "resolve_atm_strike",
    "select_expiries",
    "strike_grid",
]
