"""Pydantic v2 input schemas for ticks and instrument definitions."""

from .instruments import InstrumentSpec
from .ticks import TickPayload, normalize_tick

__all__ = ["InstrumentSpec", "TickPayload", "normalize_tick"]
