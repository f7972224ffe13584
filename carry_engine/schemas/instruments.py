"""Pydantic v2 schema for instrument master entries.

Enforces the shape invariant of the instrument master: options carry a
strike, an option type and an expiry; spot and index rows carry none of
them, and futures carry an expiry only.
"""

from __future__ import annotations

from datetime import date
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from carry_engine.core.enums import InstrumentType, OptionType


class InstrumentSpec(BaseModel):
    """Definition of one instrument master row."""

    instrument_token: str = Field(..., min_length=1)
    trading_symbol: str = Field(..., min_length=1)
    name: Optional[str] = None
    exchange: str = "NSE"
    segment: str
    instrument_type: InstrumentType
    underlying: Optional[str] = None
    strike_price: Optional[float] = Field(default=None, gt=0)
    option_type: Optional[OptionType] = None
    expiry_date: Optional[date] = None
    lot_size: int = Field(default=1, gt=0)
    tick_size: float = Field(default=0.05, gt=0)
    is_active: bool = True

    @model_validator(mode="after")
    def _check_shape(self) -> "InstrumentSpec":
        if self.instrument_type is InstrumentType.OPTION:
            missing = [
                name for name in ("strike_price", "option_type", "expiry_date")
                if getattr(self, name) is None
            ]
            if missing:
                raise ValueError(f"option instrument missing {', '.join(missing)}")
        else:
            if self.strike_price is not None or self.option_type is not None:
                raise ValueError(
                    f"{self.instrument_type.value} instrument must not carry "
                    "strike_price or option_type"
                )
            if (
                self.instrument_type is not InstrumentType.FUTURE
                and self.expiry_date is not None
            ):
                raise ValueError(
                    f"{self.instrument_type.value} instrument must not carry expiry_date"
                )
        return self
