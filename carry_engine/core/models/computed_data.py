"""Computed data table -- one immutable cost-of-carry snapshot per cycle.

The "current" snapshot is the most recent row by calculation_timestamp.
Rows are never updated; every engine cycle appends a new valuation.
"""

from datetime import date, datetime
from typing import Optional

from sqlalchemy import BigInteger, Date, DateTime, Float, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class ComputedData(Base):
    __tablename__ = "computed_data"

    id: Mapped[int] = mapped_column(
        BigInteger, primary_key=True, autoincrement=True
    )
    spot_price: Mapped[float] = mapped_column(Float, nullable=False)
    atm_strike: Mapped[float] = mapped_column(Float, nullable=False)

    # Weekly options
    weekly_call_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    weekly_put_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    weekly_call_iv: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    weekly_put_iv: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    weekly_expiry: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    # Monthly options
    monthly_call_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    monthly_put_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    monthly_call_iv: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    monthly_put_iv: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    monthly_expiry: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    # Synthetic futures and carry
    weekly_synthetic_future: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    monthly_synthetic_future: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    weekly_cost_of_carry: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    monthly_cost_of_carry: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    calendar_spread: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    spread_z_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Premium analysis (time value over intrinsic)
    weekly_call_premium: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    weekly_put_premium: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    monthly_call_premium: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    monthly_put_premium: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    substitutions: Mapped[Optional[str]] = mapped_column(
        String(200), nullable=True,
        comment="Legs priced off a nearest-listed strike, e.g. WEEKLY_CE:19550",
    )

    calculation_timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    market_timestamp: Mapped[Optional[int]] = mapped_column(
        BigInteger, nullable=True, comment="Spot exchange timestamp, epoch ms"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    __table_args__ = (
        Index("ix_computed_data_calculation_timestamp", "calculation_timestamp"),
        Index("ix_computed_data_atm_strike", "atm_strike"),
    )
