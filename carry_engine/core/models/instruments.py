"""Instrument master table -- registry of spot, future and option contracts.

Keyed by the exchange-assigned instrument token, which is unique and never
reassigned. Rows are soft-deleted through is_active; historical instruments
stay in place so market data keeps its referential history.
"""

from datetime import date
from typing import Optional

from sqlalchemy import Date, Float, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


class Instrument(TimestampMixin, Base):
    __tablename__ = "instruments"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    instrument_token: Mapped[str] = mapped_column(
        String(50), unique=True, nullable=False
    )
    trading_symbol: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    exchange: Mapped[str] = mapped_column(String(20), nullable=False)
    segment: Mapped[str] = mapped_column(String(50), nullable=False)
    instrument_type: Mapped[str] = mapped_column(
        String(20), nullable=False, comment="SPOT, INDEX, FUTURE, OPTION"
    )
    underlying: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    strike_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    option_type: Mapped[Optional[str]] = mapped_column(
        String(2), nullable=True, comment="CE, PE"
    )
    expiry_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    lot_size: Mapped[int] = mapped_column(Integer, default=1)
    tick_size: Mapped[float] = mapped_column(Float, default=0.05)
    is_active: Mapped[bool] = mapped_column(default=True)

    __table_args__ = (
        Index("ix_instruments_trading_symbol", "trading_symbol"),
        Index("ix_instruments_exchange", "exchange"),
        Index("ix_instruments_expiry_date", "expiry_date"),
        Index(
            "ix_instruments_chain",
            "underlying", "expiry_date", "option_type", "strike_price",
        ),
    )
