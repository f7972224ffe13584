"""Market data table -- append-only tick snapshots.

Natural key: (instrument_token, exchange_timestamp) for idempotent writes.
The exchange timestamp is stored as epoch milliseconds. Instrument metadata
is denormalised onto each row so the latest-per-symbol read needs no join.
"""

from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Date,
    DateTime,
    Float,
    Index,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


class MarketData(TimestampMixin, Base):
    __tablename__ = "market_data"

    id: Mapped[int] = mapped_column(
        BigInteger, primary_key=True, autoincrement=True
    )
    instrument_token: Mapped[str] = mapped_column(String(50), nullable=False)
    trading_symbol: Mapped[str] = mapped_column(String(100), nullable=False)
    exchange: Mapped[str] = mapped_column(String(20), nullable=False)
    segment: Mapped[str] = mapped_column(String(50), nullable=False)
    instrument_type: Mapped[str] = mapped_column(String(20), nullable=False)
    strike_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    option_type: Mapped[Optional[str]] = mapped_column(String(2), nullable=True)
    expiry_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    open_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    high_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    low_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    close_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    last_traded_price: Mapped[float] = mapped_column(Float, nullable=False)

    volume: Mapped[int] = mapped_column(BigInteger, default=0)
    open_interest: Mapped[int] = mapped_column(BigInteger, default=0)

    bid_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    ask_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    bid_quantity: Mapped[int] = mapped_column(BigInteger, default=0)
    ask_quantity: Mapped[int] = mapped_column(BigInteger, default=0)

    exchange_timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    server_timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    __table_args__ = (
        UniqueConstraint(
            "instrument_token", "exchange_timestamp",
            name="uq_market_data_natural_key",
        ),
        Index(
            "ix_market_data_symbol_server_ts",
            "trading_symbol", "server_timestamp",
        ),
        Index("ix_market_data_instrument_token", "instrument_token"),
    )
