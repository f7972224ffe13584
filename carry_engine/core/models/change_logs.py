"""Audit tables for ATM strike and expiry transitions.

Both tables are append-only; rows are never updated or deleted.
"""

from datetime import date, datetime
from typing import Optional

from sqlalchemy import BigInteger, Date, DateTime, Float, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class StrikeChange(Base):
    __tablename__ = "strike_changes"

    id: Mapped[int] = mapped_column(
        BigInteger, primary_key=True, autoincrement=True
    )
    old_strike: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    new_strike: Mapped[float] = mapped_column(Float, nullable=False)
    spot_price: Mapped[float] = mapped_column(Float, nullable=False)
    change_reason: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    __table_args__ = (
        Index("ix_strike_changes_timestamp", "timestamp"),
    )


class ExpiryChange(Base):
    __tablename__ = "expiry_changes"

    id: Mapped[int] = mapped_column(
        BigInteger, primary_key=True, autoincrement=True
    )
    expiry_type: Mapped[str] = mapped_column(
        String(20), nullable=False, comment="WEEKLY, MONTHLY"
    )
    old_expiry: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    new_expiry: Mapped[date] = mapped_column(Date, nullable=False)
    change_reason: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    __table_args__ = (
        Index("ix_expiry_changes_timestamp", "timestamp"),
    )
