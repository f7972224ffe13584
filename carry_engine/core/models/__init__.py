"""SQLAlchemy 2.0 ORM models for the cost-of-carry engine.

Re-exports Base, TimestampMixin and all 6 model classes for convenient imports:
  - 1 master table: Instrument
  - 2 time-series tables: MarketData, ComputedData
  - 3 audit tables: StrikeChange, ExpiryChange, DataFetchLog
"""

from .base import Base, TimestampMixin
from .change_logs import ExpiryChange, StrikeChange
from .computed_data import ComputedData
from .fetch_logs import DataFetchLog
from .instruments import Instrument
from .market_data import MarketData

__all__ = [
    "Base",
    "TimestampMixin",
    "Instrument",
    "MarketData",
    "ComputedData",
    "StrikeChange",
    "ExpiryChange",
    "DataFetchLog",
]
