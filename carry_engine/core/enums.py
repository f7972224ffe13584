"""Shared enumerations used across models and components.

All enums use the (str, Enum) mixin pattern so their values are
serializable strings, compatible with database storage and JSON output.
"""

from enum import Enum


class InstrumentType(str, Enum):
    """Classification of instruments in the instrument master."""

    SPOT = "SPOT"
    INDEX = "INDEX"
    FUTURE = "FUTURE"
    OPTION = "OPTION"


class OptionType(str, Enum):
    """Option right, using exchange notation (CE = call, PE = put)."""

    CALL = "CE"
    PUT = "PE"


class ExpiryType(str, Enum):
    """Expiry cadence of an option series."""

    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"


class FetchStatus(str, Enum):
    """Outcome of a bulk historical fetch job."""

    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    PARTIAL = "PARTIAL"


class ChangeReason(str, Enum):
    """Why an ATM strike or expiry changed."""

    INITIAL = "INITIAL"
    SPOT_MOVEMENT = "SPOT_MOVEMENT"
    AUTO_ROLLOVER = "AUTO_ROLLOVER"


class MarketStatus(str, Enum):
    """Session state of the exchange at a point in time."""

    OPEN = "OPEN"
    PRE_MARKET = "PRE_MARKET"
    CLOSED = "CLOSED"
    WEEKEND = "WEEKEND"
    HOLIDAY = "HOLIDAY"
