"""Append-only recorder for ATM strike and expiry transitions.

Each record is a single-row insert in its own transaction, so a crash
leaves either the whole row or nothing.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime

import structlog

from carry_engine.core.enums import ChangeReason, ExpiryType
from carry_engine.storage.repository import CarryRepository


@dataclass(frozen=True)
class StrikeChangeEvent:
    old_strike: float | None
    new_strike: float
    spot_price: float
    reason: ChangeReason
    timestamp: datetime


@dataclass(frozen=True)
class ExpiryChangeEvent:
    expiry_type: ExpiryType
    old_expiry: date | None
    new_expiry: date
    reason: ChangeReason
    timestamp: datetime


class ChangeLogger:
    def __init__(self, repository: CarryRepository) -> None:
        self._repository = repository
        self.log = structlog.get_logger().bind(component="change_logger")

    async def record_strike_change(self, event: StrikeChangeEvent) -> None:
        await self._repository.insert_strike_change(
            {
                "old_strike": event.old_strike,
                "new_strike": event.new_strike,
                "spot_price": event.spot_price,
                "change_reason": event.reason.value,
                "timestamp": event.timestamp,
            }
        )
        self.log.info(
            "strike_change_logged",
            old_strike=event.old_strike,
            new_strike=event.new_strike,
            spot=event.spot_price,
        )

    async def record_expiry_change(self, event: ExpiryChangeEvent) -> None:
        await self._repository.insert_expiry_change(
            {
                "expiry_type": event.expiry_type.value,
                "old_expiry": event.old_expiry,
                "new_expiry": event.new_expiry,
                "change_reason": event.reason.value,
                "timestamp": event.timestamp,
            }
        )
        self.log.info(
            "expiry_change_logged",
            expiry_type=event.expiry_type.value,
            old_expiry=str(event.old_expiry) if event.old_expiry else None,
            new_expiry=str(event.new_expiry),
        )
