"""Market data ingestion: normalise, validate, enrich and persist ticks.

Idempotency comes from the natural key (instrument_token,
exchange_timestamp): a retried or duplicated tick hits ON CONFLICT DO
NOTHING and reports False instead of creating a second row, so any number
of feeds can write concurrently without locking. Late ticks are accepted.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable

import structlog
from pydantic import ValidationError as PydanticValidationError

from carry_engine.core.config import Settings, settings as default_settings
from carry_engine.core.enums import InstrumentType
from carry_engine.core.exceptions import ValidationError
from carry_engine.core.models import Instrument
from carry_engine.schemas.ticks import TickPayload, normalize_tick
from carry_engine.storage.repository import CarryRepository


@dataclass
class IngestResult:
    """Outcome counts of a batch ingestion."""

    accepted: int = 0
    duplicates: int = 0
    rejected: int = 0

    @property
    def total(self) -> int:
        return self.accepted + self.duplicates + self.rejected


class MarketDataIngestor:
    """Turns raw feed ticks into market_data rows.

    Args:
        repository: Storage interface.
        config: Settings supplying exchange defaults and concurrency.
    """

    def __init__(
        self, repository: CarryRepository, config: Settings | None = None
    ) -> None:
        self._repository = repository
        self._settings = config or default_settings
        self._instruments: dict[str, Instrument] = {}
        self._last_seen: dict[str, int] = {}
        self._semaphore = asyncio.Semaphore(self._settings.ingest_concurrency)
        self.log = structlog.get_logger().bind(component="ingestor")

    def validate(self, raw: dict[str, Any]) -> TickPayload:
        """Normalise and validate one raw tick.

        Raises:
            ValidationError: On a missing token, negative price or quantity,
                or an unparseable timestamp.
        """
        if not isinstance(raw, dict):
            raise ValidationError(f"tick must be a mapping, got {type(raw).__name__}")
        try:
            return TickPayload.model_validate(normalize_tick(raw))
        except PydanticValidationError as exc:
            raise ValidationError(
                f"invalid tick for token {raw.get('instrument_token')!r}: "
                f"{exc.error_count()} error(s): "
                + "; ".join(
                    f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                    for err in exc.errors()
                )
            ) from exc

    async def _instrument(self, token: str) -> Instrument | None:
        # Misses are not cached; unknown tokens are looked up on every tick.
        instrument = self._instruments.get(token)
        if instrument is None:
            instrument = await self._repository.get_instrument(token)
            if instrument is not None:
                self._instruments[token] = instrument
        return instrument

    def build_record(
        self,
        tick: TickPayload,
        instrument: Instrument | None,
        received_at: datetime,
    ) -> dict[str, Any]:
        """Map a validated tick plus instrument metadata to market_data columns."""
        if instrument is None and not tick.trading_symbol:
            raise ValidationError(
                f"unknown instrument token {tick.instrument_token} and no trading symbol"
            )
        record = tick.model_dump()
        if instrument is not None:
            record.update(
                trading_symbol=instrument.trading_symbol,
                exchange=instrument.exchange,
                segment=instrument.segment,
                instrument_type=instrument.instrument_type,
                strike_price=instrument.strike_price,
                option_type=instrument.option_type,
                expiry_date=instrument.expiry_date,
            )
        else:
            record.update(
                exchange=self._settings.exchange,
                segment="UNKNOWN",
                instrument_type=InstrumentType.SPOT.value,
                strike_price=None,
                option_type=None,
                expiry_date=None,
            )
        record["server_timestamp"] = received_at
        record["created_at"] = received_at
        record["updated_at"] = received_at
        return record

    async def ingest(
        self, raw: dict[str, Any], received_at: datetime | None = None
    ) -> bool:
        """Validate and persist one tick.

        Returns:
            True if a new row was written, False if the tick was a duplicate.

        Raises:
            ValidationError: Malformed payload (not retried).
            RetryBudgetExhaustedError: Storage stayed unavailable.
        """
        _, inserted = await self.ingest_tick(raw, received_at)
        return inserted

    async def ingest_tick(
        self, raw: dict[str, Any], received_at: datetime | None = None
    ) -> tuple[TickPayload, bool]:
        """Like ingest(), but also returns the validated tick."""
        received_at = received_at or datetime.now(timezone.utc)
        tick = self.validate(raw)
        instrument = await self._instrument(tick.instrument_token)
        record = self.build_record(tick, instrument, received_at)

        last = self._last_seen.get(tick.instrument_token)
        if last is not None and tick.exchange_timestamp < last:
            self.log.debug(
                "late_tick",
                token=tick.instrument_token,
                exchange_timestamp=tick.exchange_timestamp,
                last_seen=last,
            )
        else:
            self._last_seen[tick.instrument_token] = tick.exchange_timestamp

        inserted = await self._repository.insert_market_data(record)
        if not inserted:
            self.log.debug(
                "duplicate_tick",
                token=tick.instrument_token,
                exchange_timestamp=tick.exchange_timestamp,
            )
        return tick, inserted

    async def ingest_many(self, raws: Iterable[dict[str, Any]]) -> IngestResult:
        """Ingest a batch concurrently, bounded by ``ingest_concurrency``.

        Invalid ticks are counted and logged; storage exhaustion propagates.
        """
        result = IngestResult()

        async def one(raw: dict[str, Any]) -> None:
            async with self._semaphore:
                try:
                    inserted = await self.ingest(raw)
                except ValidationError as exc:
                    result.rejected += 1
                    self.log.warning("tick_rejected", error=str(exc))
                    return
            if inserted:
                result.accepted += 1
            else:
                result.duplicates += 1

        await asyncio.gather(*(one(raw) for raw in raws))
        self.log.info(
            "batch_ingested",
            accepted=result.accepted,
            duplicates=result.duplicates,
            rejected=result.rejected,
        )
        return result
