"""Live pipeline wiring -- ingest -> resolve -> compute.

CarryPipeline ties the components into one running service:

    tick --> MarketDataIngestor --(spot tick)--> InstrumentResolver.on_spot
                                                   |
                                                   v
                                 CostOfCarryEngine.trigger (event-driven)

Alongside the event path it runs the engine's timer loop and a
housekeeping loop that re-evaluates expiries from the last spot (so an
expiry rolls over at the close even when no spot tick arrives) and
soft-deletes expired option instruments.

RetryBudgetExhaustedError from any storage call is fatal. Raised from a
background cycle it stops both loops and is re-raised by run() once the
in-flight cycle has finished; every other error is handled inside the
components.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any

import structlog

from carry_engine.core.config import Settings, settings as default_settings
from carry_engine.engine.carry_engine import CostOfCarryEngine
from carry_engine.ingestion.ingestor import MarketDataIngestor
from carry_engine.resolver.change_logger import ChangeLogger
from carry_engine.resolver.instrument_resolver import InstrumentResolver
from carry_engine.storage.repository import CarryRepository

HOUSEKEEPING_INTERVAL_SECONDS = 60.0


class CarryPipeline:
    """Owns one instance of every component over a shared repository.

    Args:
        repository: Storage interface; a default CarryRepository if omitted.
        config: Settings shared by all components.
    """

    def __init__(
        self,
        repository: CarryRepository | None = None,
        config: Settings | None = None,
    ) -> None:
        self.settings = config or default_settings
        self.repository = repository or CarryRepository(config=self.settings)
        self.change_logger = ChangeLogger(self.repository)
        self.resolver = InstrumentResolver(
            self.repository, self.change_logger, config=self.settings
        )
        self.ingestor = MarketDataIngestor(self.repository, config=self.settings)
        self.engine = CostOfCarryEngine(
            self.repository, self.resolver, config=self.settings
        )
        self._last_spot: float | None = None
        self.log = structlog.get_logger().bind(component="pipeline")

    # ------------------------------------------------------------------
    # Event path
    # ------------------------------------------------------------------
    async def on_tick(
        self, raw: dict[str, Any], received_at: datetime | None = None
    ) -> bool:
        """Ingest one tick; a new spot tick re-resolves and triggers a cycle.

        Returns:
            True if the tick produced a new market_data row.

        Raises:
            ValidationError: The tick is malformed.
        """
        received_at = received_at or datetime.now(timezone.utc)
        tick, inserted = await self.ingestor.ingest_tick(raw, received_at)
        if inserted and tick.instrument_token == self.settings.spot_token:
            self._last_spot = tick.last_traded_price
            await self.resolver.on_spot(tick.last_traded_price, received_at)
            self.engine.trigger(received_at)
        return inserted

    async def replay_tick(self, raw: dict[str, Any]) -> bool:
        """Ingest one recorded tick on the tick's own exchange clock.

        The exchange timestamp stands in for both the receive time and the
        cycle time, and a spot tick runs its cycle inline, so staleness and
        expiry decisions match the recorded session.

        Returns:
            True if the tick produced a new market_data row.
        """
        tick = self.ingestor.validate(raw)
        at = datetime.fromtimestamp(tick.exchange_timestamp / 1000, tz=timezone.utc)
        tick, inserted = await self.ingestor.ingest_tick(raw, at)
        if inserted and tick.instrument_token == self.settings.spot_token:
            self._last_spot = tick.last_traded_price
            await self.resolver.on_spot(tick.last_traded_price, at)
            await self.engine.run_cycle(at)
        return inserted

    # ------------------------------------------------------------------
    # Background loops
    # ------------------------------------------------------------------
    async def housekeeping(self, now: datetime | None = None) -> None:
        """Roll expiries from the last spot and deactivate expired options."""
        now = now or datetime.now(timezone.utc)
        if self._last_spot is not None:
            await self.resolver.on_spot(self._last_spot, now)
        await self.resolver.deactivate_expired(now)

    async def _housekeeping_loop(self, stop: asyncio.Event) -> None:
        while not stop.is_set():
            await self.housekeeping()
            try:
                await asyncio.wait_for(stop.wait(), timeout=HOUSEKEEPING_INTERVAL_SECONDS)
            except asyncio.TimeoutError:
                pass

    async def run(self, stop: asyncio.Event) -> None:
        """Run the timer loop and housekeeping until *stop* is set.

        Raises:
            RetryBudgetExhaustedError: A triggered cycle exhausted the storage
                retry budget; the loops are stopped first.
        """
        self.log.info(
            "pipeline_started",
            underlying=self.settings.underlying,
            spot_symbol=self.settings.spot_symbol,
        )
        latest = await self.repository.get_latest_by_token(self.settings.spot_token)
        if latest is not None:
            self._last_spot = latest.last_traded_price
            await self.resolver.on_spot(latest.last_traded_price)

        watcher = asyncio.create_task(self.engine.failed.wait())
        watcher.add_done_callback(lambda _: stop.set())
        tasks = [
            asyncio.create_task(self.engine.run_forever(stop)),
            asyncio.create_task(self._housekeeping_loop(stop)),
        ]
        try:
            await asyncio.gather(*tasks)
        finally:
            stop.set()
            watcher.cancel()
            for task in tasks:
                task.cancel()
            await self.engine.drain()
            self.log.info("pipeline_stopped", failed=self.engine.failed.is_set())
        self.engine.raise_if_failed()
