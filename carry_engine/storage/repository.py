"""Async storage repository over the carry store tables.

Every public method is one unit of work in its own session and
transaction, wrapped in the retry policy below:

- Transient failures (connection drops, timeouts, operational errors)
  become PersistenceError and are retried with exponential backoff +
  jitter via tenacity.
- When the retry budget is exhausted RetryBudgetExhaustedError is raised;
  callers treat it as fatal.

Writes to append-only tables use INSERT ... ON CONFLICT DO NOTHING on the
natural key, so concurrent writers never conflict and retries are
idempotent. The latest-market-data and current-computed-data database
views are replaced by explicit queries with the same ordering.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, Optional, TypeVar

import structlog
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from carry_engine.core.config import Settings, settings as default_settings
from carry_engine.core.enums import FetchStatus, InstrumentType, OptionType
from carry_engine.core.exceptions import (
    PersistenceError,
    RetryBudgetExhaustedError,
    ValidationError,
)
from carry_engine.core.models import (
    ComputedData,
    DataFetchLog,
    ExpiryChange,
    Instrument,
    MarketData,
    StrikeChange,
)
from carry_engine.schemas.instruments import InstrumentSpec

T = TypeVar("T")

# Driver-level failures worth retrying
TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    OperationalError,
    InterfaceError,
    OSError,
)

MARKET_DATA_NATURAL_KEY = ["instrument_token", "exchange_timestamp"]


class CarryRepository:
    """Storage interface used by the ingestor, resolver, engine and logger.

    Args:
        session_factory: Async session factory; defaults to the
            application-wide factory from ``carry_engine.core.database``.
        config: Settings supplying the retry budget and backoff bounds.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        config: Settings | None = None,
    ) -> None:
        if session_factory is None:
            from carry_engine.core.database import async_session_factory

            session_factory = async_session_factory
        self._session_factory = session_factory
        self._settings = config or default_settings
        self.log = structlog.get_logger().bind(component="repository")

    # ------------------------------------------------------------------
    # Retry plumbing
    # ------------------------------------------------------------------
    async def _execute(
        self, operation: str, work: Callable[[AsyncSession], Awaitable[T]]
    ) -> T:
        """Run *work* in a fresh transaction with bounded retry."""
        cfg = self._settings
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(PersistenceError),
                stop=stop_after_attempt(cfg.storage_max_retries),
                wait=wait_exponential_jitter(
                    initial=cfg.storage_retry_initial_seconds,
                    max=cfg.storage_retry_max_seconds,
                    jitter=cfg.storage_retry_jitter_seconds,
                ),
                reraise=True,
            ):
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        self.log.warning(
                            "storage_retry",
                            operation=operation,
                            attempt=attempt.retry_state.attempt_number,
                        )
                    return await self._execute_once(operation, work)
        except PersistenceError as exc:
            self.log.error(
                "storage_retry_budget_exhausted",
                operation=operation,
                attempts=cfg.storage_max_retries,
                error=str(exc),
            )
            raise RetryBudgetExhaustedError(
                f"{operation}: storage unavailable after "
                f"{cfg.storage_max_retries} attempts"
            ) from exc

        # Should not be reached, but satisfies type checker
        raise RetryBudgetExhaustedError(f"{operation}: no attempt made")  # pragma: no cover

    async def _execute_once(
        self, operation: str, work: Callable[[AsyncSession], Awaitable[T]]
    ) -> T:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    return await work(session)
        except TRANSIENT_ERRORS as exc:
            raise PersistenceError(f"{operation}: {exc}") from exc

    # ------------------------------------------------------------------
    # Instruments
    # ------------------------------------------------------------------
    async def register_instrument(
        self, spec: InstrumentSpec | dict[str, Any], now: datetime | None = None
    ) -> bool:
        """Insert an instrument master row unless its token already exists.

        Returns:
            True if a new row was written.

        Raises:
            ValidationError: If the definition breaks the instrument shape rules.
        """
        if not isinstance(spec, InstrumentSpec):
            try:
                spec = InstrumentSpec.model_validate(spec)
            except PydanticValidationError as exc:
                raise ValidationError(str(exc)) from exc

        now = now or datetime.now(timezone.utc)
        values = spec.model_dump()
        values["instrument_type"] = spec.instrument_type.value
        values["option_type"] = spec.option_type.value if spec.option_type else None
        values["created_at"] = now
        values["updated_at"] = now

        async def work(session: AsyncSession) -> bool:
            stmt = pg_insert(Instrument).values(values)
            stmt = stmt.on_conflict_do_nothing(index_elements=["instrument_token"])
            result = await session.execute(stmt)
            return result.rowcount > 0

        return await self._execute("register_instrument", work)

    async def get_instrument(self, token: str) -> Optional[Instrument]:
        async def work(session: AsyncSession) -> Optional[Instrument]:
            stmt = select(Instrument).where(Instrument.instrument_token == token)
            return (await session.execute(stmt)).scalar_one_or_none()

        return await self._execute("get_instrument", work)

    async def list_expiries(self, underlying: str, from_date: date) -> list[date]:
        """Distinct active option expiries on or after *from_date*, ascending."""

        async def work(session: AsyncSession) -> list[date]:
            stmt = (
                select(Instrument.expiry_date)
                .where(
                    Instrument.underlying == underlying,
                    Instrument.instrument_type == InstrumentType.OPTION.value,
                    Instrument.is_active.is_(True),
                    Instrument.expiry_date >= from_date,
                )
                .distinct()
                .order_by(Instrument.expiry_date)
            )
            return list((await session.execute(stmt)).scalars())

        return await self._execute("list_expiries", work)

    async def list_strikes(
        self, underlying: str, expiry: date, option_type: OptionType
    ) -> list[float]:
        """Listed active strikes for one option series, ascending."""

        async def work(session: AsyncSession) -> list[float]:
            stmt = (
                select(Instrument.strike_price)
                .where(
                    Instrument.underlying == underlying,
                    Instrument.instrument_type == InstrumentType.OPTION.value,
                    Instrument.expiry_date == expiry,
                    Instrument.option_type == option_type.value,
                    Instrument.is_active.is_(True),
                )
                .order_by(Instrument.strike_price)
            )
            return list((await session.execute(stmt)).scalars())

        return await self._execute("list_strikes", work)

    async def find_option(
        self, underlying: str, strike: float, expiry: date, option_type: OptionType
    ) -> Optional[Instrument]:
        async def work(session: AsyncSession) -> Optional[Instrument]:
            stmt = select(Instrument).where(
                Instrument.underlying == underlying,
                Instrument.instrument_type == InstrumentType.OPTION.value,
                Instrument.strike_price == strike,
                Instrument.expiry_date == expiry,
                Instrument.option_type == option_type.value,
                Instrument.is_active.is_(True),
            )
            return (await session.execute(stmt)).scalars().first()

        return await self._execute("find_option", work)

    async def deactivate_instruments(
        self, underlying: str, expired_before: date, now: datetime
    ) -> int:
        """Soft-delete option instruments that expired before a date."""

        async def work(session: AsyncSession) -> int:
            stmt = (
                update(Instrument)
                .where(
                    Instrument.underlying == underlying,
                    Instrument.instrument_type == InstrumentType.OPTION.value,
                    Instrument.expiry_date < expired_before,
                    Instrument.is_active.is_(True),
                )
                .values(is_active=False, updated_at=now)
            )
            result = await session.execute(stmt)
            return result.rowcount

        return await self._execute("deactivate_instruments", work)

    # ------------------------------------------------------------------
    # Market data
    # ------------------------------------------------------------------
    async def insert_market_data(self, record: dict[str, Any]) -> bool:
        """Append one market data row; duplicates on the natural key are skipped.

        Returns:
            True if a new row was written, False for a duplicate.
        """

        async def work(session: AsyncSession) -> bool:
            stmt = pg_insert(MarketData).values(record)
            stmt = stmt.on_conflict_do_nothing(index_elements=MARKET_DATA_NATURAL_KEY)
            result = await session.execute(stmt)
            return result.rowcount > 0

        return await self._execute("insert_market_data", work)

    async def get_latest_by_symbol(self, symbol: str) -> Optional[MarketData]:
        """Most recent row for a trading symbol by server timestamp."""
        rows = await self.get_latest_by_symbols([symbol])
        return rows.get(symbol)

    async def get_latest_by_symbols(
        self, symbols: Iterable[str]
    ) -> dict[str, MarketData]:
        """Most recent row per trading symbol by server timestamp."""
        wanted = sorted(set(symbols))
        if not wanted:
            return {}

        async def work(session: AsyncSession) -> dict[str, MarketData]:
            stmt = (
                select(MarketData)
                .where(MarketData.trading_symbol.in_(wanted))
                .order_by(
                    MarketData.trading_symbol,
                    MarketData.server_timestamp.desc(),
                    MarketData.exchange_timestamp.desc(),
                )
                .distinct(MarketData.trading_symbol)
            )
            rows = (await session.execute(stmt)).scalars()
            return {row.trading_symbol: row for row in rows}

        return await self._execute("get_latest_by_symbols", work)

    async def get_latest_by_token(self, token: str) -> Optional[MarketData]:
        async def work(session: AsyncSession) -> Optional[MarketData]:
            stmt = (
                select(MarketData)
                .where(MarketData.instrument_token == token)
                .order_by(MarketData.server_timestamp.desc())
                .limit(1)
            )
            return (await session.execute(stmt)).scalar_one_or_none()

        return await self._execute("get_latest_by_token", work)

    # ------------------------------------------------------------------
    # Computed snapshots
    # ------------------------------------------------------------------
    async def insert_computed_snapshot(self, values: dict[str, Any]) -> ComputedData:
        """Append one computed snapshot as a single atomic insert."""

        async def work(session: AsyncSession) -> ComputedData:
            row = ComputedData(**values)
            session.add(row)
            await session.flush()
            return row

        return await self._execute("insert_computed_snapshot", work)

    async def get_current_computed_snapshot(self) -> Optional[ComputedData]:
        """Most recent snapshot by calculation timestamp."""
        rows = await self.get_computed_history(limit=1)
        return rows[0] if rows else None

    async def get_computed_history(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 1000,
    ) -> list[ComputedData]:
        """Snapshots in [start, end], newest first."""

        async def work(session: AsyncSession) -> list[ComputedData]:
            stmt = select(ComputedData)
            if start is not None:
                stmt = stmt.where(ComputedData.calculation_timestamp >= start)
            if end is not None:
                stmt = stmt.where(ComputedData.calculation_timestamp <= end)
            stmt = stmt.order_by(ComputedData.calculation_timestamp.desc()).limit(limit)
            return list((await session.execute(stmt)).scalars())

        return await self._execute("get_computed_history", work)

    # ------------------------------------------------------------------
    # Audit logs
    # ------------------------------------------------------------------
    async def insert_strike_change(self, values: dict[str, Any]) -> StrikeChange:
        async def work(session: AsyncSession) -> StrikeChange:
            row = StrikeChange(**values)
            session.add(row)
            await session.flush()
            return row

        return await self._execute("insert_strike_change", work)

    async def insert_expiry_change(self, values: dict[str, Any]) -> ExpiryChange:
        async def work(session: AsyncSession) -> ExpiryChange:
            row = ExpiryChange(**values)
            session.add(row)
            await session.flush()
            return row

        return await self._execute("insert_expiry_change", work)

    async def log_data_fetch(
        self,
        exchange: str,
        trading_symbol: str,
        fetch_date: date,
        from_date: date,
        to_date: date,
        records_count: int = 0,
        status: FetchStatus = FetchStatus.SUCCESS,
        error_message: str | None = None,
    ) -> DataFetchLog:
        """Record the outcome of a bulk historical fetch job."""
        if from_date > to_date:
            raise ValidationError(
                f"from_date {from_date} is after to_date {to_date}"
            )
        values = {
            "exchange": exchange,
            "trading_symbol": trading_symbol,
            "fetch_date": fetch_date,
            "from_date": from_date,
            "to_date": to_date,
            "records_count": records_count,
            "status": FetchStatus(status).value,
            "error_message": error_message,
            "created_at": datetime.now(timezone.utc),
        }

        async def work(session: AsyncSession) -> DataFetchLog:
            row = DataFetchLog(**values)
            session.add(row)
            await session.flush()
            return row

        return await self._execute("log_data_fetch", work)

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------
    async def get_statistics(self) -> dict[str, Any]:
        """Row counts per table plus the latest calculation timestamp."""
        models = {
            "market_data": MarketData,
            "computed_data": ComputedData,
            "instruments": Instrument,
            "strike_changes": StrikeChange,
            "expiry_changes": ExpiryChange,
            "data_fetch_logs": DataFetchLog,
        }

        async def work(session: AsyncSession) -> dict[str, Any]:
            stats: dict[str, Any] = {}
            for table, model in models.items():
                stmt = select(func.count()).select_from(model)
                stats[table] = (await session.execute(stmt)).scalar_one()
            stmt = select(func.max(ComputedData.calculation_timestamp))
            stats["latest_computation"] = (await session.execute(stmt)).scalar_one()
            return stats

        return await self._execute("get_statistics", work)
