"""Tests for carry_engine.resolver (ATM strike, expiries, change events)."""

from __future__ import annotations

from datetime import date, datetime, time

import pytest

from carry_engine.core.enums import ChangeReason, ExpiryType, OptionType
from carry_engine.core.exceptions import ResolutionError
from carry_engine.resolver.change_logger import (
    ChangeLogger,
    ExpiryChangeEvent,
    StrikeChangeEvent,
)
from carry_engine.resolver.instrument_resolver import (
    InstrumentResolver,
    resolve_atm_strike,
    select_expiries,
    strike_grid,
)
from tests.conftest import BASE_NOW, CHAIN_EXPIRIES, IST, add_option, option_symbol


def make_resolver(repo, settings) -> InstrumentResolver:
    return InstrumentResolver(repo, ChangeLogger(repo), config=settings)


GRIDS = [
    [19450, 19500, 19550],
    [19300, 19400, 19500, 19600, 19700],
    [19475, 19500, 19525, 19550],
    [19437, 19512, 19590],
]
SPOTS = [19300.0, 19449.9, 19475.0, 19500.0, 19512.5, 19524.99, 19551.0, 19800.0]


def nearest_lower(spot: float, strikes: list[float]) -> float:
    best = min(abs(k - spot) for k in strikes)
    return min(k for k in strikes if abs(k - spot) == best)


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------
class TestResolveAtmStrike:
    def test_nearest_strike(self) -> None:
        assert resolve_atm_strike(19510, [19450, 19500, 19550]) == 19500

    def test_equidistant_tie_goes_lower(self) -> None:
        assert resolve_atm_strike(19525, [19450, 19500, 19550]) == 19500

    @pytest.mark.parametrize("strikes", GRIDS)
    @pytest.mark.parametrize("spot", SPOTS)
    def test_matches_nearest_with_lower_tie_break(self, spot, strikes) -> None:
        result = resolve_atm_strike(spot, strikes)
        assert result in strikes
        assert abs(result - spot) == min(abs(k - spot) for k in strikes)
        assert result == nearest_lower(spot, strikes)

    def test_unsorted_duplicate_strikes(self) -> None:
        assert resolve_atm_strike(19530, [19550, 19500, 19550, 19450]) == 19550

    @pytest.mark.parametrize("interval", [25, 50, 100])
    @pytest.mark.parametrize("spot", SPOTS)
    def test_grid_brackets_spot_for_any_interval(self, spot, interval) -> None:
        grid = strike_grid(spot, interval)
        assert grid[0] <= spot
        assert grid[-1] >= spot
        assert all(k % interval == 0 for k in grid)
        assert resolve_atm_strike(spot, grid) == nearest_lower(
            spot, [grid[0], grid[0] + interval]
        )

    def test_empty_raises(self) -> None:
        with pytest.raises(ResolutionError):
            resolve_atm_strike(19500, [])

    def test_grid_brackets_spot(self) -> None:
        assert strike_grid(19510, 50) == [19500, 19550]
        assert strike_grid(19500, 50) == [19500]


class TestSelectExpiries:
    def test_weekly_and_monthly_from_listing(self) -> None:
        assert select_expiries(CHAIN_EXPIRIES, BASE_NOW) == (date(2024, 6, 13), date(2024, 6, 27))

    def test_weekly_rolls_after_expiry_close(self) -> None:
        now = datetime(2024, 6, 13, 15, 31, tzinfo=IST)
        assert select_expiries(CHAIN_EXPIRIES, now) == (date(2024, 6, 20), date(2024, 6, 27))

    def test_monthly_rolls_into_next_month(self) -> None:
        now = datetime(2024, 6, 27, 15, 31, tzinfo=IST)
        assert select_expiries(CHAIN_EXPIRIES, now) == (date(2024, 7, 25), date(2024, 7, 25))

    def test_calendar_fallback_without_listing(self) -> None:
        assert select_expiries([], BASE_NOW) == (date(2024, 6, 13), date(2024, 6, 27))

    def test_injected_market_close_drives_rollover(self, test_settings) -> None:
        early_close = test_settings.model_copy(update={"market_close": time(15, 0)})
        now = datetime(2024, 6, 13, 15, 10, tzinfo=IST)
        assert select_expiries(CHAIN_EXPIRIES, now)[0] == date(2024, 6, 13)
        assert select_expiries(CHAIN_EXPIRIES, now, early_close)[0] == date(2024, 6, 20)



# ---------------------------------------------------------------------------
# Resolver state and events
# ---------------------------------------------------------------------------
class TestInstrumentResolver:
    @pytest.mark.asyncio
    async def test_snapshot_empty_before_first_spot(self, seeded_repo, test_settings) -> None:
        assert make_resolver(seeded_repo, test_settings).snapshot() is None

    @pytest.mark.asyncio
    async def test_initial_resolution(self, seeded_repo, test_settings) -> None:
        resolver = make_resolver(seeded_repo, test_settings)
        state = await resolver.on_spot(19510, BASE_NOW)

        assert state.version == 1
        assert state.atm_strike == 19500
        assert state.weekly_expiry == date(2024, 6, 13)
        assert state.monthly_expiry == date(2024, 6, 27)
        assert state.is_complete
        assert state.substitutions == []
        call = state.leg(ExpiryType.WEEKLY, OptionType.CALL)
        assert call.trading_symbol == option_symbol(date(2024, 6, 13), 19500, OptionType.CALL)

        assert len(seeded_repo.strike_changes) == 1
        change = seeded_repo.strike_changes[0]
        assert change.old_strike is None
        assert change.new_strike == 19500
        assert change.change_reason == ChangeReason.INITIAL.value
        assert seeded_repo.expiry_changes == []

    @pytest.mark.asyncio
    async def test_unchanged_spot_is_idempotent(self, seeded_repo, test_settings) -> None:
        resolver = make_resolver(seeded_repo, test_settings)
        first = await resolver.on_spot(19510, BASE_NOW)
        for spot in (19505, 19512, 19520, 19525):
            state = await resolver.on_spot(spot, BASE_NOW)
        assert state is first
        assert len(seeded_repo.strike_changes) == 1

    @pytest.mark.asyncio
    async def test_spot_movement_logs_one_event_per_transition(
        self, seeded_repo, test_settings
    ) -> None:
        resolver = make_resolver(seeded_repo, test_settings)
        await resolver.on_spot(19510, BASE_NOW)
        state = await resolver.on_spot(19560, BASE_NOW)
        await resolver.on_spot(19565, BASE_NOW)

        assert state.version == 2
        assert state.atm_strike == 19550
        assert len(seeded_repo.strike_changes) == 2
        change = seeded_repo.strike_changes[-1]
        assert (change.old_strike, change.new_strike) == (19500, 19550)
        assert change.change_reason == ChangeReason.SPOT_MOVEMENT.value
        assert change.spot_price == 19560

    @pytest.mark.asyncio
    async def test_weekly_rollover_after_close(self, seeded_repo, test_settings) -> None:
        resolver = make_resolver(seeded_repo, test_settings)
        await resolver.on_spot(19510, datetime(2024, 6, 13, 15, 0, tzinfo=IST))
        state = await resolver.on_spot(19510, datetime(2024, 6, 13, 15, 31, tzinfo=IST))

        assert state.weekly_expiry == date(2024, 6, 20)
        assert state.monthly_expiry == date(2024, 6, 27)
        assert len(seeded_repo.expiry_changes) == 1
        change = seeded_repo.expiry_changes[0]
        assert change.expiry_type == ExpiryType.WEEKLY.value
        assert (change.old_expiry, change.new_expiry) == (date(2024, 6, 13), date(2024, 6, 20))
        assert change.change_reason == ChangeReason.AUTO_ROLLOVER.value
        # ATM strike did not move, so only the initial strike event exists
        assert len(seeded_repo.strike_changes) == 1

    @pytest.mark.asyncio
    async def test_unlisted_strike_substitutes_nearest_pair(
        self, seeded_repo, test_settings
    ) -> None:
        resolver = make_resolver(seeded_repo, test_settings)
        state = await resolver.on_spot(19610, BASE_NOW)

        assert state.atm_strike == 19600
        assert state.is_complete
        call = state.leg(ExpiryType.WEEKLY, OptionType.CALL)
        put = state.leg(ExpiryType.WEEKLY, OptionType.PUT)
        assert call.strike == put.strike == 19550
        assert call.substituted and put.substituted
        assert "WEEKLY_CE:19550" in state.substitutions

    @pytest.mark.asyncio
    async def test_missing_chain_leaves_state_incomplete(self, repo, test_settings) -> None:
        resolver = make_resolver(repo, test_settings)
        state = await resolver.on_spot(19510, BASE_NOW)
        assert state.legs == ()
        assert state.is_complete is False

    @pytest.mark.asyncio
    async def test_incomplete_state_recovers_once_chain_is_listed(
        self, repo, test_settings
    ) -> None:
        resolver = make_resolver(repo, test_settings)
        first = await resolver.on_spot(19510, BASE_NOW)
        assert first.is_complete is False

        for expiry in CHAIN_EXPIRIES:
            for option_type in OptionType:
                add_option(repo, expiry, 19500, option_type)
        state = await resolver.on_spot(19505, BASE_NOW)

        assert state.version == 2
        assert state.is_complete
        assert state.atm_strike == 19500
        assert state.leg(ExpiryType.MONTHLY, OptionType.PUT).strike == 19500
        # re-resolution is not a strike or expiry transition
        assert len(repo.strike_changes) == 1
        assert repo.expiry_changes == []
        assert await resolver.on_spot(19512, BASE_NOW) is state

    @pytest.mark.asyncio
    async def test_substituted_legs_upgrade_when_atm_is_listed(
        self, seeded_repo, test_settings
    ) -> None:
        resolver = make_resolver(seeded_repo, test_settings)
        first = await resolver.on_spot(19610, BASE_NOW)
        assert first.substitutions
        assert await resolver.on_spot(19608, BASE_NOW) is first

        for expiry in (date(2024, 6, 13), date(2024, 6, 27)):
            for option_type in OptionType:
                add_option(seeded_repo, expiry, 19600, option_type)
        state = await resolver.on_spot(19605, BASE_NOW)

        assert state.version == 2
        assert state.substitutions == []
        assert state.leg(ExpiryType.WEEKLY, OptionType.CALL).strike == 19600
        assert len(seeded_repo.strike_changes) == 1

    @pytest.mark.asyncio
    async def test_injected_market_close_rolls_weekly(
        self, seeded_repo, test_settings
    ) -> None:
        early_close = test_settings.model_copy(update={"market_close": time(15, 0)})
        resolver = make_resolver(seeded_repo, early_close)
        state = await resolver.on_spot(19510, datetime(2024, 6, 13, 15, 10, tzinfo=IST))
        assert state.weekly_expiry == date(2024, 6, 20)

    @pytest.mark.asyncio
    async def test_listeners_receive_events(self, seeded_repo, test_settings) -> None:
        resolver = make_resolver(seeded_repo, test_settings)
        received = []

        async def on_event(event) -> None:
            received.append(event)

        def broken(event) -> None:
            raise RuntimeError("listener bug")

        resolver.subscribe(broken)
        subscription = resolver.subscribe(on_event)
        await resolver.on_spot(19510, datetime(2024, 6, 13, 15, 0, tzinfo=IST))
        await resolver.on_spot(19510, datetime(2024, 6, 13, 15, 31, tzinfo=IST))

        assert isinstance(received[0], StrikeChangeEvent)
        assert isinstance(received[1], ExpiryChangeEvent)

        resolver.unsubscribe(subscription)
        await resolver.on_spot(19560, datetime(2024, 6, 13, 15, 32, tzinfo=IST))
        assert len(received) == 2

    @pytest.mark.asyncio
    async def test_deactivate_expired(self, seeded_repo, test_settings) -> None:
        resolver = make_resolver(seeded_repo, test_settings)
        count = await resolver.deactivate_expired(datetime(2024, 6, 14, 9, 0, tzinfo=IST))
        # 3 strikes x CE/PE for the 2024-06-13 expiry
        assert count == 6
        assert date(2024, 6, 13) not in await seeded_repo.list_expiries("NIFTY", date(2024, 6, 1))
