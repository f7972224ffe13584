"""Tests for carry_engine.transforms.implied_vol."""

from __future__ import annotations

import math

import pytest

from carry_engine.core.enums import OptionType
from carry_engine.core.exceptions import NumericConvergenceError
from carry_engine.transforms.implied_vol import (
    black_scholes_price,
    black_scholes_vega,
    implied_volatility,
    implied_volatility_or_none,
)

SPOT = 19500.0
YEARS = 30 / 365
RATE = 0.065


class TestBlackScholes:
    def test_put_call_parity(self) -> None:
        call = black_scholes_price(SPOT, 19500, YEARS, RATE, 0.15, OptionType.CALL)
        put = black_scholes_price(SPOT, 19500, YEARS, RATE, 0.15, OptionType.PUT)
        assert call - put == pytest.approx(SPOT - 19500 * math.exp(-RATE * YEARS), rel=1e-7)

    def test_vega_positive(self) -> None:
        assert black_scholes_vega(SPOT, 19500, YEARS, RATE, 0.15) > 0


class TestImpliedVolatility:
    @pytest.mark.parametrize("option_type", [OptionType.CALL, OptionType.PUT])
    @pytest.mark.parametrize("strike", [19000.0, 19500.0, 20000.0])
    def test_recovers_known_vol(self, option_type, strike) -> None:
        price = black_scholes_price(SPOT, strike, YEARS, RATE, 0.18, option_type)
        iv = implied_volatility(price, SPOT, strike, YEARS, RATE, option_type)
        assert iv == pytest.approx(0.18, abs=1e-4)

    def test_high_vol_starting_far_from_guess(self) -> None:
        price = black_scholes_price(SPOT, 19500, YEARS, RATE, 1.2, OptionType.CALL)
        iv = implied_volatility(price, SPOT, 19500, YEARS, RATE, OptionType.CALL)
        assert iv == pytest.approx(1.2, abs=1e-4)

    def test_price_above_spot_has_no_solution(self) -> None:
        with pytest.raises(NumericConvergenceError):
            implied_volatility(SPOT + 100, SPOT, 19500, YEARS, RATE, OptionType.CALL)

    def test_zero_time_is_undefined(self) -> None:
        with pytest.raises(NumericConvergenceError):
            implied_volatility(100.0, SPOT, 19500, 0.0, RATE, OptionType.CALL)

    def test_iteration_budget_exhausted(self) -> None:
        price = black_scholes_price(SPOT, 19500, YEARS, RATE, 0.6, OptionType.CALL)
        with pytest.raises(NumericConvergenceError):
            implied_volatility(
                price, SPOT, 19500, YEARS, RATE, OptionType.CALL,
                max_iterations=1, tolerance=1e-12,
            )

    def test_or_none_maps_failure_to_none(self) -> None:
        assert implied_volatility_or_none(
            SPOT + 100, SPOT, 19500, YEARS, RATE, OptionType.CALL
        ) is None
