"""Black-Scholes pricing and implied volatility inversion.

European options on an index with continuous dividend yield q::

    d1 = [ln(S/K) + (r - q + sigma^2/2) T] / (sigma sqrt(T))
    d2 = d1 - sigma sqrt(T)
    C  = S e^(-qT) N(d1) - K e^(-rT) N(d2)
    P  = K e^(-rT) N(-d2) - S e^(-qT) N(-d1)

The inversion runs Newton steps on vega and falls back to bisection
whenever a Newton step leaves the bracket or vega vanishes (deep ITM/OTM,
near-zero time value). Non-convergence raises NumericConvergenceError;
implied_volatility_or_none() turns that into None for snapshot fields.
"""

from __future__ import annotations

import math

from scipy.stats import norm

from carry_engine.core.enums import OptionType
from carry_engine.core.exceptions import NumericConvergenceError

VOL_LOWER = 1e-4
VOL_UPPER = 5.0
VEGA_FLOOR = 1e-8


def _d1_d2(
    spot: float, strike: float, years: float, rate: float, dividend: float, vol: float
) -> tuple[float, float]:
    sqrt_t = math.sqrt(years)
    d1 = (
        math.log(spot / strike) + (rate - dividend + 0.5 * vol * vol) * years
    ) / (vol * sqrt_t)
    return d1, d1 - vol * sqrt_t


def black_scholes_price(
    spot: float,
    strike: float,
    years: float,
    rate: float,
    vol: float,
    option_type: OptionType,
    dividend: float = 0.0,
) -> float:
    """Black-Scholes price of a European call or put."""
    d1, d2 = _d1_d2(spot, strike, years, rate, dividend, vol)
    disc_spot = spot * math.exp(-dividend * years)
    disc_strike = strike * math.exp(-rate * years)
    if option_type is OptionType.CALL:
        return disc_spot * norm.cdf(d1) - disc_strike * norm.cdf(d2)
    return disc_strike * norm.cdf(-d2) - disc_spot * norm.cdf(-d1)


def black_scholes_vega(
    spot: float,
    strike: float,
    years: float,
    rate: float,
    vol: float,
    dividend: float = 0.0,
) -> float:
    """Sensitivity of the price to volatility (per 1.00 of vol)."""
    d1, _ = _d1_d2(spot, strike, years, rate, dividend, vol)
    return spot * math.exp(-dividend * years) * norm.pdf(d1) * math.sqrt(years)


def implied_volatility(
    price: float,
    spot: float,
    strike: float,
    years: float,
    rate: float,
    option_type: OptionType,
    dividend: float = 0.0,
    max_iterations: int = 100,
    tolerance: float = 1e-6,
    initial_vol: float = 0.2,
) -> float:
    """Solve Black-Scholes for volatility given an observed option price.

    Args:
        price: Observed option price.
        spot: Underlying spot price.
        strike: Option strike.
        years: Time to expiry in years.
        rate: Continuously compounded risk-free rate.
        option_type: CALL or PUT.
        dividend: Continuous dividend yield.
        max_iterations: Iteration budget shared by Newton and bisection.
        tolerance: Absolute price tolerance.
        initial_vol: Newton starting point.

    Returns:
        Annualised volatility as a decimal (0.15 = 15%).

    Raises:
        NumericConvergenceError: If inputs admit no solution or the
            iteration budget runs out.
    """
    if price <= 0 or spot <= 0 or strike <= 0 or years <= 0:
        raise NumericConvergenceError(
            f"IV undefined for price={price}, spot={spot}, strike={strike}, T={years}"
        )

    def objective(vol: float) -> float:
        return black_scholes_price(
            spot, strike, years, rate, vol, option_type, dividend
        ) - price

    low, high = VOL_LOWER, VOL_UPPER
    f_low, f_high = objective(low), objective(high)
    # Price outside the no-arbitrage range reachable by any volatility
    if f_low > tolerance or f_high < -tolerance:
        raise NumericConvergenceError(
            f"price {price} outside attainable range for strike {strike}"
        )

    vol = min(max(initial_vol, low), high)
    for _ in range(max_iterations):
        diff = objective(vol)
        if abs(diff) < tolerance:
            return vol
        if diff > 0:
            high = vol
        else:
            low = vol

        vega = black_scholes_vega(spot, strike, years, rate, vol, dividend)
        candidate = vol - diff / vega if vega > VEGA_FLOOR else None
        if candidate is None or not (low < candidate < high):
            candidate = 0.5 * (low + high)
        vol = candidate

    raise NumericConvergenceError(
        f"IV did not converge within {max_iterations} iterations "
        f"(price={price}, strike={strike})"
    )


def implied_volatility_or_none(*args, **kwargs) -> float | None:
    """implied_volatility() with non-convergence mapped to None."""
    try:
        return implied_volatility(*args, **kwargs)
    except NumericConvergenceError:
        return None
