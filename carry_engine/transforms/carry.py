import math

from carry_engine.core.enums import OptionType

# One minute expressed in years (actual/365)
MIN_YEAR_FRACTION = 1.0 / (365 * 24 * 60)


def synthetic_future(strike: float, call_price: float, put_price: float) -> float:
    """Put-call parity forward: F = K + C - P."""
    return strike + call_price - put_price


def implied_call_price(synthetic: float, strike: float, put_price: float) -> float:
    """Invert parity for the call leg: C = F - K + P."""
    return synthetic - strike + put_price


def cost_of_carry(
    synthetic: float, spot: float, years_to_expiry: float
) -> float | None:
    """Annualised carry of the synthetic over spot, in percent.

    ((F / S) - 1) / T * 100. Returns None when T is under one minute or
    spot is not positive, so expiry-day and bad-tick cases never divide by
    zero or blow up to infinity.
    """
    if spot <= 0 or years_to_expiry < MIN_YEAR_FRACTION:
        return None
    value = (synthetic / spot - 1.0) / years_to_expiry * 100.0
    if not math.isfinite(value):
        return None
    return value


def calendar_spread(
    monthly_carry: float | None, weekly_carry: float | None
) -> float | None:
    """Monthly carry minus weekly carry. None if either side is missing."""
    if monthly_carry is None or weekly_carry is None:
        return None
    return monthly_carry - weekly_carry


def intrinsic_value(spot: float, strike: float, option_type: OptionType) -> float:
    if option_type is OptionType.CALL:
        return max(spot - strike, 0.0)
    return max(strike - spot, 0.0)


def option_premium(
    price: float, spot: float, strike: float, option_type: OptionType
) -> float:
    """Time value: option price less its intrinsic value."""
    return price - intrinsic_value(spot, strike, option_type)
