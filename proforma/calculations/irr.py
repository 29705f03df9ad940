"""
Return metrics over monthly cash flow vectors.

IRR is solved with Newton-Raphson on the monthly rate and falls back to
bisection when a Newton step leaves the (-1, inf) domain, which happens on
long projections with many leading zero months.
"""

from typing import List, Sequence

import numpy as np

MAX_ITERATIONS = 100
TOLERANCE = 1e-7
DEFAULT_GUESS = 0.01
MONTHS_PER_YEAR = 12

# Monthly rate search bounds for the bisection fallback
BISECTION_LOW = -0.99
BISECTION_HIGH = 1.0


def calculate_npv(cash_flows: Sequence[float], discount_rate: float) -> float:
    """
    Net present value of periodic cash flows.

    The first flow is undiscounted (period 0).
    """
    flows = np.asarray(cash_flows, dtype=float)
    periods = np.arange(len(flows))
    return float(np.sum(flows / (1 + discount_rate) ** periods))


def _npv_derivative(flows: np.ndarray, rate: float) -> float:
    periods = np.arange(len(flows))
    return float(-np.sum(periods * flows / (1 + rate) ** (periods + 1)))


def _check_flows(flows: np.ndarray) -> None:
    if len(flows) < 2:
        raise ValueError("At least 2 cash flows required")
    if not (flows > 0).any() or not (flows < 0).any():
        raise ValueError("Cash flows must contain both positive and negative values")


def _newton(flows: np.ndarray, guess: float):
    rate = guess
    for _ in range(MAX_ITERATIONS):
        slope = _npv_derivative(flows, rate)
        if abs(slope) < TOLERANCE:
            return None
        new_rate = rate - calculate_npv(flows, rate) / slope
        if new_rate <= -1 or not np.isfinite(new_rate):
            return None
        if abs(new_rate - rate) < TOLERANCE:
            return new_rate
        rate = new_rate
    return None


def _bisect(flows: np.ndarray) -> float:
    low, high = BISECTION_LOW, BISECTION_HIGH
    npv_low = calculate_npv(flows, low)
    if npv_low * calculate_npv(flows, high) > 0:
        raise ValueError("IRR calculation did not converge")

    for _ in range(MAX_ITERATIONS * 2):
        mid = (low + high) / 2
        npv_mid = calculate_npv(flows, mid)
        if abs(npv_mid) < TOLERANCE or (high - low) / 2 < TOLERANCE:
            return mid
        if npv_mid * npv_low < 0:
            high = mid
        else:
            low, npv_low = mid, npv_mid
    return (low + high) / 2


def calculate_irr(cash_flows: Sequence[float], guess: float = DEFAULT_GUESS) -> float:
    """
    Periodic IRR of a cash flow vector.

    Args:
        cash_flows: Periodic cash flows, outflows negative
        guess: Starting periodic rate for Newton-Raphson

    Returns:
        Periodic IRR as a decimal

    Raises:
        ValueError: If the flows have no sign change or no root is found
    """
    flows = np.asarray(cash_flows, dtype=float)
    _check_flows(flows)

    rate = _newton(flows, guess)
    if rate is None:
        rate = _bisect(flows)
    return float(rate)


def monthly_to_annual_irr(monthly_irr: float) -> float:
    """Compound a monthly rate to an annual one."""
    return (1 + monthly_irr) ** MONTHS_PER_YEAR - 1


def annualized_irr(monthly_cash_flows: Sequence[float]) -> float:
    """Annual IRR of a monthly cash flow vector."""
    return monthly_to_annual_irr(calculate_irr(monthly_cash_flows))


def calculate_multiple(cash_flows: Sequence[float]) -> float:
    """
    Equity multiple: total inflows over total outflows.

    Raises:
        ValueError: If there are no outflows
    """
    flows = np.asarray(cash_flows, dtype=float)
    invested = -flows[flows < 0].sum()
    if invested == 0:
        raise ValueError("No investment (outflows) found")
    return float(flows[flows > 0].sum() / invested)


def calculate_profit(cash_flows: List[float]) -> float:
    return float(np.sum(cash_flows))
