"""
Revenue Ramp Calculations

Net monthly revenue per income line, with vacancy and a linear lease-up
ramp between leasing start and stabilization.
"""

from typing import List, Optional
from dataclasses import dataclass

from proforma.calculations.timeline import HORIZON_MONTHS, Timeline, validate_month
from proforma.calculations.schedules import ScheduledAmountEntry, Single, expand

DEFAULT_VACANCY_PCT = 5.0


@dataclass(frozen=True)
class RevenueLine:
    """
    A recurring income line.

    start_month=None means the line starts at the project's leasing start.
    """

    base_monthly_amount: float
    vacancy_pct: float = DEFAULT_VACANCY_PCT
    start_month: Optional[int] = None
    id: Optional[str] = None
    label: Optional[str] = None

    @property
    def net_rent(self) -> float:
        return calculate_net_rent(self.base_monthly_amount, self.vacancy_pct)


def calculate_net_rent(base_monthly_amount: float, vacancy_pct: float) -> float:
    """Monthly rent after vacancy (vacancy_pct in 0-100)."""
    return base_monthly_amount * (1 - vacancy_pct / 100)


def effective_start_month(line: RevenueLine, timeline: Timeline) -> int:
    """The line's own start month, or the leasing start when it has none."""
    if line.start_month is None:
        return timeline.leasing_start_month
    return line.start_month


def ramp_factor(month: int, start_month: int, stabilized_month: int) -> float:
    """
    Share of stabilized revenue earned in a month.

    0 before start, 1 from stabilization on, linear in between. A ramp
    that starts on the stabilization month is immediately at full value.
    """
    if month < start_month:
        return 0.0
    if month >= stabilized_month:
        return 1.0
    duration = stabilized_month - start_month
    if duration <= 0:
        return 1.0
    return (month - start_month) / duration


def build_ramped_revenue(
    line: RevenueLine,
    timeline: Timeline,
    horizon_months: int = HORIZON_MONTHS,
) -> List[float]:
    """
    Monthly net revenue for one line.

    Args:
        line: Revenue line
        timeline: Project timeline (leasing start / stabilization)
        horizon_months: Length of the returned vector

    Returns:
        List of monthly net revenue
    """
    start = validate_month(effective_start_month(line, timeline), horizon_months, "start_month")
    net_rent = line.net_rent
    return [
        net_rent * ramp_factor(month, start, timeline.stabilized_month)
        for month in range(horizon_months)
    ]


# === Unit-based revenue rows ===


def unit_revenue_line(
    rent_per_unit: float,
    unit_count: float,
    vacancy_pct: Optional[float] = None,
    start_month: Optional[int] = None,
    id: Optional[str] = None,
    label: Optional[str] = None,
) -> RevenueLine:
    """Apartment / retail row: rent x units, 5% vacancy unless given."""
    return RevenueLine(
        base_monthly_amount=(rent_per_unit or 0) * (unit_count or 0),
        vacancy_pct=DEFAULT_VACANCY_PCT if vacancy_pct is None else vacancy_pct,
        start_month=start_month,
        id=id,
        label=label,
    )


def parking_revenue_line(
    monthly_rent: float,
    space_count: float,
    vacancy_pct: Optional[float] = None,
    start_month: Optional[int] = None,
    id: Optional[str] = None,
    label: Optional[str] = None,
) -> RevenueLine:
    """Parking row: rent x spaces."""
    return unit_revenue_line(monthly_rent, space_count, vacancy_pct, start_month, id, label)


def build_contribution(
    amount: float, month: int, horizon_months: int = HORIZON_MONTHS
) -> List[float]:
    """One-time capital contribution booked in a single month."""
    return expand(
        ScheduledAmountEntry(total_amount=amount or 0.0, schedule=Single(month=month)),
        horizon_months,
    )
