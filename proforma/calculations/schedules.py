"""
Line-Item Schedules

Expands a scheduled cost (or one-time contribution) into a monthly vector
over the projection horizon.

A schedule is one of three variants:
- Single: the full amount lands in one month
- Range: spread across a contiguous span of months
- MultiMonth: spread across an explicit list of months

Range and MultiMonth may carry one percentage per month. Without
percentages the amount is split evenly in whole cents and the leftover
cents are booked to the last month, so every vector sums exactly to its
total.
"""

from typing import List, Dict, Optional, Sequence, Union
from dataclasses import dataclass

from proforma.calculations.timeline import HORIZON_MONTHS
from proforma.calculations.errors import InvalidScheduleError

PERCENTAGE_TOLERANCE = 0.01


@dataclass(frozen=True)
class Single:
    """Full amount paid in one month."""

    month: int


@dataclass(frozen=True)
class Range:
    """Amount spread across start_month..end_month inclusive."""

    start_month: int
    end_month: int
    percentages: Optional[Sequence[float]] = None

    @property
    def months(self) -> List[int]:
        return list(range(self.start_month, self.end_month + 1))


@dataclass(frozen=True)
class MultiMonth:
    """Amount spread across an explicit list of months."""

    months: Sequence[int]
    percentages: Optional[Sequence[float]] = None


ScheduleSpec = Union[Single, Range, MultiMonth]


@dataclass(frozen=True)
class ScheduledAmountEntry:
    """A cost or contribution row with its payment schedule."""

    total_amount: float
    schedule: ScheduleSpec
    id: Optional[str] = None
    label: Optional[str] = None


# === Validation ===


def _check_month(month, horizon_months: int, field: str) -> None:
    if isinstance(month, bool) or not isinstance(month, int):
        raise InvalidScheduleError(f"{field} must be an integer month offset, got {month!r}")
    if month < 0 or month >= horizon_months:
        raise InvalidScheduleError(
            f"{field} {month} is outside the projection horizon [0, {horizon_months - 1}]"
        )


def _check_percentages(
    percentages: Sequence[float], month_count: int, tolerance: float
) -> None:
    if len(percentages) != month_count:
        raise InvalidScheduleError(
            f"Expected {month_count} percentages (one per month), got {len(percentages)}"
        )
    if any(pct < 0 for pct in percentages):
        raise InvalidScheduleError("Percentages cannot be negative")
    total = sum(percentages)
    if abs(total - 100.0) > tolerance:
        raise InvalidScheduleError(f"Percentages must sum to 100, got {total:g}")


def validate_schedule(
    schedule: ScheduleSpec,
    horizon_months: int = HORIZON_MONTHS,
    tolerance: float = PERCENTAGE_TOLERANCE,
) -> ScheduleSpec:
    """
    Check a schedule against the horizon.

    Raises:
        InvalidScheduleError: For out-of-horizon months, an inverted range,
            an empty month list, or percentages that do not match the months
            or do not sum to 100.
    """
    if isinstance(schedule, Single):
        _check_month(schedule.month, horizon_months, "month")
    elif isinstance(schedule, Range):
        _check_month(schedule.start_month, horizon_months, "start_month")
        _check_month(schedule.end_month, horizon_months, "end_month")
        if schedule.end_month < schedule.start_month:
            raise InvalidScheduleError(
                f"end_month ({schedule.end_month}) cannot be before "
                f"start_month ({schedule.start_month})"
            )
        if schedule.percentages is not None:
            _check_percentages(schedule.percentages, len(schedule.months), tolerance)
    elif isinstance(schedule, MultiMonth):
        if not schedule.months:
            raise InvalidScheduleError("At least one month is required")
        for month in schedule.months:
            _check_month(month, horizon_months, "month")
        if schedule.percentages is not None:
            _check_percentages(schedule.percentages, len(schedule.months), tolerance)
    else:
        raise InvalidScheduleError(f"Unknown schedule type: {type(schedule).__name__}")
    return schedule


# === Allocation ===


def _to_cents(amount: float) -> int:
    return int(round(amount * 100))


def split_evenly(total_amount: float, count: int) -> List[float]:
    """
    Split an amount into `count` whole-cent shares.

    Every share is the floored even share except the last, which takes the
    leftover cents.
    """
    total_cents = _to_cents(total_amount)
    share = total_cents // count
    shares = [share] * count
    shares[-1] = total_cents - share * (count - 1)
    return [cents / 100 for cents in shares]


def split_by_percentages(
    total_amount: float, percentages: Sequence[float]
) -> List[float]:
    """Split an amount by percentages, booking the cent remainder to the last share."""
    total_cents = _to_cents(total_amount)
    shares = [int(round(total_cents * pct / 100)) for pct in percentages[:-1]]
    shares.append(total_cents - sum(shares))
    return [cents / 100 for cents in shares]


def expand(
    entry: ScheduledAmountEntry,
    horizon_months: int = HORIZON_MONTHS,
    tolerance: float = PERCENTAGE_TOLERANCE,
) -> List[float]:
    """
    Expand a scheduled entry into a monthly vector.

    Args:
        entry: Amount and schedule
        horizon_months: Length of the returned vector
        tolerance: Allowed drift of month percentages from 100

    Returns:
        List of monthly amounts summing to entry.total_amount
    """
    schedule = validate_schedule(entry.schedule, horizon_months, tolerance)
    values = [0.0] * horizon_months

    if isinstance(schedule, Single):
        values[schedule.month] = float(entry.total_amount)
        return values

    months = list(schedule.months)
    if schedule.percentages is not None:
        shares = split_by_percentages(entry.total_amount, schedule.percentages)
    else:
        shares = split_evenly(entry.total_amount, len(months))

    for month, share in zip(months, shares):
        values[month] += share

    return values


# === Row parsing ===


def _optional_int(value) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        raise InvalidScheduleError(f"Invalid month value: {value!r}")


def _number_list(value) -> List[float]:
    if value is None or value == "":
        return []
    raw = value if isinstance(value, (list, tuple)) else str(value).split(",")
    numbers = []
    for item in raw:
        text = str(item).strip()
        if not text:
            continue
        try:
            numbers.append(float(text))
        except ValueError:
            raise InvalidScheduleError(f"Invalid number in list: {text!r}")
    return numbers


def parse_schedule(row: Dict) -> ScheduleSpec:
    """
    Build a schedule variant from a stored cost row.

    Rows keep the flat shape the forms submit: a payment_mode of 'single',
    'range' or 'multi' plus whichever of payment_month, start_month,
    end_month, month_list and month_percentages that mode uses.
    """
    mode = (row.get("payment_mode") or "single").lower()

    if mode == "single":
        month = _optional_int(row.get("payment_month"))
        if month is None:
            raise InvalidScheduleError("payment_month is required for single payments")
        return Single(month=month)

    if mode == "range":
        start = _optional_int(row.get("start_month"))
        end = _optional_int(row.get("end_month"))
        if start is None or end is None:
            raise InvalidScheduleError("start_month and end_month are required for range payments")
        percentages = _number_list(row.get("month_percentages")) or None
        return Range(start_month=start, end_month=end, percentages=percentages)

    if mode == "multi":
        months = [int(month) for month in _number_list(row.get("month_list"))]
        percentages = _number_list(row.get("month_percentages")) or None
        return MultiMonth(months=months, percentages=percentages)

    raise InvalidScheduleError(f"Unknown payment_mode: {mode!r}")


def describe_schedule(schedule: ScheduleSpec) -> str:
    """Human-readable schedule summary using 1-based month numbers."""
    if isinstance(schedule, Single):
        return f"Month {schedule.month + 1}"

    if isinstance(schedule, Range):
        return f"Months {schedule.start_month + 1}–{schedule.end_month + 1}"

    if schedule.percentages:
        return ", ".join(
            f"Month {month + 1} ({pct:g}%)"
            for month, pct in zip(schedule.months, schedule.percentages)
        )
    return ", ".join(f"Month {month + 1}" for month in schedule.months)


# === Cost catalogs ===

SOFT_COST_CATEGORIES = {
    "architect": "Architect / Design",
    "legal": "Legal",
    "permits": "Permits",
    "consulting": "Consulting",
    "marketing": "Marketing",
    "other": "Other",
}

LEASEUP_COST_CATEGORIES = {
    "marketing": "Marketing",
    "staging": "Staging",
    "leasing_agent": "Leasing Agent",
    "tenant_improvements": "Tenant Improvements",
    "legal": "Legal",
    "other": "Other",
}

HARD_COST_CATEGORIES = {
    "structure": "Structure",
    "framing": "Framing",
    "roof": "Roof",
    "windows": "Windows",
    "fasade": "Fasade",
    "rough_plumbing": "Rough Plumbing",
    "rough_electric": "Rough Electric",
    "rough_havac": "Rough HAVAC",
    "fire_supresion": "Fire Supresion",
    "insulation": "Insulation",
    "drywall": "Drywall",
    "tiles": "Tiles",
    "paint": "Paint",
    "flooring": "Flooring",
    "molding_doors": "Molding (+ doors)",
    "kitchen": "Kitchen",
    "finished_plumbing": "Finished Plumbing",
    "finished_electric": "Finished Electric",
    "appliances": "Appliances",
    "gym": "Gym",
    "study_lounge": "Study Lounge",
    "roof_top": "Roof Top",
    "foundation": "Foundation",
    "other_hard": "Other (Lump Sum)",
}

MEASUREMENT_UNITS = {
    "none": "None (lump sum)",
    "sqft": "Per Square Feet",
    "linear_feet": "Per Linear Feet",
    "apartment": "Per Apartment",
    "building": "Per Building",
}

_SQFT_CATEGORIES = (
    "structure", "framing", "roof", "windows", "fasade",
    "fire_supresion", "insulation", "molding_doors",
)
_APARTMENT_CATEGORIES = (
    "rough_plumbing", "rough_electric", "rough_havac", "flooring",
    "kitchen", "finished_plumbing", "finished_electric", "appliances",
)
_LINEAR_FEET_CATEGORIES = ("drywall", "tiles", "paint")
_BUILDING_CATEGORIES = ("gym", "study_lounge", "roof_top")


def default_measurement_unit(category: str) -> str:
    """Default pricing unit for a hard cost category."""
    if category in _SQFT_CATEGORIES:
        return "sqft"
    if category in _APARTMENT_CATEGORIES:
        return "apartment"
    if category in _LINEAR_FEET_CATEGORIES:
        return "linear_feet"
    if category in _BUILDING_CATEGORIES:
        return "building"
    return "none"


def hard_cost_amount(
    measurement_unit: str,
    price_per_unit: Optional[float],
    units_count: Optional[float],
    amount: Optional[float] = None,
) -> Optional[float]:
    """
    Resolve a hard cost's total.

    Lump-sum rows keep their entered amount; measured rows are priced as
    price_per_unit x units_count and return None until both are known.
    """
    if measurement_unit not in MEASUREMENT_UNITS:
        raise InvalidScheduleError(f"Unknown measurement unit: {measurement_unit!r}")
    if measurement_unit == "none":
        return amount
    if price_per_unit is None or units_count is None:
        return None
    return price_per_unit * units_count
