"""
Carrying Cost Calculations

Normalizes interval-based recurring costs (property tax, management)
into monthly vectors, and validates stored carrying rows, which may
also describe loans.
"""

from typing import List, Dict, Optional, Union
from dataclasses import dataclass

from proforma.calculations.amortization import LoanMode, LoanTerms
from proforma.calculations.timeline import HORIZON_MONTHS
from proforma.calculations.errors import InvalidCarryingCostError

INTERVAL_MONTHS = {
    "monthly": 1,
    "quarterly": 3,
    "yearly": 12,
}

CARRYING_TYPES = ("loan", "property_tax", "management")
PROPERTY_TAX_PHASES = ("construction", "stabilized")
PROPERTY_TAX_PREFIX = "property_tax_"

DEFAULT_TITLES = {
    "loan": "Loan",
    "property_tax": "Property Tax",
    "management": "Management Fee",
}

PROPERTY_TAX_TITLES = {
    "construction": "Construction RE Tax",
    "stabilized": "Stabilized RE Tax",
}


@dataclass(frozen=True)
class CarryingCostEntry:
    """A recurring cost posted every interval between start and end month."""

    amount: float
    interval_unit: str = "monthly"
    start_month: int = 0
    end_month: Optional[int] = None
    carrying_type: str = "management"
    property_tax_phase: Optional[str] = None
    id: Optional[str] = None
    label: Optional[str] = None


@dataclass(frozen=True)
class CarryingLoan:
    """A loan row in the carrying costs section."""

    terms: LoanTerms
    id: Optional[str] = None
    label: Optional[str] = None


CarryingRow = Union[CarryingCostEntry, CarryingLoan]


def validate_carrying_entry(
    entry: CarryingCostEntry, horizon_months: int = HORIZON_MONTHS
) -> CarryingCostEntry:
    """Raise InvalidCarryingCostError for a bad interval or month span."""
    if entry.interval_unit not in INTERVAL_MONTHS:
        raise InvalidCarryingCostError(f"intervalUnit is invalid: {entry.interval_unit!r}")
    if entry.start_month < 0 or entry.start_month >= horizon_months:
        raise InvalidCarryingCostError(
            f"start_month {entry.start_month} is outside the projection horizon"
        )
    if entry.end_month is not None:
        if entry.end_month < 0 or entry.end_month >= horizon_months:
            raise InvalidCarryingCostError(
                f"end_month {entry.end_month} is outside the projection horizon"
            )
        if entry.end_month < entry.start_month:
            raise InvalidCarryingCostError("end_month cannot be before start_month")
    return entry


def expand_carrying(
    entry: CarryingCostEntry, horizon_months: int = HORIZON_MONTHS
) -> List[float]:
    """
    Expand a recurring cost into a monthly vector.

    The full amount posts on every occurrence; there is no proration at
    interval boundaries.
    """
    validate_carrying_entry(entry, horizon_months)
    values = [0.0] * horizon_months
    end_month = horizon_months - 1 if entry.end_month is None else entry.end_month
    step = INTERVAL_MONTHS[entry.interval_unit]

    for month in range(entry.start_month, end_month + 1, step):
        values[month] += entry.amount

    return values


def recurring_monthly_average(entry: CarryingCostEntry) -> float:
    """Average monthly cost of a recurring entry."""
    return (entry.amount or 0.0) / INTERVAL_MONTHS.get(entry.interval_unit, 1)


def turnover_management_entry(
    label: str,
    turnover_pct: float,
    unit_count: float,
    turnover_cost: float,
    start_month: Optional[int],
    id: Optional[str] = None,
) -> Optional[CarryingCostEntry]:
    """
    Monthly management cost implied by unit turnover.

    Annual cost is turnover_pct% of units times the per-unit turnover cost,
    posted monthly from leasing start. Returns None when there is no cost.
    """
    annual_cost = (turnover_pct or 0) / 100 * (unit_count or 0) * (turnover_cost or 0)
    if not annual_cost:
        return None
    return CarryingCostEntry(
        amount=annual_cost / 12,
        interval_unit="monthly",
        start_month=start_month or 0,
        carrying_type="management",
        id=id,
        label=label,
    )


# === Stored row normalization ===


def encode_property_tax_group(phase: Optional[str]) -> str:
    """Cost group string that stores a property tax row's phase."""
    if phase in PROPERTY_TAX_PHASES:
        return f"{PROPERTY_TAX_PREFIX}{phase}"
    return "property_tax"


def decode_property_tax_phase(cost_group: Optional[str]) -> Optional[str]:
    if not cost_group or not cost_group.startswith(PROPERTY_TAX_PREFIX):
        return None
    phase = cost_group[len(PROPERTY_TAX_PREFIX):]
    return phase if phase in PROPERTY_TAX_PHASES else None


def default_title(carrying_type: str, property_tax_phase: Optional[str] = None) -> str:
    if carrying_type == "property_tax" and property_tax_phase in PROPERTY_TAX_TITLES:
        return PROPERTY_TAX_TITLES[property_tax_phase]
    return DEFAULT_TITLES.get(carrying_type, "Carrying Cost")


def _number(body: Dict, field: str, required: bool = True) -> Optional[float]:
    value = body.get(field)
    if value is None or value == "":
        if required:
            raise InvalidCarryingCostError(f"{field} is required")
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise InvalidCarryingCostError(f"{field} is invalid")


def _integer(body: Dict, field: str, required: bool = True) -> Optional[int]:
    number = _number(body, field, required)
    return None if number is None else int(number)


def normalize_carrying_row(body: Dict) -> CarryingRow:
    """
    Validate a stored carrying row and build its engine value.

    Raises:
        InvalidCarryingCostError: With the first problem found
    """
    carrying_type = (body.get("carrying_type") or body.get("type") or "").lower()
    if carrying_type not in CARRYING_TYPES:
        raise InvalidCarryingCostError("carryingType is invalid")

    phase = None
    if carrying_type == "property_tax":
        phase = (body.get("property_tax_phase") or body.get("phase") or "").lower()
        if not phase:
            phase = decode_property_tax_phase(body.get("cost_group"))
        if phase not in PROPERTY_TAX_PHASES:
            raise InvalidCarryingCostError("taxPhase is required for property tax rows")

    label = (body.get("cost_name") or "").strip() or default_title(carrying_type, phase)

    if carrying_type == "loan":
        try:
            mode = LoanMode((body.get("loan_mode") or "").lower())
        except ValueError:
            raise InvalidCarryingCostError("loanMode is invalid")
        term_months = _integer(body, "loan_term_months")
        if term_months <= 0:
            raise InvalidCarryingCostError("loanTermMonths must be greater than 0")
        funding_month = _integer(body, "funding_month")
        repayment_start = _integer(body, "repayment_start_month")
        if repayment_start < funding_month:
            raise InvalidCarryingCostError("repaymentStartMonth cannot be before fundingMonth")
        terms = LoanTerms(
            mode=mode,
            principal=_number(body, "loan_amount"),
            annual_rate_pct=_number(body, "interest_rate_pct"),
            term_months=term_months,
            funding_month=funding_month,
            first_payment_month=repayment_start,
        )
        return CarryingLoan(terms=terms, id=body.get("id"), label=label)

    start_month = _integer(body, "start_month")
    end_month = _integer(body, "end_month", required=False)
    if end_month is not None and end_month < start_month:
        raise InvalidCarryingCostError("endMonth cannot be before startMonth")

    interval_unit = (body.get("interval_unit") or "monthly").lower()
    if interval_unit not in INTERVAL_MONTHS:
        raise InvalidCarryingCostError("intervalUnit is invalid")

    return CarryingCostEntry(
        amount=_number(body, "amount"),
        interval_unit=interval_unit,
        start_month=start_month,
        end_month=end_month,
        carrying_type=carrying_type,
        property_tax_phase=phase,
        id=body.get("id"),
        label=label,
    )
