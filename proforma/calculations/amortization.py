"""
Loan Amortization Calculations

Expands loan terms into funding, interest and principal lines,
matching Excel's PMT function for the level payment.

Two repayment modes are supported:
- amortizing: level monthly payment over the term
- interest_only: flat interest, principal repaid in one lump sum
"""

from typing import List, Dict
from dataclasses import dataclass
import enum

from proforma.calculations.timeline import HORIZON_MONTHS
from proforma.calculations.errors import InvalidLoanTermsError


class LoanMode(str, enum.Enum):
    """Loan repayment mode."""

    interest_only = "interest_only"
    amortizing = "amortizing"


@dataclass(frozen=True)
class LoanTerms:
    """Terms of a single loan, months as horizon offsets."""

    mode: LoanMode
    principal: float
    annual_rate_pct: float
    term_months: int
    funding_month: int
    first_payment_month: int

    @property
    def monthly_rate(self) -> float:
        return self.annual_rate_pct / 100 / 12


@dataclass
class LoanSchedule:
    """Monthly loan lines over the projection horizon."""

    funding: List[float]
    interest: List[float]
    principal: List[float]


def validate_loan_terms(
    terms: LoanTerms, horizon_months: int = HORIZON_MONTHS
) -> LoanTerms:
    """
    Check loan terms before building a schedule.

    Raises:
        InvalidLoanTermsError: For a non-positive principal or term, a
            negative rate, months outside the horizon, or a first payment
            before funding.
    """
    try:
        LoanMode(terms.mode)
    except ValueError:
        raise InvalidLoanTermsError(f"Unknown loan mode: {terms.mode!r}")
    if terms.principal <= 0:
        raise InvalidLoanTermsError("principal must be greater than 0")
    if terms.annual_rate_pct < 0:
        raise InvalidLoanTermsError("annual_rate_pct cannot be negative")
    if isinstance(terms.term_months, bool) or not isinstance(terms.term_months, int):
        raise InvalidLoanTermsError("term_months must be an integer")
    if terms.term_months <= 0:
        raise InvalidLoanTermsError("term_months must be greater than 0")
    for field in ("funding_month", "first_payment_month"):
        month = getattr(terms, field)
        if isinstance(month, bool) or not isinstance(month, int):
            raise InvalidLoanTermsError(f"{field} must be an integer month offset")
        if month < 0 or month >= horizon_months:
            raise InvalidLoanTermsError(
                f"{field} {month} is outside the projection horizon [0, {horizon_months - 1}]"
            )
    if terms.first_payment_month < terms.funding_month:
        raise InvalidLoanTermsError("first_payment_month cannot be before funding_month")
    return terms


def calculate_payment(
    principal: float, annual_rate: float, amortization_months: int
) -> float:
    """
    Calculate monthly loan payment.

    Matches Excel's PMT() function.

    Args:
        principal: Loan principal amount
        annual_rate: Annual interest rate as decimal (e.g., 0.05 for 5%)
        amortization_months: Total amortization period in months

    Returns:
        Monthly payment amount (positive number)
    """
    if principal <= 0:
        return 0.0
    if amortization_months <= 0:
        return 0.0

    monthly_rate = annual_rate / 12

    if monthly_rate == 0:
        return principal / amortization_months

    return monthly_rate * principal / (1 - (1 + monthly_rate) ** -amortization_months)


def _amortizing_rows(terms: LoanTerms) -> List[Dict]:
    rate = terms.monthly_rate
    payment = calculate_payment(terms.principal, terms.annual_rate_pct / 100, terms.term_months)
    balance = terms.principal
    rows = []

    for i in range(terms.term_months):
        interest = balance * rate
        principal_pmt = payment - interest
        # Final payment (or an overshoot) retires exactly what is left
        if principal_pmt > balance or i == terms.term_months - 1:
            principal_pmt = balance
        balance -= principal_pmt

        rows.append(
            {
                "month": terms.first_payment_month + i,
                "payment": interest + principal_pmt,
                "interest": interest,
                "principal": principal_pmt,
                "balance": max(0.0, balance),
            }
        )

        if balance <= 0:
            break

    return rows


def _interest_only_rows(terms: LoanTerms) -> List[Dict]:
    interest = terms.principal * terms.monthly_rate
    # The term runs from funding; principal is repaid with the last interest
    # payment, one month before funding_month + term_months.
    payoff_month = max(terms.first_payment_month, terms.funding_month + terms.term_months - 1)
    payoff_index = payoff_month - terms.first_payment_month
    rows = []

    for i in range(payoff_index + 1):
        principal_pmt = terms.principal if i == payoff_index else 0.0
        rows.append(
            {
                "month": terms.first_payment_month + i,
                "payment": interest + principal_pmt,
                "interest": interest,
                "principal": principal_pmt,
                "balance": 0.0 if i == payoff_index else terms.principal,
            }
        )

    return rows


def amortization_table(
    terms: LoanTerms, horizon_months: int = HORIZON_MONTHS
) -> List[Dict]:
    """
    Full-term repayment table (not truncated to the projection horizon).

    The horizon only bounds the funding and first payment months.

    Returns:
        Rows of month, payment, interest, principal and ending balance
    """
    validate_loan_terms(terms, horizon_months)
    if LoanMode(terms.mode) == LoanMode.interest_only:
        return _interest_only_rows(terms)
    return _amortizing_rows(terms)


def build_loan_schedule(
    terms: LoanTerms, horizon_months: int = HORIZON_MONTHS
) -> LoanSchedule:
    """
    Project a loan onto the horizon.

    Funding is a single +principal entry at funding_month; interest and
    principal payments past the horizon are dropped.
    """
    validate_loan_terms(terms, horizon_months)
    schedule = LoanSchedule(
        funding=[0.0] * horizon_months,
        interest=[0.0] * horizon_months,
        principal=[0.0] * horizon_months,
    )
    schedule.funding[terms.funding_month] = float(terms.principal)

    for row in amortization_table(terms, horizon_months):
        month = row["month"]
        if month >= horizon_months:
            break
        schedule.interest[month] += row["interest"]
        schedule.principal[month] += row["principal"]

    return schedule


def round_table(table: List[Dict]) -> List[Dict]:
    """Round money columns to cents for display."""
    return [
        {key: (value if key == "month" else round(value, 2)) for key, value in row.items()}
        for row in table
    ]


def loan_preview(terms: LoanTerms) -> Dict:
    """Monthly payment summary shown while a loan is being edited."""
    if LoanMode(terms.mode) == LoanMode.interest_only:
        monthly_interest = terms.principal * terms.monthly_rate
        return {
            "monthly_payment": monthly_interest,
            "monthly_interest": monthly_interest,
            "monthly_principal": 0.0,
        }

    return {
        "monthly_payment": calculate_payment(
            terms.principal, terms.annual_rate_pct / 100, terms.term_months
        ),
        "monthly_interest": None,
        "monthly_principal": None,
    }


def calculate_dscr(noi: float, debt_service: float) -> float:
    """
    Calculate Debt Service Coverage Ratio (DSCR).

    Args:
        noi: Net Operating Income for the period
        debt_service: Debt service for the period

    Returns:
        DSCR ratio
    """
    if debt_service == 0:
        return float("inf")
    return noi / debt_service


def calculate_loan_constant(
    principal: float, annual_rate: float, amortization_months: int
) -> float:
    """Calculate loan constant (annual debt service / loan amount)."""
    monthly_payment = calculate_payment(principal, annual_rate, amortization_months)
    annual_debt_service = monthly_payment * 12
    return annual_debt_service / principal if principal > 0 else 0.0
