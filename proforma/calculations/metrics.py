"""
Project Metrics

Stabilized NOI, construction loan sizing, loan-to-cost and cap rate,
plus return metrics over the proforma's Total row.
"""

from typing import Dict, Optional, Sequence

from proforma.calculations.carrying import CarryingCostEntry, recurring_monthly_average
from proforma.calculations.cashflow import CashflowGrid
from proforma.calculations.irr import (
    calculate_irr,
    calculate_multiple,
    calculate_profit,
    monthly_to_annual_irr,
)
from proforma.calculations.revenue import RevenueLine


def _monthly_cost(entries: Sequence[CarryingCostEntry], carrying_type: str,
                  phase: Optional[str] = None) -> float:
    return sum(
        recurring_monthly_average(entry)
        for entry in entries
        if entry.carrying_type == carrying_type
        and (phase is None or entry.property_tax_phase == phase)
    )


def calculate_stabilized_noi(
    revenue_lines: Sequence[RevenueLine],
    carrying_entries: Sequence[CarryingCostEntry],
) -> Dict:
    """
    Annual NOI once stabilized.

    Revenue is every line's net rent annualized; expenses are the
    stabilized-phase property tax and management rows, annualized from
    their monthly average.
    """
    annual_revenue = sum(line.net_rent for line in revenue_lines) * 12
    stabilized_tax = _monthly_cost(carrying_entries, "property_tax", "stabilized") * 12
    management = _monthly_cost(carrying_entries, "management") * 12

    return {
        "annual_revenue": annual_revenue,
        "stabilized_tax_annual": stabilized_tax,
        "management_annual": management,
        "noi": annual_revenue - stabilized_tax - management,
    }


def size_construction_loan(
    purchase_price: float,
    hard_soft_total: float,
    gp_equity: float,
    construction_tax_monthly: float,
    construction_period_months: int,
    annual_rate_pct: float,
) -> Dict:
    """
    Size the construction loan.

    The loan covers purchase and build costs not funded by GP equity,
    plus real-estate tax over the construction period, grossed up for
    simple interest accrued over that period.
    """
    period = max(0, int(construction_period_months))
    loan_base = (
        purchase_price
        + hard_soft_total
        - gp_equity
        + construction_tax_monthly * period
    )
    interest_accrued = loan_base * (annual_rate_pct / 100) * (period / 12)
    loan_amount = max(0.0, loan_base + interest_accrued)
    capitalization = loan_amount + gp_equity

    return {
        "loan_base": loan_base,
        "interest_accrued": interest_accrued,
        "loan_amount": loan_amount,
        "loan_to_cost": loan_amount / capitalization if capitalization else 0.0,
    }


def calculate_cap_rate(noi: float, loan_amount: float, gp_equity: float) -> float:
    """NOI over total capitalization (loan plus GP equity)."""
    capitalization = loan_amount + gp_equity
    return noi / capitalization if capitalization else 0.0


def calculate_grid_returns(grid: CashflowGrid) -> Dict:
    """
    Return metrics over the grid's Total row.

    IRR and multiple are None when the row has no investment or no
    return to measure.
    """
    cash_flows = grid.total
    metrics = {
        "profit": calculate_profit(cash_flows),
        "monthly_irr": None,
        "annual_irr": None,
        "multiple": None,
    }

    try:
        monthly_irr = calculate_irr(cash_flows)
        metrics["monthly_irr"] = monthly_irr
        metrics["annual_irr"] = monthly_to_annual_irr(monthly_irr)
    except ValueError:
        pass  # No sign change, or no root in range

    try:
        metrics["multiple"] = calculate_multiple(cash_flows)
    except ValueError:
        pass  # No outflows

    return metrics


def calculate_project_metrics(
    revenue_lines: Sequence[RevenueLine],
    carrying_entries: Sequence[CarryingCostEntry],
    purchase_price: float,
    hard_soft_total: float,
    gp_equity: float,
    construction_period_months: int,
    annual_rate_pct: float,
) -> Dict:
    """Headline metrics shown on the project's metrics tab."""
    noi = calculate_stabilized_noi(revenue_lines, carrying_entries)
    loan = size_construction_loan(
        purchase_price=purchase_price,
        hard_soft_total=hard_soft_total,
        gp_equity=gp_equity,
        construction_tax_monthly=_monthly_cost(carrying_entries, "property_tax", "construction"),
        construction_period_months=construction_period_months,
        annual_rate_pct=annual_rate_pct,
    )
    return {
        **noi,
        **loan,
        "cap_rate": calculate_cap_rate(noi["noi"], loan["loan_amount"], gp_equity),
    }
