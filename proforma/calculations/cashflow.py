"""
Cash Flow Calculations

Builds the monthly proforma grid for a project.

Every income and cost row is expanded into a monthly vector, grouped into
categories, and summed into the grid:
1. Revenues - ramped rental income and one-time GP contributions
2. Soft Costs - scheduled soft cost rows
3. Hard Costs - scheduled hard cost rows
4. Carrying Costs - recurring costs plus loan funding / interest / principal
5. Total - revenues minus the three expense categories
6. Balance - running sum of Total

Expense categories hold positive costs. A loan's funding is booked as a
negative cost in Carrying Costs so that it adds to Total.
"""

from typing import List, Dict, Optional, Sequence
from dataclasses import dataclass, field
from datetime import date

import numpy as np

from proforma.calculations.amortization import build_loan_schedule
from proforma.calculations.timeline import HORIZON_MONTHS, Timeline, build_month_headers
from proforma.calculations.carrying import CarryingCostEntry, CarryingLoan, CarryingRow, expand_carrying
from proforma.calculations.revenue import RevenueLine, build_ramped_revenue
from proforma.calculations.schedules import ScheduledAmountEntry, expand

# Line items whose values never exceed this are left out of the drill-down
MAGNITUDE_THRESHOLD = 0.0001


@dataclass
class LineItem:
    """One row of the drill-down under a category."""

    id: str
    label: str
    values: List[float]


@dataclass
class CategorySeries:
    """A grid category and the line items that sum to it."""

    id: str
    label: str
    type: str
    line_items: List[LineItem] = field(default_factory=list)
    horizon_months: int = HORIZON_MONTHS

    @property
    def totals(self) -> List[float]:
        if not self.line_items:
            return [0.0] * self.horizon_months
        return np.sum([item.values for item in self.line_items], axis=0).tolist()


@dataclass
class ProjectInputs:
    """Everything needed to compute a project's proforma."""

    timeline: Timeline
    revenue_lines: Sequence[RevenueLine] = ()
    contributions: Sequence[ScheduledAmountEntry] = ()
    soft_costs: Sequence[ScheduledAmountEntry] = ()
    hard_costs: Sequence[ScheduledAmountEntry] = ()
    carrying_rows: Sequence[CarryingRow] = ()
    horizon_months: int = HORIZON_MONTHS


@dataclass
class CashflowGrid:
    """The aggregated monthly proforma."""

    months: List[Dict]
    categories: List[CategorySeries]
    total: List[float]
    balance: List[float]

    def category(self, category_id: str) -> CategorySeries:
        for category in self.categories:
            if category.id == category_id:
                return category
        raise KeyError(category_id)

    def to_rows(self) -> List[Dict]:
        """Grid rows as plain dicts, money rounded to cents."""
        rows = [
            {
                "id": category.id,
                "label": category.label,
                "type": category.type,
                "values": _round_values(category.totals),
                "line_items": [
                    {"id": item.id, "label": item.label, "values": _round_values(item.values)}
                    for item in category.line_items
                ],
            }
            for category in self.categories
        ]
        rows.append(
            {"id": "total", "label": "Total", "type": "total",
             "values": _round_values(self.total), "line_items": []}
        )
        rows.append(
            {"id": "balance", "label": "Balance", "type": "total",
             "values": _round_values(self.balance), "line_items": []}
        )
        return rows


def _round_values(values: Sequence[float]) -> List[float]:
    return [round(value, 2) for value in values]


def _has_magnitude(values: Sequence[float]) -> bool:
    return any(abs(value) > MAGNITUDE_THRESHOLD for value in values)


# === Category builders ===


def build_revenue_series(
    revenue_lines: Sequence[RevenueLine],
    timeline: Timeline,
    contributions: Sequence[ScheduledAmountEntry] = (),
    horizon_months: int = HORIZON_MONTHS,
) -> CategorySeries:
    """Revenue category: ramped income lines followed by GP contributions."""
    line_items = [
        LineItem(
            id=line.id or f"revenue-{index}",
            label=line.label or f"Revenue {index + 1}",
            values=build_ramped_revenue(line, timeline, horizon_months),
        )
        for index, line in enumerate(revenue_lines)
    ]
    line_items.extend(
        LineItem(
            id=entry.id or f"contribution-{index}",
            label=entry.label or "GP Contribution",
            values=expand(entry, horizon_months),
        )
        for index, entry in enumerate(contributions)
    )
    return CategorySeries(
        id="revenues",
        label="Revenues",
        type="revenue",
        line_items=line_items,
        horizon_months=horizon_months,
    )


def build_expense_series(
    entries: Sequence[ScheduledAmountEntry],
    category_id: str,
    label: str,
    horizon_months: int = HORIZON_MONTHS,
) -> CategorySeries:
    """Expense category from scheduled cost rows."""
    line_items = [
        LineItem(
            id=entry.id or f"{category_id}-{index}",
            label=entry.label or f"{label} {index + 1}",
            values=expand(entry, horizon_months),
        )
        for index, entry in enumerate(entries)
    ]
    return CategorySeries(
        id=category_id,
        label=label,
        type="expense",
        line_items=line_items,
        horizon_months=horizon_months,
    )


def build_carrying_series(
    rows: Sequence[CarryingRow], horizon_months: int = HORIZON_MONTHS
) -> CategorySeries:
    """
    Carrying cost category.

    Each loan contributes up to three line items (funding, interest,
    principal); lines with no magnitude are dropped.
    """
    line_items: List[LineItem] = []

    for index, row in enumerate(rows):
        if isinstance(row, CarryingLoan):
            loan_id = row.id or f"loan-{index}"
            loan_label = row.label or "Loan"
            schedule = build_loan_schedule(row.terms, horizon_months)
            candidates = [
                LineItem(f"{loan_id}-funding", f"{loan_label} • Funding",
                         [-value for value in schedule.funding]),
                LineItem(f"{loan_id}-interest", f"{loan_label} • Interest", schedule.interest),
                LineItem(f"{loan_id}-principal", f"{loan_label} • Principal", schedule.principal),
            ]
            line_items.extend(item for item in candidates if _has_magnitude(item.values))
        elif isinstance(row, CarryingCostEntry):
            values = expand_carrying(row, horizon_months)
            if _has_magnitude(values):
                line_items.append(
                    LineItem(row.id or f"carrying-{index}", row.label or "Carrying Cost", values)
                )
        else:
            raise TypeError(f"Unsupported carrying row: {type(row).__name__}")

    return CategorySeries(
        id="carrying",
        label="Carrying Costs",
        type="expense",
        line_items=line_items,
        horizon_months=horizon_months,
    )


# === Aggregation ===


def aggregate(
    revenue: CategorySeries,
    expenses: Sequence[CategorySeries],
    anchor_date: Optional[date] = None,
    horizon_months: int = HORIZON_MONTHS,
) -> CashflowGrid:
    """
    Sum categories into the grid.

    Total is revenue minus every expense category; Balance is the running
    sum of Total. Empty categories contribute zeros.
    """
    revenue_totals = np.array(revenue.totals, dtype=float)
    expense_totals = np.zeros(horizon_months)
    for category in expenses:
        expense_totals += np.array(category.totals, dtype=float)

    total = revenue_totals - expense_totals
    balance = np.cumsum(total)

    return CashflowGrid(
        months=build_month_headers(anchor_date, horizon_months) if anchor_date else [],
        categories=[revenue, *expenses],
        total=total.tolist(),
        balance=balance.tolist(),
    )


def build_proforma(project: ProjectInputs) -> CashflowGrid:
    """
    Compute the full grid for a project.

    Pure function of its inputs; recomputing from the same rows yields
    the same grid.
    """
    horizon = project.horizon_months
    timeline = project.timeline.validate(horizon)

    revenue = build_revenue_series(
        project.revenue_lines, timeline, project.contributions, horizon
    )
    soft = build_expense_series(project.soft_costs, "soft", "Soft Costs", horizon)
    hard = build_expense_series(project.hard_costs, "hard", "Hard Costs", horizon)
    carrying = build_carrying_series(project.carrying_rows, horizon)

    return aggregate(revenue, [soft, hard, carrying], timeline.anchor_date, horizon)


def annualize_grid(grid: CashflowGrid) -> List[Dict]:
    """
    Roll the monthly grid up into projection years (months 1-12 = year 1).
    """
    annual_data = []
    series = {category.id: category.totals for category in grid.categories}
    series["total"] = grid.total

    month_count = len(grid.total)
    for start in range(0, month_count, 12):
        year_totals = {"year": start // 12 + 1}
        for key, values in series.items():
            year_totals[key] = round(float(sum(values[start:start + 12])), 2)
        year_totals["ending_balance"] = round(grid.balance[min(start + 11, month_count - 1)], 2)
        annual_data.append(year_totals)

    return annual_data
