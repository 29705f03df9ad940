"""
Financial calculation API endpoints.

These endpoints accept project rows and return calculated results.
Nothing is stored; every call recomputes from its inputs.
"""

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel
from typing import Any, Dict, List, Optional, Union
from datetime import date

from proforma.config import get_settings
from proforma.calculations import amortization, carrying, cashflow, metrics, revenue, schedules, timeline, waterfall
from proforma.calculations.errors import InvalidEventError, InvalidScheduleError

router = APIRouter()
settings = get_settings()


# === Shared row schemas ===


class TimelineInput(BaseModel):
    """Project dates, or explicit month offsets from the closing month."""

    closing_date: date
    leasing_start_date: Optional[date] = None
    stabilized_date: Optional[date] = None

    # Explicit offsets win over dates when given
    leasing_start_month: Optional[int] = None
    stabilized_month: Optional[int] = None


class ScheduledAmountInput(BaseModel):
    """Cost or contribution row in the flat shape the forms submit."""

    id: Optional[str] = None
    label: Optional[str] = None
    total_amount: Optional[float] = None

    # Schedule
    payment_mode: str = "single"
    payment_month: Optional[int] = None
    start_month: Optional[int] = None
    end_month: Optional[int] = None
    month_list: Union[List[int], str, None] = None
    month_percentages: Union[List[float], str, None] = None

    # Hard cost pricing
    category: Optional[str] = None
    measurement_unit: Optional[str] = None
    price_per_unit: Optional[float] = None
    units_count: Optional[float] = None


class RevenueLineInput(BaseModel):
    """Income row: a flat monthly amount, or rent per unit times units."""

    id: Optional[str] = None
    label: Optional[str] = None
    base_monthly_amount: Optional[float] = None
    rent_per_unit: Optional[float] = None
    unit_count: Optional[float] = None
    vacancy_pct: Optional[float] = None
    start_month: Optional[int] = None

    # Apartment turnover, booked as a management carrying cost
    turnover_pct: Optional[float] = None
    turnover_cost: Optional[float] = None


class ContributionInput(BaseModel):
    """One-time GP contribution."""

    id: Optional[str] = None
    label: Optional[str] = None
    amount: float
    month: int


class ProformaInput(BaseModel):
    """Input for the full proforma grid."""

    timeline: TimelineInput
    revenue_lines: List[RevenueLineInput] = []
    contributions: List[ContributionInput] = []
    soft_costs: List[ScheduledAmountInput] = []
    hard_costs: List[ScheduledAmountInput] = []
    carrying_costs: List[Dict[str, Any]] = []
    horizon_months: Optional[int] = None


def _horizon(value: Optional[int]) -> int:
    return value or settings.horizon_months


def to_timeline(inputs: TimelineInput, horizon_months: int) -> timeline.Timeline:
    if inputs.leasing_start_month is not None:
        stabilized = inputs.stabilized_month
        if stabilized is None:
            stabilized = inputs.leasing_start_month + timeline.DEFAULT_STABILIZATION_LAG_MONTHS
        return timeline.Timeline(
            anchor_date=timeline.anchor_from_closing_date(inputs.closing_date),
            leasing_start_month=inputs.leasing_start_month,
            stabilized_month=stabilized,
        ).validate(horizon_months)

    return timeline.timeline_from_dates(
        inputs.closing_date,
        inputs.leasing_start_date,
        inputs.stabilized_date,
        horizon_months,
    )


def to_scheduled_entry(row: ScheduledAmountInput) -> schedules.ScheduledAmountEntry:
    total = row.total_amount
    if row.measurement_unit or row.price_per_unit is not None:
        unit = row.measurement_unit or schedules.default_measurement_unit(row.category or "")
        total = schedules.hard_cost_amount(unit, row.price_per_unit, row.units_count, total)
    if total is None:
        raise InvalidScheduleError(f"Cost row {row.label or row.id!r} has no amount")
    return schedules.ScheduledAmountEntry(
        total_amount=total,
        schedule=schedules.parse_schedule(row.model_dump()),
        id=row.id,
        label=row.label,
    )


def to_revenue_line(row: RevenueLineInput) -> revenue.RevenueLine:
    vacancy = settings.default_vacancy_pct if row.vacancy_pct is None else row.vacancy_pct
    if row.base_monthly_amount is not None:
        return revenue.RevenueLine(
            base_monthly_amount=row.base_monthly_amount,
            vacancy_pct=vacancy,
            start_month=row.start_month,
            id=row.id,
            label=row.label,
        )
    return revenue.unit_revenue_line(
        row.rent_per_unit, row.unit_count, vacancy, row.start_month, row.id, row.label
    )


def to_project_inputs(inputs: ProformaInput) -> cashflow.ProjectInputs:
    """Convert request rows into engine values."""
    horizon = _horizon(inputs.horizon_months)
    project_timeline = to_timeline(inputs.timeline, horizon)

    revenue_lines = [to_revenue_line(row) for row in inputs.revenue_lines]
    carrying_rows = [carrying.normalize_carrying_row(row) for row in inputs.carrying_costs]

    for row, line in zip(inputs.revenue_lines, revenue_lines):
        turnover = carrying.turnover_management_entry(
            label=f"{line.label or 'Revenue'} Turnover",
            turnover_pct=row.turnover_pct,
            unit_count=row.unit_count,
            turnover_cost=row.turnover_cost,
            start_month=revenue.effective_start_month(line, project_timeline),
            id=f"{line.id}-turnover" if line.id else None,
        )
        if turnover is not None:
            carrying_rows.append(turnover)

    contributions = [
        schedules.ScheduledAmountEntry(
            total_amount=row.amount,
            schedule=schedules.Single(month=row.month),
            id=row.id,
            label=row.label,
        )
        for row in inputs.contributions
    ]

    return cashflow.ProjectInputs(
        timeline=project_timeline,
        revenue_lines=revenue_lines,
        contributions=contributions,
        soft_costs=[to_scheduled_entry(row) for row in inputs.soft_costs],
        hard_costs=[to_scheduled_entry(row) for row in inputs.hard_costs],
        carrying_rows=carrying_rows,
        horizon_months=horizon,
    )


# === Proforma ===


class ProformaResponse(BaseModel):
    """Grid rows with drill-down, plus annual roll-up and returns."""

    months: List[dict]
    rows: List[dict]
    annual: List[dict]
    returns: dict


@router.post("/proforma", response_model=ProformaResponse)
async def calculate_proforma(inputs: ProformaInput):
    """Calculate the monthly proforma grid."""
    try:
        grid = cashflow.build_proforma(to_project_inputs(inputs))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return ProformaResponse(
        months=grid.months,
        rows=grid.to_rows(),
        annual=cashflow.annualize_grid(grid),
        returns=metrics.calculate_grid_returns(grid),
    )


# === Single schedule ===


class ScheduleInput(ScheduledAmountInput):
    """Input for expanding one scheduled row."""

    horizon_months: Optional[int] = None


@router.post("/schedule")
async def calculate_schedule(inputs: ScheduleInput):
    """Expand one cost row into its monthly vector."""
    try:
        entry = to_scheduled_entry(inputs)
        values = schedules.expand(
            entry, _horizon(inputs.horizon_months), settings.percentage_tolerance
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "description": schedules.describe_schedule(entry.schedule),
        "total": round(sum(values), 2),
        "values": [round(value, 2) for value in values],
    }


# === Amortization ===


class AmortizationInput(BaseModel):
    """Input for a loan amortization table."""

    mode: amortization.LoanMode
    principal: float
    annual_rate_pct: float
    term_months: int
    funding_month: int = 0
    first_payment_month: int = 1
    horizon_months: Optional[int] = None


@router.post("/amortization")
async def calculate_amortization(inputs: AmortizationInput):
    """Generate the full-term loan amortization table."""
    terms = amortization.LoanTerms(
        mode=inputs.mode,
        principal=inputs.principal,
        annual_rate_pct=inputs.annual_rate_pct,
        term_months=inputs.term_months,
        funding_month=inputs.funding_month,
        first_payment_month=inputs.first_payment_month,
    )
    try:
        table = amortization.amortization_table(terms, _horizon(inputs.horizon_months))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "schedule": amortization.round_table(table),
        "total_interest": round(sum(row["interest"] for row in table), 2),
        "total_principal": round(sum(row["principal"] for row in table), 2),
        "preview": amortization.loan_preview(terms),
    }


# === Waterfall ===


class InvestorInput(BaseModel):
    """Investor terms and, optionally, balances carried in."""

    investor_id: str
    capital_contributed: float
    role: str = "lp"
    holding_pct: Optional[float] = None
    outstanding_capital: Optional[float] = None
    accrued_preferred_return: float = 0.0


class EventInput(BaseModel):
    """Capital-return event."""

    source: waterfall.EventSource
    amount: float
    month: int


class WaterfallInput(BaseModel):
    """Input for running events through the waterfall."""

    investors: List[InvestorInput]
    events: List[EventInput]
    noi_mode: waterfall.NoiMode
    total_project_cost: Optional[float] = None
    preferred_return_rate: Optional[float] = None
    accrual_period: Optional[waterfall.AccrualPeriod] = None
    as_of_month: int = 0
    horizon_months: Optional[int] = None


def _holdings(inputs: WaterfallInput) -> Dict[str, float]:
    holdings = {
        investor.investor_id: investor.holding_pct
        for investor in inputs.investors
        if investor.holding_pct is not None
    }
    if len(holdings) == len(inputs.investors):
        return holdings
    if not inputs.total_project_cost:
        raise InvalidEventError(
            "holding_pct is required for every investor unless total_project_cost is given"
        )
    return waterfall.derive_holding_percentages(
        {investor.investor_id: investor.capital_contributed for investor in inputs.investors},
        inputs.total_project_cost,
        [investor.investor_id for investor in inputs.investors if investor.role == "gp"],
    )


@router.post("/waterfall")
async def calculate_waterfall(inputs: WaterfallInput):
    """Run capital-return events through the distribution waterfall."""
    try:
        holdings = _holdings(inputs)
        state = waterfall.WaterfallState(
            investors=tuple(
                waterfall.InvestorState(
                    investor_id=investor.investor_id,
                    capital_contributed=investor.capital_contributed,
                    holding_pct=holdings[investor.investor_id],
                    outstanding_capital=(
                        investor.capital_contributed
                        if investor.outstanding_capital is None
                        else investor.outstanding_capital
                    ),
                    accrued_preferred_return=investor.accrued_preferred_return,
                )
                for investor in inputs.investors
            ),
            as_of_month=inputs.as_of_month,
        )
        distributions, state = waterfall.run_waterfall(
            state,
            [waterfall.CapitalReturnEvent(event.source, event.amount, event.month)
             for event in inputs.events],
            noi_mode=inputs.noi_mode,
            preferred_rate=(
                settings.preferred_return_rate
                if inputs.preferred_return_rate is None
                else inputs.preferred_return_rate
            ),
            accrual_period=inputs.accrual_period or waterfall.AccrualPeriod(settings.accrual_period),
            horizon_months=_horizon(inputs.horizon_months),
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "distributions": [distribution.to_dict() for distribution in distributions],
        "summary": waterfall.summarize_distributions(distributions),
        "investors": [
            {
                "investor_id": investor.investor_id,
                "holding_pct": investor.holding_pct,
                "outstanding_capital": investor.outstanding_capital,
                "accrued_preferred_return": investor.accrued_preferred_return,
            }
            for investor in state.investors
        ],
        "as_of_month": state.as_of_month,
    }


# === Metrics ===


class MetricsInput(BaseModel):
    """Input for headline project metrics."""

    revenue_lines: List[RevenueLineInput] = []
    carrying_costs: List[Dict[str, Any]] = []
    purchase_price: float = 0.0
    hard_soft_total: float = 0.0
    gp_equity: float = 0.0
    construction_period_months: int = 0
    annual_rate_pct: float = 0.0


@router.post("/metrics")
async def calculate_metrics(inputs: MetricsInput):
    """Stabilized NOI, construction loan sizing, LTC and cap rate."""
    try:
        rows = [carrying.normalize_carrying_row(row) for row in inputs.carrying_costs]
        return metrics.calculate_project_metrics(
            revenue_lines=[to_revenue_line(row) for row in inputs.revenue_lines],
            carrying_entries=[row for row in rows if isinstance(row, carrying.CarryingCostEntry)],
            purchase_price=inputs.purchase_price,
            hard_soft_total=inputs.hard_soft_total,
            gp_equity=inputs.gp_equity,
            construction_period_months=inputs.construction_period_months,
            annual_rate_pct=inputs.annual_rate_pct,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
