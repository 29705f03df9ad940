"""
Waterfall Distribution Calculations

Allocates capital-return events (refinance, sale, NOI) across investors.

Structure:
1. Preferred Return - accrued, unpaid pref paid pro-rata by capital contributed
2. Return of Capital - outstanding capital paid pro-rata by capital contributed
3. Profit Split - anything left paid pro-rata by holding percentage

NOI events follow the project's NoiMode: in distribution mode they skip
steps 1-2 and are paid entirely by holding percentage; in capital-return
mode they run the full waterfall.

Investor balances are the only mutable state in the engine. They live in
an explicit WaterfallState value that every step takes and returns, so
the caller controls ordering and persistence.

All allocations are made in whole cents. Leftover cents from pro-rata
rounding go to the largest holder, so payouts always sum to the event
amount exactly.
"""

from typing import List, Dict, Optional, Sequence, Tuple
from dataclasses import dataclass, replace
import enum
import logging
import math
from fractions import Fraction

from proforma.calculations.errors import InvalidEventError, OutOfOrderEventError
from proforma.calculations.timeline import HORIZON_MONTHS

logger = logging.getLogger(__name__)


class EventSource(str, enum.Enum):
    """What produced the cash being distributed."""

    refinance = "refinance"
    sale = "sale"
    noi = "noi"


class NoiMode(str, enum.Enum):
    """How NOI events are distributed."""

    distribution = "distribution"
    capital_return = "capital_return"


class AccrualPeriod(str, enum.Enum):
    """How often preferred return accrues."""

    monthly = "monthly"
    annual = "annual"


@dataclass(frozen=True)
class InvestorState:
    """An investor's capital terms and running balances."""

    investor_id: str
    capital_contributed: float
    holding_pct: float
    outstanding_capital: float
    accrued_preferred_return: float = 0.0

    @classmethod
    def new(
        cls, investor_id: str, capital_contributed: float, holding_pct: float
    ) -> "InvestorState":
        """Investor with all capital outstanding and no accrued pref."""
        return cls(
            investor_id=investor_id,
            capital_contributed=capital_contributed,
            holding_pct=holding_pct,
            outstanding_capital=capital_contributed,
        )


@dataclass(frozen=True)
class WaterfallState:
    """
    Running balances for a project's investors.

    as_of_month is the last month preferred return has been accrued
    through and last_event_month the month of the last applied event;
    events earlier than either cannot be applied.
    """

    investors: Tuple[InvestorState, ...]
    as_of_month: int = 0
    last_event_month: Optional[int] = None

    def investor(self, investor_id: str) -> InvestorState:
        for investor in self.investors:
            if investor.investor_id == investor_id:
                return investor
        raise KeyError(investor_id)

    @property
    def total_capital(self) -> float:
        return sum(investor.capital_contributed for investor in self.investors)

    @property
    def total_outstanding_capital(self) -> float:
        return sum(investor.outstanding_capital for investor in self.investors)

    @property
    def total_accrued_preferred(self) -> float:
        return sum(investor.accrued_preferred_return for investor in self.investors)


@dataclass(frozen=True)
class CapitalReturnEvent:
    """Cash to distribute in a given month."""

    source: EventSource
    amount: float
    month: int


@dataclass(frozen=True)
class InvestorPayout:
    """One investor's share of an event."""

    investor_id: str
    preferred_paid: float = 0.0
    principal_paid: float = 0.0
    profit_paid: float = 0.0

    @property
    def total(self) -> float:
        return round(self.preferred_paid + self.principal_paid + self.profit_paid, 2)


@dataclass(frozen=True)
class Distribution:
    """Result of running one event through the waterfall."""

    event: CapitalReturnEvent
    payouts: Tuple[InvestorPayout, ...]

    @property
    def total(self) -> float:
        cents = sum(_to_cents(payout.total) for payout in self.payouts)
        return cents / 100

    def payout(self, investor_id: str) -> InvestorPayout:
        for payout in self.payouts:
            if payout.investor_id == investor_id:
                return payout
        raise KeyError(investor_id)

    def to_dict(self) -> Dict:
        return {
            "source": EventSource(self.event.source).value,
            "amount": self.event.amount,
            "month": self.event.month,
            "payouts": [
                {
                    "investor_id": payout.investor_id,
                    "preferred_paid": payout.preferred_paid,
                    "principal_paid": payout.principal_paid,
                    "profit_paid": payout.profit_paid,
                    "total": payout.total,
                }
                for payout in self.payouts
            ],
        }


# === Cent allocation ===


def _to_cents(amount: float) -> int:
    return int(round(amount * 100))


def allocate_cents(
    amount_cents: int,
    weights: Sequence[float],
    caps: Optional[Sequence[int]] = None,
) -> List[int]:
    """
    Split whole cents pro-rata by weight, respecting per-recipient caps.

    Shares are floored; whatever a capped recipient cannot take is
    re-spread over the others. Leftover cents go to the largest weight
    with room, then the next largest.

    Returns:
        Cents per recipient; the sum is less than amount_cents only when
        every recipient with weight is at its cap.
    """
    # Fractions keep decimal weights like 33.3 exact
    weights = [Fraction(str(weight)) for weight in weights]
    allocated = [0] * len(weights)
    remaining = amount_cents

    def has_room(i: int) -> bool:
        return caps is None or allocated[i] < caps[i]

    active = [i for i, weight in enumerate(weights) if weight > 0 and has_room(i)]

    while remaining > 0 and active:
        weight_total = sum(weights[i] for i in active)
        progressed = 0
        for i in active:
            share = math.floor(remaining * weights[i] / weight_total)
            if caps is not None:
                share = min(share, caps[i] - allocated[i])
            allocated[i] += share
            progressed += share
        remaining -= progressed
        active = [i for i in active if has_room(i)]
        if progressed == 0:
            break

    for i in sorted(active, key=lambda i: (-weights[i], i)):
        if remaining <= 0:
            break
        room = remaining if caps is None else min(remaining, caps[i] - allocated[i])
        allocated[i] += room
        remaining -= room

    return allocated


# === Preferred return accrual ===


def accrue_preferred(
    state: WaterfallState,
    annual_rate: float,
    period: AccrualPeriod = AccrualPeriod.monthly,
) -> WaterfallState:
    """
    Accrue one period of preferred return on outstanding capital.

    Monthly periods accrue outstanding x rate / 12, annual periods
    outstanding x rate. Accrual is independent of payouts.
    """
    period_rate = annual_rate / 12 if AccrualPeriod(period) == AccrualPeriod.monthly else annual_rate
    investors = tuple(
        replace(
            investor,
            accrued_preferred_return=round(
                investor.accrued_preferred_return + investor.outstanding_capital * period_rate, 2
            ),
        )
        for investor in state.investors
    )
    return replace(state, investors=investors)


def advance_to_month(
    state: WaterfallState,
    month: int,
    annual_rate: float,
    period: AccrualPeriod = AccrualPeriod.monthly,
    horizon_months: int = HORIZON_MONTHS,
) -> WaterfallState:
    """
    Accrue preferred return for every period between as_of_month and month.

    Monthly accrual runs once for each elapsed month; annual accrual runs
    on each twelve-month anniversary of month 0.
    """
    _check_month(month, horizon_months)
    if month < state.as_of_month:
        raise OutOfOrderEventError(
            f"Cannot move waterfall back from month {state.as_of_month} to {month}"
        )

    for current in range(state.as_of_month + 1, month + 1):
        if AccrualPeriod(period) == AccrualPeriod.monthly or current % 12 == 0:
            state = accrue_preferred(state, annual_rate, period)

    return replace(state, as_of_month=month)


# === Event processing ===


def _check_month(month: int, horizon_months: int) -> None:
    if month is None or not 0 <= month < horizon_months:
        raise InvalidEventError(
            f"Month {month} is outside the projection (0-{horizon_months - 1})"
        )


def validate_event(
    event: CapitalReturnEvent,
    state: WaterfallState,
    horizon_months: int = HORIZON_MONTHS,
) -> None:
    """Raise InvalidEventError for an event that cannot be distributed."""
    try:
        EventSource(event.source)
    except ValueError:
        raise InvalidEventError(f"Unknown event source: {event.source!r}")
    if event.amount is None or not math.isfinite(event.amount):
        raise InvalidEventError("Event amount must be a finite number")
    if event.amount <= 0 or _to_cents(event.amount) <= 0:
        raise InvalidEventError("Event amount must be greater than 0")
    _check_month(event.month, horizon_months)
    if not state.investors:
        raise InvalidEventError("No investors to distribute to")
    latest = state.as_of_month
    if state.last_event_month is not None:
        latest = max(latest, state.last_event_month)
    if event.month < latest:
        raise OutOfOrderEventError(
            f"Event in month {event.month} is before the last processed month {latest}"
        )


def apply_event(
    state: WaterfallState,
    event: CapitalReturnEvent,
    noi_mode: NoiMode,
    horizon_months: int = HORIZON_MONTHS,
) -> Tuple[Distribution, WaterfallState]:
    """
    Run one event through the waterfall.

    Args:
        state: Investor balances before the event
        event: Cash to distribute
        noi_mode: How NOI events are treated
        horizon_months: Events must fall in months 0 to horizon_months - 1

    Returns:
        The distribution and the investor balances after it

    Raises:
        InvalidEventError: For a non-positive or non-finite amount, a month
            outside the horizon, no investors, an event older than
            state.as_of_month, or profit left to split with no holding
            percentages
    """
    validate_event(event, state, horizon_months)
    investors = state.investors
    count = len(investors)
    remaining = _to_cents(event.amount)

    preferred = [0] * count
    principal = [0] * count

    skip_capital_steps = (
        EventSource(event.source) == EventSource.noi
        and NoiMode(noi_mode) == NoiMode.distribution
    )

    if not skip_capital_steps:
        capital_weights = [investor.capital_contributed for investor in investors]

        # === STEP 1: Preferred Return ===
        accrued = [_to_cents(investor.accrued_preferred_return) for investor in investors]
        pref_payment = min(remaining, sum(accrued))
        if pref_payment > 0:
            preferred = allocate_cents(pref_payment, capital_weights, accrued)
            remaining -= sum(preferred)

        # === STEP 2: Return of Capital ===
        outstanding = [_to_cents(investor.outstanding_capital) for investor in investors]
        capital_payment = min(remaining, sum(outstanding))
        if capital_payment > 0:
            principal = allocate_cents(capital_payment, capital_weights, outstanding)
            remaining -= sum(principal)

    # === STEP 3: Profit Split ===
    profit = [0] * count
    if remaining > 0:
        holding_weights = [investor.holding_pct for investor in investors]
        if not any(weight > 0 for weight in holding_weights):
            raise InvalidEventError("No holding percentages to split profit by")
        profit = allocate_cents(remaining, holding_weights)

    payouts = tuple(
        InvestorPayout(
            investor_id=investor.investor_id,
            preferred_paid=preferred[i] / 100,
            principal_paid=principal[i] / 100,
            profit_paid=profit[i] / 100,
        )
        for i, investor in enumerate(investors)
    )
    updated = tuple(
        replace(
            investor,
            accrued_preferred_return=(_to_cents(investor.accrued_preferred_return) - preferred[i]) / 100,
            outstanding_capital=(_to_cents(investor.outstanding_capital) - principal[i]) / 100,
        )
        for i, investor in enumerate(investors)
    )

    distribution = Distribution(event=event, payouts=payouts)
    logger.info(
        f"Applied {EventSource(event.source).value} event of {event.amount:.2f} "
        f"in month {event.month} across {count} investors"
    )
    return distribution, replace(state, investors=updated, last_event_month=event.month)


def run_waterfall(
    state: WaterfallState,
    events: Sequence[CapitalReturnEvent],
    noi_mode: NoiMode,
    preferred_rate: float = 0.0,
    accrual_period: AccrualPeriod = AccrualPeriod.monthly,
    horizon_months: int = HORIZON_MONTHS,
) -> Tuple[List[Distribution], WaterfallState]:
    """
    Apply a chronological sequence of events, accruing pref in between.

    Events must be in non-decreasing month order; they are never
    reordered.
    """
    distributions = []
    previous_month = None

    for event in events:
        _check_month(event.month, horizon_months)
        if previous_month is not None and event.month < previous_month:
            logger.warning(
                f"Rejected out-of-order event in month {event.month} after month {previous_month}"
            )
            raise OutOfOrderEventError("Events must be applied in chronological order")
        previous_month = event.month

        state = advance_to_month(
            state, event.month, preferred_rate, accrual_period, horizon_months
        )
        distribution, state = apply_event(state, event, noi_mode, horizon_months)
        distributions.append(distribution)

    return distributions, state


# === Ownership and reporting ===


def derive_holding_percentages(
    investments: Dict[str, float],
    total_project_cost: float,
    gp_ids: Sequence[str],
) -> Dict[str, float]:
    """
    Ownership percentages (0-100) snapshotted onto investors.

    Each LP holds investment / total_project_cost x 50%. The GPs share
    the remainder as promote, pro-rata by their own investment (equally
    when the GPs put in no capital).
    """
    if total_project_cost <= 0:
        raise InvalidEventError("total_project_cost must be greater than 0")
    gp_set = set(gp_ids)
    gp_ids = [investor_id for investor_id in investments if investor_id in gp_set]
    if not gp_ids:
        raise InvalidEventError("At least one GP is required to hold the promote")

    holdings = {}
    for investor_id, investment in investments.items():
        if investor_id not in gp_ids:
            holdings[investor_id] = investment / total_project_cost * 50

    promote = 100 - sum(holdings.values())
    if promote < 0:
        raise InvalidEventError("LP holdings exceed 100%")

    gp_capital = sum(investments[gp_id] for gp_id in gp_ids)
    for gp_id in gp_ids:
        share = investments[gp_id] / gp_capital if gp_capital > 0 else 1 / len(gp_ids)
        holdings[gp_id] = promote * share

    return holdings


def summarize_distributions(distributions: Sequence[Distribution]) -> Dict[str, Dict]:
    """Per-investor totals across distributions."""
    summary: Dict[str, Dict] = {}
    for distribution in distributions:
        for payout in distribution.payouts:
            totals = summary.setdefault(
                payout.investor_id,
                {"preferred_paid": 0.0, "principal_paid": 0.0, "profit_paid": 0.0, "total": 0.0},
            )
            totals["preferred_paid"] = round(totals["preferred_paid"] + payout.preferred_paid, 2)
            totals["principal_paid"] = round(totals["principal_paid"] + payout.principal_paid, 2)
            totals["profit_paid"] = round(totals["profit_paid"] + payout.profit_paid, 2)
            totals["total"] = round(totals["total"] + payout.total, 2)
    return summary


def extract_investor_cash_flows(
    distributions: Sequence[Distribution],
    investor_id: str,
    capital_contributed: float,
    months: int,
    contribution_month: int = 0,
) -> List[float]:
    """Monthly cash flows for one investor (contribution negative) for IRR."""
    cash_flows = [0.0] * months
    cash_flows[contribution_month] -= capital_contributed
    for distribution in distributions:
        if distribution.event.month < months:
            cash_flows[distribution.event.month] += distribution.payout(investor_id).total
    return cash_flows
