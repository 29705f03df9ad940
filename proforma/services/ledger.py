"""
Distribution ledger.

Stores the waterfall's running balances for a project and applies
capital-return events to them. Each mutation for a project runs under that
project's lock and inside one database transaction, so events are applied
one at a time, in month order, and either fully recorded or not at all.
"""

import logging
import threading
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from proforma.calculations import waterfall
from proforma.calculations.errors import InvalidEventError
from proforma.calculations.irr import annualized_irr, calculate_multiple
from proforma.config import get_settings
from proforma.db.models import DistributionEvent, Investor, InvestorRole, Project

logger = logging.getLogger(__name__)


class ProjectNotFoundError(LookupError):
    """No live project with the given id."""


class LedgerConflictError(RuntimeError):
    """Change that would rewrite distributions already recorded."""


class ProjectLocks:
    """One lock per project id, created on first use."""

    def __init__(self):
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def get(self, project_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(project_id)
            if lock is None:
                lock = self._locks[project_id] = threading.Lock()
            return lock


_project_locks = ProjectLocks()


def get_project_locks() -> ProjectLocks:
    """Get the process-wide lock registry."""
    return _project_locks


# === State mapping ===


def get_project(db: Session, project_id: str) -> Project:
    project = (
        db.query(Project)
        .filter(Project.id == project_id, Project.is_deleted == False)
        .first()
    )
    if not project:
        raise ProjectNotFoundError(project_id)
    return project


def load_state(project: Project) -> waterfall.WaterfallState:
    """Waterfall state from the stored investor balances."""
    return waterfall.WaterfallState(
        investors=tuple(
            waterfall.InvestorState(
                investor_id=investor.id,
                capital_contributed=investor.capital_contributed,
                holding_pct=investor.holding_pct,
                outstanding_capital=investor.outstanding_capital,
                accrued_preferred_return=investor.accrued_preferred_return,
            )
            for investor in project.investors
            if not investor.is_deleted
        ),
        as_of_month=project.accrued_through_month,
        last_event_month=project.last_event_month,
    )


def store_state(project: Project, state: waterfall.WaterfallState) -> None:
    """Copy running balances back onto the ORM rows."""
    by_id = {investor.id: investor for investor in project.investors}
    for investor_state in state.investors:
        investor = by_id[investor_state.investor_id]
        investor.outstanding_capital = investor_state.outstanding_capital
        investor.accrued_preferred_return = investor_state.accrued_preferred_return
    project.accrued_through_month = state.as_of_month
    project.last_event_month = state.last_event_month


def to_distribution(row: DistributionEvent) -> waterfall.Distribution:
    return waterfall.Distribution(
        event=waterfall.CapitalReturnEvent(
            source=waterfall.EventSource(row.source), amount=row.amount, month=row.month
        ),
        payouts=tuple(
            waterfall.InvestorPayout(
                investor_id=payout["investor_id"],
                preferred_paid=payout["preferred_paid"],
                principal_paid=payout["principal_paid"],
                profit_paid=payout["profit_paid"],
            )
            for payout in row.payouts
        ),
    )


def snapshot_holdings(project: Project) -> None:
    """
    Re-derive holding percentages for every investor.

    Only runs when the project has a total cost and at least one GP;
    otherwise explicitly entered percentages are left alone.
    """
    investors = [investor for investor in project.investors if not investor.is_deleted]
    gp_ids = [investor.id for investor in investors if investor.role == InvestorRole.gp]
    if not project.total_project_cost or not gp_ids:
        return

    holdings = waterfall.derive_holding_percentages(
        {investor.id: investor.capital_contributed for investor in investors},
        project.total_project_cost,
        gp_ids,
    )
    for investor in investors:
        investor.holding_pct = holdings[investor.id]


# === Mutations ===


def add_investor(
    db: Session,
    project_id: str,
    name: str,
    capital_contributed: float,
    role: InvestorRole = InvestorRole.lp,
    contribution_month: int = 0,
    holding_pct: Optional[float] = None,
) -> Investor:
    """
    Add an investor with all capital outstanding.

    Raises:
        ProjectNotFoundError: Unknown project
        LedgerConflictError: Distributions have already been recorded
    """
    with get_project_locks().get(project_id):
        try:
            project = get_project(db, project_id)
            if project.distributions:
                raise LedgerConflictError(
                    "Investors cannot be added after distributions have been recorded"
                )

            investor = Investor(
                project_id=project.id,
                name=name,
                role=role,
                capital_contributed=capital_contributed,
                contribution_month=contribution_month,
                holding_pct=holding_pct or 0.0,
                outstanding_capital=capital_contributed,
                accrued_preferred_return=0.0,
            )
            project.investors.append(investor)
            db.flush()  # assigns investor.id
            if holding_pct is None:
                snapshot_holdings(project)

            db.commit()
        except Exception:
            db.rollback()
            raise

    db.refresh(investor)
    logger.info(f"Added {investor.role.value} investor {investor.id} to project {project_id}")
    return investor


def accrue_through(db: Session, project_id: str, month: int) -> waterfall.WaterfallState:
    """Accrue preferred return for every period up to month."""
    with get_project_locks().get(project_id):
        try:
            project = get_project(db, project_id)
            state = waterfall.advance_to_month(
                load_state(project),
                month,
                project.preferred_return_rate,
                project.accrual_period,
                get_settings().horizon_months,
            )
            store_state(project, state)
            db.commit()
        except Exception:
            db.rollback()
            raise

    logger.info(f"Accrued preferred return for project {project_id} through month {month}")
    return state


def record_event(
    db: Session, project_id: str, event: waterfall.CapitalReturnEvent
) -> waterfall.Distribution:
    """
    Apply one event and persist the distribution with the new balances.

    Preferred return is accrued up to the event month first.

    Raises:
        ProjectNotFoundError: Unknown project
        OutOfOrderEventError: Event older than the last processed month
        InvalidEventError: Any other event the waterfall rejects
    """
    with get_project_locks().get(project_id):
        try:
            project = get_project(db, project_id)
            state = waterfall.advance_to_month(
                load_state(project),
                event.month,
                project.preferred_return_rate,
                project.accrual_period,
                get_settings().horizon_months,
            )
            distribution, state = waterfall.apply_event(
                state, event, project.noi_mode, get_settings().horizon_months
            )
            store_state(project, state)

            row = distribution.to_dict()
            project.distributions.append(
                DistributionEvent(
                    sequence=len(project.distributions) + 1,
                    source=waterfall.EventSource(event.source),
                    amount=event.amount,
                    month=event.month,
                    payouts=row["payouts"],
                )
            )
            db.commit()
        except InvalidEventError as e:
            db.rollback()
            logger.warning(f"Rejected event for project {project_id}: {e}")
            raise
        except Exception:
            db.rollback()
            raise

    return distribution


# === Reporting ===


def list_distributions(db: Session, project_id: str) -> List[waterfall.Distribution]:
    project = get_project(db, project_id)
    return [to_distribution(row) for row in project.distributions if not row.is_deleted]


def investor_returns(project: Project, distributions: List[waterfall.Distribution]) -> Dict[str, Dict]:
    """Per-investor IRR and multiple over contributions and payouts to date."""
    investors = [investor for investor in project.investors if not investor.is_deleted]
    last_month = max(
        [distribution.event.month for distribution in distributions]
        + [investor.contribution_month for investor in investors]
        + [0]
    )
    returns = {}
    for investor in investors:
        cash_flows = waterfall.extract_investor_cash_flows(
            distributions,
            investor.id,
            investor.capital_contributed,
            months=last_month + 1,
            contribution_month=investor.contribution_month,
        )
        metrics = {"annual_irr": None, "multiple": None}
        try:
            metrics["annual_irr"] = annualized_irr(cash_flows)
        except ValueError:
            pass  # No payouts yet, or no convergence
        try:
            metrics["multiple"] = calculate_multiple(cash_flows)
        except ValueError:
            pass
        returns[investor.id] = metrics
    return returns
