"""
Project and distribution ledger API endpoints.

Routes here are plain (sync) functions so FastAPI runs them in its
threadpool, where the per-project ledger locks apply.
"""

from fastapi import APIRouter, HTTPException, Depends
from pydantic import BaseModel
from typing import Optional, List
from datetime import date
from sqlalchemy.orm import Session

from proforma.config import get_settings
from proforma.calculations import timeline, waterfall
from proforma.calculations.errors import OutOfOrderEventError
from proforma.db.database import get_db
from proforma.db.models import InvestorRole, Project
from proforma.services import ledger

router = APIRouter()
settings = get_settings()


class ProjectCreate(BaseModel):
    """Schema for creating a project."""

    name: str
    closing_date: date
    leasing_start_date: Optional[date] = None
    stabilized_date: Optional[date] = None
    total_project_cost: Optional[float] = None

    # Waterfall
    noi_mode: waterfall.NoiMode
    preferred_return_rate: Optional[float] = None
    accrual_period: Optional[waterfall.AccrualPeriod] = None


class InvestorCreate(BaseModel):
    """Schema for adding an investor."""

    name: str
    capital_contributed: float
    role: InvestorRole = InvestorRole.lp
    contribution_month: int = 0
    holding_pct: Optional[float] = None


class InvestorResponse(BaseModel):
    """Schema for investor response."""

    id: str
    name: str
    role: InvestorRole
    capital_contributed: float
    contribution_month: int
    holding_pct: float
    outstanding_capital: float
    accrued_preferred_return: float

    class Config:
        from_attributes = True


class ProjectResponse(BaseModel):
    """Schema for project response."""

    id: str
    name: str
    closing_date: date
    leasing_start_date: Optional[date]
    stabilized_date: Optional[date]
    total_project_cost: Optional[float]
    noi_mode: waterfall.NoiMode
    preferred_return_rate: float
    accrual_period: waterfall.AccrualPeriod
    accrued_through_month: int
    last_event_month: Optional[int]
    timeline: Optional[dict] = None
    investors: List[InvestorResponse] = []
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class AccrueInput(BaseModel):
    """Month to accrue preferred return through."""

    through_month: int


class EventCreate(BaseModel):
    """Capital-return event to apply."""

    source: waterfall.EventSource
    amount: float
    month: int


def project_timeline(project: Project) -> Optional[dict]:
    if project.leasing_start_date is None:
        return None
    project_dates = timeline.timeline_from_dates(
        project.closing_date,
        project.leasing_start_date,
        project.stabilized_date,
        settings.horizon_months,
    )
    return {
        "anchor_date": project_dates.anchor_date,
        "leasing_start_month": project_dates.leasing_start_month,
        "stabilized_month": project_dates.stabilized_month,
    }


def project_to_response(project: Project) -> ProjectResponse:
    """Convert Project model to response schema."""
    return ProjectResponse(
        id=project.id,
        name=project.name,
        closing_date=project.closing_date,
        leasing_start_date=project.leasing_start_date,
        stabilized_date=project.stabilized_date,
        total_project_cost=project.total_project_cost,
        noi_mode=project.noi_mode,
        preferred_return_rate=project.preferred_return_rate,
        accrual_period=project.accrual_period,
        accrued_through_month=project.accrued_through_month,
        last_event_month=project.last_event_month,
        timeline=project_timeline(project),
        investors=[
            InvestorResponse.model_validate(investor)
            for investor in project.investors
            if not investor.is_deleted
        ],
        created_at=project.created_at.isoformat() if project.created_at else None,
        updated_at=project.updated_at.isoformat() if project.updated_at else None,
    )


def _get_project_or_404(db: Session, project_id: str) -> Project:
    try:
        return ledger.get_project(db, project_id)
    except ledger.ProjectNotFoundError:
        raise HTTPException(status_code=404, detail="Project not found")


@router.post("", response_model=ProjectResponse, status_code=201)
def create_project(
    project_data: ProjectCreate,
    db: Session = Depends(get_db),
):
    """Create a new project."""
    if project_data.leasing_start_date is not None:
        try:
            timeline.timeline_from_dates(
                project_data.closing_date,
                project_data.leasing_start_date,
                project_data.stabilized_date,
                settings.horizon_months,
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

    db_project = Project(
        name=project_data.name,
        closing_date=project_data.closing_date,
        leasing_start_date=project_data.leasing_start_date,
        stabilized_date=project_data.stabilized_date,
        total_project_cost=project_data.total_project_cost,
        noi_mode=project_data.noi_mode,
        preferred_return_rate=(
            settings.preferred_return_rate
            if project_data.preferred_return_rate is None
            else project_data.preferred_return_rate
        ),
        accrual_period=project_data.accrual_period or waterfall.AccrualPeriod(settings.accrual_period),
    )

    db.add(db_project)
    db.commit()
    db.refresh(db_project)

    return project_to_response(db_project)


@router.get("/{project_id}", response_model=ProjectResponse)
def get_project(
    project_id: str,
    db: Session = Depends(get_db),
):
    """Get a project with its investors."""
    return project_to_response(_get_project_or_404(db, project_id))


@router.post("/{project_id}/investors", response_model=InvestorResponse, status_code=201)
def add_investor(
    project_id: str,
    investor_data: InvestorCreate,
    db: Session = Depends(get_db),
):
    """Add an investor; holdings are re-derived unless holding_pct is given."""
    if investor_data.capital_contributed < 0:
        raise HTTPException(status_code=400, detail="capital_contributed cannot be negative")

    try:
        investor = ledger.add_investor(
            db,
            project_id,
            name=investor_data.name,
            capital_contributed=investor_data.capital_contributed,
            role=investor_data.role,
            contribution_month=investor_data.contribution_month,
            holding_pct=investor_data.holding_pct,
        )
    except ledger.ProjectNotFoundError:
        raise HTTPException(status_code=404, detail="Project not found")
    except ledger.LedgerConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return InvestorResponse.model_validate(investor)


@router.post("/{project_id}/accrue", response_model=ProjectResponse)
def accrue_preferred_return(
    project_id: str,
    accrue_data: AccrueInput,
    db: Session = Depends(get_db),
):
    """Accrue preferred return through a month."""
    try:
        ledger.accrue_through(db, project_id, accrue_data.through_month)
    except ledger.ProjectNotFoundError:
        raise HTTPException(status_code=404, detail="Project not found")
    except OutOfOrderEventError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return project_to_response(_get_project_or_404(db, project_id))


@router.post("/{project_id}/events", status_code=201)
def apply_event(
    project_id: str,
    event_data: EventCreate,
    db: Session = Depends(get_db),
):
    """Apply a capital-return event and record its distribution."""
    event = waterfall.CapitalReturnEvent(
        source=event_data.source, amount=event_data.amount, month=event_data.month
    )
    try:
        distribution = ledger.record_event(db, project_id, event)
    except ledger.ProjectNotFoundError:
        raise HTTPException(status_code=404, detail="Project not found")
    except OutOfOrderEventError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return distribution.to_dict()


@router.get("/{project_id}/distributions")
def list_distributions(
    project_id: str,
    db: Session = Depends(get_db),
):
    """All recorded distributions with per-investor totals and returns."""
    project = _get_project_or_404(db, project_id)
    distributions = ledger.list_distributions(db, project_id)

    return {
        "distributions": [distribution.to_dict() for distribution in distributions],
        "summary": waterfall.summarize_distributions(distributions),
        "returns": ledger.investor_returns(project, distributions),
    }
