"""
SQLAlchemy ORM models for the proforma engine.

Only the waterfall's running balances are persisted here; the proforma
grid is always recomputed from source rows.
"""

from datetime import datetime
from sqlalchemy import (
    Column,
    String,
    Float,
    Integer,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    JSON,
    Enum as SQLEnum,
)
from sqlalchemy.orm import declarative_base, relationship
import uuid
import enum

from proforma.calculations.waterfall import AccrualPeriod, EventSource, NoiMode


class InvestorRole(str, enum.Enum):
    """Investor role enumeration."""
    gp = "gp"
    lp = "lp"


Base = declarative_base()


def generate_uuid():
    return str(uuid.uuid4())


class AuditMixin:
    """Mixin for audit fields on all models."""

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )
    created_by = Column(String(255), nullable=True)
    updated_by = Column(String(255), nullable=True)
    is_deleted = Column(Boolean, default=False, nullable=False)


class Project(AuditMixin, Base):
    """A development deal and its distribution settings."""

    __tablename__ = "projects"

    id = Column(String, primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False)

    # Timeline
    closing_date = Column(Date, nullable=False)
    leasing_start_date = Column(Date)
    stabilized_date = Column(Date)

    # Capitalization (used to derive LP holding percentages)
    total_project_cost = Column(Float)

    # Waterfall configuration
    noi_mode = Column(SQLEnum(NoiMode), nullable=False)
    preferred_return_rate = Column(Float, default=0.08, nullable=False)
    accrual_period = Column(SQLEnum(AccrualPeriod), default=AccrualPeriod.monthly, nullable=False)

    # Waterfall cursor
    accrued_through_month = Column(Integer, default=0, nullable=False)
    last_event_month = Column(Integer, nullable=True)

    investors = relationship(
        "Investor",
        back_populates="project",
        cascade="all, delete-orphan",
        order_by="Investor.created_at",
    )
    distributions = relationship(
        "DistributionEvent",
        back_populates="project",
        cascade="all, delete-orphan",
        order_by="DistributionEvent.sequence",
    )


class Investor(AuditMixin, Base):
    """Investor capital terms and running waterfall balances."""

    __tablename__ = "investors"

    id = Column(String, primary_key=True, default=generate_uuid)
    project_id = Column(String, ForeignKey("projects.id"), nullable=False, index=True)

    name = Column(String(255), nullable=False)
    role = Column(SQLEnum(InvestorRole), default=InvestorRole.lp, nullable=False)

    capital_contributed = Column(Float, nullable=False)
    contribution_month = Column(Integer, default=0, nullable=False)

    # Snapshot; the waterfall reads it and never recomputes it
    holding_pct = Column(Float, default=0.0, nullable=False)

    # Running balances
    outstanding_capital = Column(Float, nullable=False)
    accrued_preferred_return = Column(Float, default=0.0, nullable=False)

    project = relationship("Project", back_populates="investors")


class DistributionEvent(AuditMixin, Base):
    """A capital-return event applied to a project and its payouts."""

    __tablename__ = "distribution_events"

    id = Column(String, primary_key=True, default=generate_uuid)
    project_id = Column(String, ForeignKey("projects.id"), nullable=False, index=True)

    sequence = Column(Integer, nullable=False)
    source = Column(SQLEnum(EventSource), nullable=False)
    amount = Column(Float, nullable=False)
    month = Column(Integer, nullable=False)

    # [{investor_id, preferred_paid, principal_paid, profit_paid, total}]
    payouts = Column(JSON, default=list, nullable=False)

    project = relationship("Project", back_populates="distributions")
