"""
Seed the database with a demo development project.

Creates a GP and an LP, then records a refinance at month 24 and a sale
at month 48 so the distributions endpoint has something to show.
"""
import sys
import os
from datetime import date

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from proforma.calculations.waterfall import AccrualPeriod, CapitalReturnEvent, EventSource, NoiMode
from proforma.db.database import SessionLocal, init_db
from proforma.db.models import InvestorRole, Project
from proforma.services import ledger

DEMO_NAME = "Harbor Lofts"


def main():
    init_db()
    db = SessionLocal()

    try:
        existing = db.query(Project).filter(Project.name == DEMO_NAME).first()
        if existing:
            print(f"Project '{DEMO_NAME}' already exists (ID: {existing.id})")
            return

        project = Project(
            name=DEMO_NAME,
            closing_date=date(2025, 1, 15),
            leasing_start_date=date(2026, 7, 1),
            stabilized_date=date(2027, 7, 1),
            total_project_cost=12_000_000,
            noi_mode=NoiMode.distribution,
            preferred_return_rate=0.08,
            accrual_period=AccrualPeriod.monthly,
        )
        db.add(project)
        db.commit()
        print(f"Created project: {project.name} (ID: {project.id})")

        for name, role, capital in (
            ("Harbor Sponsor LLC", InvestorRole.gp, 1_000_000),
            ("Coastal Income Fund", InvestorRole.lp, 3_000_000),
        ):
            investor = ledger.add_investor(db, project.id, name, capital, role=role)
            print(f"  {role.value.upper()} {name}: ${capital:,.0f}")

        for source, amount, month in (
            (EventSource.refinance, 2_500_000, 24),
            (EventSource.sale, 6_000_000, 48),
        ):
            distribution = ledger.record_event(
                db, project.id, CapitalReturnEvent(source=source, amount=amount, month=month)
            )
            print(f"  Month {month} {source.value}: ${distribution.total:,.2f}")

        db.refresh(project)
        for investor in project.investors:
            print(
                f"  {investor.name}: holding {investor.holding_pct:.2f}%, "
                f"outstanding ${investor.outstanding_capital:,.2f}"
            )

        print("\nDemo project seeded successfully!")

    finally:
        db.close()


if __name__ == "__main__":
    main()
