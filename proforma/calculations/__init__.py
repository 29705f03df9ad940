"""
Proforma Calculation Engine

Pure calculation modules for development deal projections.
Nothing in here touches the database or the network.
"""

from proforma.calculations import (
    timeline,
    schedules,
    revenue,
    amortization,
    carrying,
    cashflow,
    waterfall,
    irr,
    metrics,
)

__all__ = [
    "timeline",
    "schedules",
    "revenue",
    "amortization",
    "carrying",
    "cashflow",
    "waterfall",
    "irr",
    "metrics",
]
