"""
Application services module.
"""

from proforma.services.ledger import (
    LedgerConflictError,
    ProjectNotFoundError,
    get_project_locks,
)

__all__ = ["LedgerConflictError", "ProjectNotFoundError", "get_project_locks"]
