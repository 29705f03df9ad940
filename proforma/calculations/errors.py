"""
Engine Errors

Every error raised by the calculation engine is a caller input defect.
They subclass ValueError so API handlers can map them to HTTP 400.
"""


class ProformaError(ValueError):
    """Base class for calculation engine input errors."""


class InvalidTimelineError(ProformaError):
    """Month offset or project timeline outside the projection horizon."""


class InvalidScheduleError(ProformaError):
    """Malformed payment schedule (bad months, percentages or range)."""


class InvalidLoanTermsError(ProformaError):
    """Loan terms that cannot be amortized."""


class InvalidCarryingCostError(ProformaError):
    """Carrying cost row with a bad type, interval or month span."""


class InvalidEventError(ProformaError):
    """Capital-return event that cannot be run through the waterfall."""


class OutOfOrderEventError(InvalidEventError):
    """Event dated before the last month already processed."""
