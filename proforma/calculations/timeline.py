"""
Calendar Mapping

Converts between integer month offsets on the projection horizon and
calendar months anchored at the project's closing month.
"""

from typing import List, Dict, Optional, Union
from datetime import date
from dataclasses import dataclass
from dateutil.relativedelta import relativedelta

from proforma.calculations.errors import InvalidTimelineError

HORIZON_MONTHS = 60

# Stabilization defaults to one year after leasing start when not given
DEFAULT_STABILIZATION_LAG_MONTHS = 12


@dataclass(frozen=True)
class CalendarMonth:
    """A calendar month on the projection."""

    year: int
    month: int

    @property
    def label(self) -> str:
        return date(self.year, self.month, 1).strftime("%b %Y")


@dataclass(frozen=True)
class Timeline:
    """Project timeline expressed as month offsets from the anchor date."""

    anchor_date: date
    leasing_start_month: int
    stabilized_month: int

    def validate(self, horizon_months: int = HORIZON_MONTHS) -> "Timeline":
        validate_month(self.leasing_start_month, horizon_months, "leasing_start_month")
        validate_month(self.stabilized_month, horizon_months, "stabilized_month")
        if self.leasing_start_month > self.stabilized_month:
            raise InvalidTimelineError(
                f"leasing_start_month ({self.leasing_start_month}) cannot be after "
                f"stabilized_month ({self.stabilized_month})"
            )
        return self


def validate_month(
    offset: int, horizon_months: int = HORIZON_MONTHS, field: str = "month"
) -> int:
    """Raise InvalidTimelineError unless 0 <= offset < horizon_months."""
    if isinstance(offset, bool) or not isinstance(offset, int):
        raise InvalidTimelineError(f"{field} must be an integer month offset")
    if offset < 0 or offset >= horizon_months:
        raise InvalidTimelineError(
            f"{field} {offset} is outside the projection horizon [0, {horizon_months - 1}]"
        )
    return offset


def anchor_from_closing_date(closing_date: date) -> date:
    """The anchor is the first day of the closing month."""
    return date(closing_date.year, closing_date.month, 1)


def month_to_calendar(
    offset: int, anchor_date: date, horizon_months: int = HORIZON_MONTHS
) -> CalendarMonth:
    """
    Map a month offset to its calendar month.

    Args:
        offset: Month offset (0 = closing month)
        anchor_date: Project anchor (any day of the closing month)
        horizon_months: Projection length

    Returns:
        CalendarMonth for the offset

    Raises:
        InvalidTimelineError: If the offset is outside the horizon
    """
    validate_month(offset, horizon_months)
    month_date = anchor_from_closing_date(anchor_date) + relativedelta(months=offset)
    return CalendarMonth(year=month_date.year, month=month_date.month)


def calendar_label(
    offset: int, anchor_date: date, horizon_months: int = HORIZON_MONTHS
) -> str:
    """Formatted label for a month offset, e.g. 'Mar 2025'."""
    return month_to_calendar(offset, anchor_date, horizon_months).label


def date_to_offset(value: date, anchor_date: date) -> int:
    """Whole-month difference between a date and the anchor month (may be negative)."""
    anchor = anchor_from_closing_date(anchor_date)
    return (value.year - anchor.year) * 12 + (value.month - anchor.month)


def timeline_from_dates(
    closing_date: date,
    leasing_start_date: Optional[date],
    stabilized_date: Optional[date] = None,
    horizon_months: int = HORIZON_MONTHS,
) -> Timeline:
    """
    Convert the project's calendar dates into a validated Timeline.

    Dates before closing map to month 0. A missing stabilized date defaults
    to twelve months after leasing start, and a stabilized date earlier than
    leasing start collapses onto leasing start.
    """
    anchor = anchor_from_closing_date(closing_date)

    leasing_start = 0
    if leasing_start_date is not None:
        leasing_start = max(0, date_to_offset(leasing_start_date, anchor))

    if stabilized_date is None:
        stabilized = leasing_start + DEFAULT_STABILIZATION_LAG_MONTHS
    else:
        stabilized = max(0, date_to_offset(stabilized_date, anchor))
        if stabilized < leasing_start:
            stabilized = leasing_start

    return Timeline(
        anchor_date=anchor,
        leasing_start_month=leasing_start,
        stabilized_month=stabilized,
    ).validate(horizon_months)


def build_month_headers(
    anchor_date: date, horizon_months: int = HORIZON_MONTHS
) -> List[Dict]:
    """Column headers for the cashflow grid."""
    headers = []
    for index in range(horizon_months):
        calendar_month = month_to_calendar(index, anchor_date, horizon_months)
        headers.append(
            {
                "index": index,
                "label": f"M{index + 1}",
                "calendar_label": calendar_month.label,
                "year": calendar_month.year,
            }
        )
    return headers


# === UI input helpers ===
# Users type 1-based month numbers; clamping them onto the horizon is an
# input concern and never happens inside the engine.


def input_to_offset(
    value: Union[str, int, None], horizon_months: int = HORIZON_MONTHS
) -> int:
    """Convert a 1-based month input to a clamped 0-based offset."""
    try:
        number = int(float(value)) if value not in (None, "") else 1
    except (TypeError, ValueError):
        number = 1
    number = max(1, min(horizon_months, number))
    return number - 1


def offset_to_input(offset: Optional[int]) -> str:
    """Convert a 0-based offset to the 1-based month shown in forms."""
    return str((offset or 0) + 1)
