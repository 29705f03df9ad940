"""
Tests for the proforma calculation engine.
"""

import pytest
from datetime import date

from proforma.calculations.errors import (
    InvalidCarryingCostError,
    InvalidLoanTermsError,
    InvalidScheduleError,
    InvalidTimelineError,
)
from proforma.calculations.timeline import (
    Timeline,
    build_month_headers,
    calendar_label,
    date_to_offset,
    input_to_offset,
    month_to_calendar,
    offset_to_input,
    timeline_from_dates,
)
from proforma.calculations.schedules import (
    MultiMonth,
    Range,
    ScheduledAmountEntry,
    Single,
    default_measurement_unit,
    describe_schedule,
    expand,
    hard_cost_amount,
    parse_schedule,
    validate_schedule,
)
from proforma.calculations.revenue import (
    RevenueLine,
    build_contribution,
    build_ramped_revenue,
    parking_revenue_line,
    ramp_factor,
    unit_revenue_line,
)
from proforma.calculations.amortization import (
    LoanMode,
    LoanTerms,
    amortization_table,
    build_loan_schedule,
    calculate_dscr,
    calculate_payment,
    loan_preview,
)
from proforma.calculations.carrying import (
    CarryingCostEntry,
    CarryingLoan,
    encode_property_tax_group,
    expand_carrying,
    normalize_carrying_row,
    recurring_monthly_average,
    turnover_management_entry,
)
from proforma.calculations.cashflow import (
    ProjectInputs,
    annualize_grid,
    build_carrying_series,
    build_proforma,
)
from proforma.calculations.irr import (
    annualized_irr,
    calculate_irr,
    calculate_multiple,
    calculate_npv,
    monthly_to_annual_irr,
)
from proforma.calculations.metrics import (
    calculate_cap_rate,
    calculate_grid_returns,
    calculate_stabilized_noi,
    size_construction_loan,
)


@pytest.fixture
def project_timeline():
    """Closing Jan 2025, leasing from month 6, stabilized at month 18."""
    return Timeline(anchor_date=date(2025, 1, 1), leasing_start_month=6, stabilized_month=18)


def interest_only_terms(**overrides):
    values = dict(
        mode=LoanMode.interest_only,
        principal=500000,
        annual_rate_pct=8,
        term_months=24,
        funding_month=0,
        first_payment_month=1,
    )
    values.update(overrides)
    return LoanTerms(**values)


class TestTimeline:
    """Test calendar mapping and project timelines."""

    def test_month_to_calendar(self):
        month = month_to_calendar(13, date(2025, 1, 15))
        assert (month.year, month.month) == (2026, 2)

    def test_calendar_label(self):
        assert calendar_label(0, date(2025, 3, 20)) == "Mar 2025"
        assert calendar_label(59, date(2025, 1, 1)) == "Dec 2029"

    def test_out_of_horizon_offset_rejected(self):
        with pytest.raises(InvalidTimelineError):
            month_to_calendar(60, date(2025, 1, 1))
        with pytest.raises(InvalidTimelineError):
            month_to_calendar(-1, date(2025, 1, 1))

    def test_date_to_offset(self):
        assert date_to_offset(date(2025, 7, 31), date(2025, 1, 10)) == 6
        assert date_to_offset(date(2024, 12, 1), date(2025, 1, 10)) == -1

    def test_timeline_defaults_stabilization_to_one_year(self):
        timeline = timeline_from_dates(date(2025, 1, 15), date(2025, 7, 1))
        assert timeline.anchor_date == date(2025, 1, 1)
        assert timeline.leasing_start_month == 6
        assert timeline.stabilized_month == 18

    def test_dates_before_closing_floor_at_zero(self):
        timeline = timeline_from_dates(date(2025, 3, 1), date(2024, 11, 1), date(2025, 9, 1))
        assert timeline.leasing_start_month == 0
        assert timeline.stabilized_month == 6

    def test_stabilized_before_leasing_collapses(self):
        timeline = timeline_from_dates(date(2025, 1, 1), date(2025, 10, 1), date(2025, 4, 1))
        assert timeline.stabilized_month == timeline.leasing_start_month == 9

    def test_timeline_outside_horizon_rejected(self):
        with pytest.raises(InvalidTimelineError):
            timeline_from_dates(date(2025, 1, 1), date(2029, 6, 1))

    def test_leasing_after_stabilization_rejected(self):
        with pytest.raises(InvalidTimelineError):
            Timeline(date(2025, 1, 1), leasing_start_month=20, stabilized_month=10).validate()

    def test_month_headers(self):
        headers = build_month_headers(date(2025, 1, 1), 3)
        assert headers[2] == {
            "index": 2,
            "label": "M3",
            "calendar_label": "Mar 2025",
            "year": 2025,
        }

    def test_input_helpers_clamp_one_based_months(self):
        assert input_to_offset("1") == 0
        assert input_to_offset("100") == 59
        assert input_to_offset("0") == 0
        assert input_to_offset("abc") == 0
        assert offset_to_input(0) == "1"
        assert offset_to_input(11) == "12"


class TestSchedules:
    """Test line-item schedule expansion."""

    def test_single(self):
        values = expand(ScheduledAmountEntry(5000, Single(month=3)))
        assert len(values) == 60
        assert values[3] == 5000
        assert sum(values) == 5000

    def test_even_range(self):
        values = expand(ScheduledAmountEntry(1000, Range(start_month=2, end_month=5)))
        assert values[2:6] == [250, 250, 250, 250]
        assert sum(values) == 1000

    def test_inexact_range_puts_remainder_on_last_month(self):
        values = expand(ScheduledAmountEntry(100, Range(start_month=0, end_month=2)))
        assert values[0:3] == [33.33, 33.33, 33.34]
        assert sum(values) == pytest.approx(100, abs=0.01)

    def test_range_with_percentages(self):
        schedule = Range(start_month=1, end_month=3, percentages=[20, 30, 50])
        values = expand(ScheduledAmountEntry(1000, schedule))
        assert values[1:4] == [200, 300, 500]

    def test_multi_month_even_split(self):
        values = expand(ScheduledAmountEntry(1000, MultiMonth(months=[1, 4, 9])))
        assert values[1] == 333.33
        assert values[4] == 333.33
        assert values[9] == 333.34
        assert sum(values) == pytest.approx(1000, abs=0.01)

    def test_multi_month_with_percentages(self):
        schedule = MultiMonth(months=[0, 3], percentages=[40, 60])
        values = expand(ScheduledAmountEntry(2500, schedule))
        assert values[0] == 1000
        assert values[3] == 1500

    @pytest.mark.parametrize(
        "schedule",
        [
            Single(month=7),
            Range(start_month=0, end_month=6),
            Range(start_month=10, end_month=16, percentages=[10, 10, 10, 10, 10, 10, 40]),
            MultiMonth(months=[5, 17, 33]),
            MultiMonth(months=[2, 3], percentages=[33.33, 66.67]),
        ],
    )
    def test_sum_matches_total(self, schedule):
        values = expand(ScheduledAmountEntry(123456.78, schedule))
        assert sum(values) == pytest.approx(123456.78, abs=0.01)

    def test_percentages_must_sum_to_100(self):
        with pytest.raises(InvalidScheduleError):
            validate_schedule(Range(start_month=0, end_month=1, percentages=[50, 40]))

    def test_percentage_count_must_match_months(self):
        with pytest.raises(InvalidScheduleError):
            validate_schedule(MultiMonth(months=[0, 1, 2], percentages=[50, 50]))

    def test_inverted_range_rejected(self):
        with pytest.raises(InvalidScheduleError):
            validate_schedule(Range(start_month=5, end_month=2))

    def test_month_outside_horizon_rejected(self):
        with pytest.raises(InvalidScheduleError):
            expand(ScheduledAmountEntry(100, Single(month=60)))

    def test_custom_horizon(self):
        values = expand(ScheduledAmountEntry(100, Single(month=70)), horizon_months=120)
        assert len(values) == 120
        assert values[70] == 100

    def test_parse_schedule_rows(self):
        assert parse_schedule({"payment_mode": "single", "payment_month": 4}) == Single(4)
        assert parse_schedule(
            {"payment_mode": "range", "start_month": "2", "end_month": "5"}
        ) == Range(2, 5)
        assert parse_schedule(
            {"payment_mode": "multi", "month_list": "1, 3", "month_percentages": "25,75"}
        ) == MultiMonth(months=[1, 3], percentages=[25.0, 75.0])

    def test_parse_schedule_requires_fields(self):
        with pytest.raises(InvalidScheduleError):
            parse_schedule({"payment_mode": "range", "start_month": 2})
        with pytest.raises(InvalidScheduleError):
            parse_schedule({"payment_mode": "weekly"})

    def test_describe_schedule(self):
        assert describe_schedule(Single(2)) == "Month 3"
        assert describe_schedule(Range(1, 4)) == "Months 2–5"
        assert describe_schedule(MultiMonth([0, 3], [40, 60])) == "Month 1 (40%), Month 4 (60%)"

    def test_hard_cost_pricing(self):
        assert default_measurement_unit("structure") == "sqft"
        assert default_measurement_unit("kitchen") == "apartment"
        assert default_measurement_unit("other_hard") == "none"
        assert hard_cost_amount("sqft", 12.5, 1000) == 12500
        assert hard_cost_amount("sqft", 12.5, None) is None
        assert hard_cost_amount("none", None, None, 8000) == 8000
        with pytest.raises(InvalidScheduleError):
            hard_cost_amount("acre", 1, 1)


class TestRevenue:
    """Test revenue ramp calculations."""

    def test_ramp_values(self, project_timeline):
        line = RevenueLine(base_monthly_amount=10000, vacancy_pct=5)
        values = build_ramped_revenue(line, project_timeline)
        assert values[5] == 0
        assert values[6] == 0
        assert values[12] == pytest.approx(4750)
        assert values[18] == pytest.approx(9500)
        assert values[59] == pytest.approx(9500)

    def test_ramp_is_monotonic(self, project_timeline):
        values = build_ramped_revenue(RevenueLine(10000), project_timeline)
        assert all(a <= b for a, b in zip(values, values[1:]))

    def test_start_on_stabilization_is_full_immediately(self):
        assert ramp_factor(18, 18, 18) == 1.0
        assert ramp_factor(17, 18, 18) == 0.0

    def test_line_start_month_overrides_leasing_start(self, project_timeline):
        line = RevenueLine(base_monthly_amount=1000, vacancy_pct=0, start_month=12)
        values = build_ramped_revenue(line, project_timeline)
        assert values[11] == 0
        assert values[15] == pytest.approx(500)

    def test_unit_revenue_defaults_to_five_percent_vacancy(self):
        line = unit_revenue_line(rent_per_unit=2000, unit_count=10)
        assert line.base_monthly_amount == 20000
        assert line.net_rent == pytest.approx(19000)

    def test_parking_revenue(self):
        line = parking_revenue_line(monthly_rent=150, space_count=20, vacancy_pct=0)
        assert line.net_rent == 3000

    def test_contribution(self):
        values = build_contribution(250000, 0)
        assert values[0] == 250000
        assert sum(values) == 250000


class TestAmortization:
    """Test loan amortization calculations."""

    def test_calculate_payment(self):
        """Test monthly payment calculation."""
        # $1M loan at 5% for 30 years
        payment = calculate_payment(1_000_000, 0.05, 360)
        assert abs(payment - 5368.22) < 1

    def test_zero_rate_payment(self):
        assert calculate_payment(120000, 0, 120) == 1000

    def test_amortizing_table_repays_principal(self):
        terms = LoanTerms(LoanMode.amortizing, 240000, 6, 360, 0, 0)
        table = amortization_table(terms)
        assert len(table) == 360
        assert table[0]["interest"] == pytest.approx(1200)
        assert sum(row["principal"] for row in table) == pytest.approx(240000, abs=0.01)
        assert table[-1]["balance"] == pytest.approx(0, abs=0.01)

    def test_amortizing_vector(self):
        terms = LoanTerms(LoanMode.amortizing, 240000, 6, 360, 0, 0)
        schedule = build_loan_schedule(terms)
        assert schedule.funding[0] == 240000
        assert schedule.interest[0] == pytest.approx(1200)
        assert len(schedule.principal) == 60

    def test_amortizing_vector_within_horizon(self):
        terms = LoanTerms(LoanMode.amortizing, 240000, 6, 360, 0, 0)
        schedule = build_loan_schedule(terms, horizon_months=360)
        assert sum(schedule.principal) == pytest.approx(240000, abs=0.01)

    def test_interest_only_vector(self):
        schedule = build_loan_schedule(interest_only_terms())
        monthly_interest = 500000 * 0.08 / 12
        assert schedule.funding[0] == 500000
        assert schedule.interest[0] == 0
        for month in range(1, 23):
            assert schedule.interest[month] == pytest.approx(monthly_interest)
        assert schedule.principal[23] == 500000
        assert sum(schedule.principal) == 500000
        assert schedule.interest[24] == 0

    def test_interest_only_payoff_not_before_first_payment(self):
        table = amortization_table(interest_only_terms(term_months=1, first_payment_month=3))
        assert len(table) == 1
        assert table[0]["month"] == 3
        assert table[0]["principal"] == 500000

    def test_invalid_terms(self):
        with pytest.raises(InvalidLoanTermsError):
            build_loan_schedule(interest_only_terms(term_months=0))
        with pytest.raises(InvalidLoanTermsError):
            build_loan_schedule(interest_only_terms(principal=-5))
        with pytest.raises(InvalidLoanTermsError):
            build_loan_schedule(interest_only_terms(funding_month=5, first_payment_month=4))
        with pytest.raises(InvalidLoanTermsError):
            build_loan_schedule(interest_only_terms(funding_month=60))

    def test_loan_preview(self):
        preview = loan_preview(interest_only_terms())
        assert preview["monthly_payment"] == pytest.approx(500000 * 0.08 / 12)
        assert preview["monthly_principal"] == 0.0

    def test_dscr(self):
        assert calculate_dscr(150000, 100000) == 1.5
        assert calculate_dscr(150000, 0) == float("inf")


class TestCarrying:
    """Test carrying cost normalization."""

    def test_monthly(self):
        values = expand_carrying(CarryingCostEntry(amount=500, start_month=3))
        assert values[2] == 0
        assert all(value == 500 for value in values[3:])

    def test_quarterly_with_end_month(self):
        entry = CarryingCostEntry(amount=3000, interval_unit="quarterly", start_month=2, end_month=11)
        values = expand_carrying(entry)
        assert [m for m, value in enumerate(values) if value] == [2, 5, 8, 11]
        assert sum(values) == 12000

    def test_yearly(self):
        values = expand_carrying(CarryingCostEntry(amount=12000, interval_unit="yearly"))
        assert [m for m, value in enumerate(values) if value] == [0, 12, 24, 36, 48]

    def test_invalid_entries(self):
        with pytest.raises(InvalidCarryingCostError):
            expand_carrying(CarryingCostEntry(amount=1, interval_unit="weekly"))
        with pytest.raises(InvalidCarryingCostError):
            expand_carrying(CarryingCostEntry(amount=1, start_month=10, end_month=5))

    def test_recurring_monthly_average(self):
        assert recurring_monthly_average(CarryingCostEntry(3000, "quarterly")) == 1000

    def test_normalize_loan_row(self):
        row = normalize_carrying_row(
            {
                "carrying_type": "loan",
                "loan_mode": "interest_only",
                "loan_term_months": 24,
                "funding_month": 0,
                "repayment_start_month": 1,
                "loan_amount": 500000,
                "interest_rate_pct": 8,
            }
        )
        assert isinstance(row, CarryingLoan)
        assert row.label == "Loan"
        assert row.terms.mode == LoanMode.interest_only
        assert row.terms.first_payment_month == 1

    def test_normalize_property_tax_row_from_cost_group(self):
        row = normalize_carrying_row(
            {
                "carrying_type": "property_tax",
                "cost_group": encode_property_tax_group("stabilized"),
                "amount": 6000,
                "interval_unit": "quarterly",
                "start_month": 18,
            }
        )
        assert isinstance(row, CarryingCostEntry)
        assert row.property_tax_phase == "stabilized"
        assert row.label == "Stabilized RE Tax"

    def test_normalize_rejects_bad_rows(self):
        with pytest.raises(InvalidCarryingCostError):
            normalize_carrying_row({"carrying_type": "insurance", "amount": 1, "start_month": 0})
        with pytest.raises(InvalidCarryingCostError):
            normalize_carrying_row({"carrying_type": "property_tax", "amount": 1, "start_month": 0})
        with pytest.raises(InvalidCarryingCostError):
            normalize_carrying_row(
                {"carrying_type": "loan", "loan_mode": "balloon", "loan_term_months": 12}
            )

    def test_turnover_management(self):
        entry = turnover_management_entry("Apartments", 50, 20, 1200, 6)
        assert entry.amount == pytest.approx(1000)
        assert entry.start_month == 6
        assert entry.carrying_type == "management"
        assert turnover_management_entry("Apartments", 0, 20, 1200, 6) is None


class TestCashflow:
    """Test the aggregated proforma grid."""

    @pytest.fixture
    def project(self, project_timeline):
        return ProjectInputs(
            timeline=project_timeline,
            revenue_lines=[RevenueLine(10000, 5, id="apartments", label="Apartments")],
            contributions=[ScheduledAmountEntry(50000, Single(0), label="GP Contribution")],
            soft_costs=[ScheduledAmountEntry(1000, Range(2, 5), label="Architect")],
            hard_costs=[ScheduledAmountEntry(30000, MultiMonth([3, 4, 5]), label="Framing")],
            carrying_rows=[
                CarryingLoan(interest_only_terms(), id="construction", label="Construction Loan"),
                CarryingCostEntry(600, "quarterly", start_month=0, label="Management"),
            ],
        )

    def test_total_is_revenue_minus_expenses(self, project):
        grid = build_proforma(project)
        revenue = grid.category("revenues").totals
        expenses = [grid.category(cid).totals for cid in ("soft", "hard", "carrying")]
        for month in range(60):
            expected = revenue[month] - sum(series[month] for series in expenses)
            assert grid.total[month] == pytest.approx(expected)

    def test_loan_funding_adds_to_total(self, project):
        grid = build_proforma(project)
        # contribution + loan funding - management
        assert grid.total[0] == pytest.approx(50000 + 500000 - 600)

    def test_balance_is_running_total(self, project):
        grid = build_proforma(project)
        assert grid.balance[-1] == pytest.approx(sum(grid.total))
        assert grid.balance[3] == pytest.approx(sum(grid.total[:4]))

    def test_line_items_retained(self, project):
        grid = build_proforma(project)
        carrying_ids = [item.id for item in grid.category("carrying").line_items]
        assert carrying_ids[:3] == [
            "construction-funding",
            "construction-interest",
            "construction-principal",
        ]
        assert grid.category("soft").line_items[0].label == "Architect"

    def test_zero_magnitude_loan_lines_dropped(self):
        series = build_carrying_series([CarryingLoan(interest_only_terms(annual_rate_pct=0), id="loan")])
        assert [item.id for item in series.line_items] == ["loan-funding", "loan-principal"]

    def test_empty_categories_are_zero(self, project_timeline):
        grid = build_proforma(ProjectInputs(timeline=project_timeline))
        assert grid.total == [0.0] * 60
        assert grid.category("hard").totals == [0.0] * 60

    def test_rows_and_headers(self, project):
        rows = build_proforma(project).to_rows()
        assert [row["id"] for row in rows] == [
            "revenues", "soft", "hard", "carrying", "total", "balance",
        ]
        grid = build_proforma(project)
        assert grid.months[0]["calendar_label"] == "Jan 2025"

    def test_recompute_is_idempotent(self, project):
        first = build_proforma(project)
        second = build_proforma(project)
        assert first.to_rows() == second.to_rows()
        assert first.months == second.months

    def test_annualize(self, project):
        grid = build_proforma(project)
        annual = annualize_grid(grid)
        assert len(annual) == 5
        assert annual[0]["year"] == 1
        assert annual[0]["total"] == pytest.approx(sum(grid.total[:12]), abs=0.01)
        assert annual[-1]["ending_balance"] == pytest.approx(grid.balance[-1], abs=0.01)


class TestIRRCalculations:
    """Test IRR calculation functions."""

    def test_calculate_irr_simple(self):
        """Investment of 100 returning 110 one period later is 10%."""
        irr = calculate_irr([-100, 110])
        assert abs(irr - 0.10) < 0.001

    def test_calculate_irr_multi_period(self):
        cash_flows = [-100, 20, 20, 20, 20, 120]
        irr = calculate_irr(cash_flows)
        assert abs(irr - 0.20) < 0.01

    def test_calculate_npv(self):
        npv = calculate_npv([-100, 50, 50, 50], 0.10)
        assert npv > 0

    def test_irr_requires_sign_change(self):
        with pytest.raises(ValueError):
            calculate_irr([100, 100])

    def test_multiple(self):
        assert calculate_multiple([-100, 50, 150]) == 2.0

    def test_monthly_to_annual(self):
        assert monthly_to_annual_irr(0.01) == pytest.approx(0.126825, abs=1e-6)

    def test_long_monthly_projection(self):
        """Five years of zeros between investment and exit doubles in 60 months."""
        cash_flows = [-1_000_000] + [0] * 59 + [2_000_000]
        irr = calculate_irr(cash_flows)
        assert calculate_npv(cash_flows, irr) == pytest.approx(0, abs=1)
        assert annualized_irr(cash_flows) == pytest.approx(2 ** (12 / 60) - 1, rel=1e-4)

    def test_multiple_requires_outflow(self):
        with pytest.raises(ValueError):
            calculate_multiple([10, 20])


class TestMetrics:
    """Test headline project metrics."""

    @pytest.fixture
    def carrying_entries(self):
        return [
            CarryingCostEntry(3000, "quarterly", 18, carrying_type="property_tax",
                              property_tax_phase="stabilized"),
            CarryingCostEntry(1000, "monthly", 0, carrying_type="property_tax",
                              property_tax_phase="construction"),
            CarryingCostEntry(500, "monthly", 6, carrying_type="management"),
        ]

    def test_stabilized_noi(self, carrying_entries):
        noi = calculate_stabilized_noi([RevenueLine(10000, 5)], carrying_entries)
        assert noi["annual_revenue"] == pytest.approx(114000)
        assert noi["stabilized_tax_annual"] == pytest.approx(12000)
        assert noi["management_annual"] == pytest.approx(6000)
        assert noi["noi"] == pytest.approx(96000)

    def test_construction_loan_sizing(self):
        loan = size_construction_loan(1_000_000, 500_000, 300_000, 1000, 12, 6)
        assert loan["loan_base"] == pytest.approx(1_212_000)
        assert loan["interest_accrued"] == pytest.approx(72_720)
        assert loan["loan_amount"] == pytest.approx(1_284_720)
        assert loan["loan_to_cost"] == pytest.approx(1_284_720 / 1_584_720)

    def test_cap_rate(self):
        assert calculate_cap_rate(96000, 900000, 300000) == pytest.approx(0.08)
        assert calculate_cap_rate(96000, 0, 0) == 0.0

    def test_grid_returns_without_cash_flows(self, project_timeline):
        returns = calculate_grid_returns(build_proforma(ProjectInputs(timeline=project_timeline)))
        assert returns["profit"] == 0
        assert returns["monthly_irr"] is None
        assert returns["multiple"] is None
