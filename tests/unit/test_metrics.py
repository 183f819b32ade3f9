"""
Unit Tests - Metrics Calculator
"""
import pytest

from attribution_engine.aggregation.schemas import RangeSummary, TimeSeriesPoint
from attribution_engine.metrics import cents_to_units, format_fixed, percentage, round_half_up
from attribution_engine.metrics.calculator import CHANGE_FIELDS, MetricsCalculator, Totals, percentage_change


def point(key: str, **values) -> TimeSeriesPoint:
    return TimeSeriesPoint(bucket_key=key, label=key, timestamp=f"{key}T00:00:00+00:00", utc_offset="+00:00", **values)


@pytest.fixture
def calculator() -> MetricsCalculator:
    return MetricsCalculator()


class TestMoney:
    """Tests for money helpers"""

    def test_cents_to_units(self):
        """Test exact cent conversion"""
        assert cents_to_units(1999) == 19.99
        assert cents_to_units(0) == 0.0
        assert cents_to_units(None) is None

    def test_round_half_up(self):
        """Test halves round away from zero"""
        assert str(round_half_up(2.25, 1)) == "2.3"
        assert str(round_half_up(-0.25, 1)) == "-0.3"

    def test_format_fixed(self):
        """Test fixed decimals"""
        assert format_fixed(-50, 1) == "-50.0"
        assert format_fixed(33.333333, 1) == "33.3"

    def test_percentage(self):
        """Test percentages with empty denominators"""
        assert percentage(1, 3) == 33.33
        assert percentage(5, 0) == 0.0


class TestPercentageChange:
    """Tests for period-over-period change"""

    @pytest.mark.parametrize("current,previous,expected", [
        (0, 0, None),
        (None, None, None),
        (5, 0, "100.0"),
        (0, 10, "-100.0"),
        (50, 100, "-50.0"),
        (150, 100, "50.0"),
        (1, 3, "-66.7"),
        (110, 100, "10.0"),
    ])
    def test_values(self, current, previous, expected):
        """Test change formatting"""
        assert percentage_change(current, previous) == expected

    def test_calculator_scalar(self, calculator):
        """Test the calculator accepts plain numbers"""
        assert calculator.percentage_change(50, 100) == "-50.0"

    def test_change_map(self, calculator):
        """Test Totals produce one entry per headline metric"""
        current = Totals(visitors=10, sessions=12, revenue_new_cents=2000, revenue_renewal_cents=1000)
        previous = Totals(visitors=5, sessions=12, revenue_new_cents=3000)

        change = calculator.percentage_change(current, previous)

        assert set(change) == set(CHANGE_FIELDS)
        assert change["totalVisitors"] == "100.0"
        assert change["totalSessions"] == "0.0"
        assert change["totalRevenue"] == "0.0"
        assert change["totalNewRevenue"] == "-33.3"
        assert change["totalRenewalRevenue"] == "100.0"
        assert change["totalSales"] is None
        assert change["revenuePerVisitor"] == "-50.0"

    def test_all_time_change_map(self, calculator):
        """Test all-time periods have flat money changes and no others"""
        change = calculator.all_time_change_map()

        assert change["totalRevenue"] == "0.0"
        assert change["totalSales"] == "0.0"
        assert change["totalCustomers"] == "0.0"
        assert change["totalVisitors"] is None
        assert change["conversionRate"] is None
        assert set(change) == set(CHANGE_FIELDS)


class TestTotals:
    """Tests for totals"""

    def test_totals_from_points(self, calculator):
        """Test sums ignore None buckets"""
        points = [
            point("2024-01-01", visitors=3, revenue_new_cents=1000, sales=1, customers=1),
            point("2024-01-02"),
            point("2024-01-03", visitors=2, revenue_renewal_cents=500, revenue_refund_cents=200, goal_count=4),
        ]

        totals = calculator.totals(points)

        assert totals.visitors == 5
        assert totals.revenue_cents == 1500
        assert totals.revenue_refund_cents == 200
        assert totals.goals == 4
        assert totals.revenue_per_visitor == 3.0

    def test_summary_overrides_distinct_counts(self, calculator):
        """Test distinct counts come from the range summary"""
        points = [point("2024-01-01", visitors=3), point("2024-01-02", visitors=3)]
        summary = RangeSummary(visitors=4, sessions=8, converted_sessions=2, customers=2, goal_visitors=1)

        totals = calculator.totals(points, summary)

        assert totals.visitors == 4
        assert totals.sessions == 8
        assert totals.conversion_rate == 25.0
        assert totals.goal_conversion_rate == 25.0

    def test_revenue_per_visitor_without_visitors(self):
        """Test revenue per visitor is undefined with no visitors"""
        assert Totals(revenue_new_cents=100).revenue_per_visitor is None

    def test_revenue_per_visitor_in_currency_units(self):
        """Test revenue per visitor divides currency units, not cents"""
        totals = Totals(visitors=3, revenue_new_cents=1000, revenue_renewal_cents=1)

        assert totals.revenue_per_visitor == cents_to_units(1001) / 3
        assert totals.revenue_per_visitor == pytest.approx(3.3367, abs=1e-4)

    def test_payload(self):
        """Test payload keys and currency units"""
        payload = Totals(visitors=2, revenue_new_cents=1999, revenue_renewal_cents=1).to_payload()

        assert payload["totalRevenue"] == 20.0
        assert payload["totalNewRevenue"] == 19.99
        assert payload["revenuePerVisitor"] == 10.0

    def test_totals_from_summary(self, calculator):
        """Test totals built from a summary alone"""
        summary = RangeSummary(visitors=2, sessions=4, sales=3, revenue_new_cents=700, goals=1)
        totals = calculator.totals_from_summary(summary)

        assert totals.sales == 3
        assert totals.revenue_cents == 700
        assert totals.goals == 1
