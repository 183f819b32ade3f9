"""
Metrics Calculator

Turns aggregator output into presentation metrics: totals, rates,
revenue per visitor and period-over-period percentage changes.

Percentage changes are strings with exactly one decimal (``"-50.0"``) so the
UI shows a stable value; ``None`` means there is nothing to compare.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence, Union

import structlog

from attribution_engine.aggregation.schemas import RangeSummary, TimeSeriesPoint
from attribution_engine.metrics.money import cents_to_units, format_fixed, percentage

logger = structlog.get_logger(__name__)

Number = Union[int, float]


def percentage_change(current: Optional[Number], previous: Optional[Number]) -> Optional[str]:
    """
    Change from ``previous`` to ``current`` in percent.

    Returns:
        None when both are zero (or previous is zero and current is not
        positive), ``"100.0"`` when previous is zero and current positive,
        otherwise the change formatted to one decimal.
    """
    current = current or 0
    previous = previous or 0
    if previous == 0:
        return "100.0" if current > 0 else None
    return format_fixed((current - previous) / previous * 100, 1)


@dataclass
class Totals:
    """Dashboard headline numbers; money in cents"""
    visitors: int = 0
    sessions: int = 0
    customers: int = 0
    sales: int = 0
    revenue_new_cents: int = 0
    revenue_renewal_cents: int = 0
    revenue_refund_cents: int = 0
    goals: int = 0
    conversion_rate: float = 0.0
    goal_conversion_rate: float = 0.0

    @property
    def revenue_cents(self) -> int:
        return self.revenue_new_cents + self.revenue_renewal_cents

    @property
    def revenue_per_visitor(self) -> Optional[float]:
        if self.visitors <= 0:
            return None
        return cents_to_units(self.revenue_cents) / self.visitors

    def to_payload(self) -> Dict[str, Any]:
        return {
            "totalVisitors": self.visitors,
            "totalSessions": self.sessions,
            "totalCustomers": self.customers,
            "totalSales": self.sales,
            "totalRevenue": cents_to_units(self.revenue_cents),
            "totalNewRevenue": cents_to_units(self.revenue_new_cents),
            "totalRenewalRevenue": cents_to_units(self.revenue_renewal_cents),
            "totalRefundedRevenue": cents_to_units(self.revenue_refund_cents),
            "totalGoal": self.goals,
            "revenuePerVisitor": self.revenue_per_visitor,
            "conversionRate": self.conversion_rate,
            "goalConversionRate": self.goal_conversion_rate,
        }


# change-map key -> Totals attribute
CHANGE_FIELDS = {
    "totalVisitors": "visitors",
    "totalSessions": "sessions",
    "totalCustomers": "customers",
    "totalSales": "sales",
    "totalRevenue": "revenue_cents",
    "totalNewRevenue": "revenue_new_cents",
    "totalRenewalRevenue": "revenue_renewal_cents",
    "totalRefundedRevenue": "revenue_refund_cents",
    "totalGoal": "goals",
    "revenuePerVisitor": "revenue_per_visitor",
    "conversionRate": "conversion_rate",
    "goalConversionRate": "goal_conversion_rate",
}

# Money and sales fields report a flat "0.0" for all-time; the rest have no baseline
ALL_TIME_ZERO_FIELDS = frozenset({
    "totalCustomers",
    "totalSales",
    "totalRevenue",
    "totalNewRevenue",
    "totalRenewalRevenue",
    "totalRefundedRevenue",
})


class MetricsCalculator:
    """Folds time-series points and range summaries into totals and deltas"""

    def totals(
        self,
        points: Sequence[TimeSeriesPoint],
        summary: Optional[RangeSummary] = None,
    ) -> Totals:
        """
        Totals over a time series.

        Revenue, sales and goals are summed over the points. Visitors,
        sessions, customers and rates come from ``summary`` when given,
        since distinct counts cannot be summed across buckets; without it
        they fall back to bucket sums.
        """
        def total(attr: str) -> int:
            return sum(getattr(p, attr) or 0 for p in points)

        result = Totals(
            visitors=total("visitors"),
            customers=total("customers"),
            sales=total("sales"),
            revenue_new_cents=total("revenue_new_cents"),
            revenue_renewal_cents=total("revenue_renewal_cents"),
            revenue_refund_cents=total("revenue_refund_cents"),
            goals=total("goal_count"),
        )
        if summary is not None:
            result.visitors = summary.visitors
            result.sessions = summary.sessions
            result.customers = summary.customers
            result.conversion_rate = percentage(summary.converted_sessions, summary.sessions)
            result.goal_conversion_rate = percentage(summary.goal_visitors, summary.visitors)
        return result

    def totals_from_summary(self, summary: RangeSummary) -> Totals:
        """Totals for a range known only through its summary (the previous period)."""
        return Totals(
            visitors=summary.visitors,
            sessions=summary.sessions,
            customers=summary.customers,
            sales=summary.sales,
            revenue_new_cents=summary.revenue_new_cents,
            revenue_renewal_cents=summary.revenue_renewal_cents,
            revenue_refund_cents=summary.revenue_refund_cents,
            goals=summary.goals,
            conversion_rate=percentage(summary.converted_sessions, summary.sessions),
            goal_conversion_rate=percentage(summary.goal_visitors, summary.visitors),
        )

    def percentage_change(
        self,
        current: Union[Totals, Number, None],
        previous: Union[Totals, Number, None],
    ) -> Union[Dict[str, Optional[str]], Optional[str]]:
        """
        Percentage change of two numbers, or the full change map of two
        ``Totals``.
        """
        if isinstance(current, Totals) and isinstance(previous, Totals):
            return {
                key: percentage_change(getattr(current, attr), getattr(previous, attr))
                for key, attr in CHANGE_FIELDS.items()
            }
        return percentage_change(current, previous)

    def all_time_change_map(self) -> Dict[str, Optional[str]]:
        """Change map for all-time periods, which have no prior window."""
        return {key: ("0.0" if key in ALL_TIME_ZERO_FIELDS else None) for key in CHANGE_FIELDS}
