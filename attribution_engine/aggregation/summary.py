"""
Range Summary

Range-wide distinct counts that cannot be derived by summing buckets
(a visitor active in several buckets is still one visitor).
"""

from typing import Sequence

import polars as pl

from attribution_engine.aggregation.frames import goal_frame, payment_aggregations, payment_frame
from attribution_engine.aggregation.schemas import RangeSummary
from attribution_engine.store.facts import GoalEventFact, PaymentFact, SessionFact


def build_summary(
    sessions: Sequence[SessionFact],
    payments: Sequence[PaymentFact],
    goal_events: Sequence[GoalEventFact],
) -> RangeSummary:
    """Summarize sessions that started in a range and the payments/goals that occurred in it."""
    session_ids = {s.session_id for s in sessions}
    visitor_ids = {s.visitor_id for s in sessions}

    pays = payment_frame(payments)
    totals = pays.select(payment_aggregations()).row(0, named=True)
    converted = (
        pays.filter(~pl.col("refunded") & pl.col("session_id").is_in(pl.Series(list(session_ids), dtype=pl.Utf8)))
        .get_column("session_id")
        .n_unique()
    )

    goals = goal_frame(goal_events)
    goal_visitors = (
        goals.filter(pl.col("visitor_id").is_in(pl.Series(list(visitor_ids), dtype=pl.Utf8)))
        .get_column("visitor_id")
        .n_unique()
    )

    return RangeSummary(
        visitors=len(visitor_ids),
        sessions=len(session_ids),
        converted_sessions=converted,
        revenue_new_cents=totals["revenue_new_cents"] or 0,
        revenue_renewal_cents=totals["revenue_renewal_cents"] or 0,
        revenue_refund_cents=totals["revenue_refund_cents"] or 0,
        customers=totals["customers"] or 0,
        sales=totals["payment_count"] or 0,
        goals=goals.height,
        goal_visitors=goal_visitors,
    )
