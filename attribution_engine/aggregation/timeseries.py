"""
Time Series Aggregation

Folds session, payment and goal facts into a bucket skeleton. Each fact is
keyed by the local-calendar bucket of its own instant: sessions by first
visit, payments by payment time, goal events by occurrence.
"""

from typing import Dict, List, Sequence

import polars as pl

from attribution_engine.aggregation.frames import goal_frame, payment_aggregations, payment_frame, visit_frame
from attribution_engine.aggregation.schemas import TimeSeriesPoint
from attribution_engine.store.facts import GoalEventFact, PaymentFact, SessionFact
from attribution_engine.temporal.buckets import BucketDescriptor, Granularity, bucket_key
from attribution_engine.temporal.calendar import TimezoneCalendar


def _by_bucket(df: pl.DataFrame) -> Dict[str, dict]:
    return {row["bucket"]: row for row in df.iter_rows(named=True)}


def build_time_series(
    buckets: Sequence[BucketDescriptor],
    granularity: Granularity,
    calendar: TimezoneCalendar,
    sessions: Sequence[SessionFact],
    payments: Sequence[PaymentFact],
    goal_events: Sequence[GoalEventFact],
) -> List[TimeSeriesPoint]:
    """
    Build one point per bucket.

    A stream with no facts in a bucket leaves its fields ``None``.
    Customers and sales are also ``None`` when the bucket has no
    non-refunded payment. Future buckets are entirely ``None``.
    """
    def key_of(instant):
        return bucket_key(instant, granularity, calendar)

    visitors = _by_bucket(
        visit_frame(sessions, lambda s: key_of(s.first_visit_at))
        .group_by("bucket")
        .agg(pl.col("visitor_id").n_unique().alias("visitors"))
    )
    revenue = _by_bucket(
        payment_frame(payments, lambda p: key_of(p.timestamp))
        .group_by("bucket")
        .agg(payment_aggregations())
    )
    goals = _by_bucket(
        goal_frame(goal_events, lambda g: key_of(g.timestamp))
        .group_by("bucket")
        .agg(pl.len().alias("goal_count"))
    )

    points: List[TimeSeriesPoint] = []
    for bucket in buckets:
        point = TimeSeriesPoint(
            bucket_key=bucket.key,
            label=bucket.label,
            timestamp=bucket.timestamp,
            utc_offset=bucket.utc_offset,
            is_future=bucket.is_future,
        )
        if bucket.is_future:
            points.append(point)
            continue

        if bucket.key in visitors:
            point.visitors = visitors[bucket.key]["visitors"]

        paid = revenue.get(bucket.key)
        if paid is not None:
            point.revenue_new_cents = paid["revenue_new_cents"]
            point.revenue_renewal_cents = paid["revenue_renewal_cents"]
            point.revenue_refund_cents = paid["revenue_refund_cents"]
            if paid["payment_count"] > 0:
                point.sales = paid["payment_count"]
                point.customers = paid["customers"]

        if bucket.key in goals:
            point.goal_count = goals[bucket.key]["goal_count"]

        points.append(point)

    return points
