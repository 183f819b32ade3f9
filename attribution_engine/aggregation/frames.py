"""
Fact Frames

Builds polars DataFrames from fact lists. Every frame has an explicit
schema so empty inputs still join and group cleanly.
"""

from typing import Callable, Iterable, List, Optional, Sequence

import polars as pl

from attribution_engine.store.facts import GoalEventFact, PaymentFact, SessionFact

SESSION_SCHEMA = {
    "session_id": pl.Utf8,
    "visitor_id": pl.Utf8,
    "in_range": pl.Boolean,
    "key": pl.Utf8,
    "child_key": pl.Utf8,
    "icon": pl.Utf8,
}

PAYMENT_SCHEMA = {
    "session_id": pl.Utf8,
    "visitor_id": pl.Utf8,
    "amount_cents": pl.Int64,
    "renewal": pl.Boolean,
    "refunded": pl.Boolean,
    "bucket": pl.Utf8,
}

GOAL_SCHEMA = {
    "session_id": pl.Utf8,
    "visitor_id": pl.Utf8,
    "goal_id": pl.Utf8,
    "bucket": pl.Utf8,
}

VISIT_SCHEMA = {
    "session_id": pl.Utf8,
    "visitor_id": pl.Utf8,
    "bucket": pl.Utf8,
}


def session_frame(rows: Sequence[dict]) -> pl.DataFrame:
    return pl.DataFrame(list(rows), schema=SESSION_SCHEMA)


def payment_frame(
    payments: Iterable[PaymentFact],
    bucket_of: Optional[Callable[[PaymentFact], str]] = None,
) -> pl.DataFrame:
    rows = [
        {
            "session_id": p.session_id,
            "visitor_id": p.visitor_id,
            "amount_cents": p.amount_cents,
            "renewal": p.renewal,
            "refunded": p.refunded,
            "bucket": bucket_of(p) if bucket_of else None,
        }
        for p in payments
    ]
    return pl.DataFrame(rows, schema=PAYMENT_SCHEMA)


def goal_frame(
    events: Iterable[GoalEventFact],
    bucket_of: Optional[Callable[[GoalEventFact], str]] = None,
) -> pl.DataFrame:
    rows = [
        {
            "session_id": g.session_id,
            "visitor_id": g.visitor_id,
            "goal_id": g.goal_id,
            "bucket": bucket_of(g) if bucket_of else None,
        }
        for g in events
    ]
    return pl.DataFrame(rows, schema=GOAL_SCHEMA)


def visit_frame(sessions: Iterable[SessionFact], bucket_of: Callable[[SessionFact], str]) -> pl.DataFrame:
    rows = [
        {"session_id": s.session_id, "visitor_id": s.visitor_id, "bucket": bucket_of(s)}
        for s in sessions
    ]
    return pl.DataFrame(rows, schema=VISIT_SCHEMA)


def payment_aggregations(prefix: str = "") -> List[pl.Expr]:
    """Revenue split, sale count and paying-visitor count over a payment frame."""
    kept = ~pl.col("refunded")
    return [
        pl.col("amount_cents").filter(kept & ~pl.col("renewal")).sum().alias(f"{prefix}revenue_new_cents"),
        pl.col("amount_cents").filter(kept & pl.col("renewal")).sum().alias(f"{prefix}revenue_renewal_cents"),
        pl.col("amount_cents").filter(pl.col("refunded")).sum().alias(f"{prefix}revenue_refund_cents"),
        kept.sum().cast(pl.Int64).alias(f"{prefix}payment_count"),
        pl.col("visitor_id").filter(kept).n_unique().alias(f"{prefix}customers"),
    ]
