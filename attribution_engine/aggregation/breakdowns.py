"""
Breakdown Aggregation

Groups sessions by a dimension and folds in the payments and goal events
that reference them by ``session_id``.

Three kinds of session rows take part in a breakdown:
- sessions that started in the range: they count toward visitors, sessions
  and rates
- older sessions referenced by in-range payments or goal events: they carry
  revenue and goals under their true attribution but add no visitors
- synthetic ``Direct/Unknown`` sessions for facts whose session is missing,
  so revenue is never dropped
"""

from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

import polars as pl
import structlog

from attribution_engine.aggregation.frames import goal_frame, payment_aggregations, payment_frame, session_frame
from attribution_engine.aggregation.schemas import BreakdownDimension, BreakdownRow
from attribution_engine.attribution.channels import ChannelClassifier, ChannelLabel
from attribution_engine.attribution.referrers import DIRECT_NAME, UNKNOWN_DIRECT_NAME, icon_key, referrer_name
from attribution_engine.store.facts import GoalEventFact, PaymentFact, SessionFact, unattributed_session_id

logger = structlog.get_logger(__name__)

UNKNOWN = "Unknown"

SOURCE_DIMENSIONS = frozenset({
    BreakdownDimension.CHANNEL,
    BreakdownDimension.REFERRER,
    BreakdownDimension.CAMPAIGN,
    BreakdownDimension.KEYWORD,
})

_SESSION_ATTRIBUTES = {
    BreakdownDimension.CAMPAIGN: "utm_campaign",
    BreakdownDimension.KEYWORD: "utm_term",
    BreakdownDimension.ENTRY_PAGE: "entry_path",
    BreakdownDimension.HOSTNAME: "hostname",
    BreakdownDimension.COUNTRY: "country",
    BreakdownDimension.REGION: "region",
    BreakdownDimension.CITY: "city",
    BreakdownDimension.BROWSER: "browser",
    BreakdownDimension.OS: "os",
    BreakdownDimension.DEVICE: "device",
}

_NUMERIC_COLUMNS = (
    "revenue_new_cents",
    "revenue_renewal_cents",
    "revenue_refund_cents",
    "payment_count",
    "goal_count",
)


def dimension_value(
    session: SessionFact,
    dimension: BreakdownDimension,
    classifier: ChannelClassifier,
) -> Tuple[str, Optional[str], Optional[str]]:
    """``(key, child_key, icon)`` of a session for ``dimension``."""
    if dimension == BreakdownDimension.CHANNEL:
        label = classifier.classify_with_params(session.referrer, session.utm_medium, session.landing_params)
        return label.value, referrer_name(session.referrer), icon_key(session.referrer)

    if dimension == BreakdownDimension.REFERRER:
        return referrer_name(session.referrer), None, icon_key(session.referrer)

    raw = getattr(session, _SESSION_ATTRIBUTES[dimension])
    value = raw.strip() if isinstance(raw, str) else raw
    if not value:
        value = DIRECT_NAME if dimension in SOURCE_DIMENSIONS else UNKNOWN
    return value, None, None


def reattribute_orphans(
    known_session_ids: Set[str],
    payments: Sequence[PaymentFact],
    goal_events: Sequence[GoalEventFact],
) -> Tuple[List[PaymentFact], List[GoalEventFact], Dict[str, str]]:
    """
    Point facts with an unknown session at a synthetic per-visitor session.

    Returns the rewritten facts and a ``synthetic session id -> visitor id``
    map of the synthetic sessions created.
    """
    synthetic: Dict[str, str] = {}

    def fix(fact):
        if fact.session_id is not None and fact.session_id in known_session_ids:
            return fact
        session_id = unattributed_session_id(fact.visitor_id)
        synthetic[session_id] = fact.visitor_id
        return replace(fact, session_id=session_id)

    fixed_payments = [fix(p) for p in payments]
    orphan_payments = len(synthetic)
    fixed_goals = [fix(g) for g in goal_events]

    if synthetic:
        logger.warning(
            "Facts reference unknown sessions, attributing to Direct/Unknown",
            orphan_visitors=len(synthetic),
            orphan_payment_visitors=orphan_payments,
        )
    return fixed_payments, fixed_goals, synthetic


def _session_rows(
    dimension: BreakdownDimension,
    sessions: Iterable[SessionFact],
    in_range: bool,
    classifier: ChannelClassifier,
) -> List[dict]:
    rows = []
    for session in sessions:
        key, child_key, icon = dimension_value(session, dimension, classifier)
        rows.append({
            "session_id": session.session_id,
            "visitor_id": session.visitor_id,
            "in_range": in_range,
            "key": key,
            "child_key": child_key,
            "icon": icon,
        })
    return rows


def _orphan_rows(dimension: BreakdownDimension, synthetic: Dict[str, str]) -> List[dict]:
    if dimension == BreakdownDimension.CHANNEL:
        key, child_key = ChannelLabel.DIRECT.value, UNKNOWN_DIRECT_NAME
    else:
        key, child_key = UNKNOWN_DIRECT_NAME, None
    return [
        {
            "session_id": session_id,
            "visitor_id": visitor_id,
            "in_range": False,
            "key": key,
            "child_key": child_key,
            "icon": "direct",
        }
        for session_id, visitor_id in synthetic.items()
    ]


def _group_metrics(frame: pl.DataFrame, by: List[str]) -> pl.DataFrame:
    in_range = pl.col("in_range")
    return frame.group_by(by).agg([
        pl.col("visitor_id").filter(in_range).n_unique().alias("unique_visitors"),
        in_range.sum().cast(pl.Int64).alias("sessions"),
        (in_range & (pl.col("payment_count") > 0)).sum().cast(pl.Int64).alias("converted_sessions"),
        pl.col("revenue_new_cents").sum(),
        pl.col("revenue_renewal_cents").sum(),
        pl.col("revenue_refund_cents").sum(),
        pl.col("payment_count").sum(),
        pl.col("goal_count").sum(),
        pl.col("visitor_id").filter(in_range & (pl.col("goal_count") > 0)).n_unique().alias("goal_visitors"),
        pl.col("icon").min().alias("icon"),
    ])


def _to_row(record: dict, name_column: str) -> BreakdownRow:
    return BreakdownRow(
        name=record[name_column],
        unique_visitors=record["unique_visitors"],
        sessions=record["sessions"],
        converted_sessions=record["converted_sessions"],
        revenue_new_cents=record["revenue_new_cents"],
        revenue_renewal_cents=record["revenue_renewal_cents"],
        revenue_refund_cents=record["revenue_refund_cents"],
        payment_count=record["payment_count"],
        goal_count=record["goal_count"],
        goal_visitors=record["goal_visitors"],
        icon=record["icon"],
    )


def sort_rows(rows: List[BreakdownRow]) -> List[BreakdownRow]:
    """Most visitors first, ties by name."""
    return sorted(rows, key=lambda r: (-r.unique_visitors, r.name))


def joined_session_frame(
    dimension: BreakdownDimension,
    sessions_in_range: Sequence[SessionFact],
    referenced_sessions: Sequence[SessionFact],
    payments: Sequence[PaymentFact],
    goal_events: Sequence[GoalEventFact],
    classifier: ChannelClassifier,
) -> pl.DataFrame:
    """One row per session with its dimension key and summed payment/goal metrics."""
    in_range_ids = {s.session_id for s in sessions_in_range}
    referenced = [s for s in referenced_sessions if s.session_id not in in_range_ids]
    known_ids = in_range_ids | {s.session_id for s in referenced}

    payments, goal_events, synthetic = reattribute_orphans(known_ids, payments, goal_events)

    sessions = session_frame(
        _session_rows(dimension, sessions_in_range, True, classifier)
        + _session_rows(dimension, referenced, False, classifier)
        + _orphan_rows(dimension, synthetic)
    ).unique(subset="session_id", keep="first", maintain_order=True)

    per_session_payments = (
        payment_frame(payments)
        .group_by("session_id")
        .agg(payment_aggregations())
        .drop("customers")
    )
    per_session_goals = (
        goal_frame(goal_events)
        .group_by("session_id")
        .agg(pl.len().cast(pl.Int64).alias("goal_count"))
    )

    return (
        sessions
        .join(per_session_payments, on="session_id", how="left")
        .join(per_session_goals, on="session_id", how="left")
        .with_columns([pl.col(c).fill_null(0) for c in _NUMERIC_COLUMNS])
    )


def build_breakdown(
    dimension: BreakdownDimension,
    sessions_in_range: Sequence[SessionFact],
    referenced_sessions: Sequence[SessionFact],
    payments: Sequence[PaymentFact],
    goal_events: Sequence[GoalEventFact],
    classifier: ChannelClassifier,
) -> List[BreakdownRow]:
    """
    Aggregate one breakdown dimension.

    Channel rows nest their referrer rows as ``children``; every other
    dimension is flat.
    """
    joined = joined_session_frame(
        dimension, sessions_in_range, referenced_sessions, payments, goal_events, classifier
    )

    parents = [_to_row(r, "key") for r in _group_metrics(joined, ["key"]).iter_rows(named=True)]
    if dimension != BreakdownDimension.CHANNEL:
        return sort_rows(parents)

    children: Dict[str, List[BreakdownRow]] = {}
    for record in _group_metrics(joined, ["key", "child_key"]).iter_rows(named=True):
        children.setdefault(record["key"], []).append(_to_row(record, "child_key"))

    for parent in parents:
        parent.children = sort_rows(children.get(parent.name, []))
        if parent.children:
            parent.icon = parent.children[0].icon
    return sort_rows(parents)
