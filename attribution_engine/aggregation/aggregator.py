"""
Event Join Aggregator

Fetches facts from the event store and runs the time-series, breakdown and
summary aggregations over them. Each public method is an independent,
read-only unit of work so a dashboard request can run them concurrently.
"""

import asyncio
from datetime import datetime
from typing import List, Optional, Set

import structlog

from attribution_engine.aggregation.breakdowns import build_breakdown
from attribution_engine.aggregation.schemas import BreakdownDimension, BreakdownRow, RangeSummary, TimeSeriesPoint
from attribution_engine.aggregation.summary import build_summary
from attribution_engine.aggregation.timeseries import build_time_series
from attribution_engine.attribution.channels import ChannelClassifier
from attribution_engine.store.base import EventStore
from attribution_engine.store.facts import GoalEventFact, PaymentFact, SessionFact
from attribution_engine.temporal.buckets import BucketGenerator, Granularity
from attribution_engine.temporal.calendar import TimezoneCalendar
from attribution_engine.temporal.periods import ResolvedRange

logger = structlog.get_logger(__name__)


class EventJoinAggregator:
    """
    Joins sessions, payments and goal events into dashboard metrics.

    Usage:
        aggregator = EventJoinAggregator(store)
        series = await aggregator.aggregate_time_series("site-1", range_, "daily", "UTC")
        rows = await aggregator.aggregate_breakdown("site-1", range_, BreakdownDimension.CHANNEL)
    """

    def __init__(
        self,
        store: EventStore,
        classifier: Optional[ChannelClassifier] = None,
        bucket_generator: Optional[BucketGenerator] = None,
    ):
        self.store = store
        self.classifier = classifier or ChannelClassifier()
        self.bucket_generator = bucket_generator or BucketGenerator()

    async def _fetch(self, website_id: str, range_: ResolvedRange):
        return await asyncio.gather(
            self.store.query_sessions(website_id, range_),
            self.store.query_payments(website_id, range_),
            self.store.query_goal_events(website_id, range_),
        )

    async def _referenced_sessions(
        self,
        website_id: str,
        sessions: List[SessionFact],
        payments: List[PaymentFact],
        goal_events: List[GoalEventFact],
    ) -> List[SessionFact]:
        """Sessions started before the range that in-range payments or goals point at."""
        known: Set[str] = {s.session_id for s in sessions}
        missing = {
            fact.session_id
            for fact in [*payments, *goal_events]
            if fact.session_id is not None and fact.session_id not in known
        }
        if not missing:
            return []
        return await self.store.query_sessions_by_ids(website_id, missing)

    async def aggregate_time_series(
        self,
        website_id: str,
        range_: ResolvedRange,
        granularity: Granularity,
        timezone: str,
        as_of: Optional[datetime] = None,
    ) -> List[TimeSeriesPoint]:
        """Per-bucket visitors, revenue split, customers, sales and goal counts."""
        granularity = Granularity.parse(granularity)
        calendar = TimezoneCalendar(timezone)
        buckets = self.bucket_generator.generate(range_, granularity, timezone, as_of=as_of)

        sessions, payments, goal_events = await self._fetch(website_id, range_)
        points = build_time_series(buckets, granularity, calendar, sessions, payments, goal_events)

        logger.info(
            "Time series aggregated",
            website_id=website_id,
            granularity=granularity.value,
            buckets=len(points),
            sessions=len(sessions),
            payments=len(payments),
            goal_events=len(goal_events),
        )
        return points

    async def aggregate_breakdown(
        self,
        website_id: str,
        range_: ResolvedRange,
        dimension: BreakdownDimension,
    ) -> List[BreakdownRow]:
        """Rows for one breakdown dimension, sorted by unique visitors."""
        dimension = BreakdownDimension(dimension)
        sessions, payments, goal_events = await self._fetch(website_id, range_)
        referenced = await self._referenced_sessions(website_id, sessions, payments, goal_events)

        rows = build_breakdown(dimension, sessions, referenced, payments, goal_events, self.classifier)

        logger.info(
            "Breakdown aggregated",
            website_id=website_id,
            dimension=dimension.value,
            rows=len(rows),
            referenced_sessions=len(referenced),
        )
        return rows

    async def aggregate_summary(self, website_id: str, range_: ResolvedRange) -> RangeSummary:
        """Distinct visitor, session, customer and goal counts for the range."""
        sessions, payments, goal_events = await self._fetch(website_id, range_)
        summary = build_summary(sessions, payments, goal_events)
        logger.debug("Summary aggregated", website_id=website_id, visitors=summary.visitors, sales=summary.sales)
        return summary
