"""
Dashboard Service

Entry point for dashboard requests. One request resolves its period, then
fans out the time series, the range summary and every breakdown dimension as
concurrent tasks in a single task group. The previous-period summary runs
afterwards because it depends on the resolved range.

A breakdown whose store query fails is returned as an explicit unavailable
result; a time-series or summary failure fails the request.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Union

import structlog

from attribution_engine.aggregation.aggregator import EventJoinAggregator
from attribution_engine.aggregation.schemas import (
    BreakdownDimension,
    BreakdownGroup,
    BreakdownResult,
    RangeSummary,
    TimeSeriesPoint,
)
from attribution_engine.exceptions import InvalidPeriodExpressionError, StoreUnavailableError
from attribution_engine.metrics.calculator import MetricsCalculator, Totals
from attribution_engine.store.base import EventStore
from attribution_engine.temporal.buckets import Granularity
from attribution_engine.temporal.calendar import UTC, ensure_utc
from attribution_engine.temporal.periods import (
    PeriodContext,
    PeriodExpression,
    PeriodKeyword,
    PeriodResolver,
    ResolvedRange,
)

logger = structlog.get_logger(__name__)

DEFAULT_DIMENSIONS: Sequence[BreakdownDimension] = tuple(BreakdownDimension)


@dataclass
class DashboardResult:
    """Everything a dashboard view renders"""
    website_id: str
    period: str
    granularity: Granularity
    timezone: str
    range: ResolvedRange
    previous_range: Optional[ResolvedRange]
    series: List[TimeSeriesPoint]
    summary: RangeSummary
    totals: Totals
    percentage_change: Dict[str, Optional[str]]
    breakdowns: Dict[BreakdownGroup, Dict[BreakdownDimension, BreakdownResult]] = field(default_factory=dict)

    def breakdown(self, dimension: BreakdownDimension) -> BreakdownResult:
        return self.breakdowns[dimension.group][dimension]

    def to_payload(self) -> Dict[str, Any]:
        payload = {
            "websiteId": self.website_id,
            "period": self.period,
            "granularity": self.granularity.value,
            "timezone": self.timezone,
            "range": self.range.to_dict(),
            "previousRange": self.previous_range.to_dict() if self.previous_range else None,
            "series": [point.to_payload() for point in self.series],
            "percentageChange": self.percentage_change,
            "currency": "$",
            "breakdowns": {
                group.value: {dim.value: result.to_payload() for dim, result in results.items()}
                for group, results in self.breakdowns.items()
            },
        }
        payload.update(self.totals.to_payload())
        return payload


class DashboardService:
    """
    Computes dashboards against an event store.

    Usage:
        service = DashboardService(store)
        result = await service.compute_dashboard("site-1", "last7d", "daily", "Europe/Berlin")
    """

    def __init__(
        self,
        store: EventStore,
        aggregator: Optional[EventJoinAggregator] = None,
        resolver: Optional[PeriodResolver] = None,
        calculator: Optional[MetricsCalculator] = None,
        dimensions: Sequence[BreakdownDimension] = DEFAULT_DIMENSIONS,
    ):
        self.store = store
        self.aggregator = aggregator or EventJoinAggregator(store)
        self.resolver = resolver or PeriodResolver()
        self.calculator = calculator or MetricsCalculator()
        self.dimensions = tuple(dimensions)

    async def _breakdown(
        self,
        website_id: str,
        range_: ResolvedRange,
        dimension: BreakdownDimension,
    ) -> BreakdownResult:
        try:
            rows = await self.aggregator.aggregate_breakdown(website_id, range_, dimension)
        except StoreUnavailableError as e:
            logger.warning(
                "Breakdown unavailable",
                website_id=website_id,
                dimension=dimension.value,
                error=str(e),
            )
            return BreakdownResult(dimension=dimension, available=False, error=str(e))
        return BreakdownResult(dimension=dimension, rows=rows)

    async def _resolve(
        self,
        website_id: str,
        period_expr: Union[str, PeriodExpression],
        timezone: str,
        as_of: datetime,
    ) -> ResolvedRange:
        expr = period_expr
        if isinstance(expr, str):
            try:
                expr = PeriodExpression.parse(expr)
            except InvalidPeriodExpressionError as e:
                logger.warning("Malformed period expression, falling back to today", expression=e.expression)
                expr = PeriodExpression.named(PeriodKeyword.TODAY)

        earliest = None
        if expr.is_all_time:
            earliest = await self.store.earliest_instant(website_id)
        return self.resolver.resolve(expr, timezone, PeriodContext(now=as_of, earliest_instant=earliest))

    async def compute_dashboard(
        self,
        website_id: str,
        period_expr: Union[str, PeriodExpression],
        granularity: Union[str, Granularity],
        timezone: str,
        as_of: Optional[datetime] = None,
    ) -> DashboardResult:
        """
        Compute a dashboard view.

        Args:
            website_id: Tracked website
            period_expr: Period string or parsed expression
            granularity: hourly, daily, weekly or monthly
            timezone: IANA timezone of the website
            as_of: Injected clock; defaults to the current time

        Raises:
            InvalidTimezoneError: Unknown timezone
            StoreUnavailableError: Time series or summary could not be read
        """
        granularity = Granularity.parse(granularity)
        as_of = ensure_utc(as_of) if as_of is not None else datetime.now(UTC)
        range_ = await self._resolve(website_id, period_expr, timezone, as_of)

        log = logger.bind(website_id=website_id, period=str(period_expr), granularity=granularity.value)
        log.info("Dashboard fan-out started", dimensions=len(self.dimensions))
        started = asyncio.get_running_loop().time()

        try:
            async with asyncio.TaskGroup() as tg:
                series_task = tg.create_task(
                    self.aggregator.aggregate_time_series(website_id, range_, granularity, timezone, as_of=as_of)
                )
                summary_task = tg.create_task(self.aggregator.aggregate_summary(website_id, range_))
                breakdown_tasks = {
                    dimension: tg.create_task(self._breakdown(website_id, range_, dimension))
                    for dimension in self.dimensions
                }
        except ExceptionGroup as eg:
            log.error("Dashboard fan-out failed", errors=[str(e) for e in eg.exceptions])
            raise eg.exceptions[0] from eg

        series = series_task.result()
        summary = summary_task.result()
        breakdowns: Dict[BreakdownGroup, Dict[BreakdownDimension, BreakdownResult]] = {
            group: {} for group in BreakdownGroup
        }
        for dimension, task in breakdown_tasks.items():
            breakdowns[dimension.group][dimension] = task.result()

        totals = self.calculator.totals(series, summary)

        previous_range = None
        if range_.is_all_time:
            change = self.calculator.all_time_change_map()
        else:
            previous_range = range_.previous()
            change = await self._compare(website_id, previous_range, summary)

        log.info(
            "Dashboard computed",
            buckets=len(series),
            unavailable=[d.value for d, t in breakdown_tasks.items() if not t.result().available],
            elapsed_ms=round((asyncio.get_running_loop().time() - started) * 1000, 1),
        )

        return DashboardResult(
            website_id=website_id,
            period=str(period_expr),
            granularity=granularity,
            timezone=timezone,
            range=range_,
            previous_range=previous_range,
            series=series,
            summary=summary,
            totals=totals,
            percentage_change=change,
            breakdowns=breakdowns,
        )

    async def _compare(
        self,
        website_id: str,
        previous_range: ResolvedRange,
        summary: RangeSummary,
    ) -> Dict[str, Optional[str]]:
        try:
            previous = await self.aggregator.aggregate_summary(website_id, previous_range)
        except StoreUnavailableError as e:
            logger.warning("Previous period unavailable", website_id=website_id, error=str(e))
            return {key: None for key in self.calculator.all_time_change_map()}
        return self.calculator.percentage_change(
            self.calculator.totals_from_summary(summary),
            self.calculator.totals_from_summary(previous),
        )
