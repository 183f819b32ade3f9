"""
Conversion Analytics Engine

Builds the trailing-window conversion snapshot for a website:
- Visits-to-conversion and time-to-conversion distributions
- Purchase time heatmap (weekday x hour, in the website timezone)
- Per-dimension conversion rates (device, OS, browser, country, referrer)
- Per-goal conversion attribution
- Daily revenue per visitor

Only non-refunded payments count as conversions.
"""

import asyncio
import time
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Set

import numpy as np
import polars as pl
import structlog

from attribution_engine.attribution.referrers import extract_domain
from attribution_engine.config import get_settings
from attribution_engine.conversion.schemas import (
    ConversionDimensions,
    ConversionMetricsPayload,
    CustomEventRow,
    DimensionRow,
    HourlyCell,
    PeakDayHour,
    PurchaseTimePatterns,
    RevenuePerVisitorPoint,
    TimeRange,
    TimeToConversion,
    VisitBucket,
    VisitsToConversion,
)
from attribution_engine.metrics.money import cents_to_units, round_half_up, safe_ratio
from attribution_engine.store.base import EventStore
from attribution_engine.store.facts import GoalDefinition, GoalEventFact, PaymentFact, SessionFact
from attribution_engine.temporal.buckets import BucketGenerator, Granularity, bucket_key
from attribution_engine.temporal.calendar import UTC, TimezoneCalendar, ensure_utc
from attribution_engine.temporal.periods import ResolvedRange

logger = structlog.get_logger(__name__)

MAX_VISITS_BUCKET = 31
VISIT_KEYS = [str(i) for i in range(1, MAX_VISITS_BUCKET)] + [f"{MAX_VISITS_BUCKET}+"]

# (key, exclusive upper bound in days)
TIME_BUCKETS = (
    [("same_day", 1)]
    + [(f"day_{k}", k + 1) for k in range(1, 11)]
    + [("days_11_15", 16), ("days_16_20", 21), ("days_21_30", 31)]
)
TIME_OVERFLOW_KEY = "days_30_plus"

WEEKDAYS = ["sunday", "monday", "tuesday", "wednesday", "thursday", "friday", "saturday"]

DIMENSION_COLUMNS = {
    "devices": "device",
    "operating_systems": "os",
    "browsers": "browser",
    "countries": "country",
    "referrers": "referrer",
}

DIMENSION_SCHEMA = {
    "visitor_id": pl.Utf8,
    "device": pl.Utf8,
    "os": pl.Utf8,
    "browser": pl.Utf8,
    "country": pl.Utf8,
    "referrer": pl.Utf8,
}

CONVERSION_SCHEMA = {
    **DIMENSION_SCHEMA,
    "amount_cents": pl.Int64,
    "page_views": pl.Int64,
}


def time_bucket(days: float) -> str:
    for key, upper in TIME_BUCKETS:
        if days < upper:
            return key
    return TIME_OVERFLOW_KEY


def weekday_name(day_index: int) -> str:
    """Name for ``date.weekday()`` (Monday == 0)."""
    return WEEKDAYS[(day_index + 1) % 7]


def referrer_key(referrer: Optional[str]) -> str:
    domain = extract_domain(referrer)
    if not domain:
        return "direct"
    return domain.replace(".", "_")


def dimension_values(session: Optional[SessionFact]) -> Dict[str, str]:
    """Normalized dimension values of a session; ``None`` yields the defaults."""
    if session is None:
        return {"device": "desktop", "os": "unknown", "browser": "unknown", "country": "Unknown", "referrer": "direct"}
    return {
        "device": (session.device or "desktop").lower(),
        "os": (session.os or "unknown").lower(),
        "browser": (session.browser or "unknown").lower(),
        "country": session.country or "Unknown",
        "referrer": referrer_key(session.referrer),
    }


def _mean(values: List[float]) -> float:
    return float(np.mean(values)) if values else 0.0


def _median(values: List[float]) -> float:
    return float(np.median(values)) if values else 0.0


def _finish_distribution(counts: Dict[str, int], revenue: Dict[str, int], keys: Iterable[str], n: int) -> Dict[str, VisitBucket]:
    return {
        key: VisitBucket(
            count=counts.get(key, 0),
            percentage=safe_ratio(counts.get(key, 0), n),
            total_revenue=cents_to_units(revenue.get(key, 0)),
        )
        for key in keys
    }


class ConversionAnalyticsEngine:
    """
    Computes conversion snapshots from an event store.

    Usage:
        engine = ConversionAnalyticsEngine(store)
        snapshot = await engine.compute_conversion_snapshot("site-1", timezone="Europe/Berlin")
        payload = snapshot.to_payload()
    """

    def __init__(
        self,
        store: EventStore,
        window_days: Optional[int] = None,
        bucket_generator: Optional[BucketGenerator] = None,
    ):
        settings = get_settings()
        self.store = store
        self.window_days = window_days or settings.engine.conversion_window_days
        self.default_timezone = settings.engine.default_timezone
        self.bucket_generator = bucket_generator or BucketGenerator()

    # ------------------------------------------------------------------
    # Distributions
    # ------------------------------------------------------------------

    def visits_to_conversion(self, conversions: List[dict]) -> VisitsToConversion:
        counts: Dict[str, int] = defaultdict(int)
        revenue: Dict[str, int] = defaultdict(int)
        visits = []
        for row in conversions:
            v = min(MAX_VISITS_BUCKET, max(1, row["page_views"]))
            key = f"{MAX_VISITS_BUCKET}+" if v == MAX_VISITS_BUCKET else str(v)
            counts[key] += 1
            revenue[key] += row["amount_cents"]
            visits.append(v)

        return VisitsToConversion(
            distribution=_finish_distribution(counts, revenue, VISIT_KEYS, len(conversions)),
            average=_mean(visits),
            median=_median(visits),
        )

    def time_to_conversion(self, conversions: List[dict]) -> TimeToConversion:
        counts: Dict[str, int] = defaultdict(int)
        revenue: Dict[str, int] = defaultdict(int)
        hours = []
        for row in conversions:
            h = max(0.0, row["hours"])
            key = time_bucket(h / 24)
            counts[key] += 1
            revenue[key] += row["amount_cents"]
            hours.append(h)

        keys = [key for key, _ in TIME_BUCKETS] + [TIME_OVERFLOW_KEY]
        return TimeToConversion(
            distribution=_finish_distribution(counts, revenue, keys, len(conversions)),
            average_hours=_mean(hours),
            median_hours=_median(hours),
        )

    def purchase_time_patterns(self, payments: List[PaymentFact], calendar: TimezoneCalendar) -> PurchaseTimePatterns:
        """
        Weekday x hour heatmap of purchases in local time.

        The peak is the first cell whose running count exceeds the running
        maximum while scanning payments in order.
        """
        counts: Dict[str, int] = defaultdict(int)
        revenue: Dict[str, int] = defaultdict(int)
        peak = PeakDayHour()

        for payment in payments:
            components = calendar.to_local_components(payment.timestamp)
            day = weekday_name(components.date.weekday())
            key = f"{day}_{components.hour}"
            counts[key] += 1
            revenue[key] += payment.amount_cents
            if counts[key] > peak.count:
                peak = PeakDayHour(day=day, hour=components.hour, count=counts[key])

        hourly = {}
        for day in WEEKDAYS:
            for hour in range(24):
                key = f"{day}_{hour}"
                count = counts.get(key, 0)
                cents = revenue.get(key, 0)
                hourly[key] = HourlyCell(
                    count=count,
                    revenue=cents_to_units(cents),
                    average_value=cents_to_units(cents) / count if count else 0.0,
                )

        return PurchaseTimePatterns(
            peak_day_hour=peak,
            hourly_distribution=hourly,
            peak_day=peak.day,
            peak_hour=peak.hour,
        )

    # ------------------------------------------------------------------
    # Dimensions
    # ------------------------------------------------------------------

    def dimensions(self, sessions: List[SessionFact], conversions: List[dict]) -> ConversionDimensions:
        """
        Conversion rate per dimension value.

        Visitors come from sessions in the window; conversions from payments
        whose session is known. Keys present on only one side still get a row.
        """
        session_df = pl.DataFrame(
            [{"visitor_id": s.visitor_id, **dimension_values(s)} for s in sessions],
            schema=DIMENSION_SCHEMA,
        )
        conversion_df = pl.DataFrame(
            [
                {key: row[key] for key in CONVERSION_SCHEMA}
                for row in conversions
                if row["has_session"]
            ],
            schema=CONVERSION_SCHEMA,
        )

        result = {}
        for field_name, column in DIMENSION_COLUMNS.items():
            visitors = {
                r[column]: r["visitors"]
                for r in session_df.group_by(column)
                .agg(pl.col("visitor_id").n_unique().alias("visitors"))
                .iter_rows(named=True)
            }
            converted = {
                r[column]: r
                for r in conversion_df.group_by(column)
                .agg([
                    pl.len().alias("conversions"),
                    pl.col("amount_cents").sum().alias("revenue_cents"),
                    pl.col("page_views").mean().alias("average_visits"),
                ])
                .iter_rows(named=True)
            }

            rows = {}
            for key in sorted(set(visitors) | set(converted)):
                n_visitors = visitors.get(key, 0)
                conv = converted.get(key)
                n_conversions = conv["conversions"] if conv else 0
                revenue = cents_to_units(conv["revenue_cents"] if conv else 0)
                rows[key] = DimensionRow(
                    visitors=n_visitors,
                    conversions=n_conversions,
                    conversion_rate=safe_ratio(n_conversions, n_visitors),
                    total_revenue=revenue,
                    average_value=safe_ratio(revenue, n_conversions),
                    average_visits_to_conversion=conv["average_visits"] if conv else None,
                )
            result[field_name] = rows

        return ConversionDimensions(**result)

    # ------------------------------------------------------------------
    # Goals
    # ------------------------------------------------------------------

    def custom_events(
        self,
        goals: List[GoalDefinition],
        goal_events: List[GoalEventFact],
        payments: List[PaymentFact],
    ) -> Dict[str, CustomEventRow]:
        """
        Per-goal attribution: how many converting visitors fired each goal
        and how much they spent. Time to conversion runs from a visitor's
        first firing of the goal to their first payment after it.
        """
        converting: Dict[str, List[PaymentFact]] = defaultdict(list)
        for payment in payments:
            converting[payment.visitor_id].append(payment)
        total_conversions = len(payments)

        events_by_goal: Dict[str, List[GoalEventFact]] = defaultdict(list)
        for event in goal_events:
            events_by_goal[event.goal_id].append(event)

        result = {}
        for goal in goals:
            events = events_by_goal.get(goal.goal_id, [])
            first_fired: Dict[str, datetime] = {}
            for event in events:
                if event.visitor_id in converting:
                    ts = ensure_utc(event.timestamp)
                    if event.visitor_id not in first_fired or ts < first_fired[event.visitor_id]:
                        first_fired[event.visitor_id] = ts

            revenue_cents = 0
            hours = []
            for visitor_id, fired_at in first_fired.items():
                visitor_payments = converting[visitor_id]
                revenue_cents += sum(p.amount_cents for p in visitor_payments)
                after = [ensure_utc(p.timestamp) for p in visitor_payments if ensure_utc(p.timestamp) >= fired_at]
                if after:
                    hours.append((min(after) - fired_at).total_seconds() / 3600)

            converters = len(first_fired)
            revenue = cents_to_units(revenue_cents)
            result[goal.name] = CustomEventRow(
                count=len(events),
                total_conversions=converters,
                conversion_rate=safe_ratio(converters, total_conversions),
                average_time_to_conversion=_mean(hours),
                description=goal.description or "",
                total_revenue=revenue,
                average_value=safe_ratio(revenue, converters),
            )
        return result

    # ------------------------------------------------------------------
    # Revenue per visitor
    # ------------------------------------------------------------------

    def revenue_per_visitor_over_time(
        self,
        window: ResolvedRange,
        timezone: str,
        sessions: List[SessionFact],
        payments: List[PaymentFact],
    ) -> List[RevenuePerVisitorPoint]:
        calendar = TimezoneCalendar(timezone)
        buckets = self.bucket_generator.generate(window, Granularity.DAILY, timezone)

        visitors: Dict[str, Set[str]] = defaultdict(set)
        for session in sessions:
            visitors[bucket_key(session.first_visit_at, Granularity.DAILY, calendar)].add(session.visitor_id)
        revenue: Dict[str, int] = defaultdict(int)
        for payment in payments:
            revenue[bucket_key(payment.timestamp, Granularity.DAILY, calendar)] += payment.amount_cents

        return [
            RevenuePerVisitorPoint(
                date=bucket.key,
                value=safe_ratio(cents_to_units(revenue.get(bucket.key, 0)), len(visitors.get(bucket.key, ()))),
            )
            for bucket in buckets
        ]

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    async def compute_conversion_snapshot(
        self,
        website_id: str,
        timezone: Optional[str] = None,
        as_of: Optional[datetime] = None,
    ) -> ConversionMetricsPayload:
        """
        Compute the conversion snapshot for the window ending at ``as_of``.

        Args:
            website_id: Tracked website
            timezone: IANA timezone for the heatmap and daily series;
                defaults to the configured engine timezone
            as_of: Injected clock; defaults to the current time

        Raises:
            InvalidTimezoneError: Unknown timezone
            StoreUnavailableError: The store could not be read
        """
        started = time.perf_counter()
        timezone = timezone or self.default_timezone
        calendar = TimezoneCalendar(timezone)
        end = ensure_utc(as_of) if as_of is not None else datetime.now(UTC)
        window = ResolvedRange(start=end - timedelta(days=self.window_days), end=end)

        log = logger.bind(website_id=website_id, window_days=self.window_days)

        sessions, all_payments, goal_events, goals = await asyncio.gather(
            self.store.query_sessions(website_id, window),
            self.store.query_payments(website_id, window),
            self.store.query_goal_events(website_id, window),
            self.store.query_goals(website_id),
        )
        payments = [p for p in all_payments if not p.refunded]

        by_id = {s.session_id: s for s in sessions}
        missing = {p.session_id for p in payments if p.session_id and p.session_id not in by_id}
        if missing:
            for session in await self.store.query_sessions_by_ids(website_id, missing):
                by_id[session.session_id] = session

        conversions = []
        for payment in payments:
            session = by_id.get(payment.session_id) if payment.session_id else None
            paid_at = ensure_utc(payment.timestamp)
            first_visit = ensure_utc(session.first_visit_at) if session else paid_at
            conversions.append({
                "visitor_id": payment.visitor_id,
                "amount_cents": payment.amount_cents,
                "page_views": session.page_views if session else 1,
                "hours": (paid_at - first_visit).total_seconds() / 3600,
                "has_session": session is not None,
                **dimension_values(session),
            })

        total_visitors = len({s.visitor_id for s in sessions})
        total_conversions = len(payments)
        revenue_cents = sum(p.amount_cents for p in payments)
        total_revenue = cents_to_units(revenue_cents)

        now_iso = datetime.now(UTC).isoformat()
        snapshot = ConversionMetricsPayload(
            website_id=website_id,
            visits_to_conversion=self.visits_to_conversion(conversions),
            time_to_conversion=self.time_to_conversion(conversions),
            purchase_time_patterns=self.purchase_time_patterns(payments, calendar),
            dimensions=self.dimensions(sessions, conversions),
            time_range=TimeRange(start_date=window.start.isoformat(), end_date=window.end.isoformat()),
            total_visitors=total_visitors,
            total_conversions=total_conversions,
            baseline_conversion_rate=safe_ratio(total_conversions, total_visitors),
            baseline_average_value=safe_ratio(total_revenue, total_conversions),
            total_revenue=total_revenue,
            average_daily_visitors=int(round_half_up(total_visitors / self.window_days, 0)),
            average_daily_revenue=int(round_half_up(total_revenue / self.window_days, 0)),
            custom_events=self.custom_events(goals, goal_events, payments),
            revenue_per_visitor_over_time=self.revenue_per_visitor_over_time(window, timezone, sessions, payments),
            created_at=now_iso,
            updated_at=now_iso,
        )
        snapshot.processing_time = round((time.perf_counter() - started) * 1000, 2)

        log.info(
            "Conversion snapshot computed",
            visitors=total_visitors,
            conversions=total_conversions,
            goals=len(goals),
            processing_ms=snapshot.processing_time,
        )
        return snapshot
