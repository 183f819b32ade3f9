"""
Bucket Generation

Partitions a resolved range into contiguous, calendar-aligned buckets in
the website's timezone. Bucket keys are the join keys between the bucket
skeleton and aggregated event data:

- hourly:  YYYY-MM-DDTHH:00:00
- daily:   YYYY-MM-DD
- weekly:  YYYY-MM-DD of the local Sunday starting the week
- monthly: YYYY-MM
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import List, Optional, Union

import structlog

from attribution_engine.temporal.calendar import (
    LocalComponents,
    TimezoneCalendar,
    add_months,
    ensure_utc,
    most_recent_sunday,
)
from attribution_engine.temporal.periods import ResolvedRange

logger = structlog.get_logger(__name__)

MONTH_ABBREVIATIONS = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)


class Granularity(str, Enum):
    """Bucket sizes"""
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"

    @classmethod
    def parse(cls, value: Union[str, "Granularity"]) -> "Granularity":
        """Accept ``hourly`` as well as the short ``hour`` form."""
        if isinstance(value, Granularity):
            return value
        aliases = {"hour": cls.HOURLY, "day": cls.DAILY, "week": cls.WEEKLY, "month": cls.MONTHLY}
        cleaned = value.strip().lower()
        if cleaned in aliases:
            return aliases[cleaned]
        try:
            return cls(cleaned)
        except ValueError:
            raise ValueError(f"Unknown granularity: {value!r}") from None


@dataclass(frozen=True)
class BucketDescriptor:
    """One timezone-aligned slice of a report"""
    key: str
    label: str
    start: datetime  # representative instant, UTC
    timestamp: str  # local ISO-8601 with offset
    utc_offset: str
    is_future: bool = False


def canonical_start(components: LocalComponents, granularity: Granularity) -> datetime:
    """Local wall-clock start of the bucket containing ``components``."""
    local = components.to_naive()
    if granularity == Granularity.HOURLY:
        return local.replace(minute=0, second=0, microsecond=0)
    day_start = datetime(local.year, local.month, local.day)
    if granularity == Granularity.DAILY:
        return day_start
    if granularity == Granularity.WEEKLY:
        sunday = most_recent_sunday(day_start.date())
        return datetime(sunday.year, sunday.month, sunday.day)
    return day_start.replace(day=1)


def advance(local: datetime, granularity: Granularity) -> datetime:
    """Step a canonical bucket start forward by one bucket, in wall-clock time."""
    if granularity == Granularity.HOURLY:
        return local + timedelta(hours=1)
    if granularity == Granularity.DAILY:
        return local + timedelta(days=1)
    if granularity == Granularity.WEEKLY:
        return local + timedelta(days=7)
    year, month = add_months(local.year, local.month, 1)
    return datetime(year, month, 1)


def format_key(local: datetime, granularity: Granularity) -> str:
    if granularity == Granularity.HOURLY:
        return f"{local.year:04d}-{local.month:02d}-{local.day:02d}T{local.hour:02d}:00:00"
    if granularity == Granularity.MONTHLY:
        return f"{local.year:04d}-{local.month:02d}"
    return f"{local.year:04d}-{local.month:02d}-{local.day:02d}"


def format_label(local: datetime, granularity: Granularity) -> str:
    if granularity == Granularity.HOURLY:
        hour12 = local.hour % 12 or 12
        return f"{hour12}{'am' if local.hour < 12 else 'pm'}"
    month = MONTH_ABBREVIATIONS[local.month - 1]
    if granularity == Granularity.DAILY:
        return f"{local.day:02d} {month}"
    if granularity == Granularity.WEEKLY:
        return f"Week {date(local.year, local.month, local.day).isocalendar()[1]}"
    return f"{month} {local.year}"


def bucket_key(instant: datetime, granularity: Granularity, calendar: TimezoneCalendar) -> str:
    """Key of the bucket an event instant falls into."""
    components = calendar.to_local_components(instant)
    return format_key(canonical_start(components, granularity), granularity)


class BucketGenerator:
    """
    Produces the ordered bucket skeleton for a range.

    ``as_of`` is the injected clock: buckets starting after it are flagged
    ``is_future`` so callers render them as ``null`` rather than zero.
    """

    def generate(
        self,
        range_: ResolvedRange,
        granularity: Granularity,
        timezone: str,
        as_of: Optional[datetime] = None,
    ) -> List[BucketDescriptor]:
        """
        Generate buckets covering ``range_``.

        Iteration starts at the canonical bucket containing ``range_.start``
        and stops once a bucket's local date passes the local date of
        ``range_.end`` (for hourly buckets, once it passes the end hour on
        that date). Hourly wall-clock times skipped by a DST transition
        produce no bucket.
        """
        granularity = Granularity.parse(granularity)
        calendar = TimezoneCalendar(timezone)
        as_of = ensure_utc(as_of) if as_of is not None else None

        start_components = calendar.to_local_components(range_.start)
        end_components = calendar.to_local_components(range_.end)
        end_date = end_components.date

        buckets: List[BucketDescriptor] = []
        cursor = canonical_start(start_components, granularity)
        while True:
            if cursor.date() > end_date:
                break
            if (
                granularity == Granularity.HOURLY
                and cursor.date() == end_date
                and cursor.hour > end_components.hour
            ):
                break

            components = LocalComponents.from_naive(cursor)
            if granularity != Granularity.HOURLY or calendar.is_valid_wall_time(components):
                instant = calendar.from_local_components(components)
                buckets.append(
                    BucketDescriptor(
                        key=format_key(cursor, granularity),
                        label=format_label(cursor, granularity),
                        start=instant,
                        timestamp=calendar.local_iso(instant),
                        utc_offset=calendar.offset_string(instant),
                        is_future=as_of is not None and instant > as_of,
                    )
                )
            cursor = advance(cursor, granularity)

        logger.debug(
            "Buckets generated",
            granularity=granularity.value,
            timezone=timezone,
            count=len(buckets),
            first=buckets[0].key if buckets else None,
            last=buckets[-1].key if buckets else None,
        )
        return buckets
