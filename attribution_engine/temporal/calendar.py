"""
Timezone Calendar

Converts between UTC instants and IANA-timezone-local calendar components.
Every bucket key, period boundary and heatmap cell in the engine is derived
from the local components produced here, never from UTC components.

Instants are timezone-aware ``datetime`` objects in UTC. Naive datetimes
(as returned by some database drivers) are treated as UTC.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone as dt_timezone
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog

from attribution_engine.exceptions import InvalidTimezoneError

logger = structlog.get_logger(__name__)

UTC = dt_timezone.utc
ONE_MILLISECOND = timedelta(milliseconds=1)


@lru_cache(maxsize=256)
def get_zone(name: str) -> ZoneInfo:
    """
    Load an IANA zone, failing fast on unknown identifiers.

    Raises:
        InvalidTimezoneError: The identifier is empty, malformed or unknown
    """
    if not name or not isinstance(name, str):
        raise InvalidTimezoneError(name)
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        logger.warning("Unknown timezone", timezone=name, error=str(e))
        raise InvalidTimezoneError(name) from e


def ensure_utc(instant: datetime) -> datetime:
    """Normalize a datetime to an aware UTC instant."""
    if instant.tzinfo is None:
        return instant.replace(tzinfo=UTC)
    return instant.astimezone(UTC)


@dataclass(frozen=True, order=True)
class LocalComponents:
    """Wall-clock components in a specific timezone"""
    year: int
    month: int
    day: int
    hour: int = 0
    minute: int = 0
    second: int = 0
    millisecond: int = 0

    @property
    def date(self) -> date:
        return date(self.year, self.month, self.day)

    def to_naive(self) -> datetime:
        return datetime(
            self.year, self.month, self.day,
            self.hour, self.minute, self.second,
            self.millisecond * 1000,
        )

    @classmethod
    def from_naive(cls, value: datetime) -> "LocalComponents":
        return cls(
            year=value.year,
            month=value.month,
            day=value.day,
            hour=value.hour,
            minute=value.minute,
            second=value.second,
            millisecond=value.microsecond // 1000,
        )


class TimezoneCalendar:
    """
    Calendar arithmetic bound to one IANA timezone.

    Provides the component conversions plus the day, week and month helpers
    the period resolver and bucket generator are built on.
    """

    def __init__(self, timezone: str):
        self.timezone = timezone
        self.zone = get_zone(timezone)

    def __repr__(self) -> str:
        return f"TimezoneCalendar({self.timezone!r})"

    # ------------------------------------------------------------------
    # Component conversions
    # ------------------------------------------------------------------

    def to_local_components(self, instant: datetime) -> LocalComponents:
        """Project an instant onto local wall-clock components."""
        local = ensure_utc(instant).astimezone(self.zone)
        return LocalComponents.from_naive(local.replace(tzinfo=None))

    def from_local_components(self, components: LocalComponents) -> datetime:
        """
        Resolve local wall-clock components to a UTC instant.

        Ambiguous wall-clock times (DST fall-back) resolve to the earlier
        instant. Times inside a DST gap resolve with the pre-transition
        offset, which lands on the first valid instant after the gap.
        """
        local = components.to_naive().replace(tzinfo=self.zone)
        return local.astimezone(UTC)

    def local_offset(self, instant: datetime) -> int:
        """
        Signed offset of local time from UTC at ``instant``, in milliseconds.

        Both the UTC and the local components of the same instant are read as
        if they were UTC wall-clock values and differenced.
        """
        utc_instant = ensure_utc(instant)
        utc_wall = utc_instant.replace(tzinfo=None)
        local_wall = utc_instant.astimezone(self.zone).replace(tzinfo=None)
        delta = local_wall - utc_wall
        return int(delta.total_seconds() * 1000)

    def offset_string(self, instant: datetime) -> str:
        """Offset at ``instant`` formatted as ``+HH:MM`` / ``-HH:MM``."""
        offset_ms = self.local_offset(instant)
        sign = "+" if offset_ms >= 0 else "-"
        hours, minutes = divmod(abs(offset_ms) // 60000, 60)
        return f"{sign}{hours:02d}:{minutes:02d}"

    def local_iso(self, instant: datetime) -> str:
        """Local ISO-8601 timestamp with the offset actually in effect."""
        local = ensure_utc(instant).astimezone(self.zone)
        return local.replace(microsecond=0, tzinfo=None).isoformat() + self.offset_string(instant)

    # ------------------------------------------------------------------
    # Day / week / month helpers
    # ------------------------------------------------------------------

    def local_date(self, instant: datetime) -> date:
        return self.to_local_components(instant).date

    def start_of_date(self, day: date) -> datetime:
        """First instant of a local calendar date."""
        return self.from_local_components(LocalComponents(day.year, day.month, day.day))

    def end_of_date(self, day: date) -> datetime:
        """Last millisecond of a local calendar date."""
        return self.start_of_date(day + timedelta(days=1)) - ONE_MILLISECOND

    def start_of_day(self, instant: datetime) -> datetime:
        return self.start_of_date(self.local_date(instant))

    def end_of_day(self, instant: datetime) -> datetime:
        return self.end_of_date(self.local_date(instant))

    def start_of_week(self, instant: datetime) -> datetime:
        """Local midnight of the most recent Sunday."""
        return self.start_of_date(most_recent_sunday(self.local_date(instant)))

    def start_of_month(self, instant: datetime) -> datetime:
        local = self.local_date(instant)
        return self.start_of_date(local.replace(day=1))

    def start_of_year(self, instant: datetime) -> datetime:
        local = self.local_date(instant)
        return self.start_of_date(date(local.year, 1, 1))

    def shift_months(self, instant: datetime, months: int) -> datetime:
        """Local midnight on the first day of the month ``months`` away."""
        local = self.local_date(instant)
        year, month = add_months(local.year, local.month, months)
        return self.start_of_date(date(year, month, 1))

    def is_valid_wall_time(self, components: LocalComponents) -> bool:
        """False for wall-clock times skipped by a DST transition."""
        return self.to_local_components(self.from_local_components(components)) == components


def most_recent_sunday(day: date) -> date:
    """The Sunday on or before ``day``."""
    # date.weekday(): Monday=0 .. Sunday=6
    return day - timedelta(days=(day.weekday() + 1) % 7)


def add_months(year: int, month: int, months: int) -> tuple:
    index = year * 12 + (month - 1) + months
    return index // 12, index % 12 + 1


def days_in_month(year: int, month: int) -> int:
    next_year, next_month = add_months(year, month, 1)
    return (date(next_year, next_month, 1) - date(year, month, 1)).days
