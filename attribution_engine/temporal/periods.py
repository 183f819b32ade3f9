"""
Period Resolution

Maps human-friendly period expressions onto exact, timezone-correct
instant ranges.

Supported expressions:
- Day periods: today, yesterday
- Rolling windows: last24h, last7d, last30d, last12m
- To-date periods: week / month / year to date
- all / all time (bounded by the earliest known data point)
- custom:YYYY-MM-DD:YYYY-MM-DD
"""

import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Optional, Union

import structlog

from attribution_engine.config import get_settings
from attribution_engine.exceptions import InvalidPeriodExpressionError
from attribution_engine.temporal.calendar import (
    ONE_MILLISECOND,
    UTC,
    LocalComponents,
    TimezoneCalendar,
    ensure_utc,
)

logger = structlog.get_logger(__name__)

CUSTOM_PREFIX = "custom:"
_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class PeriodKeyword(str, Enum):
    """Named periods understood by the resolver"""
    TODAY = "today"
    YESTERDAY = "yesterday"
    LAST_24H = "last24h"
    LAST_7D = "last7d"
    LAST_30D = "last30d"
    LAST_12M = "last12m"
    WEEK_TO_DATE = "week to date"
    MONTH_TO_DATE = "month to date"
    YEAR_TO_DATE = "year to date"
    ALL_TIME = "all time"


_ALIASES = {
    "today": PeriodKeyword.TODAY,
    "yesterday": PeriodKeyword.YESTERDAY,
    "last24h": PeriodKeyword.LAST_24H,
    "last 24 hours": PeriodKeyword.LAST_24H,
    "last7d": PeriodKeyword.LAST_7D,
    "last7days": PeriodKeyword.LAST_7D,
    "last 7 days": PeriodKeyword.LAST_7D,
    "last30d": PeriodKeyword.LAST_30D,
    "last30days": PeriodKeyword.LAST_30D,
    "last 30 days": PeriodKeyword.LAST_30D,
    "last12m": PeriodKeyword.LAST_12M,
    "last12months": PeriodKeyword.LAST_12M,
    "last 12 months": PeriodKeyword.LAST_12M,
    "week": PeriodKeyword.WEEK_TO_DATE,
    "week to date": PeriodKeyword.WEEK_TO_DATE,
    "month": PeriodKeyword.MONTH_TO_DATE,
    "month to date": PeriodKeyword.MONTH_TO_DATE,
    "year": PeriodKeyword.YEAR_TO_DATE,
    "year to date": PeriodKeyword.YEAR_TO_DATE,
    "all": PeriodKeyword.ALL_TIME,
    "all time": PeriodKeyword.ALL_TIME,
}


def normalize_keyword(text: str) -> Optional[PeriodKeyword]:
    """Map any accepted spelling (``Last 7 days``, ``month_to_date``) to a keyword."""
    cleaned = re.sub(r"[\s_\-]+", " ", text.strip().lower())
    return _ALIASES.get(cleaned)


@dataclass(frozen=True)
class PeriodExpression:
    """
    Tagged period value: either a named keyword or an inclusive custom
    date range.

    ``raw`` keeps the caller's text so unrecognized keywords can be logged.
    """
    keyword: Optional[PeriodKeyword] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    raw: str = ""

    @property
    def is_custom(self) -> bool:
        return self.start_date is not None

    @property
    def is_all_time(self) -> bool:
        return self.keyword == PeriodKeyword.ALL_TIME

    @classmethod
    def named(cls, keyword: Union[str, PeriodKeyword]) -> "PeriodExpression":
        if isinstance(keyword, PeriodKeyword):
            return cls(keyword=keyword, raw=keyword.value)
        return cls(keyword=normalize_keyword(keyword), raw=keyword)

    @classmethod
    def custom(cls, start_date: date, end_date: date) -> "PeriodExpression":
        if end_date < start_date:
            raise InvalidPeriodExpressionError(
                f"{CUSTOM_PREFIX}{start_date.isoformat()}:{end_date.isoformat()}",
                "end date precedes start date",
            )
        return cls(
            start_date=start_date,
            end_date=end_date,
            raw=f"{CUSTOM_PREFIX}{start_date.isoformat()}:{end_date.isoformat()}",
        )

    @classmethod
    def parse(cls, text: str) -> "PeriodExpression":
        """
        Parse a period string.

        Unknown keywords parse to an expression without a keyword; only a
        malformed ``custom:`` string is an error.

        Raises:
            InvalidPeriodExpressionError: Malformed custom range
        """
        stripped = (text or "").strip()
        if not stripped.lower().startswith(CUSTOM_PREFIX):
            return cls.named(stripped)

        parts = stripped.split(":")
        if len(parts) != 3:
            raise InvalidPeriodExpressionError(text, "expected custom:YYYY-MM-DD:YYYY-MM-DD")

        start_text, end_text = parts[1], parts[2]
        if not (_DATE_PATTERN.match(start_text) and _DATE_PATTERN.match(end_text)):
            raise InvalidPeriodExpressionError(text, "dates must be YYYY-MM-DD")
        try:
            start_date = date.fromisoformat(start_text)
            end_date = date.fromisoformat(end_text)
        except ValueError as e:
            raise InvalidPeriodExpressionError(text, str(e)) from e

        return cls.custom(start_date, end_date)

    def __str__(self) -> str:
        if self.is_custom:
            return self.raw
        return self.keyword.value if self.keyword else self.raw


@dataclass(frozen=True)
class ResolvedRange:
    """Closed instant range ``[start, end]`` in UTC"""
    start: datetime
    end: datetime
    keyword: Optional[PeriodKeyword] = None

    def __post_init__(self):
        if self.start > self.end:
            raise ValueError(f"Range start {self.start} is after end {self.end}")

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def is_all_time(self) -> bool:
        return self.keyword == PeriodKeyword.ALL_TIME

    def contains(self, instant: datetime) -> bool:
        return self.start <= ensure_utc(instant) <= self.end

    def previous(self) -> "ResolvedRange":
        """The range of equal duration ending 1 ms before this one starts."""
        previous_end = self.start - ONE_MILLISECOND
        return ResolvedRange(start=previous_end - self.duration, end=previous_end)

    def to_dict(self) -> dict:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


@dataclass(frozen=True)
class PeriodContext:
    """Inputs that make resolution a pure function"""
    now: Optional[datetime] = None
    earliest_instant: Optional[datetime] = None


class PeriodResolver:
    """
    Resolves period expressions into instant ranges.

    Named periods are computed in the requested timezone. Custom ranges are
    read as literal wall-clock dates in ``custom_timezone``.
    """

    def __init__(
        self,
        custom_timezone: Optional[str] = None,
        all_time_max_years: Optional[int] = None,
    ):
        engine_settings = get_settings().engine
        self.custom_timezone = custom_timezone or engine_settings.custom_range_timezone
        self.all_time_max_years = all_time_max_years or engine_settings.all_time_max_years

    def resolve(
        self,
        expr: Union[str, PeriodExpression],
        timezone: str,
        context: Optional[PeriodContext] = None,
    ) -> ResolvedRange:
        """
        Resolve ``expr`` in ``timezone``.

        Args:
            expr: Period string or parsed expression
            timezone: IANA timezone of the website
            context: Clock and earliest-data inputs; ``now`` defaults to the
                current time

        Returns:
            ResolvedRange with ``start <= end``

        Raises:
            InvalidTimezoneError: Unknown timezone identifier
        """
        calendar = TimezoneCalendar(timezone)
        context = context or PeriodContext()
        now = ensure_utc(context.now) if context.now else datetime.now(UTC)

        if isinstance(expr, str):
            try:
                expr = PeriodExpression.parse(expr)
            except InvalidPeriodExpressionError as e:
                logger.warning(
                    "Malformed period expression, falling back to today",
                    expression=e.expression,
                    reason=e.reason,
                )
                expr = PeriodExpression.named(PeriodKeyword.TODAY)

        if expr.is_custom:
            resolved = self._resolve_custom(expr)
        else:
            keyword = expr.keyword
            if keyword is None:
                logger.debug("Unrecognized period keyword, using today", expression=expr.raw)
                keyword = PeriodKeyword.TODAY
            resolved = self._resolve_named(keyword, calendar, now, context.earliest_instant)

        logger.debug(
            "Period resolved",
            period=str(expr),
            timezone=timezone,
            start=resolved.start.isoformat(),
            end=resolved.end.isoformat(),
        )
        return resolved

    def _resolve_custom(self, expr: PeriodExpression) -> ResolvedRange:
        wall_clock = TimezoneCalendar(self.custom_timezone)
        start = wall_clock.from_local_components(
            LocalComponents(expr.start_date.year, expr.start_date.month, expr.start_date.day)
        )
        end = wall_clock.from_local_components(
            LocalComponents(expr.end_date.year, expr.end_date.month, expr.end_date.day, 23, 59, 59)
        )
        return ResolvedRange(start=start, end=end)

    def _resolve_named(
        self,
        keyword: PeriodKeyword,
        calendar: TimezoneCalendar,
        now: datetime,
        earliest_instant: Optional[datetime],
    ) -> ResolvedRange:
        if keyword == PeriodKeyword.TODAY:
            start, end = calendar.start_of_day(now), calendar.end_of_day(now)

        elif keyword == PeriodKeyword.YESTERDAY:
            yesterday = calendar.local_date(now) - timedelta(days=1)
            start, end = calendar.start_of_date(yesterday), calendar.end_of_date(yesterday)

        elif keyword == PeriodKeyword.LAST_24H:
            start, end = now - timedelta(hours=24), now

        elif keyword == PeriodKeyword.LAST_7D:
            start, end = calendar.start_of_day(now - timedelta(days=7)), now

        elif keyword == PeriodKeyword.LAST_30D:
            start, end = calendar.start_of_day(now - timedelta(days=30)), now

        elif keyword == PeriodKeyword.LAST_12M:
            start, end = calendar.shift_months(now, -12), calendar.end_of_day(now)

        elif keyword == PeriodKeyword.WEEK_TO_DATE:
            start, end = calendar.start_of_week(now), calendar.end_of_day(now)

        elif keyword == PeriodKeyword.MONTH_TO_DATE:
            start, end = calendar.start_of_month(now), calendar.end_of_day(now)

        elif keyword == PeriodKeyword.YEAR_TO_DATE:
            start, end = calendar.start_of_year(now), calendar.end_of_day(now)

        else:
            floor = now - timedelta(days=365 * self.all_time_max_years)
            lower = floor
            if earliest_instant is not None:
                lower = min(max(ensure_utc(earliest_instant), floor), now)
            start, end = calendar.start_of_month(lower), calendar.end_of_day(now)

        return ResolvedRange(start=start, end=end, keyword=keyword)
