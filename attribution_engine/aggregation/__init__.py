"""
Aggregation Module

Joins session, payment and goal-event facts into time series, breakdowns
and range summaries.
"""
from .aggregator import EventJoinAggregator
from .breakdowns import build_breakdown
from .schemas import (
    BreakdownDimension,
    BreakdownGroup,
    BreakdownResult,
    BreakdownRow,
    RangeSummary,
    TimeSeriesPoint,
)
from .summary import build_summary
from .timeseries import build_time_series

__all__ = [
    "EventJoinAggregator",
    "build_breakdown",
    "build_summary",
    "build_time_series",
    "BreakdownDimension",
    "BreakdownGroup",
    "BreakdownResult",
    "BreakdownRow",
    "RangeSummary",
    "TimeSeriesPoint",
]
