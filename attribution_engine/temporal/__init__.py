"""
Temporal Module

Timezone calendar, period resolution and bucket generation.
"""
from .calendar import LocalComponents, TimezoneCalendar, get_zone
from .periods import PeriodContext, PeriodExpression, PeriodKeyword, PeriodResolver, ResolvedRange
from .buckets import BucketDescriptor, BucketGenerator, Granularity

__all__ = [
    "LocalComponents",
    "TimezoneCalendar",
    "get_zone",
    "PeriodContext",
    "PeriodExpression",
    "PeriodKeyword",
    "PeriodResolver",
    "ResolvedRange",
    "BucketDescriptor",
    "BucketGenerator",
    "Granularity",
]
