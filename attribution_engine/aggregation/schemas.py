"""
Aggregation Output Schemas

Engine-computed results. Numeric fields are integer cents and raw counts;
``to_payload()`` converts them to the camelCase, currency-unit shape the
presentation layer consumes.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from attribution_engine.metrics.money import cents_to_units, percentage


class BreakdownGroup(str, Enum):
    """Dashboard panels"""
    SOURCE = "source"
    PATH = "path"
    LOCATION = "location"
    SYSTEM = "system"


class BreakdownDimension(str, Enum):
    """Dimensions a breakdown can group by"""
    CHANNEL = "channel"
    REFERRER = "referrer"
    CAMPAIGN = "campaign"
    KEYWORD = "keyword"
    ENTRY_PAGE = "entry_page"
    HOSTNAME = "hostname"
    COUNTRY = "country"
    REGION = "region"
    CITY = "city"
    BROWSER = "browser"
    OS = "os"
    DEVICE = "device"

    @property
    def group(self) -> BreakdownGroup:
        return DIMENSION_GROUPS[self]


DIMENSION_GROUPS: Dict[BreakdownDimension, BreakdownGroup] = {
    BreakdownDimension.CHANNEL: BreakdownGroup.SOURCE,
    BreakdownDimension.REFERRER: BreakdownGroup.SOURCE,
    BreakdownDimension.CAMPAIGN: BreakdownGroup.SOURCE,
    BreakdownDimension.KEYWORD: BreakdownGroup.SOURCE,
    BreakdownDimension.ENTRY_PAGE: BreakdownGroup.PATH,
    BreakdownDimension.HOSTNAME: BreakdownGroup.PATH,
    BreakdownDimension.COUNTRY: BreakdownGroup.LOCATION,
    BreakdownDimension.REGION: BreakdownGroup.LOCATION,
    BreakdownDimension.CITY: BreakdownGroup.LOCATION,
    BreakdownDimension.BROWSER: BreakdownGroup.SYSTEM,
    BreakdownDimension.OS: BreakdownGroup.SYSTEM,
    BreakdownDimension.DEVICE: BreakdownGroup.SYSTEM,
}


class TimeSeriesPoint(BaseModel):
    """
    One bucket of the dashboard time series.

    ``None`` means the stream had no data for the bucket (or the bucket is
    in the future); ``0`` is a real zero.
    """
    bucket_key: str
    label: str
    timestamp: str
    utc_offset: str
    is_future: bool = False
    visitors: Optional[int] = None
    revenue_new_cents: Optional[int] = None
    revenue_renewal_cents: Optional[int] = None
    revenue_refund_cents: Optional[int] = None
    customers: Optional[int] = None
    sales: Optional[int] = None
    goal_count: Optional[int] = None

    @property
    def revenue_new(self) -> Optional[float]:
        return cents_to_units(self.revenue_new_cents)

    @property
    def revenue_renewal(self) -> Optional[float]:
        return cents_to_units(self.revenue_renewal_cents)

    @property
    def revenue_refund(self) -> Optional[float]:
        return cents_to_units(self.revenue_refund_cents)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "bucketKey": self.bucket_key,
            "date": self.label,
            "timestamp": self.timestamp,
            "utcOffset": self.utc_offset,
            "isFuture": self.is_future,
            "visitors": self.visitors,
            "revenueNew": self.revenue_new,
            "revenueRenewal": self.revenue_renewal,
            "revenueRefund": self.revenue_refund,
            "customers": self.customers,
            "sales": self.sales,
            "goalCount": self.goal_count,
        }


class BreakdownRow(BaseModel):
    """Metrics for one value of a breakdown dimension"""
    name: str
    unique_visitors: int = 0
    sessions: int = 0
    converted_sessions: int = 0
    revenue_new_cents: int = 0
    revenue_renewal_cents: int = 0
    revenue_refund_cents: int = 0
    payment_count: int = 0
    goal_count: int = 0
    goal_visitors: int = 0
    icon: Optional[str] = None
    children: List["BreakdownRow"] = Field(default_factory=list)

    @property
    def revenue_cents(self) -> int:
        return self.revenue_new_cents + self.revenue_renewal_cents

    @property
    def revenue(self) -> float:
        return cents_to_units(self.revenue_cents)

    @property
    def revenue_new(self) -> float:
        return cents_to_units(self.revenue_new_cents)

    @property
    def revenue_renewal(self) -> float:
        return cents_to_units(self.revenue_renewal_cents)

    @property
    def revenue_refund(self) -> float:
        return cents_to_units(self.revenue_refund_cents)

    @property
    def conversion_rate(self) -> float:
        """Converted sessions per session, as a percentage."""
        return percentage(self.converted_sessions, self.sessions)

    @property
    def goal_conversion_rate(self) -> float:
        """Visitors with a goal event per unique visitor, as a percentage."""
        return percentage(self.goal_visitors, self.unique_visitors)

    def to_payload(self) -> Dict[str, Any]:
        payload = {
            "name": self.name,
            "uniqueVisitors": self.unique_visitors,
            "sessions": self.sessions,
            "revenue": self.revenue,
            "revenueNew": self.revenue_new,
            "revenueRenewal": self.revenue_renewal,
            "revenueRefund": self.revenue_refund,
            "paymentCount": self.payment_count,
            "conversionRate": self.conversion_rate,
            "goalCount": self.goal_count,
            "goalConversionRate": self.goal_conversion_rate,
        }
        if self.icon is not None:
            payload["icon"] = self.icon
        if self.children:
            payload["children"] = [child.to_payload() for child in self.children]
        return payload


class BreakdownResult(BaseModel):
    """Rows for one dimension, or an explicit unavailable marker"""
    dimension: BreakdownDimension
    available: bool = True
    rows: List[BreakdownRow] = Field(default_factory=list)
    error: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "dimension": self.dimension.value,
            "available": self.available,
            "error": self.error,
            "rows": [row.to_payload() for row in self.rows],
        }


@dataclass
class RangeSummary:
    """Range-level counts behind the dashboard totals"""
    visitors: int = 0
    sessions: int = 0
    converted_sessions: int = 0
    revenue_new_cents: int = 0
    revenue_renewal_cents: int = 0
    revenue_refund_cents: int = 0
    customers: int = 0
    sales: int = 0
    goals: int = 0
    goal_visitors: int = 0

    @property
    def revenue_cents(self) -> int:
        return self.revenue_new_cents + self.revenue_renewal_cents
