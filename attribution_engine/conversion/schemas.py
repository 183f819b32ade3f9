"""
Conversion Snapshot Schemas

Pydantic models for the 30-day conversion snapshot. Field names are
snake_case in Python and camelCase on the wire.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class SnapshotModel(BaseModel):
    """Base for snapshot models: camelCase aliases, populate by name"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class VisitBucket(SnapshotModel):
    count: int = 0
    percentage: float = 0.0
    total_revenue: float = 0.0


class VisitsToConversion(SnapshotModel):
    distribution: Dict[str, VisitBucket]
    average: float = 0.0
    median: float = 0.0


class TimeToConversion(SnapshotModel):
    distribution: Dict[str, VisitBucket]
    average_hours: float = 0.0
    median_hours: float = 0.0


class HourlyCell(SnapshotModel):
    count: int = 0
    revenue: float = 0.0
    average_value: float = 0.0


class PeakDayHour(SnapshotModel):
    day: str = "sunday"
    hour: int = 0
    count: int = 0


class PurchaseTimePatterns(SnapshotModel):
    peak_day_hour: PeakDayHour
    hourly_distribution: Dict[str, HourlyCell]
    peak_day: str = "sunday"
    peak_hour: int = 0


class DimensionRow(SnapshotModel):
    visitors: int = 0
    conversions: int = 0
    conversion_rate: float = 0.0
    total_revenue: float = 0.0
    average_value: float = 0.0
    average_visits_to_conversion: Optional[float] = None


class ConversionDimensions(SnapshotModel):
    devices: Dict[str, DimensionRow] = Field(default_factory=dict)
    operating_systems: Dict[str, DimensionRow] = Field(default_factory=dict)
    browsers: Dict[str, DimensionRow] = Field(default_factory=dict)
    countries: Dict[str, DimensionRow] = Field(default_factory=dict)
    referrers: Dict[str, DimensionRow] = Field(default_factory=dict)


class CustomEventRow(SnapshotModel):
    count: int = 0
    total_conversions: int = 0
    conversion_rate: float = 0.0
    average_time_to_conversion: float = 0.0
    description: str = ""
    total_revenue: float = 0.0
    average_value: float = 0.0


class TimeRange(SnapshotModel):
    start_date: str
    end_date: str


class RevenuePerVisitorPoint(SnapshotModel):
    date: str
    value: float


class ConversionMetricsPayload(SnapshotModel):
    """Trailing-window conversion analytics for one website"""
    website_id: str
    visits_to_conversion: VisitsToConversion
    time_to_conversion: TimeToConversion
    purchase_time_patterns: PurchaseTimePatterns
    dimensions: ConversionDimensions
    time_range: TimeRange
    total_visitors: int = 0
    total_conversions: int = 0
    baseline_conversion_rate: float = 0.0
    baseline_average_value: float = 0.0
    total_revenue: float = 0.0
    average_daily_visitors: int = 0
    average_daily_revenue: int = 0
    custom_events: Dict[str, CustomEventRow] = Field(default_factory=dict)
    revenue_per_visitor_over_time: List[RevenuePerVisitorPoint] = Field(default_factory=list)
    status: str = "completed"
    created_at: str
    updated_at: str
    processing_time: Optional[float] = None

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True)
