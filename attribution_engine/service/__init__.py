"""
Service Module

Dashboard computation and request coordination.
"""
from datetime import datetime
from typing import Optional, Union

from .coordinator import DashboardCoordinator
from .dashboard import DashboardResult, DashboardService

from attribution_engine.store.base import EventStore
from attribution_engine.temporal.buckets import Granularity
from attribution_engine.temporal.periods import PeriodExpression


async def compute_dashboard(
    store: EventStore,
    website_id: str,
    period_expr: Union[str, PeriodExpression],
    granularity: Union[str, Granularity],
    timezone: str,
    as_of: Optional[datetime] = None,
) -> DashboardResult:
    """Compute a dashboard with a default-configured service."""
    return await DashboardService(store).compute_dashboard(
        website_id, period_expr, granularity, timezone, as_of=as_of
    )


__all__ = [
    "DashboardCoordinator",
    "DashboardResult",
    "DashboardService",
    "compute_dashboard",
]
