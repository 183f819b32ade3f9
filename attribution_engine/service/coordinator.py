"""
Dashboard Request Coordinator

Keeps at most one in-flight computation per dashboard view. A new request
for a view cancels the previous one, so a slow stale result can never
overwrite a fresher one.
"""

import asyncio
from datetime import datetime
from typing import Dict, Hashable, Optional, Union

import structlog

from attribution_engine.service.dashboard import DashboardResult, DashboardService
from attribution_engine.temporal.buckets import Granularity
from attribution_engine.temporal.periods import PeriodExpression

logger = structlog.get_logger(__name__)


class DashboardCoordinator:
    """
    Cancels superseded dashboard computations.

    The awaiting caller of a superseded request receives
    ``asyncio.CancelledError``.
    """

    def __init__(self, service: DashboardService):
        self.service = service
        self._inflight: Dict[Hashable, asyncio.Task] = {}

    def inflight(self, view_key: Hashable) -> Optional[asyncio.Task]:
        return self._inflight.get(view_key)

    async def request(
        self,
        view_key: Hashable,
        website_id: str,
        period_expr: Union[str, PeriodExpression],
        granularity: Union[str, Granularity],
        timezone: str,
        as_of: Optional[datetime] = None,
    ) -> DashboardResult:
        previous = self._inflight.get(view_key)
        if previous is not None and not previous.done():
            previous.cancel()
            logger.info("Cancelled superseded dashboard request", view=str(view_key), website_id=website_id)

        task = asyncio.create_task(
            self.service.compute_dashboard(website_id, period_expr, granularity, timezone, as_of=as_of)
        )
        self._inflight[view_key] = task
        try:
            return await task
        finally:
            if self._inflight.get(view_key) is task:
                del self._inflight[view_key]

    async def cancel_all(self) -> None:
        """Cancel every in-flight computation and wait for them to settle."""
        tasks = [t for t in self._inflight.values() if not t.done()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._inflight.clear()
