"""
Unit Tests - Dashboard Service
"""
import asyncio
import pytest
from datetime import datetime, timezone

from attribution_engine.aggregation import BreakdownDimension, BreakdownGroup, EventJoinAggregator
from attribution_engine.exceptions import InvalidTimezoneError, StoreUnavailableError
from attribution_engine.service import DashboardCoordinator, DashboardService, compute_dashboard
from attribution_engine.store import InMemoryEventStore, PaymentFact, SessionFact
from attribution_engine.temporal.buckets import Granularity

WEBSITE_ID = "site-1"


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


AS_OF = utc(2024, 1, 10, 12)


class FlakyAggregator(EventJoinAggregator):
    """Aggregator whose country breakdown and previous-period summary can fail"""

    def __init__(self, store, fail_dimension=None, fail_previous_summary=False):
        super().__init__(store)
        self.fail_dimension = fail_dimension
        self.fail_previous_summary = fail_previous_summary
        self.summary_calls = 0

    async def aggregate_breakdown(self, website_id, range_, dimension):
        if dimension == self.fail_dimension:
            raise StoreUnavailableError("query_sessions")
        return await super().aggregate_breakdown(website_id, range_, dimension)

    async def aggregate_summary(self, website_id, range_):
        self.summary_calls += 1
        if self.fail_previous_summary and self.summary_calls > 1:
            raise StoreUnavailableError("query_payments")
        return await super().aggregate_summary(website_id, range_)


class GatedStore(InMemoryEventStore):
    """Store whose session query blocks until released"""

    def __init__(self):
        super().__init__()
        self.gate = asyncio.Event()

    async def query_sessions(self, website_id, range_):
        await self.gate.wait()
        return await super().query_sessions(website_id, range_)


class TestComputeDashboard:
    """Tests for DashboardService.compute_dashboard"""

    async def test_fan_out(self, sample_store):
        """Test a full dashboard over one week"""
        result = await compute_dashboard(sample_store, WEBSITE_ID, "last7d", "daily", "UTC", as_of=AS_OF)

        assert result.granularity == Granularity.DAILY
        assert result.range.start == utc(2024, 1, 3)
        assert len(result.series) == 8
        assert result.totals.visitors == 3
        assert result.totals.sessions == 4
        assert result.totals.revenue_cents == 6999
        assert result.totals.conversion_rate == 50.0

        assert set(result.breakdowns) == set(BreakdownGroup)
        assert sum(len(dims) for dims in result.breakdowns.values()) == len(BreakdownDimension)
        assert all(
            r.available for dims in result.breakdowns.values() for r in dims.values()
        )
        assert result.breakdown(BreakdownDimension.CHANNEL).rows[0].name == "Direct"

    async def test_percentage_change_against_empty_previous(self, sample_store):
        """Test growth from an empty previous period"""
        result = await compute_dashboard(sample_store, WEBSITE_ID, "last7d", "daily", "UTC", as_of=AS_OF)

        assert result.previous_range.end < result.range.start
        assert result.percentage_change["totalVisitors"] == "100.0"
        assert result.percentage_change["totalRefundedRevenue"] == "100.0"
        assert result.percentage_change["totalGoal"] == "100.0"

    async def test_all_time_has_no_previous_range(self, sample_store):
        """Test all-time dashboards use the flat change map"""
        result = await compute_dashboard(sample_store, WEBSITE_ID, "all", "monthly", "UTC", as_of=AS_OF)

        assert result.range.start == utc(2024, 1, 1)
        assert result.previous_range is None
        assert result.percentage_change["totalRevenue"] == "0.0"
        assert result.percentage_change["totalVisitors"] is None
        assert "earliest_instant" in sample_store.calls

    async def test_payload(self, sample_store):
        """Test the serialized dashboard"""
        result = await compute_dashboard(sample_store, WEBSITE_ID, "last7d", "daily", "UTC", as_of=AS_OF)
        payload = result.to_payload()

        assert payload["websiteId"] == WEBSITE_ID
        assert payload["totalVisitors"] == 3
        assert payload["totalRevenue"] == 69.99
        assert payload["currency"] == "$"
        assert payload["breakdowns"]["source"]["channel"]["available"] is True
        assert payload["series"][0]["bucketKey"] == "2024-01-03"

    async def test_unavailable_dimension(self, sample_store):
        """Test one failing breakdown does not fail the dashboard"""
        service = DashboardService(
            sample_store,
            aggregator=FlakyAggregator(sample_store, fail_dimension=BreakdownDimension.COUNTRY),
        )

        result = await service.compute_dashboard(WEBSITE_ID, "last7d", "daily", "UTC", as_of=AS_OF)

        country = result.breakdown(BreakdownDimension.COUNTRY)
        assert country.available is False
        assert country.rows == []
        assert "query_sessions" in country.error
        assert result.breakdown(BreakdownDimension.CITY).available
        assert len(result.series) == 8

    async def test_referenced_session_lookup_failure(self, sample_store):
        """Test breakdowns degrade when older sessions cannot be fetched"""
        sample_store.add_sessions(WEBSITE_ID, SessionFact("s-old", "v7", utc(2023, 12, 1)))
        sample_store.add_payments(WEBSITE_ID, PaymentFact("s-old", "v7", 500, utc(2024, 1, 9), payment_id="p-old"))
        sample_store.fail_on.add("query_sessions_by_ids")

        result = await compute_dashboard(sample_store, WEBSITE_ID, "last7d", "daily", "UTC", as_of=AS_OF)

        assert not any(r.available for dims in result.breakdowns.values() for r in dims.values())
        assert result.totals.revenue_cents == 7499

    async def test_time_series_failure_propagates(self, sample_store):
        """Test a store outage on the time series fails the request"""
        sample_store.fail_on.add("query_goal_events")

        with pytest.raises(StoreUnavailableError):
            await compute_dashboard(sample_store, WEBSITE_ID, "last7d", "daily", "UTC", as_of=AS_OF)

    async def test_previous_period_failure_yields_null_changes(self, sample_store):
        """Test a failed comparison leaves every change None"""
        service = DashboardService(
            sample_store,
            aggregator=FlakyAggregator(sample_store, fail_previous_summary=True),
        )

        result = await service.compute_dashboard(WEBSITE_ID, "last7d", "daily", "UTC", as_of=AS_OF)

        assert result.totals.visitors == 3
        assert all(value is None for value in result.percentage_change.values())

    async def test_invalid_timezone(self, sample_store):
        """Test unknown zones fail before any query"""
        with pytest.raises(InvalidTimezoneError):
            await compute_dashboard(sample_store, WEBSITE_ID, "today", "hourly", "Moon/Tranquility", as_of=AS_OF)

    async def test_malformed_period_falls_back_to_today(self, sample_store):
        """Test a malformed custom range renders today"""
        result = await compute_dashboard(
            sample_store, WEBSITE_ID, "custom:2024-13-01:2024-01-01", "hourly", "UTC", as_of=AS_OF
        )

        assert result.range.start == utc(2024, 1, 10)
        assert len(result.series) == 24
        assert result.series[12].is_future is False
        assert result.series[13].is_future is True


class TestDashboardCoordinator:
    """Tests for superseded request cancellation"""

    async def test_new_request_cancels_previous(self):
        """Test the stale computation is cancelled"""
        store = GatedStore()
        coordinator = DashboardCoordinator(DashboardService(store))

        first = asyncio.create_task(
            coordinator.request("view-1", WEBSITE_ID, "today", "hourly", "UTC", as_of=AS_OF)
        )
        await asyncio.sleep(0)
        stale = coordinator.inflight("view-1")
        assert stale is not None

        second = asyncio.create_task(
            coordinator.request("view-1", WEBSITE_ID, "last7d", "daily", "UTC", as_of=AS_OF)
        )
        await asyncio.sleep(0)
        store.gate.set()

        result = await second
        assert result.granularity == Granularity.DAILY
        assert stale.cancelled()
        with pytest.raises(asyncio.CancelledError):
            await first
        assert coordinator.inflight("view-1") is None

    async def test_independent_views(self, sample_store):
        """Test requests for different views do not interfere"""
        coordinator = DashboardCoordinator(DashboardService(sample_store))

        a, b = await asyncio.gather(
            coordinator.request("view-a", WEBSITE_ID, "last7d", "daily", "UTC", as_of=AS_OF),
            coordinator.request("view-b", WEBSITE_ID, "today", "hourly", "UTC", as_of=AS_OF),
        )

        assert a.granularity == Granularity.DAILY
        assert b.granularity == Granularity.HOURLY

    async def test_cancel_all(self):
        """Test shutdown cancels every in-flight request"""
        store = GatedStore()
        coordinator = DashboardCoordinator(DashboardService(store))

        task = asyncio.create_task(
            coordinator.request("view-1", WEBSITE_ID, "today", "hourly", "UTC", as_of=AS_OF)
        )
        await asyncio.sleep(0)

        await coordinator.cancel_all()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert coordinator.inflight("view-1") is None
