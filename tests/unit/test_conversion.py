"""
Unit Tests - Conversion Analytics
"""
import asyncio
import pytest
from datetime import datetime, timezone

from attribution_engine.conversion import ConversionAnalyticsEngine
from attribution_engine.conversion.engine import referrer_key, time_bucket, weekday_name
from attribution_engine.exceptions import InvalidTimezoneError
from attribution_engine.store import InMemoryEventStore, PaymentFact

WEBSITE_ID = "site-1"


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


AS_OF = utc(2024, 1, 10, 12)


class ConcurrencyTrackingStore(InMemoryEventStore):
    """Store recording how many reads are in flight at once"""

    def __init__(self):
        super().__init__()
        self.active = 0
        self.peak = 0

    async def _track(self, coro):
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(0.01)
            return await coro
        finally:
            self.active -= 1

    async def query_sessions(self, website_id, range_):
        return await self._track(super().query_sessions(website_id, range_))

    async def query_payments(self, website_id, range_):
        return await self._track(super().query_payments(website_id, range_))

    async def query_goal_events(self, website_id, range_):
        return await self._track(super().query_goal_events(website_id, range_))

    async def query_goals(self, website_id):
        return await self._track(super().query_goals(website_id))


@pytest.fixture
def engine(sample_store) -> ConversionAnalyticsEngine:
    return ConversionAnalyticsEngine(sample_store)


class TestHelpers:
    """Tests for bucket and key helpers"""

    @pytest.mark.parametrize("days,expected", [
        (0, "same_day"),
        (0.99, "same_day"),
        (1, "day_1"),
        (10.5, "day_10"),
        (11, "days_11_15"),
        (20.9, "days_16_20"),
        (30, "days_21_30"),
        (31, "days_30_plus"),
    ])
    def test_time_bucket(self, days, expected):
        """Test elapsed days map onto distribution keys"""
        assert time_bucket(days) == expected

    def test_weekday_name(self):
        """Test weekday names start the week on Sunday"""
        assert weekday_name(utc(2024, 1, 8).weekday()) == "monday"
        assert weekday_name(utc(2024, 1, 7).weekday()) == "sunday"

    def test_referrer_key(self):
        """Test referrer keys replace dots"""
        assert referrer_key("https://www.google.com/search") == "google_com"
        assert referrer_key(None) == "direct"


class TestConversionSnapshot:
    """Tests for ConversionAnalyticsEngine.compute_conversion_snapshot"""

    async def test_totals(self, engine):
        """Test refunded payments are not conversions"""
        snapshot = await engine.compute_conversion_snapshot(WEBSITE_ID, "UTC", as_of=AS_OF)

        assert snapshot.total_visitors == 3
        assert snapshot.total_conversions == 2
        assert snapshot.total_revenue == 69.99
        assert snapshot.baseline_conversion_rate == pytest.approx(2 / 3)
        assert snapshot.baseline_average_value == pytest.approx(34.995)
        assert snapshot.average_daily_visitors == 0
        assert snapshot.average_daily_revenue == 2
        assert snapshot.time_range.end_date == AS_OF.isoformat()
        assert snapshot.status == "completed"
        assert snapshot.processing_time is not None

    async def test_visits_to_conversion(self, engine):
        """Test the page view distribution of converting sessions"""
        snapshot = await engine.compute_conversion_snapshot(WEBSITE_ID, "UTC", as_of=AS_OF)
        visits = snapshot.visits_to_conversion

        assert len(visits.distribution) == 31
        assert visits.distribution["3"].count == 1
        assert visits.distribution["3"].percentage == 0.5
        assert visits.distribution["3"].total_revenue == 19.99
        assert visits.distribution["1"].total_revenue == 50.0
        assert visits.distribution["31+"].count == 0
        assert visits.average == 2.0
        assert visits.median == 2.0

    async def test_time_to_conversion(self, engine):
        """Test hours from first visit to payment"""
        snapshot = await engine.compute_conversion_snapshot(WEBSITE_ID, "UTC", as_of=AS_OF)
        elapsed = snapshot.time_to_conversion

        assert elapsed.distribution["same_day"].count == 2
        assert elapsed.distribution["same_day"].percentage == 1.0
        assert elapsed.distribution["days_30_plus"].count == 0
        assert elapsed.average_hours == 0.75

    async def test_purchase_time_patterns(self, engine):
        """Test the weekday x hour heatmap"""
        snapshot = await engine.compute_conversion_snapshot(WEBSITE_ID, "UTC", as_of=AS_OF)
        patterns = snapshot.purchase_time_patterns

        assert len(patterns.hourly_distribution) == 7 * 24
        assert patterns.hourly_distribution["monday_9"].count == 1
        assert patterns.hourly_distribution["monday_9"].average_value == 19.99
        assert patterns.hourly_distribution["tuesday_16"].revenue == 50.0
        assert (patterns.peak_day, patterns.peak_hour) == ("monday", 9)
        assert patterns.peak_day_hour.count == 1

    async def test_heatmap_uses_requested_timezone(self, engine):
        """Test purchases are bucketed in local time"""
        snapshot = await engine.compute_conversion_snapshot(WEBSITE_ID, "Asia/Calcutta", as_of=AS_OF)
        hourly = snapshot.purchase_time_patterns.hourly_distribution

        assert hourly["monday_15"].count == 1
        assert hourly["tuesday_21"].count == 1
        assert hourly["monday_9"].count == 0

    async def test_dimensions(self, engine):
        """Test conversion rates per dimension value"""
        snapshot = await engine.compute_conversion_snapshot(WEBSITE_ID, "UTC", as_of=AS_OF)
        dims = snapshot.dimensions

        assert dims.devices["desktop"].visitors == 2
        assert dims.devices["desktop"].conversions == 2
        assert dims.devices["desktop"].conversion_rate == 1.0
        assert dims.devices["desktop"].average_visits_to_conversion == 2.0
        assert dims.devices["mobile"].conversions == 0
        assert dims.devices["mobile"].average_visits_to_conversion is None

        assert dims.countries["US"].visitors == 2
        assert dims.countries["US"].conversion_rate == 0.5
        assert dims.browsers["firefox"].total_revenue == 50.0
        assert set(dims.referrers) == {"google_com", "facebook_com", "direct", "acme_substack_com"}

    async def test_sessionless_payment(self, sample_store):
        """Test payments without a session count in totals but not in dimension rows"""
        sample_store.add_payments(
            WEBSITE_ID,
            PaymentFact(None, "v9", 700, utc(2024, 1, 9, 10), payment_id="p-nosession"),
        )
        snapshot = await ConversionAnalyticsEngine(sample_store).compute_conversion_snapshot(
            WEBSITE_ID, "UTC", as_of=AS_OF
        )

        assert snapshot.total_conversions == 3
        assert snapshot.visits_to_conversion.distribution["1"].count == 2
        assert snapshot.time_to_conversion.distribution["same_day"].count == 3
        assert sum(row.conversions for row in snapshot.dimensions.devices.values()) == 2

    async def test_payment_outside_window(self, sample_store):
        """Test the trailing window bounds conversions"""
        sample_store.add_payments(
            WEBSITE_ID,
            PaymentFact("s1", "v1", 900, utc(2023, 12, 1), payment_id="p-old"),
        )
        snapshot = await ConversionAnalyticsEngine(sample_store).compute_conversion_snapshot(
            WEBSITE_ID, "UTC", as_of=AS_OF
        )

        assert snapshot.total_conversions == 2

    async def test_custom_events(self, engine):
        """Test goal attribution to converting visitors"""
        snapshot = await engine.compute_conversion_snapshot(WEBSITE_ID, "UTC", as_of=AS_OF)
        signup = snapshot.custom_events["signup"]

        assert signup.count == 1
        assert signup.total_conversions == 1
        assert signup.conversion_rate == 0.5
        assert signup.total_revenue == 19.99
        assert signup.description == "Account created"
        assert signup.average_time_to_conversion == 0.0

    async def test_goal_time_to_conversion(self, sample_store):
        """Test hours from first goal firing to the next payment"""
        sample_store.add_payments(
            WEBSITE_ID,
            PaymentFact("s4", "v1", 500, utc(2024, 1, 10, 11, 31), payment_id="p-after"),
        )
        snapshot = await ConversionAnalyticsEngine(sample_store).compute_conversion_snapshot(
            WEBSITE_ID, "UTC", as_of=AS_OF
        )

        assert snapshot.custom_events["signup"].average_time_to_conversion == pytest.approx(1.5)
        assert snapshot.custom_events["signup"].total_revenue == 24.99

    async def test_revenue_per_visitor(self, engine):
        """Test the daily revenue per visitor series"""
        snapshot = await engine.compute_conversion_snapshot(WEBSITE_ID, "UTC", as_of=AS_OF)
        points = snapshot.revenue_per_visitor_over_time
        by_date = {p.date: p.value for p in points}

        assert len(points) == 31
        assert points[0].date == "2023-12-11"
        assert points[-1].date == "2024-01-10"
        assert by_date["2024-01-08"] == 19.99
        assert by_date["2024-01-09"] == 50.0
        assert by_date["2024-01-10"] == 0.0

    async def test_payload(self, engine):
        """Test the camelCase payload"""
        snapshot = await engine.compute_conversion_snapshot(WEBSITE_ID, "UTC", as_of=AS_OF)
        payload = snapshot.to_payload()

        assert payload["websiteId"] == WEBSITE_ID
        assert payload["visitsToConversion"]["distribution"]["3"]["totalRevenue"] == 19.99
        assert payload["purchaseTimePatterns"]["peakDayHour"]["day"] == "monday"
        assert payload["averageDailyRevenue"] == 2
        assert payload["customEvents"]["signup"]["totalConversions"] == 1
        assert "revenuePerVisitorOverTime" in payload

    async def test_empty_store(self, memory_store):
        """Test a site without traffic yields zeros"""
        snapshot = await ConversionAnalyticsEngine(memory_store).compute_conversion_snapshot(
            WEBSITE_ID, "UTC", as_of=AS_OF
        )

        assert snapshot.total_visitors == 0
        assert snapshot.total_revenue == 0.0
        assert snapshot.baseline_conversion_rate == 0.0
        assert snapshot.purchase_time_patterns.peak_day == "sunday"
        assert snapshot.visits_to_conversion.average == 0.0
        assert snapshot.custom_events == {}
        assert all(p.value == 0.0 for p in snapshot.revenue_per_visitor_over_time)

    async def test_window_days(self, sample_store):
        """Test a shorter window"""
        engine = ConversionAnalyticsEngine(sample_store, window_days=1)
        snapshot = await engine.compute_conversion_snapshot(WEBSITE_ID, "UTC", as_of=AS_OF)

        assert snapshot.total_visitors == 3
        assert snapshot.total_conversions == 1
        assert len(snapshot.revenue_per_visitor_over_time) == 2

    async def test_invalid_timezone(self, engine):
        """Test unknown zones are rejected"""
        with pytest.raises(InvalidTimezoneError):
            await engine.compute_conversion_snapshot(WEBSITE_ID, "Nowhere/Special", as_of=AS_OF)

    async def test_reads_run_concurrently(self):
        """Test the snapshot inputs are fetched in parallel"""
        store = ConcurrencyTrackingStore()

        await ConversionAnalyticsEngine(store).compute_conversion_snapshot(WEBSITE_ID, "UTC", as_of=AS_OF)

        assert store.peak == 4
        assert store.active == 0
