"""
Test Suite Configuration
"""
import pytest
from datetime import datetime, timezone
from typing import AsyncGenerator, Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from attribution_engine.config import Settings
from attribution_engine.database.models import Base
from attribution_engine.store import (
    GoalDefinition,
    GoalEventFact,
    InMemoryEventStore,
    PaymentFact,
    SessionFact,
)

WEBSITE_ID = "site-1"


def utc(*args) -> datetime:
    """Aware UTC datetime shorthand"""
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Create test settings"""
    return Settings(
        APP_ENV="testing",
        DEBUG=True,
    )


@pytest.fixture
async def test_engine():
    """Create test database engine with the event store schema"""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine"""
    return async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest.fixture
async def test_db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session"""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def make_session() -> Callable[..., SessionFact]:
    """Factory for session facts with sensible defaults"""
    counter = {"n": 0}

    def factory(first_visit_at: datetime, visitor_id: str = None, session_id: str = None, **kwargs) -> SessionFact:
        counter["n"] += 1
        n = counter["n"]
        return SessionFact(
            session_id=session_id or f"s{n}",
            visitor_id=visitor_id or f"v{n}",
            first_visit_at=first_visit_at,
            **kwargs,
        )

    return factory


@pytest.fixture
def make_payment() -> Callable[..., PaymentFact]:
    """Factory for payment facts"""
    counter = {"n": 0}

    def factory(timestamp: datetime, amount_cents: int, session_id: str = None, visitor_id: str = "v1", **kwargs) -> PaymentFact:
        counter["n"] += 1
        return PaymentFact(
            payment_id=kwargs.pop("payment_id", f"p{counter['n']}"),
            session_id=session_id,
            visitor_id=visitor_id,
            amount_cents=amount_cents,
            timestamp=timestamp,
            **kwargs,
        )

    return factory


@pytest.fixture
def memory_store() -> InMemoryEventStore:
    """Empty in-memory event store"""
    return InMemoryEventStore()


@pytest.fixture
def sample_store(memory_store) -> InMemoryEventStore:
    """
    Store with one week of traffic ending 2024-01-10 12:00 UTC.

    - s1/v1 from Google, paid 19.99 new
    - s2/v2 from facebook with utm_medium=cpc, paid 50.00 renewal
    - s3/v3 direct, refunded 10.00
    - s4/v1 newsletter, signed up (goal)
    """
    store = memory_store
    store.add_sessions(
        WEBSITE_ID,
        SessionFact("s1", "v1", utc(2024, 1, 8, 9), referrer="https://www.google.com/search?q=x",
                    country="US", browser="Chrome", os="macOS", device="desktop", page_views=3),
        SessionFact("s2", "v2", utc(2024, 1, 9, 15), referrer="https://facebook.com/", utm_medium="cpc",
                    utm_campaign="winter", country="DE", browser="Firefox", os="Windows", device="desktop"),
        SessionFact("s3", "v3", utc(2024, 1, 10, 8), country="US", browser="Safari", os="iOS", device="mobile"),
        SessionFact("s4", "v1", utc(2024, 1, 10, 10), referrer="https://acme.substack.com/p/launch",
                    country="US", browser="Chrome", os="macOS", device="desktop"),
    )
    store.add_payments(
        WEBSITE_ID,
        PaymentFact("s1", "v1", 1999, utc(2024, 1, 8, 9, 30), payment_id="p1"),
        PaymentFact("s2", "v2", 5000, utc(2024, 1, 9, 16), renewal=True, payment_id="p2"),
        PaymentFact("s3", "v3", 1000, utc(2024, 1, 10, 8, 5), refunded=True, payment_id="p3"),
    )
    store.add_goals(WEBSITE_ID, GoalDefinition("g1", "signup", "Account created"))
    store.add_goal_events(
        WEBSITE_ID,
        GoalEventFact("s4", "v1", "g1", utc(2024, 1, 10, 10, 1)),
    )
    return store
