"""
SQL Event Store

``EventStore`` implementation over the SQLAlchemy models in
``attribution_engine.database``. Every query is a closed range scan on an
indexed ``(website_id, <timestamp>)`` pair; rows are converted to facts
before leaving this module.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncGenerator, Iterable, List, Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from attribution_engine.database.models import GoalEventRecord, GoalRecord, PaymentRecord, SessionRecord
from attribution_engine.exceptions import StoreUnavailableError
from attribution_engine.store.base import EventStore
from attribution_engine.store.facts import GoalDefinition, GoalEventFact, PaymentFact, SessionFact
from attribution_engine.temporal.calendar import ensure_utc
from attribution_engine.temporal.periods import ResolvedRange

logger = structlog.get_logger(__name__)

ID_BATCH_SIZE = 500


def session_from_record(record: SessionRecord) -> SessionFact:
    return SessionFact(
        session_id=record.session_id,
        visitor_id=record.visitor_id,
        first_visit_at=ensure_utc(record.first_visit_at),
        referrer=record.referrer,
        utm_source=record.utm_source,
        utm_medium=record.utm_medium,
        utm_campaign=record.utm_campaign,
        utm_term=record.utm_term,
        device=record.device,
        browser=record.browser,
        os=record.os,
        country=record.country,
        page_views=record.page_views or 1,
        region=record.region,
        city=record.city,
        entry_path=record.entry_path,
        hostname=record.hostname,
        landing_params=dict(record.landing_params or {}),
        last_seen_at=ensure_utc(record.last_seen_at) if record.last_seen_at else None,
        bounce=bool(record.bounce),
    )


def payment_from_record(record: PaymentRecord) -> PaymentFact:
    return PaymentFact(
        payment_id=record.payment_id,
        session_id=record.session_id,
        visitor_id=record.visitor_id,
        amount_cents=int(record.amount_cents),
        currency=record.currency,
        renewal=bool(record.renewal),
        refunded=bool(record.refunded),
        timestamp=ensure_utc(record.paid_at),
    )


def goal_event_from_record(record: GoalEventRecord) -> GoalEventFact:
    return GoalEventFact(
        session_id=record.session_id,
        visitor_id=record.visitor_id,
        goal_id=record.goal_id,
        value=record.value,
        timestamp=ensure_utc(record.occurred_at),
    )


class SQLEventStore(EventStore):
    """
    Event store backed by an async SQLAlchemy session factory.

    Usage:
        await init_database()
        store = SQLEventStore(get_session_factory())
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncGenerator[AsyncSession, None]:
        try:
            async with self.session_factory() as session:
                yield session
        except (SQLAlchemyError, OSError) as e:
            logger.error("Event store query failed", operation=operation, error=str(e))
            raise StoreUnavailableError(operation, e) from e

    async def query_sessions(self, website_id: str, range_: ResolvedRange) -> List[SessionFact]:
        stmt = (
            select(SessionRecord)
            .where(SessionRecord.website_id == website_id)
            .where(SessionRecord.first_visit_at >= range_.start)
            .where(SessionRecord.first_visit_at <= range_.end)
            .order_by(SessionRecord.first_visit_at)
        )
        async with self._session("query_sessions") as session:
            result = await session.execute(stmt)
            return [session_from_record(r) for r in result.scalars()]

    async def query_payments(self, website_id: str, range_: ResolvedRange) -> List[PaymentFact]:
        stmt = (
            select(PaymentRecord)
            .where(PaymentRecord.website_id == website_id)
            .where(PaymentRecord.paid_at >= range_.start)
            .where(PaymentRecord.paid_at <= range_.end)
            .order_by(PaymentRecord.paid_at)
        )
        async with self._session("query_payments") as session:
            result = await session.execute(stmt)
            return [payment_from_record(r) for r in result.scalars()]

    async def query_goal_events(self, website_id: str, range_: ResolvedRange) -> List[GoalEventFact]:
        stmt = (
            select(GoalEventRecord)
            .where(GoalEventRecord.website_id == website_id)
            .where(GoalEventRecord.occurred_at >= range_.start)
            .where(GoalEventRecord.occurred_at <= range_.end)
            .order_by(GoalEventRecord.occurred_at)
        )
        async with self._session("query_goal_events") as session:
            result = await session.execute(stmt)
            return [goal_event_from_record(r) for r in result.scalars()]

    async def earliest_instant(self, website_id: str) -> Optional[datetime]:
        stmt = select(func.min(SessionRecord.first_visit_at)).where(SessionRecord.website_id == website_id)
        async with self._session("earliest_instant") as session:
            earliest = (await session.execute(stmt)).scalar_one_or_none()
        return ensure_utc(earliest) if earliest is not None else None

    async def query_sessions_by_ids(self, website_id: str, session_ids: Iterable[str]) -> List[SessionFact]:
        ids = sorted(set(session_ids))
        if not ids:
            return []

        facts: List[SessionFact] = []
        async with self._session("query_sessions_by_ids") as session:
            for offset in range(0, len(ids), ID_BATCH_SIZE):
                batch = ids[offset:offset + ID_BATCH_SIZE]
                stmt = (
                    select(SessionRecord)
                    .where(SessionRecord.website_id == website_id)
                    .where(SessionRecord.session_id.in_(batch))
                )
                result = await session.execute(stmt)
                facts.extend(session_from_record(r) for r in result.scalars())
        return facts

    async def query_goals(self, website_id: str) -> List[GoalDefinition]:
        stmt = select(GoalRecord).where(GoalRecord.website_id == website_id).order_by(GoalRecord.name)
        async with self._session("query_goals") as session:
            result = await session.execute(stmt)
            return [
                GoalDefinition(goal_id=r.goal_id, name=r.name, description=r.description)
                for r in result.scalars()
            ]
