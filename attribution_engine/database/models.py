"""
Database Models - Event Store Schema

Tables backing the SQL event store. One row per fact; every table is
partitioned logically by ``website_id`` and indexed for the range scans the
aggregation engine issues.

Tables:
- sessions: One row per visit, attributed at first page view
- payments: Payments in integer cents, flagged renewal / refunded
- goal_events: Custom conversion actions
- goals: Goal definitions per website
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


class SessionRecord(Base):
    """
    Session Table

    Grain: one visit. Attribution columns are written once at the first
    page view; only ``last_seen_at``, ``page_views`` and ``bounce`` change
    afterwards.
    """
    __tablename__ = "sessions"

    session_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    website_id: Mapped[str] = mapped_column(String(100), nullable=False)
    visitor_id: Mapped[str] = mapped_column(String(100), nullable=False)

    first_visit_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_seen_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Source
    referrer: Mapped[Optional[str]] = mapped_column(String(2000))
    utm_source: Mapped[Optional[str]] = mapped_column(String(200))
    utm_medium: Mapped[Optional[str]] = mapped_column(String(200))
    utm_campaign: Mapped[Optional[str]] = mapped_column(String(200))
    utm_term: Mapped[Optional[str]] = mapped_column(String(200))
    landing_params: Mapped[Optional[dict]] = mapped_column(JSONType)

    # Entry
    entry_path: Mapped[Optional[str]] = mapped_column(String(1000))
    hostname: Mapped[Optional[str]] = mapped_column(String(255))

    # System
    device: Mapped[Optional[str]] = mapped_column(String(20))
    browser: Mapped[Optional[str]] = mapped_column(String(50))
    os: Mapped[Optional[str]] = mapped_column(String(50))

    # Location
    country: Mapped[Optional[str]] = mapped_column(String(100))
    region: Mapped[Optional[str]] = mapped_column(String(100))
    city: Mapped[Optional[str]] = mapped_column(String(100))

    # Engagement
    page_views: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    bounce: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_sessions_website_first_visit", "website_id", "first_visit_at"),
        Index("ix_sessions_visitor", "visitor_id"),
    )

    def __repr__(self) -> str:
        return f"<SessionRecord {self.session_id}>"


class PaymentRecord(Base):
    """
    Payment Table

    Amounts are stored as integer cents; conversion to currency units only
    happens when results are serialized.
    """
    __tablename__ = "payments"

    payment_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    website_id: Mapped[str] = mapped_column(String(100), nullable=False)
    session_id: Mapped[Optional[str]] = mapped_column(String(100))
    visitor_id: Mapped[str] = mapped_column(String(100), nullable=False)

    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="usd", nullable=False)
    renewal: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    refunded: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    paid_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    provider: Mapped[Optional[str]] = mapped_column(String(50))  # stripe, lemonsqueezy

    __table_args__ = (
        Index("ix_payments_website_paid_at", "website_id", "paid_at"),
        Index("ix_payments_session", "session_id"),
    )

    def __repr__(self) -> str:
        return f"<PaymentRecord {self.payment_id} {self.amount_cents}>"


class GoalEventRecord(Base):
    """Goal Event Table"""
    __tablename__ = "goal_events"

    event_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    website_id: Mapped[str] = mapped_column(String(100), nullable=False)
    session_id: Mapped[Optional[str]] = mapped_column(String(100))
    visitor_id: Mapped[str] = mapped_column(String(100), nullable=False)
    goal_id: Mapped[str] = mapped_column(String(100), nullable=False)
    value: Mapped[Optional[float]] = mapped_column(Float)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_goal_events_website_occurred", "website_id", "occurred_at"),
        Index("ix_goal_events_session", "session_id"),
    )


class GoalRecord(Base):
    """Goal Definition Table"""
    __tablename__ = "goals"

    goal_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    website_id: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        UniqueConstraint("website_id", "name", name="uq_goals_website_name"),
    )
