"""
Event Facts

Read-only records consumed by the aggregation engine. The store owns their
lifecycle; the engine never mutates them.

All instants are timezone-aware UTC datetimes and all money is integer cents.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional

UNATTRIBUTED_PREFIX = "__unattributed__:"


@dataclass(frozen=True)
class SessionFact:
    """One visit, attributed at its first page view"""
    session_id: str
    visitor_id: str
    first_visit_at: datetime
    referrer: Optional[str] = None
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None
    utm_term: Optional[str] = None
    device: Optional[str] = None
    browser: Optional[str] = None
    os: Optional[str] = None
    country: Optional[str] = None
    page_views: int = 1
    region: Optional[str] = None
    city: Optional[str] = None
    entry_path: Optional[str] = None
    hostname: Optional[str] = None
    landing_params: Dict[str, str] = field(default_factory=dict, hash=False, compare=False)
    last_seen_at: Optional[datetime] = None
    bounce: bool = False

    @property
    def is_unattributed(self) -> bool:
        return self.session_id.startswith(UNATTRIBUTED_PREFIX)


@dataclass(frozen=True)
class PaymentFact:
    """A payment; ``amount_cents`` is always an integer"""
    session_id: Optional[str]
    visitor_id: str
    amount_cents: int
    timestamp: datetime
    currency: str = "usd"
    renewal: bool = False
    refunded: bool = False
    payment_id: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.amount_cents, int) or isinstance(self.amount_cents, bool):
            raise TypeError(f"amount_cents must be an int, got {type(self.amount_cents).__name__}")


@dataclass(frozen=True)
class GoalEventFact:
    """A custom conversion action"""
    session_id: Optional[str]
    visitor_id: str
    goal_id: str
    timestamp: datetime
    value: Optional[float] = None


@dataclass(frozen=True)
class GoalDefinition:
    """A goal configured for a website"""
    goal_id: str
    name: str
    description: Optional[str] = None


def unattributed_session_id(visitor_id: str) -> str:
    """Synthetic session id for facts whose session is unknown."""
    return f"{UNATTRIBUTED_PREFIX}{visitor_id}"
