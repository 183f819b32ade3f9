"""
Event Store Contract

Read-only, range-filtered queries the engine issues against the event
store. Ranges are closed: a fact at exactly ``range.end`` is included.
Implementations raise ``StoreUnavailableError`` when a query cannot be
answered.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, List, Optional

from attribution_engine.store.facts import GoalDefinition, GoalEventFact, PaymentFact, SessionFact
from attribution_engine.temporal.periods import ResolvedRange


class EventStore(ABC):
    """Abstract event store"""

    @abstractmethod
    async def query_sessions(self, website_id: str, range_: ResolvedRange) -> List[SessionFact]:
        """Sessions whose first visit falls in the range."""

    @abstractmethod
    async def query_payments(self, website_id: str, range_: ResolvedRange) -> List[PaymentFact]:
        """Payments whose timestamp falls in the range."""

    @abstractmethod
    async def query_goal_events(self, website_id: str, range_: ResolvedRange) -> List[GoalEventFact]:
        """Goal events whose timestamp falls in the range."""

    @abstractmethod
    async def earliest_instant(self, website_id: str) -> Optional[datetime]:
        """Earliest session start recorded for the website."""

    @abstractmethod
    async def query_sessions_by_ids(self, website_id: str, session_ids: Iterable[str]) -> List[SessionFact]:
        """Sessions by id regardless of when they started."""

    @abstractmethod
    async def query_goals(self, website_id: str) -> List[GoalDefinition]:
        """Goal definitions configured for the website."""
