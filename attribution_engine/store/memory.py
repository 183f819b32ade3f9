"""
In-Memory Event Store

List-backed store used by tests and local tooling.
"""

from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from attribution_engine.exceptions import StoreUnavailableError
from attribution_engine.store.base import EventStore
from attribution_engine.store.facts import GoalDefinition, GoalEventFact, PaymentFact, SessionFact
from attribution_engine.temporal.calendar import ensure_utc
from attribution_engine.temporal.periods import ResolvedRange


class InMemoryEventStore(EventStore):
    """
    Event store holding facts per website in plain lists.

    ``fail_on`` names query methods that raise ``StoreUnavailableError``,
    which lets callers exercise partial-failure paths.
    """

    def __init__(self):
        self.sessions: Dict[str, List[SessionFact]] = defaultdict(list)
        self.payments: Dict[str, List[PaymentFact]] = defaultdict(list)
        self.goal_events: Dict[str, List[GoalEventFact]] = defaultdict(list)
        self.goals: Dict[str, List[GoalDefinition]] = defaultdict(list)
        self.fail_on: set = set()
        self.calls: List[str] = []

    def add_sessions(self, website_id: str, *sessions: SessionFact) -> "InMemoryEventStore":
        self.sessions[website_id].extend(sessions)
        return self

    def add_payments(self, website_id: str, *payments: PaymentFact) -> "InMemoryEventStore":
        self.payments[website_id].extend(payments)
        return self

    def add_goal_events(self, website_id: str, *events: GoalEventFact) -> "InMemoryEventStore":
        self.goal_events[website_id].extend(events)
        return self

    def add_goals(self, website_id: str, *goals: GoalDefinition) -> "InMemoryEventStore":
        self.goals[website_id].extend(goals)
        return self

    def _check(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self.fail_on:
            raise StoreUnavailableError(operation)

    async def query_sessions(self, website_id: str, range_: ResolvedRange) -> List[SessionFact]:
        self._check("query_sessions")
        return [s for s in self.sessions[website_id] if range_.contains(s.first_visit_at)]

    async def query_payments(self, website_id: str, range_: ResolvedRange) -> List[PaymentFact]:
        self._check("query_payments")
        return [p for p in self.payments[website_id] if range_.contains(p.timestamp)]

    async def query_goal_events(self, website_id: str, range_: ResolvedRange) -> List[GoalEventFact]:
        self._check("query_goal_events")
        return [g for g in self.goal_events[website_id] if range_.contains(g.timestamp)]

    async def earliest_instant(self, website_id: str) -> Optional[datetime]:
        self._check("earliest_instant")
        sessions = self.sessions[website_id]
        if not sessions:
            return None
        return min(ensure_utc(s.first_visit_at) for s in sessions)

    async def query_sessions_by_ids(self, website_id: str, session_ids: Iterable[str]) -> List[SessionFact]:
        self._check("query_sessions_by_ids")
        wanted = set(session_ids)
        return [s for s in self.sessions[website_id] if s.session_id in wanted]

    async def query_goals(self, website_id: str) -> List[GoalDefinition]:
        self._check("query_goals")
        return list(self.goals[website_id])
