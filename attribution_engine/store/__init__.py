"""
Event Store Module

Fact types, the read-only store contract and its implementations.
"""
from .base import EventStore
from .facts import GoalDefinition, GoalEventFact, PaymentFact, SessionFact
from .memory import InMemoryEventStore
from .sql import SQLEventStore

__all__ = [
    "EventStore",
    "GoalDefinition",
    "GoalEventFact",
    "PaymentFact",
    "SessionFact",
    "InMemoryEventStore",
    "SQLEventStore",
]
