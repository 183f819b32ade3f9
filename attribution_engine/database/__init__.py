"""
Database Module
"""
from .connection import close_database, get_session_factory, init_database
from .models import Base, GoalEventRecord, GoalRecord, PaymentRecord, SessionRecord

__all__ = [
    "close_database",
    "get_session_factory",
    "init_database",
    "Base",
    "GoalEventRecord",
    "GoalRecord",
    "PaymentRecord",
    "SessionRecord",
]
