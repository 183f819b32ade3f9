"""
Engine Exceptions

Error taxonomy shared by the calendar, period, store and dashboard layers.
"""

from typing import Optional


class AttributionEngineError(Exception):
    """Base class for all engine errors"""


class InvalidTimezoneError(AttributionEngineError, ValueError):
    """Raised for an unknown or malformed IANA timezone identifier"""

    def __init__(self, timezone: Optional[str]):
        self.timezone = timezone
        super().__init__(f"Invalid timezone: {timezone!r}")


class InvalidPeriodExpressionError(AttributionEngineError, ValueError):
    """Raised when a period expression cannot be parsed"""

    def __init__(self, expression: str, reason: str):
        self.expression = expression
        self.reason = reason
        super().__init__(f"Invalid period expression {expression!r}: {reason}")


class StoreUnavailableError(AttributionEngineError):
    """Raised when the event store cannot answer a query"""

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        message = f"Event store unavailable during {operation}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
