"""
Conversion Module

Trailing-window conversion analytics.
"""
from .engine import ConversionAnalyticsEngine
from .schemas import ConversionMetricsPayload

__all__ = ["ConversionAnalyticsEngine", "ConversionMetricsPayload"]
