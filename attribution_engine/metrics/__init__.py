"""
Metrics Module

Money formatting helpers. ``attribution_engine.metrics.calculator`` holds
the MetricsCalculator.
"""
from .money import cents_to_units, format_fixed, percentage, round_half_up, safe_ratio

__all__ = ["cents_to_units", "format_fixed", "percentage", "round_half_up", "safe_ratio"]
