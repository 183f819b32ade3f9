"""
Revenue Attribution Engine

Temporal aggregation and traffic attribution for web-analytics dashboards.
"""

__version__ = "1.0.0"
