"""
Utilities package for crm-double.

Exports shared helpers for logging, timestamps, and other cross-cutting
concerns. Keep this package lightweight and free of domain-specific logic.
"""

from crm_double.utils.clock import Clock, FrozenClock, format_timestamp
from crm_double.utils.logging import configure_logging, get_logger

__all__ = [
    "Clock",
    "FrozenClock",
    "format_timestamp",
    "configure_logging",
    "get_logger",
]
