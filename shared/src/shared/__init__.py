"""
Shared utilities for Essayeur components.
"""

from shared.reporter.system_reporter import SystemReporter

__all__ = [
    "SystemReporter",
]
