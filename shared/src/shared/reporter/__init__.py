"""Logging and emoji helpers shared by every component."""

from shared.reporter.system_reporter import SystemReporter

__all__ = ["SystemReporter"]
