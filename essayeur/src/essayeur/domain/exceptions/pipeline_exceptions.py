"""
Pipeline and run-controller exceptions.
"""

from typing import Any, List, Optional


class EssayeurException(Exception):
    """Base exception for Essayeur operations."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class StageError(EssayeurException):
    """A pipeline stage failed. Fatal to the current run only."""

    stage: str = "unknown"


class CompileError(StageError):
    """Contract compilation failed."""

    stage = "build"


class DeployError(StageError):
    """Migrations failed before any test ran."""

    stage = "deploy"


class TestAssertionFailure(EssayeurException):
    """A test case failed its assertions. Recorded, never fatal."""

    __test__ = False


class UnhandledAsyncError(EssayeurException):
    """An error surfaced outside any recognized stage boundary."""


class RunAborted(EssayeurException):
    """The current run was cancelled cooperatively."""

    def __init__(
        self,
        message: str = "Run aborted",
        details: Optional[dict] = None,
        partial_results: Optional[List[Any]] = None,
    ):
        super().__init__(message, details)
        self.partial_results = list(partial_results or [])


class InvalidTransitionError(EssayeurException):
    """Illegal RunState transition requested."""


class SessionBindingError(EssayeurException):
    """A test session was bound while another was still bound."""
