"""
Domain exceptions.
"""

from essayeur.domain.exceptions.network_exceptions import (
    AccountFetchError,
    ArtifactNotFoundError,
    ChainConnectionError,
    NetworkStartupError,
    RpcError,
)
from essayeur.domain.exceptions.pipeline_exceptions import (
    CompileError,
    DeployError,
    EssayeurException,
    InvalidTransitionError,
    RunAborted,
    SessionBindingError,
    StageError,
    TestAssertionFailure,
    UnhandledAsyncError,
)

__all__ = [
    "EssayeurException",
    "StageError",
    "CompileError",
    "DeployError",
    "TestAssertionFailure",
    "UnhandledAsyncError",
    "RunAborted",
    "InvalidTransitionError",
    "SessionBindingError",
    "NetworkStartupError",
    "AccountFetchError",
    "RpcError",
    "ChainConnectionError",
    "ArtifactNotFoundError",
]
