"""
Chain node and artifact exceptions.
"""

from essayeur.domain.exceptions.pipeline_exceptions import EssayeurException


class NetworkStartupError(EssayeurException):
    """Local chain node could not be started or reached."""


class AccountFetchError(EssayeurException):
    """Accounts could not be fetched from the chain node."""


class RpcError(EssayeurException):
    """JSON-RPC call returned an error."""


class ChainConnectionError(RpcError):
    """JSON-RPC endpoint unreachable."""


class ArtifactNotFoundError(EssayeurException):
    """No compiled artifact for the requested contract name."""
