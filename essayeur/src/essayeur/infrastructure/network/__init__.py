from essayeur.infrastructure.network.local_node import LocalNodeProvider, NodeHandle
from essayeur.infrastructure.network.rpc_client import ChainClient, RpcAccountSource

__all__ = ["ChainClient", "LocalNodeProvider", "NodeHandle", "RpcAccountSource"]
