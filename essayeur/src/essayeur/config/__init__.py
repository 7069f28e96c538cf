"""
Configuration for Essayeur.
"""

from essayeur.config.settings import (
    EssayeurConfig,
    NetworkConfig,
    NodeConfig,
    load_config,
)

__all__ = [
    "EssayeurConfig",
    "NetworkConfig",
    "NodeConfig",
    "load_config",
]
