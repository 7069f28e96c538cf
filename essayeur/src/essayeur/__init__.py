"""
Essayeur - test runner for smart contract projects.

Compiles stale contracts, migrates them onto a local chain and runs the
ContractTest suites of the project, once or on every change.
"""

from essayeur.config import EssayeurConfig, load_config
from essayeur.core.sequencer import Sequencer
from essayeur.testing import ContractTest, TestContext, current

__version__ = "0.1.0"

__all__ = [
    "ContractTest",
    "EssayeurConfig",
    "Sequencer",
    "TestContext",
    "current",
    "load_config",
]
