"""
Test authoring API for contract suites.

Suites inherit from ContractTest; the session context is passed to each
suite and mirrored by current() while the session runs.
"""

from essayeur.testing.context import TestContext, current
from essayeur.testing.contract_test import ContractTest

__all__ = [
    "ContractTest",
    "TestContext",
    "current",
]
