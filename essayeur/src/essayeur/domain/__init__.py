"""
Domain vocabulary: run states, change events, results, exceptions.
"""

from essayeur.domain.results import RunResult, TestCaseResult, TestStatus
from essayeur.domain.run_state import ChangeEvent, RunState, Stage

__all__ = [
    "RunState",
    "Stage",
    "ChangeEvent",
    "RunResult",
    "TestCaseResult",
    "TestStatus",
]
