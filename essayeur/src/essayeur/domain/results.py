"""
Test result data models.

Shared data structures used by:
- core.engine (generates case results)
- core.run_controller (aggregates one RunResult per run)
- core.reporter (renders results)
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


class TestStatus(Enum):
    """Test execution status - single source of truth."""

    __test__ = False

    PASS = "pass"
    FAIL = "fail"
    ERROR = "error"
    SKIP = "skip"


@dataclass
class TestCaseResult:
    """
    Result from a single test method.

    Represents one test_* method execution inside a suite.
    """

    __test__ = False

    suite: str
    name: str
    status: str  # Use TestStatus.value
    duration: float
    error: Optional[str] = None
    events_emitted: Optional[int] = None
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    @property
    def failed(self) -> bool:
        """Fail and error both count as failures."""
        return self.status in (TestStatus.FAIL.value, TestStatus.ERROR.value)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)


@dataclass
class RunResult:
    """
    Outcome of one run (build, deploy, test).

    A run that failed in build or deploy carries failed_stage and no tests.
    An aborted run carries whatever cases finished before the abort.
    """

    run_id: int
    tests: List[TestCaseResult] = field(default_factory=list)
    aborted: bool = False
    failed_stage: Optional[str] = None
    error: Optional[str] = None
    duration: float = 0.0

    @property
    def total(self) -> int:
        return len(self.tests)

    @property
    def passed(self) -> int:
        return sum(1 for t in self.tests if t.status == TestStatus.PASS.value)

    @property
    def failed(self) -> int:
        return sum(1 for t in self.tests if t.failed)

    @property
    def skipped(self) -> int:
        return sum(1 for t in self.tests if t.status == TestStatus.SKIP.value)

    @property
    def success(self) -> bool:
        """Check if the run completed with every test passing."""
        return not self.aborted and self.failed_stage is None and self.failed == 0

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        result = asdict(self)
        result["tests"] = [t.to_dict() for t in self.tests]
        return result
