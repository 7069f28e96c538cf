"""
Test run session - one bound lifetime of the test context.

A session is created for the test stage of a single run, binds a fresh
TestContext on entry and releases it on exit, including on abort. It
also provides the hook points the engine calls around the suite:

- initialize: once, before any test
- start_test: before each test case
- end_test: after each test case, always paired with start_test
"""

import itertools
from typing import Any, Dict, List, Optional

from shared.reporter.system_reporter import SystemReporter

from essayeur.domain.exceptions import RpcError, SessionBindingError
from essayeur.domain.results import TestCaseResult
from essayeur.testing import context as test_context
from essayeur.testing.context import TestContext

_session_ids = itertools.count(1)


class TestRunSession:
    """
    Session boundary for one run's test stage.

    Sessions are single-use: entering one twice raises
    SessionBindingError.
    """

    __test__ = False

    def __init__(
        self,
        chain: Any,
        accounts: List[str],
        resolver: Any,
        reporter: Optional[SystemReporter] = None,
    ):
        """
        Initialize session.

        Args:
            chain: Chain client shared by every run of the process
            accounts: Accounts list fetched once per process
            resolver: Artifact resolver for require()
            reporter: Optional reporter for logging
        """
        self.session_id = next(_session_ids)
        self.reporter = reporter or SystemReporter(
            name="session", level=20, verbose=1
        )
        self.context = TestContext(
            chain=chain,
            accounts=accounts,
            resolver=resolver,
            session_id=self.session_id,
        )
        self.snapshot_id: Optional[str] = None
        self.initialized = False
        self._bound = False
        self._closed = False
        self._start_blocks: Dict[str, Optional[int]] = {}

    @property
    def bound(self) -> bool:
        return self._bound

    @property
    def closed(self) -> bool:
        return self._closed

    async def __aenter__(self) -> "TestRunSession":
        if self._closed or self._bound:
            raise SessionBindingError(
                f"Session {self.session_id} cannot be reused",
                details={"session": self.session_id},
            )
        test_context.bind(self.context)
        self._bound = True
        self.reporter.debug(
            f"Session {self.session_id} bound", context="Session"
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        test_context.unbind(self.context)
        self._bound = False
        self._closed = True
        self.reporter.debug(
            f"Session {self.session_id} released", context="Session"
        )

    # ================================================================
    # HOOK POINTS
    # ================================================================

    async def initialize(self) -> None:
        """Snapshot the freshly deployed chain state, once per session."""
        if self.initialized:
            return
        self.initialized = True

        chain = self.context.chain
        if chain is None:
            return

        try:
            self.snapshot_id = await chain.snapshot()
        except RpcError as e:
            # Nodes without evm_snapshot still run tests
            self.reporter.debug(f"Snapshot unavailable: {e}", context="Session")

    async def start_test(self, test_key: str) -> None:
        """Record the block height the test starts at."""
        block = None
        chain = self.context.chain

        if chain is not None:
            try:
                block = await chain.block_number()
            except RpcError as e:
                self.reporter.debug(
                    f"Block number unavailable: {e}", context="Session"
                )

        self._start_blocks[test_key] = block

    async def end_test(self, test_key: str, result: TestCaseResult) -> None:
        """Attach the count of events emitted by a failed test."""
        start_block = self._start_blocks.pop(test_key, None)
        chain = self.context.chain

        if chain is None or start_block is None or not result.failed:
            return

        try:
            logs = await chain.get_logs(from_block=start_block)
        except RpcError as e:
            self.reporter.debug(f"Logs unavailable: {e}", context="Session")
            return

        result.events_emitted = len(logs)
