"""
Test fixtures and fake collaborators.
"""

import asyncio
import io
from pathlib import Path
from typing import Any, Callable, List, Optional

import pytest
from rich.console import Console

from shared.reporter.system_reporter import SystemReporter

from essayeur.config.settings import EssayeurConfig
from essayeur.core.artifact_cache import ArtifactCache
from essayeur.core.build_pipeline import BuildPipeline
from essayeur.core.deployment import DeploymentCoordinator
from essayeur.core.run_controller import RunController
from essayeur.core.session import TestRunSession
from essayeur.domain.results import TestCaseResult, TestStatus

ACCOUNTS = ["0x" + "a" * 40, "0x" + "b" * 40]


def case(name: str, status: str = "pass", suite: str = "Contract: Token") -> TestCaseResult:
    """Build a case result."""
    return TestCaseResult(
        suite=suite,
        name=name,
        status=TestStatus(status).value,
        duration=0.001,
        error=None if status == "pass" else f"{name} {status}",
    )


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Yield to the loop until predicate() holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.001)


# ================================================================
# FAKE COLLABORATORS
# ================================================================


class FakeChain:
    def __init__(self):
        self.block = 0
        self.logs: List[dict] = []
        self.snapshots = 0
        self.snapshot_error: Optional[Exception] = None
        self.closed = False

    async def snapshot(self) -> str:
        if self.snapshot_error is not None:
            raise self.snapshot_error
        self.snapshots += 1
        return hex(self.snapshots)

    async def block_number(self) -> int:
        return self.block

    async def get_logs(self, from_block: int, to_block=None, address=None) -> List[dict]:
        return [log for log in self.logs if log["block"] >= from_block]

    async def close(self) -> None:
        self.closed = True


class FakeResolver:
    def __init__(self):
        self.contracts = {}

    def require(self, name: str) -> Any:
        return self.contracts[name]

    def artifacts(self) -> List[dict]:
        return []


class FakeNetwork:
    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.ports: List[int] = []
        self.close_calls = 0

    async def listen(self, port: int) -> str:
        self.ports.append(port)
        if self.error is not None:
            raise self.error
        return f"node:{port}"

    async def close(self) -> None:
        self.close_calls += 1


class FakeAccountSource:
    def __init__(self, accounts=None, error: Optional[Exception] = None):
        self.accounts = list(accounts if accounts is not None else ACCOUNTS)
        self.error = error
        self.calls = 0

    async def get_accounts(self) -> List[str]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.accounts)


class FakeCompiler:
    """Records calls; each gate in gates blocks one compile() call."""

    def __init__(self, log: Optional[list] = None, stale=None, artifacts=None):
        self.log = log if log is not None else []
        self.stale = list(stale or [])
        self.artifacts = list(artifacts or [])
        self.error: Optional[Exception] = None
        self.gates: List[asyncio.Event] = []
        self.detect_configs: List[EssayeurConfig] = []
        self.compile_configs: List[EssayeurConfig] = []

    async def detect_stale(self, resolver, config) -> List[Path]:
        self.log.append("detect_stale")
        self.detect_configs.append(config)
        return list(self.stale)

    async def compile(self, config) -> List[Path]:
        self.log.append("compile")
        self.compile_configs.append(config)
        if self.gates:
            await self.gates.pop(0).wait()
        if self.error is not None:
            raise self.error
        return list(self.artifacts)


class FakeMigrationRunner:
    def __init__(self, log: Optional[list] = None):
        self.log = log if log is not None else []
        self.error: Optional[Exception] = None
        self.gates: List[asyncio.Event] = []
        self.configs: List[EssayeurConfig] = []

    async def run(self, config) -> None:
        self.log.append("migrate")
        self.configs.append(config)
        if self.gates:
            await self.gates.pop(0).wait()
        if self.error is not None:
            raise self.error


class FakeEngine:
    """
    Returns canned results. A gate blocks one run; abortable engines
    race the gate against the run's token.
    """

    def __init__(self, log: Optional[list] = None, results=None, supports_abort=True):
        self.log = log if log is not None else []
        self.results = list(results) if results is not None else [case("test_ok")]
        self.supports_abort = supports_abort
        self.error: Optional[Exception] = None
        self.gates: List[asyncio.Event] = []
        self.sessions: List[TestRunSession] = []

    async def run(self, session, test_files, token) -> List[TestCaseResult]:
        self.log.append("test")
        self.sessions.append(session)

        if self.gates:
            gate = self.gates.pop(0)
            if self.supports_abort:
                waiters = [
                    asyncio.ensure_future(gate.wait()),
                    asyncio.ensure_future(token.wait()),
                ]
                await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
                for waiter in waiters:
                    waiter.cancel()
                token.raise_if_cancelled()
            else:
                await gate.wait()

        if self.error is not None:
            raise self.error
        return list(self.results)


class Harness:
    """A RunController wired to fakes, recording stage order and states."""

    def __init__(
        self,
        config: EssayeurConfig,
        reporter: SystemReporter,
        console: Console,
        supports_abort: bool = True,
    ):
        self.log: List[str] = []
        self.states = []
        self.fatal = []
        self.chain = FakeChain()
        self.resolver = FakeResolver()

        self.cache = ArtifactCache(reporter=reporter)
        self.cache.on_purge(lambda: self.log.append("purge"))

        self.compiler = FakeCompiler(self.log)
        self.runner = FakeMigrationRunner(self.log)
        self.engine = FakeEngine(self.log, supports_abort=supports_abort)

        self.controller = RunController(
            self.cache,
            BuildPipeline(config, self.compiler, self.resolver, reporter=reporter),
            DeploymentCoordinator(config, self.runner, reporter=reporter),
            self.engine,
            session_factory=lambda: TestRunSession(
                self.chain, list(ACCOUNTS), self.resolver, reporter=reporter
            ),
            test_files=[],
            reporter=reporter,
            console=console,
            on_fatal=self.fatal.append,
        )
        self.controller.add_listener(lambda old, new: self.states.append(new))

    @property
    def purges(self) -> int:
        return self.log.count("purge")


# ================================================================
# FIXTURES
# ================================================================


@pytest.fixture
def reporter() -> SystemReporter:
    """Reporter that drops everything but critical messages."""
    return SystemReporter(name="essayeur_tests", level=50, verbose=0)


@pytest.fixture
def console() -> Console:
    return Console(file=io.StringIO(), width=100)


@pytest.fixture
def config(tmp_path, monkeypatch) -> EssayeurConfig:
    for name in ("ESSAYEUR_CONFIG", "ESSAYEUR_MAX_WORKERS", "ESSAYEUR_NETWORK"):
        monkeypatch.delenv(name, raising=False)
    return EssayeurConfig(working_directory=tmp_path)


@pytest.fixture
def make_harness(config, reporter, console):
    def factory(supports_abort: bool = True) -> Harness:
        return Harness(config, reporter, console, supports_abort=supports_abort)

    return factory


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def resolver() -> FakeResolver:
    return FakeResolver()
