"""
Sequencer - top-level driver for one-shot and watch mode.

Resolves the project, starts the chain, fetches accounts once, wires
the pipeline collaborators into a RunController and drives it until the
run finishes (one-shot) or the operator interrupts (watch).
"""

import asyncio
import signal
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from rich.console import Console

from shared.reporter.emojis import EssayeurEmoji, SystemEmoji
from shared.reporter.system_reporter import SystemReporter

from essayeur.config.settings import EssayeurConfig
from essayeur.core.artifact_cache import ArtifactCache
from essayeur.core.build_pipeline import BuildPipeline
from essayeur.core.change_watcher import ChangeWatcher
from essayeur.core.deployment import DeploymentCoordinator
from essayeur.core.engine import TestExecutionEngine
from essayeur.core.protocols import (
    AccountSource,
    Compiler,
    ExecutionEngine,
    MigrationRunner,
    NetworkProvider,
)
from essayeur.core.reporter import EssayeurReporter
from essayeur.core.run_controller import RunController
from essayeur.core.session import TestRunSession
from essayeur.domain.exceptions import (
    AccountFetchError,
    NetworkStartupError,
    UnhandledAsyncError,
)
from essayeur.domain.results import RunResult
from essayeur.infrastructure.compiler.solc_compiler import SOURCE_SUFFIX, SolcCompiler
from essayeur.infrastructure.migrations.migration_runner import ScriptMigrationRunner
from essayeur.infrastructure.network.local_node import LocalNodeProvider
from essayeur.infrastructure.network.rpc_client import ChainClient, RpcAccountSource
from essayeur.infrastructure.resolver.artifact_resolver import ArtifactResolver

EXIT_FATAL = 1
EXIT_INTERRUPTED = 130
MAX_EXIT_CODE = 255

TEST_SUFFIX = ".py"


def _unique(paths: List[Path]) -> List[Path]:
    seen: Dict[Path, None] = {}
    for path in paths:
        seen.setdefault(path.resolve(), None)
    return list(seen)


def discover_test_files(test_path: Path) -> List[Path]:
    """
    Python test files under test_path.

    A single file is accepted as is. Files starting with '_' are helpers
    and never loaded directly.
    """
    if test_path.is_file():
        return [test_path.resolve()]
    if not test_path.is_dir():
        return []
    return _unique(
        sorted(
            p
            for p in test_path.rglob(f"*{TEST_SUFFIX}")
            if not p.name.startswith("_")
        )
    )


def discover_helpers(test_path: Path) -> List[Path]:
    """Python helper modules (names starting with '_') imported by tests."""
    if not test_path.is_dir():
        return []
    return _unique(
        sorted(
            p
            for p in test_path.rglob(f"*{TEST_SUFFIX}")
            if p.name.startswith("_")
        )
    )


def discover_sources(path: Path) -> List[Path]:
    """Solidity sources under path (test helpers compiled with the project)."""
    if path.is_file():
        return [path.resolve()] if path.suffix == SOURCE_SUFFIX else []
    if not path.is_dir():
        return []
    return _unique(sorted(path.rglob(f"*{SOURCE_SUFFIX}")))


def exit_code_for(result: Optional[RunResult]) -> int:
    """
    Process exit status for a finished one-shot run.

    Failed test count (capped at 255); a run that failed before any test
    ran exits 1.
    """
    if result is None:
        return EXIT_FATAL
    if result.failed_stage is not None and not result.tests:
        return EXIT_FATAL
    return min(result.failed, MAX_EXIT_CODE)


class Sequencer:
    """
    Composes the collaborators into the one-shot and watch flows.

    Every collaborator can be injected; the defaults come from
    essayeur.infrastructure.
    """

    def __init__(
        self,
        config: EssayeurConfig,
        test_path: Optional[Path] = None,
        network: Optional[NetworkProvider] = None,
        chain: Optional[Any] = None,
        account_source: Optional[AccountSource] = None,
        compiler: Optional[Compiler] = None,
        migration_runner: Optional[MigrationRunner] = None,
        engine: Optional[ExecutionEngine] = None,
        resolver: Optional[Any] = None,
        reporter: Optional[SystemReporter] = None,
        console: Optional[Console] = None,
        install_signal_handlers: bool = True,
    ):
        """
        Initialize sequencer.

        Args:
            config: Project configuration
            test_path: Test file or directory (default: config.test_path)
            network: Network provider (default: LocalNodeProvider)
            chain: Chain client (default: ChainClient on the network url)
            account_source: Account source (default: eth_accounts)
            compiler: Compiler (default: SolcCompiler)
            migration_runner: Migration runner (default: scripts)
            engine: Execution engine (default: TestExecutionEngine)
            resolver: Artifact resolver (default: build directory)
            reporter: Optional reporter for logging
            console: Rich console for run output
            install_signal_handlers: Handle SIGINT/SIGTERM in watch mode
        """
        self.config = config
        self.test_path = Path(test_path) if test_path else config.test_path
        self.network = network
        self.chain = chain
        self.account_source = account_source
        self.compiler = compiler
        self.migration_runner = migration_runner
        self.engine = engine
        self.resolver = resolver
        self.reporter = reporter or SystemReporter(
            name="essayeur", level=20, verbose=1
        )
        self.console = console or Console()
        self.display = EssayeurReporter()
        self.install_signal_handlers = install_signal_handlers

        self.test_files: List[Path] = []
        self.candidate_files: List[Path] = []
        self.helper_files: List[Path] = []
        self.accounts: List[str] = []
        self.controller: Optional[RunController] = None
        self.watcher: Optional[ChangeWatcher] = None
        self.fatal_error: Optional[UnhandledAsyncError] = None

        self._shutdown: Optional[asyncio.Event] = None
        self._signals: List[int] = []
        self._previous_handler = None

    # ================================================================
    # DISCOVERY
    # ================================================================

    def discover(self) -> None:
        """Find test files and the Solidity helpers next to them."""
        self.test_files = discover_test_files(self.test_path)
        self.candidate_files = discover_sources(self.test_path)
        self.helper_files = discover_helpers(self.test_path)

        self.reporter.info(
            f"{EssayeurEmoji.DISCOVER} Found {len(self.test_files)} test file(s) "
            f"in {self.test_path}",
            context="Sequencer",
        )

    @property
    def watch_files(self) -> List[Path]:
        """Contract sources, test files and test helpers, fixed at startup."""
        return _unique(
            discover_sources(self.config.contracts_path)
            + self.test_files
            + self.helper_files
            + self.candidate_files
        )

    async def plan(self) -> Tuple[List[Path], List[Path], List[Path]]:
        """
        Describe a run without starting the chain.

        Returns:
            (test files, watch files, stale sources)
        """
        self.discover()
        resolver = self.resolver or ArtifactResolver(
            self.config.build_path, cache_on=False, reporter=self.reporter
        )
        compiler = self.compiler or SolcCompiler(reporter=self.reporter)
        stale = await compiler.detect_stale(
            resolver, self.config.with_overrides(files=self.candidate_files)
        )
        return self.test_files, self.watch_files, list(stale)

    # ================================================================
    # WIRING
    # ================================================================

    async def prepare(self, watch: bool = False) -> RunController:
        """
        Start the chain, fetch accounts and build the controller.

        Raises:
            NetworkStartupError: The chain could not be started
            AccountFetchError: Accounts could not be fetched
        """
        self.discover()
        network_config = self.config.network_config

        if self.chain is None:
            self.chain = ChainClient(network_config.url, reporter=self.reporter)
        if self.network is None:
            self.network = LocalNodeProvider(
                self.config.node,
                host=network_config.host,
                cwd=self.config.working_directory,
                reporter=self.reporter,
            )

        try:
            await self.network.listen(network_config.port)
        except NetworkStartupError:
            raise
        except Exception as e:
            raise NetworkStartupError(
                f"Failed to start network: {e}",
                details={"port": network_config.port},
            ) from e

        if self.account_source is None:
            self.account_source = RpcAccountSource(self.chain)

        try:
            self.accounts = list(await self.account_source.get_accounts())
        except AccountFetchError:
            raise
        except Exception as e:
            raise AccountFetchError(f"Failed to fetch accounts: {e}") from e

        self.reporter.info(
            f"{SystemEmoji.ACCOUNTS} {len(self.accounts)} account(s) available",
            context="Sequencer",
        )

        if not self.config.from_address and self.accounts:
            self.config = self.config.with_from_address(self.accounts[0])

        if self.resolver is None:
            self.resolver = ArtifactResolver(
                self.config.build_path,
                network_id=network_config.network_id,
                cache_on=False,
                reporter=self.reporter,
            )

        cache = ArtifactCache(
            watched_files=self.test_files + self.helper_files, reporter=self.reporter
        )
        pipeline = BuildPipeline(
            self.config,
            self.compiler or SolcCompiler(reporter=self.reporter),
            self.resolver,
            reporter=self.reporter,
        )
        deployer = DeploymentCoordinator(
            self.config,
            self.migration_runner
            or ScriptMigrationRunner(self.chain, self.resolver, reporter=self.reporter),
            reporter=self.reporter,
        )
        engine = self.engine or TestExecutionEngine(
            cache, max_workers=self.config.max_workers, reporter=self.reporter
        )

        self.controller = RunController(
            cache,
            pipeline,
            deployer,
            engine,
            session_factory=self.new_session,
            test_files=self.test_files,
            candidate_files=self.candidate_files,
            reporter=self.reporter,
            console=self.console,
            display=self.display,
            on_fatal=self._on_fatal,
            watch=watch,
        )
        return self.controller

    def new_session(self) -> TestRunSession:
        """Fresh session sharing the process-wide chain and accounts."""
        return TestRunSession(
            self.chain, self.accounts, self.resolver, reporter=self.reporter
        )

    # ================================================================
    # MODES
    # ================================================================

    async def run_once(self) -> int:
        """
        Run the pipeline once.

        Returns:
            Failed test count, or 1 for a stage failure or fatal error
        """
        self._enter()
        try:
            controller = await self.prepare()
            controller.start()

            idle = asyncio.ensure_future(controller.wait_until_idle())
            stop = asyncio.ensure_future(self._shutdown.wait())
            try:
                await asyncio.wait({idle, stop}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                idle.cancel()
                stop.cancel()

            if self.fatal_error is not None:
                return EXIT_FATAL
            return exit_code_for(controller.last_result)
        finally:
            await self._exit()

    async def watch(self) -> int:
        """
        Run once, then rerun on every change until interrupted.

        Returns:
            130 on operator interrupt, 1 on a fatal error
        """
        self._enter()
        loop = asyncio.get_running_loop()
        try:
            controller = await self.prepare(watch=True)
            self.watcher = ChangeWatcher(
                self.watch_files,
                controller.on_change_event,
                poll_interval=self.config.poll_interval,
                reporter=self.reporter,
            )

            if self.install_signal_handlers:
                self._add_signal_handlers(loop)

            self.console.show_cursor(False)
            self.watcher.start()
            controller.start()

            self.reporter.info(
                f"{EssayeurEmoji.WATCH} Watching {len(self.watcher.files)} file(s)",
                context="Sequencer",
            )
            await self._shutdown.wait()
        finally:
            self._remove_signal_handlers(loop)
            if self.watcher is not None:
                await self.watcher.stop()
            self.console.show_cursor(True)
            await self._exit()

        return EXIT_FATAL if self.fatal_error is not None else EXIT_INTERRUPTED

    def request_shutdown(self) -> None:
        """Stop watch mode (operator interrupt)."""
        self.reporter.info(
            f"{SystemEmoji.SHUTDOWN} Shutdown requested", context="Sequencer"
        )
        if self._shutdown is not None:
            self._shutdown.set()

    # ================================================================
    # LIFECYCLE
    # ================================================================

    def _enter(self) -> None:
        loop = asyncio.get_running_loop()
        self._shutdown = asyncio.Event()
        self._previous_handler = loop.get_exception_handler()
        loop.set_exception_handler(self._handle_loop_exception)

    async def _exit(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            if self.controller is not None:
                await self.controller.shutdown()
        finally:
            await self.close()
            loop.set_exception_handler(self._previous_handler)

    async def close(self) -> None:
        """Stop the chain and release the client. Never leaves the node running."""
        try:
            if self.network is not None:
                await self.network.close()
        finally:
            if self.chain is not None:
                await self.chain.close()

    def _add_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_shutdown)
            except NotImplementedError:
                # No loop signal support; KeyboardInterrupt still ends the run
                self.reporter.debug(
                    f"Signal {sig} not supported by loop", context="Sequencer"
                )
                continue
            self._signals.append(sig)

    def _remove_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        while self._signals:
            loop.remove_signal_handler(self._signals.pop())

    def _handle_loop_exception(
        self, loop: asyncio.AbstractEventLoop, context: Dict[str, Any]
    ) -> None:
        exc = context.get("exception")
        if exc is None:
            self.reporter.warning(
                context.get("message", "Unknown event loop error"),
                context="Sequencer",
            )
            return

        if isinstance(exc, UnhandledAsyncError):
            error = exc
        else:
            error = UnhandledAsyncError(
                f"{context.get('message', 'Unhandled error')}: {exc}",
                details={"error_type": type(exc).__name__},
            )
            error.__cause__ = exc
        self._on_fatal(error)

    def _on_fatal(self, error: UnhandledAsyncError) -> None:
        if self.fatal_error is None:
            self.fatal_error = error
            self.reporter.critical(
                f"{EssayeurEmoji.FAILURE} Fatal: {error.message}", context="Sequencer"
            )
        if self._shutdown is not None:
            self._shutdown.set()
