"""
Run controller - the state machine driving build, deploy and test.

Exactly one run is in progress at a time. Change events never start a
concurrent run: they set the pending-rerun flag, which is consumed when
the controller next returns to idle. A change during the test stage
aborts the session cooperatively when the engine supports it; a change
during build or deploy is consulted when that stage completes.

    IDLE -> BUILDING -> DEPLOYING -> RUNNING -> IDLE
               |            |           |
               +------------+-----------+--> ABORTING -> IDLE
"""

import asyncio
import itertools
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Set

from rich.console import Console

from shared.reporter.emojis import EssayeurEmoji
from shared.reporter.system_reporter import SystemReporter

from essayeur.core.artifact_cache import ArtifactCache
from essayeur.core.build_pipeline import BuildPipeline
from essayeur.core.cancellation import CancellationToken
from essayeur.core.deployment import DeploymentCoordinator
from essayeur.core.protocols import ExecutionEngine
from essayeur.core.reporter import EssayeurReporter
from essayeur.core.session import TestRunSession
from essayeur.domain.exceptions import (
    InvalidTransitionError,
    RunAborted,
    StageError,
    UnhandledAsyncError,
)
from essayeur.domain.results import RunResult
from essayeur.domain.run_state import ChangeEvent, RunState, Stage

TRANSITIONS: Dict[RunState, Set[RunState]] = {
    RunState.IDLE: {RunState.BUILDING},
    RunState.BUILDING: {RunState.DEPLOYING, RunState.ABORTING, RunState.IDLE},
    RunState.DEPLOYING: {RunState.RUNNING, RunState.ABORTING, RunState.IDLE},
    RunState.RUNNING: {RunState.IDLE, RunState.ABORTING},
    RunState.ABORTING: {RunState.IDLE},
}

# stage -> (state the stage runs in, state entered on completion)
STAGE_TRANSITIONS = {
    Stage.BUILD: (RunState.BUILDING, RunState.DEPLOYING),
    Stage.DEPLOY: (RunState.DEPLOYING, RunState.RUNNING),
    Stage.TEST: (RunState.RUNNING, RunState.IDLE),
}

StateListener = Callable[[RunState, RunState], None]


class RunController:
    """
    Owns the run state machine and the pending-rerun flag.

    All methods run on the event loop thread; none of them block.
    """

    def __init__(
        self,
        cache: ArtifactCache,
        pipeline: BuildPipeline,
        deployer: DeploymentCoordinator,
        engine: ExecutionEngine,
        session_factory: Callable[[], TestRunSession],
        test_files: Sequence[Path],
        candidate_files: Sequence[Path] = (),
        reporter: Optional[SystemReporter] = None,
        console: Optional[Console] = None,
        display: Optional[EssayeurReporter] = None,
        on_fatal: Optional[Callable[[UnhandledAsyncError], None]] = None,
        watch: bool = False,
    ):
        """
        Initialize controller.

        Args:
            cache: Artifact cache purged at the start of every run
            pipeline: Build stage
            deployer: Deploy stage
            engine: Test stage
            session_factory: Creates a fresh session for each test stage
            test_files: Test files handed to the engine
            candidate_files: Extra sources considered by the build stage
            reporter: Optional reporter for logging
            console: Rich console used to render run output
            display: Rich renderable factory
            on_fatal: Called once with the error that stops the controller
            watch: Whether runs happen in watch mode (header display only)
        """
        self.cache = cache
        self.pipeline = pipeline
        self.deployer = deployer
        self.engine = engine
        self.session_factory = session_factory
        self.test_files = list(test_files)
        self.candidate_files = list(candidate_files)
        self.reporter = reporter or SystemReporter(
            name="run_controller", level=20, verbose=1
        )
        self.console = console or Console()
        self.display = display or EssayeurReporter()
        self.on_fatal = on_fatal
        self.watch = watch

        self.pending_rerun = False
        self.fatal_error: Optional[UnhandledAsyncError] = None
        self.results: List[RunResult] = []

        self._state = RunState.IDLE
        self._listeners: List[StateListener] = []
        self._run_ids = itertools.count(1)
        self._token: Optional[CancellationToken] = None
        self._task: Optional[asyncio.Task] = None
        self._start_scheduled = False
        self._shutting_down = False
        self._idle = asyncio.Event()
        self._idle.set()

    # ================================================================
    # STATE
    # ================================================================

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def last_result(self) -> Optional[RunResult]:
        return self.results[-1] if self.results else None

    def add_listener(self, listener: StateListener) -> None:
        """Register a callback invoked as listener(old, new) on every transition."""
        self._listeners.append(listener)

    def _transition(self, new_state: RunState) -> None:
        old_state = self._state
        if new_state not in TRANSITIONS[old_state]:
            raise InvalidTransitionError(
                f"Illegal transition {old_state.value} -> {new_state.value}",
                details={"from": old_state.value, "to": new_state.value},
            )

        self._state = new_state
        self.reporter.debug(
            f"{old_state.value} -> {new_state.value}", context="RunController"
        )

        for listener in self._listeners:
            listener(old_state, new_state)

    # ================================================================
    # OPERATIONS
    # ================================================================

    def start(self) -> asyncio.Task:
        """
        Begin a run: purge the cache, enter BUILDING, schedule the stages.

        Returns:
            Task executing the run

        Raises:
            InvalidTransitionError: If a run is already in progress
        """
        if self._state is not RunState.IDLE:
            raise InvalidTransitionError(
                f"Cannot start a run while {self._state.value}",
                details={"state": self._state.value},
            )

        self.pending_rerun = False
        self.cache.purge()
        self._idle.clear()
        self._transition(RunState.BUILDING)

        run_id = next(self._run_ids)
        self._token = CancellationToken()
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._execute(run_id, self._token))
        return self._task

    def on_change_event(self, event: ChangeEvent) -> None:
        """
        React to a watched file changing.

        Never starts a run while one is in progress.
        """
        self.reporter.info(
            f"{EssayeurEmoji.CHANGED} Changed: {event.file_path.name}",
            context="RunController",
        )
        self.pending_rerun = True

        if self._state is RunState.IDLE:
            if self.fatal_error is None and not self._start_scheduled:
                # Events from the same poll collapse into one run
                self._start_scheduled = True
                asyncio.get_running_loop().call_soon(self._start_if_pending)
        elif self._state is RunState.RUNNING:
            self._request_abort(f"{event.file_path.name} changed")

    def on_stage_complete(self, stage: Stage) -> None:
        """
        Advance past a finished stage.

        Raises:
            InvalidTransitionError: If stage is not the one in progress
        """
        expected, following = STAGE_TRANSITIONS[stage]
        if self._state is not expected:
            raise InvalidTransitionError(
                f"Stage {stage.value} completed while {self._state.value}",
                details={"stage": stage.value, "state": self._state.value},
            )

        self._transition(following)
        if following is RunState.IDLE:
            self._settle()

    def abort(self, reason: str = "aborted") -> bool:
        """
        Abort the current test stage.

        Returns:
            True if an abort was requested
        """
        if self._state is not RunState.RUNNING:
            return False
        return self._request_abort(reason)

    async def wait_until_idle(self) -> Optional[RunResult]:
        """Wait for the controller to settle in IDLE with nothing pending."""
        await self._idle.wait()
        return self.last_result

    async def shutdown(self) -> None:
        """Cancel any run in progress and never start another."""
        self._shutting_down = True
        self.pending_rerun = False

        if self._token is not None:
            self._token.cancel("shutdown")

        if self._task is not None and not self._task.done():
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)

    # ================================================================
    # INTERNALS
    # ================================================================

    def _start_if_pending(self) -> None:
        self._start_scheduled = False
        if (
            self._state is RunState.IDLE
            and self.pending_rerun
            and self.fatal_error is None
            and not self._shutting_down
        ):
            self.start()

    def _request_abort(self, reason: str) -> bool:
        if not self.engine.supports_abort:
            self.reporter.info(
                f"{EssayeurEmoji.RERUN} Rerun deferred until the run completes",
                context="RunController",
            )
            return False

        self.reporter.info(
            f"{EssayeurEmoji.ABORT} Aborting run: {reason}", context="RunController"
        )
        if self._token is not None:
            self._token.cancel(reason)
        self._transition(RunState.ABORTING)
        return True

    def _checkpoint(self, token: CancellationToken, stage: Stage) -> None:
        """Consult the pending flag at a stage boundary."""
        if self.pending_rerun and self._state is not RunState.ABORTING:
            self._request_abort(f"source changed during {stage.value}")
        token.raise_if_cancelled()

    async def _execute(self, run_id: int, token: CancellationToken) -> RunResult:
        start_time = time.time()
        result = RunResult(run_id=run_id)

        self.console.print(
            self.display.create_run_header(run_id, self.test_files, watch=self.watch)
        )

        try:
            artifacts = await self.pipeline.build_if_stale(self.candidate_files)
            self.on_stage_complete(Stage.BUILD)
            self._checkpoint(token, Stage.BUILD)

            await self.deployer.deploy(artifacts)
            self.on_stage_complete(Stage.DEPLOY)
            self._checkpoint(token, Stage.DEPLOY)

            async with self.session_factory() as session:
                result.tests = list(
                    await self.engine.run(session, self.test_files, token)
                )

        except RunAborted as e:
            result.aborted = True
            result.tests = list(e.partial_results)

        except StageError as e:
            result.failed_stage = e.stage
            result.error = e.message
            self.reporter.error(
                f"{EssayeurEmoji.FAILURE} {e.stage} failed: {e.message}",
                context="RunController",
            )

        except asyncio.CancelledError:
            result.aborted = True
            self._finish(result, start_time)
            raise

        except Exception as e:
            fatal = UnhandledAsyncError(
                f"Unhandled error while {self._state.value}: {e}",
                details={"state": self._state.value, "error_type": type(e).__name__},
            )
            fatal.__cause__ = e
            result.error = str(e)
            self.fatal_error = fatal
            self._finish(result, start_time)
            self._fail(fatal)
            return result

        self._finish(result, start_time)
        return result

    def _finish(self, result: RunResult, start_time: float) -> None:
        result.duration = time.time() - start_time
        self.results.append(result)
        self._render(result)

        if result.aborted and self._state is not RunState.ABORTING:
            self._transition(RunState.ABORTING)

        if self._state is RunState.RUNNING:
            self.on_stage_complete(Stage.TEST)
            return

        self._transition(RunState.IDLE)
        self._settle()

    def _settle(self) -> None:
        """Back in IDLE: consume the pending flag or report idle."""
        if self.pending_rerun and self.fatal_error is None and not self._shutting_down:
            self.reporter.info(
                f"{EssayeurEmoji.RERUN} Rerunning after change",
                context="RunController",
            )
            self.start()
            return

        self._idle.set()

    def _render(self, result: RunResult) -> None:
        if result.failed_stage:
            self.console.print(self.display.create_stage_failure(result))
            return

        if result.aborted:
            self.console.print(self.display.create_abort_notice(result))
            return

        for suite_name, tests in self.display.group_by_suite(result.tests).items():
            self.console.print(self.display.create_suite_panel(suite_name, tests))
        self.console.print(self.display.create_run_summary(result))

    def _fail(self, error: UnhandledAsyncError) -> None:
        self.reporter.critical(
            f"{EssayeurEmoji.FAILURE} {error.message}", context="RunController"
        )
        if self.on_fatal is not None:
            self.on_fatal(error)
