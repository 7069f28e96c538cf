"""
Test execution engine - runs contract suites for one session.

Suites run with bounded parallelism; cases inside a suite run in order.
The engine supports cooperative abort: it checks the run's token before
every case and races async hooks and test bodies against it.
"""

import asyncio
import inspect
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Type

from shared.reporter.emojis import EssayeurEmoji
from shared.reporter.system_reporter import SystemReporter

from essayeur.core.artifact_cache import ArtifactCache
from essayeur.core.cancellation import CancellationToken
from essayeur.core.session import TestRunSession
from essayeur.domain.exceptions import RunAborted, TestAssertionFailure
from essayeur.domain.results import TestCaseResult, TestStatus
from essayeur.testing.contract_test import (
    ContractTest,
    call_maybe_async,
    is_contract_test,
)


class TestExecutionEngine:
    """
    Executes ContractTest suites discovered in test files.

    Failing assertions are recorded as fail, any other exception as
    error; neither stops the remaining tests.
    """

    __test__ = False

    supports_abort = True

    def __init__(
        self,
        cache: ArtifactCache,
        max_workers: int = 4,
        reporter: Optional[SystemReporter] = None,
    ):
        """
        Initialize engine.

        Args:
            cache: Module cache test files are loaded through
            max_workers: Suites allowed to run concurrently
            reporter: Optional reporter for logging
        """
        self.cache = cache
        self.max_workers = max(1, max_workers)
        self.reporter = reporter or SystemReporter(
            name="engine", level=20, verbose=1
        )

    # ================================================================
    # DISCOVERY
    # ================================================================

    def discover(
        self, test_files: Sequence[Path], results: List[TestCaseResult]
    ) -> List[Type[ContractTest]]:
        """
        Load test files and collect their suites.

        Files that fail to import add an error result instead of raising.

        Args:
            test_files: Python test files
            results: Receives load errors

        Returns:
            Suites to run (only the ones marked only=True if any is)
        """
        suites: List[Type[ContractTest]] = []

        for path in test_files:
            try:
                module = self.cache.load(path)
            except Exception as e:
                self.reporter.error(
                    f"{EssayeurEmoji.TEST_ERROR} Failed to load {path.name}: {e}",
                    context="Engine",
                )
                results.append(
                    TestCaseResult(
                        suite=Path(path).name,
                        name="load_error",
                        status=TestStatus.ERROR.value,
                        duration=0.0,
                        error=f"{type(e).__name__}: {e}",
                    )
                )
                continue

            suites.extend(
                obj
                for obj in vars(module).values()
                if is_contract_test(obj, module.__name__)
            )

        exclusive = [suite for suite in suites if suite.only]
        return exclusive or suites

    # ================================================================
    # EXECUTION
    # ================================================================

    async def run(
        self,
        session: TestRunSession,
        test_files: Sequence[Path],
        token: CancellationToken,
    ) -> List[TestCaseResult]:
        """
        Run every suite found in test_files.

        Args:
            session: Bound session providing context and hooks
            test_files: Python test files
            token: Cancellation token of the current run

        Returns:
            Case results in completion order

        Raises:
            RunAborted: When the token fires; carries the partial results
        """
        results: List[TestCaseResult] = []

        token.raise_if_cancelled()
        suites = self.discover(test_files, results)

        self.reporter.info(
            f"{EssayeurEmoji.TEST_RUN} Running {len(suites)} suite(s) "
            f"from {len(test_files)} file(s)",
            context="Engine",
        )

        await session.initialize()

        semaphore = asyncio.Semaphore(self.max_workers)

        async def run_limited(suite: Type[ContractTest]) -> None:
            async with semaphore:
                await self._run_suite(suite, session, token, results)

        tasks = [asyncio.ensure_future(run_limited(suite)) for suite in suites]

        # Siblings of an aborted suite see the token themselves and still
        # finish their teardown hooks
        try:
            outcomes = await asyncio.gather(*tasks, return_exceptions=True)
        except BaseException:
            await self._cancel_all(tasks)
            raise

        errors = [o for o in outcomes if isinstance(o, BaseException)]
        for error in errors:
            if isinstance(error, RunAborted):
                raise RunAborted(
                    error.message, details=error.details, partial_results=results
                ) from None
        if errors:
            raise errors[0]

        return results

    @staticmethod
    async def _cancel_all(tasks: List[asyncio.Future]) -> None:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _run_suite(
        self,
        suite: Type[ContractTest],
        session: TestRunSession,
        token: CancellationToken,
        results: List[TestCaseResult],
    ) -> None:
        suite_name = suite.suite_name()
        token.raise_if_cancelled()

        start_time = time.time()
        try:
            instance = suite(session.context)
            await self._guarded(instance.setup, token)
        except RunAborted:
            raise
        except Exception as e:
            results.append(
                TestCaseResult(
                    suite=suite_name,
                    name="setup",
                    status=TestStatus.ERROR.value,
                    duration=time.time() - start_time,
                    error=f"Setup failed: {type(e).__name__}: {e}",
                )
            )
            return

        try:
            for test_name, method in instance.discover_tests():
                token.raise_if_cancelled()
                await self._run_case(
                    instance, suite_name, test_name, method, session, token, results
                )
        finally:
            try:
                await self._complete(call_maybe_async(instance.teardown))
            except Exception as e:
                # Teardown errors are logged, never turned into failures
                self.reporter.error(
                    f"Teardown failed for {suite_name}: {e}", context="Engine"
                )

    async def _run_case(
        self,
        instance: ContractTest,
        suite_name: str,
        test_name: str,
        method: Callable[[], Any],
        session: TestRunSession,
        token: CancellationToken,
        results: List[TestCaseResult],
    ) -> TestCaseResult:
        test_key = f"{suite_name}::{test_name}"
        result = TestCaseResult(
            suite=suite_name,
            name=test_name,
            status=TestStatus.ERROR.value,
            duration=0.0,
        )
        start_time = time.time()

        await session.start_test(test_key)
        try:
            try:
                await self._guarded(instance.setup_test, token)
                try:
                    await self._guarded(method, token)
                finally:
                    await self._complete(call_maybe_async(instance.teardown_test))
                result.status = TestStatus.PASS.value

            except (AssertionError, TestAssertionFailure) as e:
                result.status = TestStatus.FAIL.value
                result.error = str(e) or "Assertion failed"

            except (RunAborted, asyncio.CancelledError):
                result.status = TestStatus.SKIP.value
                raise

            except Exception as e:
                result.status = TestStatus.ERROR.value
                result.error = f"{type(e).__name__}: {e}"
        finally:
            result.duration = time.time() - start_time
            results.append(result)
            await self._complete(session.end_test(test_key, result))

        return result

    @staticmethod
    async def _complete(awaitable: Awaitable[Any]) -> Any:
        """
        Await awaitable to the end, even if the calling task is cancelled.

        A cancellation arriving meanwhile is re-raised once it finished.
        """
        task = asyncio.ensure_future(awaitable)
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            await asyncio.wait({task})
            if not task.cancelled() and task.exception() is not None:
                raise task.exception()
            raise

    @staticmethod
    async def _guarded(func: Callable[[], Any], token: CancellationToken) -> Any:
        """
        Call func; if it returns an awaitable, race it against the token.

        Raises:
            RunAborted: If the token fires before the awaitable finishes
        """
        outcome = func()
        if not inspect.isawaitable(outcome):
            return outcome

        body = asyncio.ensure_future(outcome)
        waiter = asyncio.ensure_future(token.wait())

        try:
            done, _ = await asyncio.wait(
                {body, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            body.cancel()
            raise
        finally:
            waiter.cancel()

        if body in done:
            return body.result()

        body.cancel()
        await asyncio.gather(body, return_exceptions=True)
        token.raise_if_cancelled()
