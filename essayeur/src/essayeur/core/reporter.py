"""
Essayeur reporter - creates Rich renderable objects for runs.

Responsible for:
- Creating Rich visual components (Panels, Text)
- Formatting run and test data into displayable objects
- NOT responsible for printing/rendering

The controller and sequencer handle rendering via Rich Console.
"""

from collections import OrderedDict
from pathlib import Path
from typing import Dict, List, Sequence

from rich.panel import Panel
from rich.text import Text

from shared.reporter.emojis import EssayeurEmoji

from essayeur.domain.results import RunResult, TestCaseResult, TestStatus

PANEL_WIDTH = 67

_STATUS_STYLE = {
    TestStatus.PASS.value: (EssayeurEmoji.TEST_PASS, "green"),
    TestStatus.FAIL.value: (EssayeurEmoji.TEST_FAIL, "red"),
    TestStatus.ERROR.value: (EssayeurEmoji.TEST_ERROR, "red"),
    TestStatus.SKIP.value: (EssayeurEmoji.TEST_SKIP, "yellow"),
}


class EssayeurReporter:
    """
    Creates Rich renderable objects for runs and test results.

    Returns Rich objects that can be rendered by a Rich Console.
    Does not handle printing itself.
    """

    def create_run_header(
        self, run_id: int, test_files: Sequence[Path], watch: bool = False
    ) -> Panel:
        """
        Create Rich Panel announcing a run.

        Args:
            run_id: Sequential run number
            test_files: Test files the run will load
            watch: Whether the process is in watch mode

        Returns:
            Rich Panel object
        """
        content = Text()
        content.append("\n")

        if not test_files:
            content.append("   No test files found!\n", style="yellow")
        else:
            file_word = "file" if len(test_files) == 1 else "files"
            content.append(f"  Running {len(test_files)} test {file_word}\n")

        if watch:
            content.append(
                f"  {EssayeurEmoji.WATCH} Watching for changes\n", style="dim"
            )

        return Panel(
            content,
            title=f"[bold]{EssayeurEmoji.RUN_START} Run #{run_id}[/bold]",
            border_style="white",
            padding=(0, 1),
            width=PANEL_WIDTH,
        )

    def create_suite_panel(
        self, suite_name: str, tests: List[TestCaseResult]
    ) -> Panel:
        """
        Create Rich Panel for one suite with its case results.

        Args:
            suite_name: Suite title ("Contract: <name>")
            tests: Case results of the suite

        Returns:
            Rich Panel object
        """
        content = Text()
        content.append("\n")

        max_name_len = 43
        for test in tests:
            icon, style = _STATUS_STYLE.get(test.status, ("?", "white"))

            content.append("    ")
            content.append(icon, style=style)
            content.append(" ")
            content.append(test.name[:max_name_len].ljust(max_name_len), style=style)
            content.append(f"{test.duration:>8.3f}s")
            content.append("\n")

            if test.error:
                content.append(f"       {test.error}\n", style="dim red")
            if test.events_emitted is not None:
                content.append(
                    f"       events emitted: {test.events_emitted}\n", style="dim"
                )

        passed = sum(1 for t in tests if t.status == TestStatus.PASS.value)
        total = len(tests)
        duration = sum(t.duration for t in tests)

        if passed == total:
            icon, style = EssayeurEmoji.TEST_PASS, "green"
            percentage = "100.0%"
        else:
            icon, style = EssayeurEmoji.TEST_FAIL, "red"
            percentage = f"{(passed / total * 100):.1f}%" if total else "0%"

        content.append("\n    ")
        content.append(icon, style=style)
        content.append(" ")
        content.append(
            f"Summary: {passed}/{total} passed ({percentage})".ljust(43),
            style=style,
        )
        content.append(f"{duration:>8.3f}s")

        return Panel(
            content,
            title=f"[bold] {suite_name}[/bold]",
            border_style="blue" if passed == total else "red",
            padding=(0, 1),
            width=PANEL_WIDTH,
        )

    def create_stage_failure(self, result: RunResult) -> Panel:
        """
        Create Rich Panel for a run that failed in build or deploy.

        Args:
            result: Run result with failed_stage set

        Returns:
            Rich Panel object
        """
        emoji = (
            EssayeurEmoji.BUILD
            if result.failed_stage == "build"
            else EssayeurEmoji.DEPLOY
        )

        content = Text()
        content.append("\n")
        content.append(f"  {emoji} Stage: ", style="red")
        content.append(f"{result.failed_stage}\n", style="bold red")
        content.append(f"  {result.error}\n")
        content.append("\n  No tests were run.\n", style="dim")

        return Panel(
            content,
            title=f"[bold]{EssayeurEmoji.FAILURE} Run #{result.run_id} Failed[/bold]",
            border_style="red",
            padding=(0, 1),
            width=PANEL_WIDTH,
        )

    def create_abort_notice(self, result: RunResult) -> Text:
        """
        Create one-line notice for an aborted run.

        Args:
            result: Aborted run result

        Returns:
            Rich Text object
        """
        text = Text()
        text.append(f"{EssayeurEmoji.ABORT} Run #{result.run_id} aborted", style="yellow")
        text.append(
            f" after {result.total} test(s) ({result.duration:.2f}s)", style="dim"
        )
        return text

    def create_run_summary(self, result: RunResult) -> Panel:
        """
        Create Rich Panel summarizing a completed run.

        Args:
            result: Completed run result

        Returns:
            Rich Panel object with per-suite breakdown
        """
        if result.success:
            status_icon, status_text, status_style = (
                EssayeurEmoji.SUCCESS,
                "PASSED",
                "green",
            )
        else:
            status_icon, status_text, status_style = (
                EssayeurEmoji.FAILURE,
                "FAILED",
                "red",
            )

        content = Text()
        content.append("\n")
        content.append("  Suite                         Total  Passed  Failed\n")
        content.append("  ")
        content.append("─" * 59)
        content.append("\n")

        for suite_name, tests in self.group_by_suite(result.tests).items():
            failed = sum(1 for t in tests if t.failed)
            passed = sum(1 for t in tests if t.status == TestStatus.PASS.value)
            content.append(f"  {suite_name[:28].ljust(28)}")
            content.append(f"{len(tests):>7}")
            content.append(f"{passed:>8}")
            content.append(
                f"{failed:>8}", style="red" if failed else ""
            )
            content.append("\n")

        content.append("  ")
        content.append("─" * 59)
        content.append("\n")
        content.append(f"  {'Total'.ljust(28)}")
        content.append(f"{result.total:>7}")
        content.append(f"{result.passed:>8}")
        content.append(f"{result.failed:>8}")
        content.append("\n\n")

        content.append("  ")
        content.append(status_icon, style=status_style)
        content.append(" Status: ", style=status_style)
        content.append(status_text, style=f"bold {status_style}")
        content.append(f"   ({result.duration:.2f}s)\n", style="dim")

        return Panel(
            content,
            title=f"[bold]{EssayeurEmoji.SUMMARY} Run #{result.run_id} Summary[/bold]",
            border_style="white",
            padding=(0, 1),
            width=PANEL_WIDTH,
        )

    def create_dry_run_listing(
        self, test_files: Sequence[Path], watch_files: Sequence[Path]
    ) -> Panel:
        """
        Create Rich Panel listing what a run would load and watch.

        Args:
            test_files: Discovered test files
            watch_files: Files the watcher would poll

        Returns:
            Rich Panel object
        """
        content = Text()
        content.append("\n")
        content.append(f"  {EssayeurEmoji.DISCOVER} Test files:\n", style="bold")
        for path in test_files:
            content.append(f"     {EssayeurEmoji.FILE} {path.name}\n")

        sources = [p for p in watch_files if p not in set(test_files)]
        content.append("\n")
        content.append(f"  {EssayeurEmoji.CONTRACT} Contract sources:\n", style="bold")
        if not sources:
            content.append("     (none)\n", style="dim")
        for path in sources:
            content.append(f"     {EssayeurEmoji.FILE} {path.name}\n")

        return Panel(
            content,
            title=f"[bold]{EssayeurEmoji.DRY_RUN} Dry Run[/bold]",
            border_style="white",
            padding=(0, 1),
            width=PANEL_WIDTH,
        )

    @staticmethod
    def group_by_suite(
        tests: List[TestCaseResult],
    ) -> Dict[str, List[TestCaseResult]]:
        """Group case results by suite, keeping first-seen order."""
        grouped: Dict[str, List[TestCaseResult]] = OrderedDict()
        for test in tests:
            grouped.setdefault(test.suite, []).append(test)
        return grouped
