"""
Change watcher - polls watched files for modification-time advances.

A file counts as changed when its mtime strictly advances over the last
observed value. A touch that keeps the content identical still counts;
there is no hashing.
"""

import asyncio
import os
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from shared.reporter.emojis import EssayeurEmoji
from shared.reporter.system_reporter import SystemReporter

from essayeur.domain.run_state import ChangeEvent

DEFAULT_POLL_INTERVAL = 0.1


class ChangeWatcher:
    """
    Background poller emitting ChangeEvents through a callback.

    The watched file set is fixed at construction. The watcher runs as an
    asyncio task on the caller's loop and cannot be restarted once started.
    """

    def __init__(
        self,
        files: Iterable[Path],
        callback: Callable[[ChangeEvent], None],
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        reporter: Optional[SystemReporter] = None,
    ):
        """
        Initialize change watcher.

        Args:
            files: Files to observe (order kept, duplicates dropped)
            callback: Called once per changed file per tick
            poll_interval: Seconds between polls (default: 0.1)
            reporter: Optional reporter for logging
        """
        self._files: Tuple[Path, ...] = tuple(
            dict.fromkeys(Path(f).resolve() for f in files)
        )
        self._callback = callback
        self.poll_interval = poll_interval
        self.reporter = reporter or SystemReporter(
            name="change_watcher", level=20, verbose=1
        )
        self._mtimes: Dict[Path, Optional[int]] = {}
        self._task: Optional[asyncio.Task] = None
        self._started = False

    @property
    def files(self) -> Tuple[Path, ...]:
        """The watched file set."""
        return self._files

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @staticmethod
    def _mtime(path: Path) -> Optional[int]:
        try:
            return os.stat(path).st_mtime_ns
        except FileNotFoundError:
            return None

    def snapshot(self) -> None:
        """Record current mtimes as the baseline for the next poll."""
        self._mtimes = {path: self._mtime(path) for path in self._files}

    def poll(self) -> List[ChangeEvent]:
        """
        Run one polling tick.

        Returns:
            One ChangeEvent per file whose mtime advanced since last tick
        """
        events = []

        for path in self._files:
            current = self._mtime(path)
            previous = self._mtimes.get(path)

            if current is not None and (previous is None or current > previous):
                events.append(ChangeEvent(file_path=path))

            self._mtimes[path] = current

        return events

    def start(self) -> asyncio.Task:
        """
        Snapshot the baseline and start polling on the running loop.

        Returns:
            The polling task

        Raises:
            RuntimeError: If the watcher was already started
        """
        if self._started:
            raise RuntimeError("ChangeWatcher cannot be restarted")

        self._started = True
        self.snapshot()

        self._task = asyncio.get_running_loop().create_task(self._watch())
        self._task.add_done_callback(self._on_task_done)

        self.reporter.info(
            f"{EssayeurEmoji.WATCH} Watching {len(self._files)} file(s)",
            context="ChangeWatcher",
        )
        return self._task

    async def stop(self) -> None:
        """Cancel the polling task and wait for it to finish."""
        if self._task is None or self._task.done():
            return

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass

    async def _watch(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)

            for event in self.poll():
                self.reporter.debug(
                    f"{EssayeurEmoji.CHANGED} {event.file_path}",
                    context="ChangeWatcher",
                )
                self._callback(event)

    def _on_task_done(self, task: asyncio.Task) -> None:
        # Callback errors surface through the loop's exception handler
        if task.cancelled() or task.exception() is None:
            return

        task.get_loop().call_exception_handler(
            {
                "message": "ChangeWatcher callback failed",
                "exception": task.exception(),
                "task": task,
            }
        )
