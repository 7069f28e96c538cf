"""
Cooperative cancellation for test runs.

The RunController hands one token to each run. The engine checks it
between test cases and races async cases against wait().
"""

import asyncio
from typing import Optional

from essayeur.domain.exceptions import RunAborted


class CancellationToken:
    """One-shot cancellation signal shared by a run and its controller."""

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        """Request cancellation. The first reason wins."""
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        """Raise RunAborted if cancellation was requested."""
        if self._event.is_set():
            raise RunAborted(
                f"Run aborted: {self.reason}", details={"reason": self.reason}
            )

    async def wait(self) -> None:
        """Block until cancellation is requested."""
        await self._event.wait()
