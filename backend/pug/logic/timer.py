"""
One-shot session deadline backed by an asyncio task.

The ready-check and map-vote windows each run one DeadlineTimer. Cancelling
the timer cancels the task, so a callback that has not started never runs.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

logger = structlog.get_logger()

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable


class DeadlineTimer:
    """Run a callback once after a fixed number of seconds unless cancelled first."""

    def __init__(self, seconds: float, on_expire: Callable[[], Awaitable[None]]) -> None:
        self._seconds = seconds
        self._on_expire = on_expire
        self._task: asyncio.Task[None] | None = None

    @property
    def seconds(self) -> float:
        return self._seconds

    @property
    def active(self) -> bool:
        """True while the deadline is pending or its callback is running."""
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start (or restart) the countdown."""
        self.cancel()
        self._task = asyncio.create_task(self._run())

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _run(self) -> None:
        try:
            await asyncio.sleep(self._seconds)
            await self._on_expire()
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("deadline callback failed")
