"""Registry of live session deadlines keyed by opaque handles."""

from collections.abc import Awaitable, Callable
from uuid import uuid4

import structlog

from pug.logic.enums import DeadlineType
from pug.logic.timer import DeadlineTimer

logger = structlog.get_logger()

# Callback type: (channel_id, deadline_type, handle) -> Awaitable[None]
TimeoutCallback = Callable[[str, DeadlineType, str], Awaitable[None]]


class TimerRegistry:
    """Own every ready-check and map-vote deadline for all channels.

    Sessions only store the handle returned by schedule(); this class maps it
    to the live DeadlineTimer. A handle is dropped from the table the moment
    its timer fires, so cancelling from inside the callback path is a no-op.
    The callback receives the handle and must check the session still holds
    it before acting.
    """

    def __init__(self, on_timeout: TimeoutCallback) -> None:
        self._timers: dict[str, DeadlineTimer] = {}
        self._on_timeout = on_timeout

    def schedule(self, channel_id: str, deadline_type: DeadlineType, seconds: float) -> str:
        """Start a deadline and return its handle."""
        handle = str(uuid4())
        timer = DeadlineTimer(
            seconds,
            lambda h=handle, cid=channel_id, dt=deadline_type: self._fire(h, cid, dt),
        )
        self._timers[handle] = timer
        timer.start()
        logger.debug("deadline scheduled", channel_id=channel_id, deadline=deadline_type, seconds=seconds)
        return handle

    def cancel(self, handle: str | None) -> bool:
        """Cancel a pending deadline. Return False if it already fired or never existed."""
        if handle is None:
            return False
        timer = self._timers.pop(handle, None)
        if timer is None:
            return False
        timer.cancel()
        return True

    def is_active(self, handle: str | None) -> bool:
        return handle is not None and handle in self._timers

    @property
    def active_count(self) -> int:
        return len(self._timers)

    def cancel_all(self) -> None:
        """Cancel every pending deadline (shutdown)."""
        timers = list(self._timers.values())
        self._timers.clear()
        for timer in timers:
            timer.cancel()

    async def _fire(self, handle: str, channel_id: str, deadline_type: DeadlineType) -> None:
        if self._timers.pop(handle, None) is None:
            return
        await self._on_timeout(channel_id, deadline_type, handle)
