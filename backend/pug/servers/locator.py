from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

import structlog

from pug.servers.types import ServerQueryError, ServerStatus

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = structlog.get_logger()

# (address, timeout) -> ServerStatus; raises ServerQueryError
QueryFunc = Callable[[str, float], Awaitable[ServerStatus]]


class ServerLocator:
    """Find the first server in a fixed pool with nobody connected.

    A pass queries every address in order. Unreachable servers are skipped.
    After a pass without a free server the locator sleeps for the interval and
    tries again, giving up after the configured number of passes.
    """

    def __init__(
        self,
        addresses: Sequence[str],
        query: QueryFunc,
        *,
        attempts: int = 5,
        interval_seconds: float = 10,
        query_timeout_seconds: float = 2,
    ) -> None:
        self._addresses = list(addresses)
        self._query = query
        self._attempts = attempts
        self._interval = interval_seconds
        self._query_timeout = query_timeout_seconds

    @property
    def addresses(self) -> list[str]:
        return list(self._addresses)

    async def find_free_server(self) -> str | None:
        for attempt in range(1, self._attempts + 1):
            address = await self._scan()
            if address is not None:
                logger.info("found free server", address=address, attempt=attempt)
                return address
            if attempt < self._attempts:
                logger.debug("no free server, retrying", attempt=attempt, interval=self._interval)
                await asyncio.sleep(self._interval)
        logger.warning("no free server found", attempts=self._attempts, pool_size=len(self._addresses))
        return None

    async def _scan(self) -> str | None:
        for address in self._addresses:
            try:
                status = await self._query(address, self._query_timeout)
            except ServerQueryError as exc:
                logger.info("server query failed", address=address, reason=exc.reason)
                continue
            if status.is_empty:
                return address
        return None
