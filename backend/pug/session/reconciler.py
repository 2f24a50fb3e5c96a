"""
Cross-session reconciliation.

A player may sit in several channel queues at once. When one session reaches
all-ready its players are swept out of every other session that is still
filling or ready-checking, so nobody is booked into two games. Sessions
already past the ready-check are never touched; joins into them are refused
instead (see SessionManager.add_player).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from pug.logic.enums import QUEUE_STATES
from pug.session.transitions import evict_players

if TYPE_CHECKING:
    from collections.abc import Sequence

    from pug.session.session_store import SessionStore
    from pug.session.timer_manager import TimerRegistry

logger = structlog.get_logger()


@dataclass(frozen=True)
class Eviction:
    channel_id: str
    player_ids: list[str]
    ready_check_cancelled: bool


class CrossSessionReconciler:
    """Sweep every other live session. Must run under the manager lock."""

    def __init__(self, store: SessionStore, timers: TimerRegistry) -> None:
        self._store = store
        self._timers = timers

    def evict(self, channel_id: str, player_ids: Sequence[str]) -> list[Eviction]:
        evictions: list[Eviction] = []
        for session in self._store.other_sessions(channel_id):
            if session.state not in QUEUE_STATES:
                continue
            removed, ready_handle = evict_players(session, player_ids)
            if not removed:
                continue
            cancelled = self._timers.cancel(ready_handle)
            logger.info(
                "evicted players committed elsewhere",
                channel_id=session.channel_id,
                committed_channel_id=channel_id,
                player_ids=removed,
                ready_check_cancelled=cancelled,
            )
            evictions.append(
                Eviction(channel_id=session.channel_id, player_ids=removed, ready_check_cancelled=cancelled)
            )
        return evictions
