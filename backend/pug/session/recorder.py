"""Durable record of finished sessions for offline analysis.

Each session that reaches the end of its lifecycle (hand-off finished,
successfully or not) is dumped as one JSON document. Stopped sessions are
not recorded.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pug.session.models import Session
    from shared.storage import SessionRecordStorage

logger = logging.getLogger(__name__)


def record_key(session: Session) -> str:
    """Storage key `<started_at millis>-<channel_id>`, unique per session."""
    return f"{int(session.started_at * 1000)}-{session.channel_id}"


class SessionRecorder:
    def __init__(self, storage: SessionRecordStorage) -> None:
        self._storage = storage

    async def save(self, session: Session) -> None:
        """Write the session snapshot.

        File I/O runs in a worker thread. Errors are logged and never raised
        so teardown always continues.
        """
        key = record_key(session)
        try:
            content = session.model_dump_json(indent=2)
            await asyncio.to_thread(self._storage.save_session_record, key, content)
        except (OSError, ValueError):  # fmt: skip
            logger.exception("Failed to save session record %s", key)
