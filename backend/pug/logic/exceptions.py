"""Typed refusals for session actions.

A refusal is the expected outcome of an action attempted at the wrong time
(wrong state, unknown channel, player not queued...). Transitions raise
SessionRefusal before touching any state; SessionManager catches it at its
boundary and turns it into a non-fatal ActionResult.
"""

from enum import StrEnum


class RefusalCode(StrEnum):
    CHANNEL_NOT_CONFIGURED = "channel_not_configured"
    NO_SESSION = "no_session"
    SESSION_EXISTS = "session_exists"
    WRONG_STATE = "wrong_state"
    NOT_QUEUED = "not_queued"
    ALREADY_QUEUED = "already_queued"
    COMMITTED_ELSEWHERE = "committed_elsewhere"
    CAPACITY_EXCEEDED = "capacity_exceeded"
    UNKNOWN_MAP = "unknown_map"


class SessionRefusal(Exception):
    """Raised when an action is not allowed in the current session state.

    Attributes:
        code: Machine-readable reason.
        message: User-facing text returned to the caller.

    """

    def __init__(self, code: RefusalCode, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(message)
