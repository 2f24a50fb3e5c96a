"""
Pydantic models returned by the session layer.
"""

from pydantic import BaseModel, Field


class ActionResult(BaseModel):
    """Reply to one player or admin action. Refusals come back with ok=False."""

    ok: bool
    messages: list[str] = Field(default_factory=list)


class ManagerStatus(BaseModel):
    channel_count: int
    session_count: int
    active_timers: int
    sessions_by_state: dict[str, int]
