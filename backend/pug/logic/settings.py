"""Timing and capacity constants consumed by the session engine."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator

from pug.logic.enums import GameMode

DEFAULT_CAPACITIES: dict[GameMode, int] = {
    GameMode.BBALL: 4,
    GameMode.HIGHLANDER: 18,
    GameMode.SIXES: 12,
    GameMode.ULTIDUO: 4,
    GameMode.TEST: 1,
}


class SessionSettings(BaseModel):
    """
    Configuration for session deadlines, ready windows and server hand-off.

    Durations are in seconds. Built from PugServerSettings in production;
    tests construct it directly with short timeouts.
    """

    model_config = ConfigDict(frozen=True)

    # --- Readiness ---
    default_ready_seconds: float = Field(default=10 * 60, gt=0)
    min_ready_seconds: float = Field(default=5 * 60, gt=0)
    max_ready_seconds: float = Field(default=30 * 60, gt=0)
    ready_check_timeout_seconds: float = Field(default=30, gt=0)

    # --- Map vote ---
    map_vote_timeout_seconds: float = Field(default=15, gt=0)

    # --- Server hand-off ---
    server_search_attempts: int = Field(default=5, ge=1)
    server_search_interval_seconds: float = Field(default=10, ge=0)
    server_query_timeout_seconds: float = Field(default=2, gt=0)
    rcon_timeout_seconds: float = Field(default=5, gt=0)
    rcon_close_grace_seconds: float = Field(default=1, ge=0)

    capacities: dict[GameMode, int] = Field(default_factory=lambda: dict(DEFAULT_CAPACITIES))

    @model_validator(mode="after")
    def _check_ready_window(self) -> SessionSettings:
        if not self.min_ready_seconds <= self.max_ready_seconds:
            raise ValueError("min_ready_seconds must not exceed max_ready_seconds")
        missing = set(GameMode) - set(self.capacities)
        if missing:
            raise ValueError(f"capacities missing for modes: {sorted(missing)}")
        if any(value < 1 for value in self.capacities.values()):
            raise ValueError("capacities must be positive")
        return self

    def capacity(self, mode: GameMode) -> int:
        return self.capacities[mode]

    def clamp_ready_seconds(self, requested: float | None) -> float:
        """Clamp a requested ready duration into [min, max], defaulting when absent."""
        seconds = self.default_ready_seconds if requested is None else requested
        return max(min(seconds, self.max_ready_seconds), self.min_ready_seconds)
