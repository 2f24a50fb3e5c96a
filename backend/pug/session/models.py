"""Session-layer data model.

Everything here is a plain pydantic model so a session can be dumped to JSON
at any point of its life (status endpoint, durable record). Timers are
referenced only by opaque string handles; the live asyncio objects stay in
the TimerRegistry.
"""

from pydantic import BaseModel, Field

from pug.logic.enums import GameMode, SessionState


class Player(BaseModel):
    """A queued player.

    Lifecycle:
    - Created on join with ready_until = join time + default ready window
    - ready_until is pushed forward on ready, map_vote set on vote
    - Removed on leave, cross-channel eviction, or ready-check timeout
    """

    id: str
    queued_at: float
    ready_until: float
    map_vote: str | None = None

    def is_ready_at(self, timestamp: float) -> bool:
        return self.ready_until >= timestamp


class ChannelConfig(BaseModel):
    channel_id: str
    mode: GameMode


class SavedChannel(ChannelConfig):
    """On-disk form of a channel configuration."""

    saved_at: float


class Session(BaseModel):
    """One PUG in progress on a channel."""

    mode: GameMode
    channel_id: str
    state: SessionState = SessionState.ADD_REMOVE
    started_at: float
    players: dict[str, Player] = Field(default_factory=dict)  # player_id -> Player, insertion ordered
    ready_check_started_at: float | None = None
    ready_timer_handle: str | None = None
    map_vote_started_at: float | None = None
    map_vote_timer_handle: str | None = None
    winning_maps: list[str] | None = None
    max_vote_count: int | None = None
    chosen_map: str | None = None
    server_address: str | None = None
    finding_server_at: float | None = None
    setting_map_at: float | None = None
    players_connect_at: float | None = None
    outcome: str | None = None

    @property
    def queue(self) -> list[Player]:
        """Players in queue order (stable sort keeps insertion order on ties)."""
        return sorted(self.players.values(), key=lambda p: p.queued_at)

    @property
    def player_ids(self) -> list[str]:
        return [p.id for p in self.queue]

    @property
    def player_count(self) -> int:
        return len(self.players)

    @property
    def vote_count(self) -> int:
        return sum(1 for p in self.players.values() if p.map_vote is not None)

    def has_player(self, player_id: str) -> bool:
        return player_id in self.players

    def unready_player_ids(self, reference: float) -> list[str]:
        """Players whose ready window ended before the reference time, in queue order."""
        return [p.id for p in self.queue if not p.is_ready_at(reference)]
