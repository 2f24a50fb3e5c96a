from pug.logic.enums import GameMode
from pug.session.models import ChannelConfig, Session


class SessionStore:
    """In-memory table of channel configurations and live sessions.

    The store does no locking of its own: SessionManager is its only writer
    and serializes every mutation under one lock.
    """

    def __init__(self) -> None:
        self._channels: dict[str, ChannelConfig] = {}  # channel_id -> ChannelConfig
        self._sessions: dict[str, Session] = {}  # channel_id -> Session

    def set_channel_mode(self, channel_id: str, mode: GameMode) -> ChannelConfig:
        channel = ChannelConfig(channel_id=channel_id, mode=mode)
        self._channels[channel_id] = channel
        return channel

    def get_channel(self, channel_id: str) -> ChannelConfig | None:
        return self._channels.get(channel_id)

    def create_session(self, channel_id: str, mode: GameMode, started_at: float) -> Session:
        """Create an empty session. Raise ValueError if the channel already has one."""
        if channel_id in self._sessions:
            raise ValueError(f"Session already exists for channel {channel_id}")
        session = Session(mode=mode, channel_id=channel_id, started_at=started_at)
        self._sessions[channel_id] = session
        return session

    def get_session(self, channel_id: str) -> Session | None:
        return self._sessions.get(channel_id)

    def remove_session(self, channel_id: str) -> Session | None:
        return self._sessions.pop(channel_id, None)

    def sessions(self) -> list[Session]:
        """Snapshot of all live sessions."""
        return list(self._sessions.values())

    def other_sessions(self, channel_id: str) -> list[Session]:
        return [s for cid, s in self._sessions.items() if cid != channel_id]

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    @property
    def channel_count(self) -> int:
        return len(self._channels)
