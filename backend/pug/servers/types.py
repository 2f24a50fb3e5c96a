"""
Value types shared by the server query and remote command clients.
"""

from pydantic import BaseModel, ConfigDict

DEFAULT_PORT = 27015


class ServerQueryError(Exception):
    """A status query failed: unreachable server, timeout or malformed reply."""

    def __init__(self, address: str, reason: str) -> None:
        super().__init__(f"{address}: {reason}")
        self.address = address
        self.reason = reason


class ServerStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    address: str
    name: str
    map_name: str
    player_count: int
    max_players: int
    bot_count: int = 0

    @property
    def is_empty(self) -> bool:
        return self.player_count == 0


class CommandResult(BaseModel):
    """Outcome of one remote command exchange."""

    model_config = ConfigDict(frozen=True)

    ok: bool
    message: str


def parse_address(address: str, default_port: int = DEFAULT_PORT) -> tuple[str, int]:
    """Split `host:port` (port optional). Raise ValueError on a malformed address."""
    host, sep, port_text = address.rpartition(":")
    if not sep:
        host, port_text = address, ""
    host = host.strip()
    if not host:
        raise ValueError(f"Invalid server address: {address!r}")
    if not port_text:
        return host, default_port
    if not port_text.isdigit() or not 0 < int(port_text) < 65536:
        raise ValueError(f"Invalid port in server address: {address!r}")
    return host, int(port_text)
