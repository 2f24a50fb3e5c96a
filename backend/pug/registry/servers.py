from pathlib import Path

import yaml

from pug.registry.types import GameServer
from pug.servers.types import parse_address


def _get_default_config_path() -> Path:  # pragma: no cover
    """Return the file-relative default path to servers.yaml."""
    backend_root = Path(__file__).parent.parent.parent
    return backend_root / "config" / "servers.yaml"


class ServerRegistry:
    """Ordered pool of game server addresses, loaded once from servers.yaml."""

    def __init__(self, config_path: Path | None = None) -> None:
        self._servers: list[GameServer] = []
        self._config_path = config_path or _get_default_config_path()
        self._load_config()

    def _load_config(self) -> None:
        if not self._config_path.exists():
            return

        with self._config_path.open() as f:
            config = yaml.safe_load(f) or {}

        for server_data in config.get("servers") or []:
            address = str(server_data["address"])
            parse_address(address)
            self._servers.append(GameServer(address=address, name=server_data.get("name")))

    def get_servers(self) -> list[GameServer]:
        return self._servers.copy()

    def get_addresses(self) -> list[str]:
        return [s.address for s in self._servers]
