from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import yaml

from pug.logic.enums import GameMode

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence


def _get_default_config_path() -> Path:  # pragma: no cover
    """Return the file-relative default path to maps.yaml."""
    backend_root = Path(__file__).parent.parent.parent
    return backend_root / "config" / "maps.yaml"


class MapCatalog:
    """Read-only map pool per game mode.

    Every listed mode must have at least one map; a mode missing from the
    catalog only fails when it is looked up.
    """

    def __init__(self, maps: Mapping[GameMode | str, Sequence[str]]) -> None:
        self._maps: dict[GameMode, list[str]] = {}
        for mode, names in maps.items():
            pool = [str(name) for name in names]
            if not pool:
                raise ValueError(f"Map pool for {mode} is empty")
            if len(set(pool)) != len(pool):
                raise ValueError(f"Duplicate map in pool for {mode}")
            self._maps[GameMode(mode)] = pool

    @classmethod
    def from_yaml(cls, config_path: Path | None = None) -> MapCatalog:
        path = config_path or _get_default_config_path()
        with path.open() as f:
            config = yaml.safe_load(f) or {}
        return cls(config.get("maps") or {})

    def get_maps(self, mode: GameMode) -> list[str]:
        """Return the pool for a mode. Raise KeyError if the mode has none."""
        return self._maps[mode].copy()

    def modes(self) -> list[GameMode]:
        return list(self._maps)

    def require_modes(self, modes: Iterable[GameMode]) -> None:
        """Raise ValueError unless every given mode has a pool."""
        missing = [mode for mode in modes if mode not in self._maps]
        if missing:
            raise ValueError(f"No map pool for {', '.join(missing)}")
