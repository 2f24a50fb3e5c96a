"""PUG coordinator configuration via environment variables."""

from pathlib import Path
from typing import Self

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

from pug.logic.settings import SessionSettings

_SECONDS_PER_MINUTE = 60


class PugServerSettings(BaseSettings):
    model_config = {"env_prefix": "PUG_"}

    log_dir: str = Field(default="backend/logs/pug", min_length=1)
    data_dir: str = Field(default="backend/data", min_length=1)
    maps_path: str | None = None  # defaults to backend/config/maps.yaml
    servers_path: str | None = None  # defaults to backend/config/servers.yaml
    rcon_password: str = Field(min_length=1)
    chat_relay_url: str | None = None  # log-only chat when unset

    default_ready_minutes: float = Field(default=10, gt=0)
    min_ready_minutes: float = Field(default=5, gt=0)
    max_ready_minutes: float = Field(default=30, gt=0)
    ready_check_timeout_seconds: float = Field(default=30, gt=0)
    map_vote_timeout_seconds: float = Field(default=15, gt=0)
    server_search_attempts: int = Field(default=5, ge=1)
    server_search_interval_seconds: float = Field(default=10, ge=0)
    server_query_timeout_seconds: float = Field(default=2, gt=0)
    rcon_timeout_seconds: float = Field(default=5, gt=0)
    rcon_close_grace_seconds: float = Field(default=1, ge=0)

    @model_validator(mode="after")
    def _check_ready_window(self) -> Self:
        if self.min_ready_minutes > self.max_ready_minutes:
            raise ValueError("min_ready_minutes must not exceed max_ready_minutes")
        return self

    @property
    def records_dir(self) -> Path:
        return Path(self.data_dir) / "games"

    @property
    def channels_dir(self) -> Path:
        return Path(self.data_dir) / "channels"

    def to_session_settings(self) -> SessionSettings:
        return SessionSettings(
            default_ready_seconds=self.default_ready_minutes * _SECONDS_PER_MINUTE,
            min_ready_seconds=self.min_ready_minutes * _SECONDS_PER_MINUTE,
            max_ready_seconds=self.max_ready_minutes * _SECONDS_PER_MINUTE,
            ready_check_timeout_seconds=self.ready_check_timeout_seconds,
            map_vote_timeout_seconds=self.map_vote_timeout_seconds,
            server_search_attempts=self.server_search_attempts,
            server_search_interval_seconds=self.server_search_interval_seconds,
            server_query_timeout_seconds=self.server_query_timeout_seconds,
            rcon_timeout_seconds=self.rcon_timeout_seconds,
            rcon_close_grace_seconds=self.rcon_close_grace_seconds,
        )
