from typing import Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

from pug.chat.protocol import option_from_choice_id
from pug.logic.enums import GameMode


class SetModeRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    mode: GameMode


class ReadyRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    minutes: float | None = Field(default=None, gt=0, le=24 * 60)


class VoteRequest(BaseModel):
    """A map vote, either by map name or by the id of the clicked button."""

    model_config = ConfigDict(extra="forbid")

    map: str | None = Field(default=None, min_length=1, max_length=100)
    choice_id: str | None = Field(default=None, min_length=1, max_length=120)

    @model_validator(mode="after")
    def _validate_target(self) -> Self:
        if (self.map is None) == (self.choice_id is None):
            raise ValueError("Provide exactly one of map or choice_id")
        if self.choice_id is not None and option_from_choice_id(self.choice_id) is None:
            raise ValueError("choice_id is not a map vote")
        return self

    @property
    def map_name(self) -> str:
        if self.map is not None:
            return self.map
        return option_from_choice_id(self.choice_id or "") or ""
