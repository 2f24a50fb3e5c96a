"""Outbound chat notices and the text helpers shared by the session layer."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from collections.abc import Iterable

    from pug.logic.tally import VoteTally
    from pug.session.models import Session

READY_MARKER = ":thumbsup:"
UNREADY_MARKER = ":zzz:"


class ChannelNotice(BaseModel):
    channel_id: str
    text: str
    mentions: list[str] = Field(default_factory=list)


class DirectNotice(BaseModel):
    player_id: str
    text: str


class ChoiceNotice(BaseModel):
    """Buttons offered to a channel (map vote)."""

    channel_id: str
    text: str
    options: list[str]


Notice = ChannelNotice | DirectNotice | ChoiceNotice


def mention(player_id: str) -> str:
    return f"<@{player_id}>"


def mention_all(player_ids: Iterable[str]) -> str:
    return " ".join(mention(pid) for pid in player_ids)


def connect_link(server_address: str) -> str:
    return f"steam://connect/{server_address}"


def format_status(session: Session, capacity: int, now: float) -> str:
    """Render `Players (n/capacity): <@a>:thumbsup: <@b>:zzz:` in queue order."""
    entries = [
        f"{mention(player.id)}{READY_MARKER if player.is_ready_at(now) else UNREADY_MARKER}" for player in session.queue
    ]
    return f"Players ({session.player_count}/{capacity}): {' '.join(entries)}".rstrip()


def format_tally(tally: VoteTally) -> list[str]:
    if tally.is_tie:
        return [
            f"{', '.join(tally.winning_maps)} tied with {tally.max_vote_count} votes each.",
            f"**{tally.chosen_map}** was randomly selected as the winner.",
        ]
    return [f"**{tally.chosen_map}** won with {tally.max_vote_count} votes."]
