"""
Map vote tally: plurality winner with a uniform random tie-break.

When nobody voted every map is tied at zero and the winner is drawn uniformly
from the whole pool.
"""

from __future__ import annotations

import random
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence


class VoteTally(BaseModel):
    model_config = ConfigDict(frozen=True)

    winning_maps: list[str]
    max_vote_count: int
    chosen_map: str

    @property
    def is_tie(self) -> bool:
        return len(self.winning_maps) > 1


def count_votes(pool: Sequence[str], votes: Iterable[str | None]) -> dict[str, int]:
    """Count votes per pool map, in pool order. Votes outside the pool are ignored."""
    counts = dict.fromkeys(pool, 0)
    for vote in votes:
        if vote in counts:
            counts[vote] += 1
    return counts


def tally_votes(vote_counts: Mapping[str, int], rng: random.Random | None = None) -> VoteTally:
    """
    Pick the winning map from per-map vote counts.

    A single map holding the maximum wins outright and no random draw is made.
    Otherwise the winner is chosen uniformly among the tied maps.
    """
    if not vote_counts:
        raise ValueError("Cannot tally an empty map pool")

    max_vote_count = max(vote_counts.values())
    winning_maps = [name for name, count in vote_counts.items() if count == max_vote_count]
    if len(winning_maps) == 1:
        chosen_map = winning_maps[0]
    else:
        chosen_map = (rng or random).choice(winning_maps)

    return VoteTally(winning_maps=winning_maps, max_vote_count=max_vote_count, chosen_map=chosen_map)
