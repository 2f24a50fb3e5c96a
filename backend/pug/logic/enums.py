"""
String enum definitions for PUG session concepts.
"""

from enum import StrEnum


class GameMode(StrEnum):
    """Game formats a channel can be set up for."""

    BBALL = "BBALL"
    HIGHLANDER = "HIGHLANDER"
    SIXES = "SIXES"
    ULTIDUO = "ULTIDUO"
    TEST = "TEST"  # one player


class SessionState(StrEnum):
    """Lifecycle states of a channel session, in order."""

    ADD_REMOVE = "add_remove"
    READY_CHECK = "ready_check"
    MAP_VOTE = "map_vote"
    FINDING_SERVER = "finding_server"
    SETTING_MAP = "setting_map"
    PLAYERS_CONNECT = "players_connect"


class DeadlineType(StrEnum):
    """Kinds of session deadline owned by the timer registry."""

    READY_CHECK = "ready_check"
    MAP_VOTE = "map_vote"


# States in which the queue itself may still change.
QUEUE_STATES = frozenset({SessionState.ADD_REMOVE, SessionState.READY_CHECK})

# States in which a map vote is accepted (pre-votes while filling).
VOTE_STATES = frozenset({SessionState.ADD_REMOVE, SessionState.MAP_VOTE})
