"""
Small state transforms applied to a Session.

Each function validates first and raises SessionRefusal before mutating
anything, so a refused action leaves the session untouched. None of them
touch timers, the chat platform or the network: SessionManager calls them
under its lock and takes care of side effects.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from pug.logic.enums import QUEUE_STATES, VOTE_STATES, SessionState
from pug.logic.exceptions import RefusalCode, SessionRefusal
from pug.session.models import Player
from pug.session.notices import mention

if TYPE_CHECKING:
    from collections.abc import Sequence

    from pug.logic.tally import VoteTally
    from pug.session.models import Session


def _require_queued(session: Session, player_id: str, suffix: str = "Ignoring.") -> Player:
    player = session.players.get(player_id)
    if player is None:
        raise SessionRefusal(RefusalCode.NOT_QUEUED, f"{mention(player_id)} is not added. {suffix}")
    return player


def add_player(session: Session, player_id: str, *, now: float, ready_seconds: float, capacity: int) -> Player:
    """Queue a player, ready for ready_seconds from now."""
    if session.state != SessionState.ADD_REMOVE:
        raise SessionRefusal(RefusalCode.WRONG_STATE, f"Can't add {mention(player_id)} right now. Ignoring.")
    if session.has_player(player_id):
        raise SessionRefusal(RefusalCode.ALREADY_QUEUED, f"{mention(player_id)} is already added. Ignoring.")
    if session.player_count + 1 > capacity:
        raise SessionRefusal(RefusalCode.CAPACITY_EXCEEDED, "Bug: More than total num players added to game")

    player = Player(id=player_id, queued_at=now, ready_until=now + ready_seconds)
    session.players[player_id] = player
    return player


def remove_player(session: Session, player_id: str) -> str | None:
    """Dequeue a player and fall back to ADD_REMOVE.

    Return the ready-check timer handle the caller must cancel, if any.
    """
    _require_queued(session, player_id)
    if session.state not in QUEUE_STATES:
        raise SessionRefusal(RefusalCode.WRONG_STATE, f"Can't remove {mention(player_id)} right now. Ignoring.")

    del session.players[player_id]
    return _back_to_add_remove(session)


def ready_player(session: Session, player_id: str, ready_until: float) -> None:
    if session.state not in QUEUE_STATES:
        raise SessionRefusal(RefusalCode.WRONG_STATE, f"Can't ready {mention(player_id)} right now. Ignoring.")
    player = _require_queued(session, player_id)
    player.ready_until = ready_until


def record_vote(session: Session, player_id: str, map_name: str, pool: Sequence[str]) -> None:
    """Record (or replace) a player's map vote; pre-votes are kept while filling."""
    if session.state not in VOTE_STATES:
        raise SessionRefusal(RefusalCode.WRONG_STATE, "Not in map voting phase. Ignoring vote.")
    player = _require_queued(session, player_id, "Ignoring vote.")
    if map_name not in pool:
        raise SessionRefusal(
            RefusalCode.UNKNOWN_MAP, f"{map_name} is not in the {session.mode} map pool. Ignoring vote."
        )
    player.map_vote = map_name


def begin_ready_check(session: Session, now: float) -> list[str]:
    """Pin the ready-check epoch and return the players unready against it."""
    session.ready_check_started_at = now
    return session.unready_player_ids(now)


def start_ready_check(session: Session, timer_handle: str) -> None:
    session.state = SessionState.READY_CHECK
    session.ready_timer_handle = timer_handle


def evict_unready(session: Session) -> list[str]:
    """Remove players still unready against the pinned epoch.

    The unready set is recomputed here rather than reused from the start of
    the check: players may have readied up or left in between.
    """
    reference = session.ready_check_started_at
    if reference is None:
        return []
    unready = session.unready_player_ids(reference)
    if not unready:
        return []
    for player_id in unready:
        del session.players[player_id]
    _back_to_add_remove(session)
    return unready


def evict_players(session: Session, player_ids: Sequence[str]) -> tuple[list[str], str | None]:
    """Remove the given players if queued (cross-channel reconciliation).

    Return the removed ids and the ready-check handle to cancel, if the
    session was in a ready check.
    """
    removed = [pid for pid in player_ids if pid in session.players]
    if not removed:
        return [], None
    for player_id in removed:
        del session.players[player_id]
    return removed, _back_to_add_remove(session)


def start_map_vote(session: Session, now: float, timer_handle: str) -> None:
    session.state = SessionState.MAP_VOTE
    session.map_vote_started_at = now
    session.map_vote_timer_handle = timer_handle


def complete_vote(session: Session, tally: VoteTally, now: float) -> None:
    session.winning_maps = list(tally.winning_maps)
    session.max_vote_count = tally.max_vote_count
    session.chosen_map = tally.chosen_map
    session.map_vote_timer_handle = None
    session.ready_timer_handle = None
    session.state = SessionState.FINDING_SERVER
    session.finding_server_at = now


def start_setting_map(session: Session, server_address: str, now: float) -> None:
    session.state = SessionState.SETTING_MAP
    session.server_address = server_address
    session.setting_map_at = now


def start_players_connect(session: Session, now: float) -> None:
    session.state = SessionState.PLAYERS_CONNECT
    session.players_connect_at = now


def _back_to_add_remove(session: Session) -> str | None:
    handle = session.ready_timer_handle
    session.state = SessionState.ADD_REMOVE
    session.ready_timer_handle = None
    session.ready_check_started_at = None
    return handle
