import json

from pug.logic.enums import GameMode, SessionState
from pug.session.models import Player, Session
from pug.session.notices import format_status, format_tally
from pug.logic.tally import VoteTally


class TestQueueOrder:
    def test_sorted_by_queued_at(self):
        session = Session(mode=GameMode.BBALL, channel_id="c1", started_at=0)
        session.players["late"] = Player(id="late", queued_at=20, ready_until=100)
        session.players["early"] = Player(id="early", queued_at=10, ready_until=100)
        assert session.player_ids == ["early", "late"]

    def test_ties_keep_insertion_order(self):
        session = Session(mode=GameMode.BBALL, channel_id="c1", started_at=0)
        for pid in ["b", "a", "c"]:
            session.players[pid] = Player(id=pid, queued_at=5, ready_until=100)
        assert session.player_ids == ["b", "a", "c"]

    def test_ready_boundary_is_inclusive(self):
        player = Player(id="p", queued_at=0, ready_until=50)
        assert player.is_ready_at(50)
        assert not player.is_ready_at(50.001)


class TestSessionSerialization:
    def test_dumps_in_every_state(self):
        session = Session(mode=GameMode.SIXES, channel_id="c1", started_at=1.5)
        session.players["p1"] = Player(id="p1", queued_at=1.5, ready_until=601.5, map_vote="cp_granary_pro_rc8")
        session.ready_timer_handle = "2d5e6c4a-0000-4000-8000-000000000000"
        for state in SessionState:
            session.state = state
            data = json.loads(session.model_dump_json())
            assert data["state"] == state.value
            assert data["mode"] == "SIXES"
            assert data["players"]["p1"]["map_vote"] == "cp_granary_pro_rc8"

    def test_round_trips_through_json(self):
        session = Session(mode=GameMode.BBALL, channel_id="c1", started_at=1.0, outcome="done")
        restored = Session.model_validate_json(session.model_dump_json())
        assert restored == session


class TestNoticeFormatting:
    def test_status_line_marks_ready_and_unready(self):
        session = Session(mode=GameMode.BBALL, channel_id="c1", started_at=0)
        session.players["a"] = Player(id="a", queued_at=1, ready_until=100)
        session.players["b"] = Player(id="b", queued_at=2, ready_until=10)
        assert format_status(session, 4, now=50) == "Players (2/4): <@a>:thumbsup: <@b>:zzz:"

    def test_status_line_empty_session(self):
        session = Session(mode=GameMode.TEST, channel_id="c1", started_at=0)
        assert format_status(session, 1, now=0) == "Players (0/1):"

    def test_outright_winner_message(self):
        tally = VoteTally(winning_maps=["m1"], max_vote_count=4, chosen_map="m1")
        assert format_tally(tally) == ["**m1** won with 4 votes."]

    def test_tie_message(self):
        tally = VoteTally(winning_maps=["m1", "m2"], max_vote_count=2, chosen_map="m2")
        assert format_tally(tally) == [
            "m1, m2 tied with 2 votes each.",
            "**m2** was randomly selected as the winner.",
        ]
