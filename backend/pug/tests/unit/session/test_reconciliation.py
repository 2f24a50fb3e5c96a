from pug.logic.enums import GameMode, SessionState
from pug.tests.helpers.session import setup_and_fill


class TestCrossChannelEviction:
    async def test_all_ready_evicts_from_filling_channel(self, manager, chat):
        await setup_and_fill(manager, "c2", ["a", "x"])
        await setup_and_fill(manager, "c1", ["a", "b", "c", "d"])
        await manager.drain()

        assert manager.get_session("c2").player_ids == ["x"]
        assert chat.texts("c2") == ["Removed (joined a game in another channel): <@a>\nPlayers (1/4): <@x>:thumbsup:"]
        c2_notices = [m for m in chat.channel_messages if m[0] == "c2"]
        assert c2_notices[0][2] == ["a"]

    async def test_all_ready_cancels_other_ready_check(self, manager, chat, clock):
        await setup_and_fill(manager, "c2", ["a", "x", "y"])
        clock.advance(601)
        await manager.add_player("c2", "z")
        assert manager.get_session("c2").state == SessionState.READY_CHECK

        await setup_and_fill(manager, "c1", ["b", "c", "d", "a"])
        await manager.drain()

        other = manager.get_session("c2")
        assert other.state == SessionState.ADD_REMOVE
        assert other.ready_timer_handle is None
        assert other.player_ids == ["x", "y", "z"]
        assert chat.texts("c2")[-1] == (
            "Cancelling ready check.\n"
            "Removed (joined a game in another channel): <@a>\n"
            "Players (3/4): <@x>:zzz: <@y>:zzz: <@z>:thumbsup:"
        )

    async def test_unrelated_players_untouched(self, manager, chat):
        await setup_and_fill(manager, "c2", ["x"])
        await setup_and_fill(manager, "c1", ["a", "b", "c", "d"])
        await manager.drain()

        assert manager.get_session("c2").player_ids == ["x"]
        assert chat.texts("c2") == []

    async def test_different_modes_reconcile_too(self, manager):
        await setup_and_fill(manager, "c2", ["a"], mode=GameMode.SIXES)
        await setup_and_fill(manager, "c1", ["a", "b", "c", "d"])
        assert manager.get_session("c2").player_ids == []

    async def test_readying_up_evicts_from_other_channel(self, manager, chat, clock):
        await setup_and_fill(manager, "c2", ["a", "x"])
        await setup_and_fill(manager, "c1", ["a", "b", "c"])
        clock.advance(601)
        await manager.add_player("c1", "d")
        await manager.ready_player("c1", "b")
        await manager.ready_player("c1", "c")
        assert manager.get_session("c1").state == SessionState.READY_CHECK
        assert manager.get_session("c2").player_ids == ["a", "x"]

        await manager.ready_player("c1", "a")
        await manager.drain()

        assert manager.get_session("c1").state == SessionState.MAP_VOTE
        assert manager.get_session("c2").player_ids == ["x"]
        assert chat.texts("c2") == ["Removed (joined a game in another channel): <@a>\nPlayers (1/4): <@x>:zzz:"]
