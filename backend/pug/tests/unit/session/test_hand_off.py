import logging

from pug.logic.enums import GameMode, SessionState
from pug.servers.types import CommandResult
from pug.session.manager import GOOD_TO_GO, HAND_OFF_CRASHED, NO_SERVER_FOUND
from pug.tests.helpers.session import setup_and_fill, wait_until


async def _run_to_hand_off(manager, player_ids=("a", "b", "c", "d"), map_name="m1"):
    await setup_and_fill(manager, "c1", player_ids)
    for player_id in player_ids:
        await manager.vote_map("c1", player_id, map_name)


class TestSuccessfulHandOff:
    async def test_map_set_and_players_told(self, manager, chat, commands, locator):
        await _run_to_hand_off(manager)
        await manager.drain()

        assert locator.calls == 1
        assert commands.commands == [("10.0.0.1:27015", "changelevel m1")]
        texts = chat.texts("c1")
        assert "Found a server: 10.0.0.1:27015. Attempting to set the map to m1..." in texts
        assert texts[-1] == GOOD_TO_GO
        assert chat.channel_messages[-1][2] == ["a", "b", "c", "d"]
        assert chat.direct_messages == [
            (pid, "Your game on m1 is ready. Join the server: steam://connect/10.0.0.1:27015")
            for pid in ["a", "b", "c", "d"]
        ]

    async def test_session_recorded_then_destroyed(self, manager, record_storage):
        await _run_to_hand_off(manager)
        await manager.drain()

        assert manager.get_session("c1") is None
        (record,) = record_storage.documents()
        assert record["state"] == "players_connect"
        assert record["server_address"] == "10.0.0.1:27015"
        assert record["chosen_map"] == "m1"
        assert record["outcome"] == "Players connecting to 10.0.0.1:27015 on m1."
        assert record["players_connect_at"] is not None

    async def test_channel_can_start_again(self, manager):
        await _run_to_hand_off(manager)
        await manager.drain()

        result = await manager.add_player("c1", "a")
        assert result.ok
        assert result.messages[0] == "No game started. Starting one now."


class TestFailedHandOff:
    async def test_no_server_found(self, manager, chat, locator, commands, record_storage):
        locator.address = None
        await _run_to_hand_off(manager)
        await manager.drain()

        assert chat.texts("c1")[-1] == NO_SERVER_FOUND
        assert commands.commands == []
        assert manager.get_session("c1") is None
        (record,) = record_storage.documents()
        assert record["state"] == "finding_server"
        assert record["outcome"] == NO_SERVER_FOUND

    async def test_set_map_failure(self, manager, chat, commands, record_storage):
        commands.result = CommandResult(ok=False, message="Authentication failed.")
        await _run_to_hand_off(manager)
        await manager.drain()

        expected = "Failed to set the map on 10.0.0.1:27015: Authentication failed. Game cancelled."
        assert chat.texts("c1")[-1] == expected
        assert chat.direct_messages == []
        (record,) = record_storage.documents()
        assert record["state"] == "setting_map"
        assert record["outcome"] == expected

    async def test_unexpected_error_still_tears_down(self, manager, chat, locator, caplog):
        locator.error = RuntimeError("socket exploded")
        with caplog.at_level(logging.ERROR):
            await _run_to_hand_off(manager)
            await manager.drain()

        assert chat.texts("c1")[-1] == HAND_OFF_CRASHED
        assert manager.get_session("c1") is None
        assert "hand-off failed" in caplog.text

    async def test_chat_outage_does_not_block_teardown(self, manager, chat, record_storage):
        await _run_to_hand_off(manager)
        chat.fail = True
        await manager.drain()

        assert manager.get_session("c1") is None
        assert len(record_storage.records) == 1

    async def test_record_failure_does_not_block_teardown(self, manager, record_storage):
        record_storage.fail = True
        await _run_to_hand_off(manager)
        await manager.drain()
        assert manager.get_session("c1") is None

    async def test_unexpected_storage_error_does_not_wedge_channel(self, manager, record_storage, caplog):
        record_storage.fail = True
        record_storage.error = RuntimeError
        with caplog.at_level(logging.ERROR):
            await _run_to_hand_off(manager)
            await manager.drain()

        assert manager.get_session("c1") is None
        assert "failed to record session" in caplog.text
        assert (await manager.start("c1")).ok


class TestActionsDuringHandOff:
    async def test_queue_frozen_while_finding_server(self, manager, locator):
        locator.delay = 0.2
        await _run_to_hand_off(manager)
        assert manager.get_session("c1").state == SessionState.FINDING_SERVER

        assert (await manager.add_player("c1", "e")).messages == ["Can't add <@e> right now. Ignoring."]
        assert (await manager.remove_player("c1", "a")).messages == ["Can't remove <@a> right now. Ignoring."]
        assert (await manager.ready_player("c1", "a")).messages == ["Can't ready <@a> right now. Ignoring."]
        assert (await manager.vote_map("c1", "a", "m2")).messages == ["Not in map voting phase. Ignoring vote."]
        assert (await manager.stop("c1")).messages == ["Can't stop the game now."]
        assert (await manager.start("c1")).messages == ["A game has already been started."]

        await manager.drain()
        assert manager.get_session("c1") is None

    async def test_committed_player_cannot_join_elsewhere(self, manager, locator):
        locator.delay = 0.2
        await manager.setup_channel("c2", GameMode.BBALL)
        await _run_to_hand_off(manager)

        result = await manager.add_player("c2", "a")

        assert not result.ok
        assert result.messages == ["<@a> is already in a game in another channel. Ignoring."]
        assert manager.get_session("c2") is None

    async def test_shutdown_cancels_pending_hand_off(self, manager, locator):
        locator.delay = 5
        await _run_to_hand_off(manager)
        await wait_until(lambda: locator.calls == 1)

        await manager.shutdown()

        assert manager.get_session("c1").state == SessionState.FINDING_SERVER
