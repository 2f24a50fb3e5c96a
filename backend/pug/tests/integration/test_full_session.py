"""End-to-end sessions through the HTTP surface and the real server clients."""

import random

import pytest
from starlette.testclient import TestClient

from pug.logic.enums import GameMode
from pug.logic.settings import SessionSettings
from pug.server.app import create_app
from pug.server.settings import PugServerSettings
from pug.servers.locator import ServerLocator
from pug.servers.query import query_server
from pug.servers.rcon import RemoteCommandClient
from pug.session.manager import FINDING_SERVER, GOOD_TO_GO, MAP_VOTE_PROMPT, NO_SERVER_FOUND, SessionManager
from pug.session.recorder import SessionRecorder
from pug.tests.helpers.game_servers import FakeQueryServer, FakeRconServer, info_reply, serve_query
from pug.tests.helpers.session import wait_for

RCON_PASSWORD = "test-rcon-password"


class TestFourPlayerGameOverHttp:
    @pytest.fixture
    def session_settings(self):
        return SessionSettings(
            map_vote_timeout_seconds=5,
            server_search_attempts=1,
            rcon_timeout_seconds=0.5,
        )

    @pytest.fixture
    def client(self, session_settings, catalog, chat, locator, commands, record_storage, clock):
        manager = SessionManager(
            session_settings,
            catalog,
            chat,
            locator,
            commands,
            recorder=SessionRecorder(record_storage),
            clock=clock,
            rng=random.Random(7),
        )
        app = create_app(settings=PugServerSettings(rcon_password=RCON_PASSWORD), session_manager=manager)
        with TestClient(app) as client:
            yield client

    def test_join_vote_and_connect(self, client, chat, commands, record_storage):
        client.put("/channels/pugs/mode", json={"mode": "BBALL"})
        for player_id in ["p1", "p2", "p3", "p4"]:
            assert client.post(f"/channels/pugs/players/{player_id}").json()["ok"]

        wait_for(lambda: len(chat.choices) == 1)
        assert chat.choices[0] == ("pugs", MAP_VOTE_PROMPT, ["m1", "m2", "m3"])
        assert client.get("/channels/pugs").json()["session"]["state"] == "map_vote"

        for player_id in ["p1", "p2", "p3", "p4"]:
            client.post(f"/channels/pugs/players/{player_id}/vote", json={"choice_id": "map-vote-m1"})

        wait_for(lambda: len(chat.direct_messages) == 4)
        wait_for(lambda: len(record_storage.records) == 1)

        assert chat.texts("pugs") == [
            "The game is full.",
            "All players are ready.",
            "All players have voted.",
            f"**m1** won with 4 votes.\n{FINDING_SERVER}",
            "Found a server: 10.0.0.1:27015. Attempting to set the map to m1...",
            GOOD_TO_GO,
        ]
        assert commands.commands == [("10.0.0.1:27015", "changelevel m1")]
        assert {pid for pid, _ in chat.direct_messages} == {"p1", "p2", "p3", "p4"}
        (record,) = record_storage.documents()
        assert record["state"] == "players_connect"
        assert record["chosen_map"] == "m1"
        assert client.get("/channels/pugs").json()["session"] is None


class TestRealServerClients:
    async def test_busy_server_skipped_and_map_set_over_rcon(
        self, session_settings, catalog, chat, record_storage, clock
    ):
        busy = FakeQueryServer(info_reply(players=9))
        busy_address = await serve_query(busy)

        async with FakeRconServer(RCON_PASSWORD, reply="") as rcon:
            free = FakeQueryServer(info_reply(players=0), challenge=True)
            free_address = await serve_query(free, port=rcon.port)
            locator = ServerLocator([busy_address, free_address], query_server, attempts=1, query_timeout_seconds=0.5)
            manager = SessionManager(
                session_settings,
                catalog,
                chat,
                locator,
                RemoteCommandClient(RCON_PASSWORD, timeout_seconds=1, close_grace_seconds=0.05),
                recorder=SessionRecorder(record_storage),
                clock=clock,
            )
            try:
                await manager.setup_channel("c1", GameMode.TEST)
                await manager.add_player("c1", "solo")
                await manager.drain()
            finally:
                await manager.shutdown()
                busy.close()
                free.close()

        assert rcon.commands == ["changelevel cp_test"]
        assert chat.direct_messages == [
            ("solo", f"Your game on cp_test is ready. Join the server: steam://connect/{free_address}")
        ]
        (record,) = record_storage.documents()
        assert record["server_address"] == free_address
        assert record["outcome"] == f"Players connecting to {free_address} on cp_test."

    async def test_discovery_exhaustion_cancels_game(self, session_settings, catalog, chat, record_storage, clock):
        busy = FakeQueryServer(info_reply(players=12))
        silent = FakeQueryServer(None)
        addresses = [await serve_query(busy), await serve_query(silent)]
        locator = ServerLocator(addresses, query_server, attempts=2, interval_seconds=0.01, query_timeout_seconds=0.1)
        manager = SessionManager(
            session_settings,
            catalog,
            chat,
            locator,
            RemoteCommandClient(RCON_PASSWORD, timeout_seconds=0.5),
            recorder=SessionRecorder(record_storage),
            clock=clock,
        )
        try:
            await manager.setup_channel("c1", GameMode.TEST)
            await manager.add_player("c1", "solo")
            await manager.drain()
        finally:
            await manager.shutdown()
            busy.close()
            silent.close()

        assert len(busy.requests) == 2
        assert chat.texts("c1")[-1] == NO_SERVER_FOUND
        assert chat.direct_messages == []
        assert manager.get_session("c1") is None
        (record,) = record_storage.documents()
        assert record["outcome"] == NO_SERVER_FOUND
