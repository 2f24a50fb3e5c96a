import random

import pytest

from pug.logic.enums import GameMode
from pug.logic.settings import SessionSettings
from pug.registry.maps import MapCatalog
from pug.session.manager import SessionManager
from pug.session.recorder import SessionRecorder
from pug.tests.helpers.clock import FakeClock
from pug.tests.mocks import (
    FakeCommandClient,
    FakeLocator,
    MemoryChannelStorage,
    MemoryRecordStorage,
    RecordingChatPlatform,
)

TEST_MAPS = {
    GameMode.BBALL: ["m1", "m2", "m3"],
    GameMode.HIGHLANDER: ["koth_product_final", "pl_upward_f10"],
    GameMode.SIXES: ["cp_snakewater_final1", "cp_granary_pro_rc8", "cp_reckoner_rc6"],
    GameMode.ULTIDUO: ["koth_ultiduo_r_b7"],
    GameMode.TEST: ["cp_test"],
}


@pytest.fixture
def session_settings():
    return SessionSettings(
        ready_check_timeout_seconds=0.05,
        map_vote_timeout_seconds=0.05,
        server_search_attempts=2,
        server_search_interval_seconds=0.01,
        server_query_timeout_seconds=0.1,
        rcon_timeout_seconds=0.5,
        rcon_close_grace_seconds=0.05,
    )


@pytest.fixture
def catalog():
    return MapCatalog(TEST_MAPS)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def chat():
    return RecordingChatPlatform()


@pytest.fixture
def locator():
    return FakeLocator()


@pytest.fixture
def commands():
    return FakeCommandClient()


@pytest.fixture
def record_storage():
    return MemoryRecordStorage()


@pytest.fixture
def channel_storage():
    return MemoryChannelStorage()


@pytest.fixture
async def manager(session_settings, catalog, chat, locator, commands, record_storage, channel_storage, clock):
    mgr = SessionManager(
        session_settings,
        catalog,
        chat,
        locator,
        commands,
        recorder=SessionRecorder(record_storage),
        channel_storage=channel_storage,
        clock=clock,
        rng=random.Random(1234),
    )
    yield mgr
    await mgr.shutdown()
