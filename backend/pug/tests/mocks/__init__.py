from pug.tests.mocks.chat import RecordingChatPlatform
from pug.tests.mocks.servers import FakeCommandClient, FakeLocator
from pug.tests.mocks.storage import MemoryChannelStorage, MemoryRecordStorage

__all__ = [
    "FakeCommandClient",
    "FakeLocator",
    "MemoryChannelStorage",
    "MemoryRecordStorage",
    "RecordingChatPlatform",
]
