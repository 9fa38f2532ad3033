"""Shared fixtures for mock server tests."""
from pathlib import Path

import pytest
import pytest_asyncio

from mockserver.engine.listener_pool import ListenerPool
from mockserver.engine.mock_server import MockServer
from mockserver.models import Direction
from mockserver.scripts.store import ScriptStore

MOCKS_DIR = Path(__file__).parent / "mocks"

POP3_MESSAGES = [
    (Direction.SERVER, b"+OK POP3 server ready\r\n"),
    (Direction.CLIENT, b"QUIT\r\n"),
    (Direction.SERVER, b"+OK POP3 server signing off\r\n"),
]


@pytest.fixture
def mocks_dir():
    return MOCKS_DIR


@pytest.fixture
def store():
    return ScriptStore(MOCKS_DIR)


@pytest.fixture
def pool():
    """Pool of three OS-assigned ports on the IPv4 loopback."""
    pool = ListenerPool(poll_interval_ms=5)
    pool.start(["127.0.0.1"], [0, 0, 0])
    yield pool
    if pool.running:
        pool.stop()


@pytest_asyncio.fixture
async def server(store):
    server = MockServer(ListenerPool(poll_interval_ms=5), store)
    server.startup(["127.0.0.1"], [0, 0])
    yield server
    await server.shutdown()
