"""Shared fixtures: in-memory stand-ins for the Redis client and WebSockets."""

import fnmatch
import json

import pytest
import pytest_asyncio
from redis.exceptions import ConnectionError as RedisConnectionError

from backend import RedisBackend
from broadcast import BroadcastHub
from redis_keys import REDIS_CODE_KEY
from sweeper import RetentionSweeper
from synchronizer import RoomSynchronizer


class MockRedis:
    """Hash-only subset of the redis.asyncio client used by RedisBackend."""

    def __init__(self):
        self.hashes = {}
        self.fail_on = set()
        self.fail_keys = set()
        self.closed = False
        self.calls = []

    def _check(self, operation, key=None):
        self.calls.append((operation, key))
        if operation in self.fail_on or (key is not None and key in self.fail_keys):
            raise RedisConnectionError(f"{operation} failed")

    async def ping(self):
        self._check("ping")
        return True

    async def hgetall(self, key):
        self._check("hgetall", key)
        return dict(self.hashes.get(key, {}))

    async def hset(self, key, mapping=None):
        self._check("hset", key)
        self.hashes.setdefault(key, {}).update(mapping or {})
        return len(mapping or {})

    async def delete(self, *keys):
        deleted = 0
        for key in keys:
            self._check("delete", key)
            if self.hashes.pop(key, None) is not None:
                deleted += 1
        return deleted

    async def scan_iter(self, match=None):
        self._check("scan")
        for key in list(self.hashes):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    async def aclose(self):
        self.closed = True

    # Test helpers

    def put(self, room_id, **fields):
        self.hashes[REDIS_CODE_KEY.format(slug=room_id)] = dict(fields)

    def record(self, room_id):
        return self.hashes.get(REDIS_CODE_KEY.format(slug=room_id))


class MockWebSocket:
    """Mock WebSocket for testing."""

    def __init__(self):
        self.sent_messages = []
        self.fail = False

    async def send_text(self, message):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent_messages.append(json.loads(message))

    def events(self, name=None):
        return [m for m in self.sent_messages if name is None or m["event"] == name]


@pytest.fixture
def redis_client():
    return MockRedis()


@pytest.fixture
def backend(redis_client):
    return RedisBackend(redis_client)


@pytest_asyncio.fixture
async def hub():
    hub = BroadcastHub()
    yield hub
    await hub.close()


@pytest.fixture
def synchronizer(backend, hub):
    return RoomSynchronizer(backend, hub, max_code_length=1000)


@pytest.fixture
def sweeper(backend):
    return RetentionSweeper(backend, retention_days=30)


@pytest.fixture
def connect(hub):
    """Register a mock socket under the given connection id."""

    def _connect(connection_id):
        websocket = MockWebSocket()
        hub.register(connection_id, websocket)
        return websocket

    return _connect


@pytest.fixture
def flush(hub):
    """Wait until queued events for the given connections reached their sockets."""

    async def _flush(*connection_ids):
        for connection_id in connection_ids:
            connection = hub.get(connection_id)
            if connection is not None:
                await connection.flush()

    return _flush
