"""In-memory stand-ins for the redis.asyncio client used by the subscriber tests."""

import asyncio
from collections.abc import AsyncIterator
from typing import Any

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

_END = object()


class FakePubSub:
    """Pub/sub handle fed from a local queue instead of a socket."""

    def __init__(self, fail_subscribe: bool = False) -> None:
        self.fail_subscribe = fail_subscribe
        self.channels: list[str] = []
        self.unsubscribed: list[str] = []
        self.closed = False
        self._queue: asyncio.Queue[Any] = asyncio.Queue()

    async def subscribe(self, *channels: str) -> None:
        if self.fail_subscribe:
            raise RedisConnectionError("subscribe refused")
        self.channels.extend(channels)

    async def unsubscribe(self, *channels: str) -> None:
        self.unsubscribed.extend(channels)

    async def aclose(self) -> None:
        self.closed = True

    def publish(self, data: bytes) -> None:
        channel = self.channels[0].encode() if self.channels else b""
        self._queue.put_nowait({"type": "message", "pattern": None, "channel": channel, "data": data})

    def fail(self, exc: BaseException) -> None:
        self._queue.put_nowait(exc)

    def end(self) -> None:
        self._queue.put_nowait(_END)

    async def listen(self) -> AsyncIterator[dict[str, Any]]:
        for channel in self.channels:
            yield {"type": "subscribe", "pattern": None, "channel": channel.encode(), "data": 1}
        while True:
            item = await self._queue.get()
            if item is _END:
                return
            if isinstance(item, BaseException):
                raise item
            yield item


class FakeRedis:
    """Minimal client exposing the calls BrokerSubscription makes."""

    def __init__(self, reachable: bool = True, fail_subscribe: bool = False, fail_close: bool = False) -> None:
        self.reachable = reachable
        self.fail_close = fail_close
        self.closed = False
        self.pubsub_handle = FakePubSub(fail_subscribe=fail_subscribe)

    async def ping(self) -> bool:
        if not self.reachable:
            raise RedisConnectionError("Error 111 connecting to 127.0.0.1:6379. Connection refused.")
        return True

    def pubsub(self) -> FakePubSub:
        return self.pubsub_handle

    async def aclose(self) -> None:
        if self.fail_close:
            raise RedisConnectionError("connection already lost")
        self.closed = True


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def unreachable_redis() -> FakeRedis:
    return FakeRedis(reachable=False)
