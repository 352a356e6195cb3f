"""Redis pub/sub intake that normalizes channel payloads into the shared history."""

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from datetime import datetime
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import RedisError

from channel_tail.core.config import Settings
from channel_tail.core.errors import BrokerConnectError, BrokerRuntimeError, DecodeError
from channel_tail.core.history import HistoryStore
from channel_tail.core.normalizer import normalize
from channel_tail.core.state import ServicePhase, ServiceState
from channel_tail.core.time_utils import format_clock, local_now
from channel_tail.core.types import Message, SequenceMessage

logger = logging.getLogger(__name__)

_MESSAGE_EVENT = "message"
_STOP = object()


class BrokerSubscription:
    """Single-channel Redis subscription yielding raw payloads in delivery order."""

    def __init__(self, client: Redis, channel: str) -> None:
        self.channel = channel
        self._client = client
        self._pubsub: Any = None
        self._subscribed = False
        self._closed = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "BrokerSubscription":
        client = Redis(
            host=settings.REDIS_HOST,
            port=settings.REDIS_PORT,
            socket_connect_timeout=settings.REDIS_CONNECT_TIMEOUT_S,
        )
        return cls(client, settings.SUBSCRIBE_CHANNEL)

    @property
    def subscribed(self) -> bool:
        return self._subscribed and not self._closed

    async def open(self) -> None:
        """Connect and subscribe; any failure is fatal to startup."""

        if self._closed:
            raise RuntimeError("subscription is closed")

        try:
            await self._client.ping()
            self._pubsub = self._client.pubsub()
            await self._pubsub.subscribe(self.channel)
        except (RedisError, OSError) as exc:
            raise BrokerConnectError(self.channel, str(exc)) from exc

        self._subscribed = True
        logger.info("subscriber_subscribed", extra={"channel": self.channel})

    async def payloads(self) -> AsyncIterator[bytes]:
        """Yield each published payload once; control frames are skipped."""

        if not self.subscribed:
            raise RuntimeError("subscription is not open")

        try:
            async for event in self._pubsub.listen():
                if event.get("type") != _MESSAGE_EVENT:
                    continue
                yield event["data"]
        except (RedisError, OSError) as exc:
            if self._closed:
                return
            raise BrokerRuntimeError(self.channel, str(exc)) from exc

    async def close(self) -> None:
        """Unsubscribe and release the connection; safe after a failed connection."""

        if self._closed:
            return
        self._closed = True

        pubsub, self._pubsub = self._pubsub, None
        if pubsub is not None:
            if self._subscribed:
                await self._quietly("unsubscribe", pubsub.unsubscribe(self.channel))
            await self._quietly("pubsub_close", pubsub.aclose())
        await self._quietly("client_close", self._client.aclose())
        logger.info("subscriber_closed", extra={"channel": self.channel})

    async def _quietly(self, step: str, awaitable: Any) -> None:
        try:
            await awaitable
        except (RedisError, OSError) as exc:
            logger.warning(
                "subscriber_close_step_failed",
                extra={"channel": self.channel, "step": step, "error": str(exc)},
            )


class MessagePipeline:
    """Producer loop feeding a single normalize-and-insert consumer through a queue."""

    def __init__(
        self,
        subscription: BrokerSubscription,
        history: HistoryStore,
        clock: Callable[[], datetime] = local_now,
    ) -> None:
        self._subscription = subscription
        self._history = history
        self._clock = clock
        self.received = 0
        self.dropped = 0

    def handle(self, payload: bytes | str) -> Message | None:
        """Normalize one payload and store it; malformed payloads are logged and dropped."""

        self.received += 1
        try:
            message = normalize(payload, now=self._clock())
        except DecodeError as exc:
            self.dropped += 1
            logger.warning(
                "subscriber_invalid_json_message",
                extra={"channel": self._subscription.channel, "error": str(exc)},
            )
            return None

        self._history.insert(message)
        logger.debug(
            "subscriber_message_stored",
            extra={"channel": self._subscription.channel, "kind": message.kind},
        )
        return message

    async def run(self) -> None:
        """Pump the subscription until it ends, fails or is cancelled."""

        queue: asyncio.Queue[Any] = asyncio.Queue()
        consumer = asyncio.create_task(self._consume(queue))
        try:
            async for payload in self._subscription.payloads():
                queue.put_nowait(payload)
        finally:
            queue.put_nowait(_STOP)
            await consumer

    async def _consume(self, queue: "asyncio.Queue[Any]") -> None:
        while True:
            payload = await queue.get()
            if payload is _STOP:
                return
            self.handle(payload)


class SubscriptionBridge:
    """Owns the subscription and its pipeline task for the lifetime of the HTTP app."""

    def __init__(
        self,
        subscription: BrokerSubscription,
        state: ServiceState,
        announce: bool = False,
    ) -> None:
        self._subscription = subscription
        self._state = state
        self._announce = announce
        self._pipeline = MessagePipeline(subscription, state.history)
        self._task: asyncio.Task[None] | None = None
        self._failure_callbacks: list[Callable[[BaseException], None]] = []
        self.failure: BaseException | None = None

    @property
    def pipeline(self) -> MessagePipeline:
        return self._pipeline

    def add_failure_callback(self, callback: Callable[[BaseException], None]) -> None:
        self._failure_callbacks.append(callback)

    async def start(self) -> None:
        """Subscribe, then start pumping; a connect failure releases the partial client."""

        try:
            await self._subscription.open()
        except BrokerConnectError:
            await self._subscription.close()
            raise

        if self._announce:
            self._state.history.insert(
                SequenceMessage(
                    items=(
                        format_clock(local_now()),
                        "debug",
                        "subscribeChannel",
                        self._subscription.channel,
                    )
                )
            )

        self._task = asyncio.create_task(
            self._pipeline.run(), name=f"subscriber:{self._subscription.channel}"
        )
        self._task.add_done_callback(self._on_pipeline_done)

    async def stop(self) -> None:
        """Cancel the pump and close the subscription."""

        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:  # noqa: BLE001
                # already reported through _on_pipeline_done
                pass

        await self._subscription.close()
        logger.info(
            "subscriber_stopped",
            extra={
                "channel": self._subscription.channel,
                "received": self._pipeline.received,
                "dropped": self._pipeline.dropped,
            },
        )

    def _on_pipeline_done(self, task: "asyncio.Task[None]") -> None:
        if task.cancelled():
            return

        exc = task.exception()
        if exc is None:
            logger.warning("subscriber_stream_ended", extra={"channel": self._subscription.channel})
            return

        self.failure = exc
        logger.error(
            "subscriber_failed",
            extra={"channel": self._subscription.channel, "error": str(exc)},
            exc_info=exc,
        )
        if self._state.phase == ServicePhase.RUNNING:
            self._state.advance(ServicePhase.SHUTTING_DOWN)
        for callback in self._failure_callbacks:
            callback(exc)
