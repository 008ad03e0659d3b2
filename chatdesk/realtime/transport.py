"""Transports carrying raw event payloads between processes.

A transport delivers ``(channel, data)`` pairs to one callback and reports
connectivity changes to another. It keeps track of the channels it was asked
to listen on and re-establishes them after a reconnect without the caller
doing anything.
"""

import asyncio
import inspect
from abc import ABC, abstractmethod
from enum import Enum
from typing import Awaitable, Callable, Optional, Set, Union

import redis.asyncio as redis_async
from redis.exceptions import RedisError

from chatdesk.logging_config import get_logger

logger = get_logger("realtime.transport")

RawHandler = Callable[[str, str], Union[None, Awaitable[None]]]


class ConnectionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    DEGRADED = "degraded"  # real-time path down, reconciliation polling only


StatusHandler = Callable[[ConnectionStatus], Union[None, Awaitable[None]]]


async def _maybe_await(result) -> None:
    if inspect.isawaitable(result):
        await result


class Transport(ABC):
    def __init__(self):
        self.status = ConnectionStatus.DISCONNECTED
        self._channels: Set[str] = set()
        self._on_message: Optional[RawHandler] = None
        self._on_status: Optional[StatusHandler] = None

    @property
    def channels(self) -> Set[str]:
        return set(self._channels)

    async def start(self, on_message: RawHandler, on_status: Optional[StatusHandler] = None) -> None:
        self._on_message = on_message
        self._on_status = on_status
        await self._open()

    async def _set_status(self, status: ConnectionStatus) -> None:
        if status == self.status:
            return
        previous = self.status
        self.status = status
        logger.info(
            "Transport status changed",
            extra={"context": {"from": previous.value, "to": status.value}},
        )
        if self._on_status:
            await _maybe_await(self._on_status(status))

    async def _deliver(self, channel: str, data: str) -> None:
        if channel not in self._channels or self._on_message is None:
            return
        await _maybe_await(self._on_message(channel, data))

    @abstractmethod
    async def _open(self) -> None:
        pass

    @abstractmethod
    async def subscribe(self, channel: str) -> None:
        pass

    @abstractmethod
    async def unsubscribe(self, channel: str) -> None:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass


class InMemoryTransport(Transport):
    """Single-process bus. ``publish`` is safe to call from worker threads."""

    def __init__(self):
        super().__init__()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    async def _open(self) -> None:
        self._loop = asyncio.get_running_loop()
        await self._set_status(ConnectionStatus.CONNECTED)

    async def subscribe(self, channel: str) -> None:
        self._channels.add(channel)

    async def unsubscribe(self, channel: str) -> None:
        self._channels.discard(channel)

    async def close(self) -> None:
        self._channels.clear()
        await self._set_status(ConnectionStatus.DISCONNECTED)
        self._loop = None

    def publish(self, channel: str, data: str) -> bool:
        loop = self._loop
        if loop is None or loop.is_closed():
            return False
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            loop.create_task(self._deliver(channel, data))
        else:
            asyncio.run_coroutine_threadsafe(self._deliver(channel, data), loop)
        return True


class RedisTransport(Transport):
    """Redis pub/sub with a reconnect loop.

    While the connection is down the status is ``DEGRADED``; subscribe and
    unsubscribe calls only update the wanted channel set, which is replayed
    on the next successful connect.
    """

    def __init__(
        self,
        redis_url: str,
        *,
        socket_timeout_seconds: float = 5.0,
        backoff_seconds: float = 1.0,
        backoff_max_seconds: float = 30.0,
        poll_timeout_seconds: float = 1.0,
    ):
        super().__init__()
        self.redis_url = redis_url
        self.socket_timeout_seconds = socket_timeout_seconds
        self.backoff_seconds = backoff_seconds
        self.backoff_max_seconds = backoff_max_seconds
        self.poll_timeout_seconds = poll_timeout_seconds
        self._client = None
        self._pubsub = None
        self._reader_task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()

    async def _open(self) -> None:
        if self._reader_task is None or self._reader_task.done():
            self._reader_task = asyncio.create_task(self._run())

    async def _connect(self) -> None:
        self._client = redis_async.Redis.from_url(
            self.redis_url,
            decode_responses=True,
            socket_timeout=self.socket_timeout_seconds,
            socket_connect_timeout=self.socket_timeout_seconds,
        )
        await self._client.ping()
        self._pubsub = self._client.pubsub(ignore_subscribe_messages=True)
        async with self._lock:
            wanted = sorted(self._channels)
            if wanted:
                await self._pubsub.subscribe(*wanted)
        logger.info("Redis transport connected", extra={"context": {"channels": len(wanted)}})

    async def _teardown(self) -> None:
        pubsub, client = self._pubsub, self._client
        self._pubsub = None
        self._client = None
        if pubsub is not None:
            try:
                await pubsub.aclose()
            except (RedisError, OSError):
                pass
        if client is not None:
            try:
                await client.aclose()
            except (RedisError, OSError):
                pass

    async def _run(self) -> None:
        delay = self.backoff_seconds
        while True:
            try:
                await self._connect()
                await self._set_status(ConnectionStatus.CONNECTED)
                delay = self.backoff_seconds
                await self._read_loop()
            except asyncio.CancelledError:
                break
            except (RedisError, OSError) as e:
                logger.warning(
                    "Redis transport connection lost",
                    extra={"context": {"error": str(e), "retry_in_seconds": delay}},
                )
                await self._teardown()
                await self._set_status(ConnectionStatus.DEGRADED)
                try:
                    await asyncio.sleep(delay)
                except asyncio.CancelledError:
                    break
                delay = min(delay * 2, self.backoff_max_seconds)
        await self._teardown()

    async def _read_loop(self) -> None:
        while True:
            if self._pubsub is None or not self._pubsub.subscribed:
                await asyncio.sleep(self.poll_timeout_seconds)
                continue
            message = await self._pubsub.get_message(
                ignore_subscribe_messages=True,
                timeout=self.poll_timeout_seconds,
            )
            if not message or message.get("type") != "message":
                continue
            try:
                await self._deliver(message["channel"], message["data"])
            except Exception as e:
                logger.error(
                    "Event handler failed",
                    extra={"context": {"channel": message.get("channel"), "error": str(e)}},
                )

    async def subscribe(self, channel: str) -> None:
        async with self._lock:
            if channel in self._channels:
                return
            self._channels.add(channel)
            if self._pubsub is None or self.status != ConnectionStatus.CONNECTED:
                return
            try:
                await self._pubsub.subscribe(channel)
            except (RedisError, OSError) as e:
                # replayed by _connect after the reader loop reconnects
                logger.warning("Redis subscribe failed", extra={"context": {"channel": channel, "error": str(e)}})

    async def unsubscribe(self, channel: str) -> None:
        async with self._lock:
            if channel not in self._channels:
                return
            self._channels.discard(channel)
            if self._pubsub is None or self.status != ConnectionStatus.CONNECTED:
                return
            try:
                await self._pubsub.unsubscribe(channel)
            except (RedisError, OSError) as e:
                logger.warning("Redis unsubscribe failed", extra={"context": {"channel": channel, "error": str(e)}})

    async def close(self) -> None:
        if self._reader_task is not None:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
            self._reader_task = None
        await self._teardown()
        self._channels.clear()
        await self._set_status(ConnectionStatus.DISCONNECTED)
