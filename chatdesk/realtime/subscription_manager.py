"""Subscription manager: fan-out of conversation events to local subscribers.

Many subscribers (customer widget, agent dashboard, embed preview) may watch
the same conversation. They share one transport channel per conversation;
the channel is released when the last of them unsubscribes.

Guarantees given to handlers:

* at-least-once: the same message or ownership change may be delivered more
  than once (reconciliation re-delivers current state), so handlers merge by
  entity id;
* no ordering between message and ownership events;
* after a reconnect, and on every reconciliation tick while the transport is
  degraded, the current state is re-read from the store and re-delivered.
"""

import asyncio
import inspect
import uuid
import warnings
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Union
from uuid import UUID

from pydantic import ValidationError

from chatdesk.logging_config import get_logger
from chatdesk.realtime.events import (
    ConversationEvent,
    ConversationSnapshot,
    EventType,
    MessagePayload,
    NotificationPayload,
    OwnershipPayload,
    agent_channel,
    conversation_channel,
)
from chatdesk.realtime.transport import ConnectionStatus, Transport
from chatdesk.services.errors import TransportDegradedWarning

logger = get_logger("realtime.subscriptions")

MessageHandler = Callable[[MessagePayload], Union[None, Awaitable[None]]]
OwnershipHandler = Callable[[OwnershipPayload], Union[None, Awaitable[None]]]
NotificationHandler = Callable[[NotificationPayload], Union[None, Awaitable[None]]]
StatusListener = Callable[[ConnectionStatus], Union[None, Awaitable[None]]]
SnapshotLoader = Callable[[UUID], Awaitable[Optional[ConversationSnapshot]]]
Unsubscribe = Callable[[], Awaitable[None]]


@dataclass
class _Subscriber:
    key: str
    on_message: Optional[MessageHandler] = None
    on_ownership_change: Optional[OwnershipHandler] = None
    on_notification: Optional[NotificationHandler] = None


class SubscriptionManager:
    def __init__(
        self,
        transport: Transport,
        snapshot_loader: Optional[SnapshotLoader] = None,
        reconcile_interval_seconds: float = 5.0,
    ):
        self.transport = transport
        self.snapshot_loader = snapshot_loader
        self.reconcile_interval_seconds = reconcile_interval_seconds
        self._subscribers: Dict[str, Dict[str, _Subscriber]] = {}
        self._conversations: Dict[str, UUID] = {}
        self._status_listeners: List[StatusListener] = []
        self._reconcile_task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()
        self._started = False

    @property
    def status(self) -> ConnectionStatus:
        return self.transport.status

    def add_status_listener(self, listener: StatusListener) -> Callable[[], None]:
        self._status_listeners.append(listener)

        def _remove() -> None:
            if listener in self._status_listeners:
                self._status_listeners.remove(listener)

        return _remove

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        await self.transport.start(self._handle_raw, self._handle_status)
        if self.snapshot_loader is not None and self.reconcile_interval_seconds > 0:
            self._reconcile_task = asyncio.create_task(self._reconcile_loop())

    async def stop(self) -> None:
        if self._reconcile_task is not None:
            self._reconcile_task.cancel()
            try:
                await self._reconcile_task
            except asyncio.CancelledError:
                pass
            self._reconcile_task = None
        await self.transport.close()
        self._subscribers.clear()
        self._conversations.clear()
        self._started = False

    async def subscribe(
        self,
        conversation_id: UUID,
        on_message: Optional[MessageHandler] = None,
        on_ownership_change: Optional[OwnershipHandler] = None,
        owner: Optional[str] = None,
    ) -> Unsubscribe:
        """Watch a conversation. Returns an async unsubscribe callable.

        Subscribing again with the same ``owner`` replaces that owner's
        handlers instead of adding a second delivery path.
        """
        channel = conversation_channel(conversation_id)
        self._conversations[channel] = UUID(str(conversation_id))
        subscriber = _Subscriber(
            key=owner or uuid.uuid4().hex,
            on_message=on_message,
            on_ownership_change=on_ownership_change,
        )
        return await self._add(channel, subscriber)

    async def subscribe_agent(
        self,
        agent_id: UUID,
        on_notification: NotificationHandler,
        owner: Optional[str] = None,
    ) -> Unsubscribe:
        channel = agent_channel(agent_id)
        subscriber = _Subscriber(key=owner or uuid.uuid4().hex, on_notification=on_notification)
        return await self._add(channel, subscriber)

    async def _add(self, channel: str, subscriber: _Subscriber) -> Unsubscribe:
        async with self._lock:
            subscribers = self._subscribers.setdefault(channel, {})
            first = not subscribers
            replaced = subscriber.key in subscribers
            subscribers[subscriber.key] = subscriber
        if first:
            await self.transport.subscribe(channel)
        logger.info(
            "Subscribed",
            extra={"context": {"channel": channel, "owner": subscriber.key, "replaced": replaced}},
        )

        async def _unsubscribe() -> None:
            await self._remove(channel, subscriber)

        return _unsubscribe

    async def _remove(self, channel: str, subscriber: _Subscriber) -> None:
        async with self._lock:
            subscribers = self._subscribers.get(channel)
            if not subscribers or subscribers.get(subscriber.key) is not subscriber:
                return
            del subscribers[subscriber.key]
            last = not subscribers
            if last:
                del self._subscribers[channel]
                self._conversations.pop(channel, None)
        if last:
            await self.transport.unsubscribe(channel)
        logger.info("Unsubscribed", extra={"context": {"channel": channel, "owner": subscriber.key}})

    def subscriber_count(self, conversation_id: UUID) -> int:
        return len(self._subscribers.get(conversation_channel(conversation_id), {}))

    async def _handle_raw(self, channel: str, data: str) -> None:
        try:
            event = ConversationEvent.from_json(data)
        except ValidationError as e:
            logger.warning("Dropping malformed event", extra={"context": {"channel": channel, "error": str(e)}})
            return
        await self.dispatch(channel, event)

    async def dispatch(self, channel: str, event: ConversationEvent) -> None:
        for subscriber in list(self._subscribers.get(channel, {}).values()):
            if event.type == EventType.MESSAGE_APPENDED:
                await self._call(subscriber, subscriber.on_message, event.message)
            elif event.type == EventType.OWNERSHIP_CHANGED:
                await self._call(subscriber, subscriber.on_ownership_change, event.ownership)
            elif event.type == EventType.NOTIFICATION_CREATED:
                await self._call(subscriber, subscriber.on_notification, event.notification)

    async def _call(self, subscriber: _Subscriber, handler, payload) -> None:
        if handler is None or payload is None:
            return
        try:
            result = handler(payload)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            # one broken subscriber must not starve the others
            logger.error(
                "Subscriber handler failed",
                extra={"context": {"owner": subscriber.key, "error": str(e)}},
                exc_info=True,
            )

    async def _handle_status(self, status: ConnectionStatus) -> None:
        if status == ConnectionStatus.CONNECTED:
            # events sent while we were away are not replayed by the transport
            await self.reconcile_all()
        elif status == ConnectionStatus.DEGRADED:
            warnings.warn(
                TransportDegradedWarning("Real-time delivery lost, falling back to reconciliation polling"),
                stacklevel=2,
            )
        for listener in list(self._status_listeners):
            try:
                result = listener(status)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error("Status listener failed", extra={"context": {"error": str(e)}})

    async def reconcile(self, conversation_id: UUID) -> bool:
        """Re-read one conversation from the store and re-deliver it."""
        if self.snapshot_loader is None:
            return False
        channel = conversation_channel(conversation_id)
        if not self._subscribers.get(channel):
            return False
        try:
            snapshot = await self.snapshot_loader(UUID(str(conversation_id)))
        except Exception as e:
            logger.warning(
                "Reconciliation failed",
                extra={"context": {"conversation_id": str(conversation_id), "error": str(e)}},
            )
            return False
        if snapshot is None:
            return False
        for message in snapshot.messages:
            await self.dispatch(channel, ConversationEvent.message_appended(message))
        await self.dispatch(channel, ConversationEvent.ownership_changed(snapshot.ownership))
        return True

    async def reconcile_all(self) -> int:
        reconciled = 0
        for conversation_id in list(self._conversations.values()):
            if await self.reconcile(conversation_id):
                reconciled += 1
        return reconciled

    async def _reconcile_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.reconcile_interval_seconds)
                if self.status != ConnectionStatus.CONNECTED:
                    count = await self.reconcile_all()
                    logger.info(
                        "Fallback reconciliation pass",
                        extra={"context": {"conversations": count, "status": self.status.value}},
                    )
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Reconciliation loop failed", extra={"context": {"error": str(e)}})
