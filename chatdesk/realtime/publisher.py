from abc import ABC, abstractmethod

import redis

from chatdesk.logging_config import get_logger
from chatdesk.realtime.events import (
    ConversationEvent,
    MessagePayload,
    NotificationPayload,
    OwnershipPayload,
)

logger = get_logger("realtime.publisher")


class EventPublisher(ABC):
    """Publishes committed changes to the event bus.

    A publish failure never fails the write that produced it: subscribers
    catch up through reconciliation.
    """

    @abstractmethod
    def publish(self, event: ConversationEvent) -> bool:
        pass

    def message_appended(self, message) -> bool:
        return self.publish(ConversationEvent.message_appended(MessagePayload.from_row(message)))

    def ownership_changed(self, payload: OwnershipPayload) -> bool:
        return self.publish(ConversationEvent.ownership_changed(payload))

    def notification_created(self, notification) -> bool:
        return self.publish(ConversationEvent.notification_created(NotificationPayload.from_row(notification)))


class RedisEventPublisher(EventPublisher):
    def __init__(self, redis_url: str, socket_timeout_seconds: float = 0.5):
        self.redis_url = redis_url
        self.socket_timeout_seconds = socket_timeout_seconds
        self._client = None

    def _get_client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.Redis.from_url(
                self.redis_url,
                decode_responses=True,
                socket_timeout=self.socket_timeout_seconds,
                socket_connect_timeout=self.socket_timeout_seconds,
            )
        return self._client

    def publish(self, event: ConversationEvent) -> bool:
        try:
            receivers = self._get_client().publish(event.channel, event.to_json())
        except redis.RedisError as e:
            logger.warning(
                "Event publish failed, transport degraded",
                extra={"context": {"channel": event.channel, "type": event.type.value, "error": str(e)}},
            )
            return False
        logger.debug(f"Published {event.type.value} to {event.channel} ({receivers} receivers)")
        return True


class LocalEventPublisher(EventPublisher):
    """Publishes into an in-process transport (single worker deployments, tests)."""

    def __init__(self, transport):
        self.transport = transport

    def publish(self, event: ConversationEvent) -> bool:
        return self.transport.publish(event.channel, event.to_json())
