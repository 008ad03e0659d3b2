"""Events fanned out to conversation and agent subscribers.

Delivery is at-least-once and unordered across event types. Every payload
carries the entity id and a timestamp so consumers can merge idempotently.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from chatdesk.services.roles import MessageRole, from_stored

CHANNEL_PREFIX = "chatdesk"


class EventType(str, Enum):
    MESSAGE_APPENDED = "message_appended"
    OWNERSHIP_CHANGED = "ownership_changed"
    NOTIFICATION_CREATED = "notification_created"


def as_utc(value: datetime) -> datetime:
    """Naive timestamps coming back from the store are UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def conversation_channel(conversation_id) -> str:
    return f"{CHANNEL_PREFIX}:conversation:{conversation_id}"


def agent_channel(agent_id) -> str:
    return f"{CHANNEL_PREFIX}:agent:{agent_id}"


class MessagePayload(BaseModel):
    id: UUID
    conversation_id: UUID
    content: str
    role: str
    agent_id: Optional[UUID] = None
    created_at: datetime

    @classmethod
    def from_row(cls, message) -> "MessagePayload":
        return cls(
            id=message.id,
            conversation_id=message.conversation_id,
            content=message.content,
            role=message.role,
            agent_id=message.agent_id,
            created_at=as_utc(message.created_at),
        )

    @property
    def author(self) -> MessageRole:
        return from_stored(self.role, self.agent_id)


class OwnershipPayload(BaseModel):
    conversation_id: UUID
    state: str  # bot_owned, human_owned
    agent_id: Optional[UUID] = None
    agent_name: Optional[str] = None
    knowledge_base_enabled: bool = True
    changed_at: datetime


class NotificationPayload(BaseModel):
    id: UUID
    agent_id: UUID
    conversation_id: Optional[UUID] = None
    type: str
    message: str
    is_read: bool = False
    chatbot_name: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_row(cls, notification) -> "NotificationPayload":
        return cls(
            id=notification.id,
            agent_id=notification.agent_id,
            conversation_id=notification.conversation_id,
            type=notification.type,
            message=notification.message,
            is_read=bool(notification.is_read),
            chatbot_name=notification.chatbot_name,
            created_at=as_utc(notification.created_at),
        )


class ConversationSnapshot(BaseModel):
    """Current state re-read from the store, used for reconciliation."""

    conversation_id: UUID
    messages: List[MessagePayload] = Field(default_factory=list)
    ownership: OwnershipPayload


class ConversationEvent(BaseModel):
    type: EventType
    conversation_id: Optional[UUID] = None
    message: Optional[MessagePayload] = None
    ownership: Optional[OwnershipPayload] = None
    notification: Optional[NotificationPayload] = None

    @classmethod
    def message_appended(cls, payload: MessagePayload) -> "ConversationEvent":
        return cls(type=EventType.MESSAGE_APPENDED, conversation_id=payload.conversation_id, message=payload)

    @classmethod
    def ownership_changed(cls, payload: OwnershipPayload) -> "ConversationEvent":
        return cls(type=EventType.OWNERSHIP_CHANGED, conversation_id=payload.conversation_id, ownership=payload)

    @classmethod
    def notification_created(cls, payload: NotificationPayload) -> "ConversationEvent":
        return cls(
            type=EventType.NOTIFICATION_CREATED,
            conversation_id=payload.conversation_id,
            notification=payload,
        )

    @property
    def channel(self) -> str:
        if self.type == EventType.NOTIFICATION_CREATED:
            return agent_channel(self.notification.agent_id)
        return conversation_channel(self.conversation_id)

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, raw) -> "ConversationEvent":
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return cls.model_validate_json(raw)
