from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel

from chatdesk.realtime.events import NotificationPayload


class NotificationCreate(BaseModel):
    agent_id: UUID
    type: Literal["escalation", "new_message", "manual_request"]
    message: str
    conversation_id: Optional[UUID] = None
    chatbot_name: Optional[str] = None


class NotificationListResponse(BaseModel):
    notifications: List[NotificationPayload]
    unread: int
