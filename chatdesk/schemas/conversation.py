from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from chatdesk.realtime.events import MessagePayload


class EnsureConversationRequest(BaseModel):
    chatbot_id: UUID
    session_id: str


class ConversationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    chatbot_id: UUID
    session_id: str
    created_at: datetime
    updated_at: datetime


class CustomerMessageRequest(BaseModel):
    content: str


class CustomerMessageResponse(BaseModel):
    outcome: str  # replied, human_owned, escalated, suppressed, failed
    customer_message: MessagePayload
    reply: Optional[MessagePayload] = None
    sources: List[str] = []
