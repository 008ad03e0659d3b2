from datetime import datetime
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from chatdesk.realtime.events import MessagePayload


class TakeoverRequest(BaseModel):
    agent_id: UUID
    trigger: Literal["manual", "escalation"] = "manual"
    knowledge_base_enabled: Optional[bool] = None


class HandbackRequest(BaseModel):
    agent_id: UUID


class KnowledgeBaseRequest(BaseModel):
    enabled: bool
    agent_id: Optional[UUID] = None


class AgentMessageRequest(BaseModel):
    agent_id: UUID
    content: str
    use_knowledge_base: bool = False


class AgentMessageResponse(BaseModel):
    message: MessagePayload
    sources: List[str] = []


class AssignmentRequest(BaseModel):
    chatbot_id: UUID


class AssignmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    agent_id: UUID
    chatbot_id: UUID
    created_at: datetime
