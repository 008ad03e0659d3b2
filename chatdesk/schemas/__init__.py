from chatdesk.schemas.agent import (
    AgentMessageRequest,
    AgentMessageResponse,
    AssignmentRequest,
    AssignmentResponse,
    HandbackRequest,
    KnowledgeBaseRequest,
    TakeoverRequest,
)
from chatdesk.schemas.conversation import (
    ConversationResponse,
    CustomerMessageRequest,
    CustomerMessageResponse,
    EnsureConversationRequest,
)
from chatdesk.schemas.notification import NotificationCreate, NotificationListResponse

__all__ = [
    "AgentMessageRequest",
    "AgentMessageResponse",
    "AssignmentRequest",
    "AssignmentResponse",
    "ConversationResponse",
    "CustomerMessageRequest",
    "CustomerMessageResponse",
    "EnsureConversationRequest",
    "HandbackRequest",
    "KnowledgeBaseRequest",
    "NotificationCreate",
    "NotificationListResponse",
    "TakeoverRequest",
]
