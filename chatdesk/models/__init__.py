from chatdesk.models.agent import Agent
from chatdesk.models.agent_assignment import AgentAssignment
from chatdesk.models.agent_notification import NOTIFICATION_TYPES, AgentNotification
from chatdesk.models.chatbot import Chatbot
from chatdesk.models.conversation import Conversation
from chatdesk.models.conversation_agent import ConversationAgent
from chatdesk.models.message import Message

__all__ = [
    "Agent",
    "AgentAssignment",
    "AgentNotification",
    "Chatbot",
    "Conversation",
    "ConversationAgent",
    "Message",
    "NOTIFICATION_TYPES",
]
