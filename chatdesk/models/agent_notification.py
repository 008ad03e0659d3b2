import uuid

from sqlalchemy import TIMESTAMP, Boolean, CheckConstraint, Column, ForeignKey, Text, Uuid

from chatdesk.database import Base

NOTIFICATION_TYPES = ("escalation", "new_message", "manual_request")


class AgentNotification(Base):
    __tablename__ = "agent_notifications"
    __table_args__ = (
        CheckConstraint(
            "type IN ('escalation', 'new_message', 'manual_request')",
            name="ck_agent_notifications_type",
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    agent_id = Column(Uuid(as_uuid=True), ForeignKey("agents.id", ondelete="CASCADE"), nullable=False, index=True)
    conversation_id = Column(Uuid(as_uuid=True), ForeignKey("conversations.id", ondelete="CASCADE"), index=True)
    type = Column(Text, nullable=False)
    message = Column(Text, nullable=False)
    is_read = Column(Boolean, nullable=False, default=False)
    chatbot_name = Column(Text)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
