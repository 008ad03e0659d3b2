import uuid

from sqlalchemy import TIMESTAMP, Column, ForeignKey, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from chatdesk.database import Base


class AgentAssignment(Base):
    """An agent allowed to handle conversations of a chatbot."""

    __tablename__ = "agent_assignments"
    __table_args__ = (UniqueConstraint("agent_id", "chatbot_id", name="uq_agent_assignments_agent_chatbot"),)

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    agent_id = Column(Uuid(as_uuid=True), ForeignKey("agents.id", ondelete="CASCADE"), nullable=False)
    chatbot_id = Column(Uuid(as_uuid=True), ForeignKey("chatbots.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)

    agent = relationship("Agent", back_populates="assignments")
    chatbot = relationship("Chatbot", back_populates="assignments")
