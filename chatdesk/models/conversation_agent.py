import uuid

from sqlalchemy import TIMESTAMP, Boolean, Column, ForeignKey, Uuid
from sqlalchemy.orm import relationship

from chatdesk.database import Base


class ConversationAgent(Base):
    """Live ownership assignment: at most one row per conversation."""

    __tablename__ = "conversation_agents"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    conversation_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    agent_id = Column(Uuid(as_uuid=True), ForeignKey("agents.id", ondelete="CASCADE"), nullable=False)
    knowledge_base_enabled = Column(Boolean, nullable=False, default=False)
    assigned_at = Column(TIMESTAMP(timezone=True), nullable=False)
    # moves on every knowledge-base toggle, carried as the ownership changed_at
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False)

    conversation = relationship("Conversation", back_populates="ownership")
    agent = relationship("Agent")
