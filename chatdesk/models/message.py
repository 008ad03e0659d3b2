import uuid

from sqlalchemy import TIMESTAMP, Column, ForeignKey, Index, Text, Uuid
from sqlalchemy.orm import relationship

from chatdesk.database import Base


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (Index("idx_messages_conversation_id_created_at", "conversation_id", "created_at"),)

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    conversation_id = Column(Uuid(as_uuid=True), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False)
    content = Column(Text, nullable=False)
    role = Column(Text, nullable=False)  # user, assistant
    agent_id = Column(Uuid(as_uuid=True), ForeignKey("agents.id", ondelete="SET NULL"))
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)

    conversation = relationship("Conversation", back_populates="messages")
