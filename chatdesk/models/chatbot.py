import uuid

from sqlalchemy import TIMESTAMP, Column, Text, Uuid
from sqlalchemy.orm import relationship

from chatdesk.database import Base


class Chatbot(Base):
    __tablename__ = "chatbots"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default="active")  # active, inactive
    knowledge_base_id = Column(Uuid(as_uuid=True))
    welcome_message = Column(Text)
    created_at = Column(TIMESTAMP(timezone=True))

    conversations = relationship("Conversation", back_populates="chatbot")
    assignments = relationship("AgentAssignment", back_populates="chatbot")

    @property
    def is_active(self) -> bool:
        return self.status == "active"
