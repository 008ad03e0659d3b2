from sqlalchemy import TIMESTAMP, Column, ForeignKey, Text, Uuid
from sqlalchemy.orm import relationship

from chatdesk.database import Base


class Conversation(Base):
    __tablename__ = "conversations"

    # derived from (chatbot_id, session_id), never generated here
    id = Column(Uuid(as_uuid=True), primary_key=True)
    chatbot_id = Column(Uuid(as_uuid=True), ForeignKey("chatbots.id"), nullable=False)
    session_id = Column(Text, nullable=False)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False)

    chatbot = relationship("Chatbot", back_populates="conversations")
    messages = relationship("Message", back_populates="conversation", order_by="Message.created_at")
    ownership = relationship("ConversationAgent", back_populates="conversation", uselist=False)
