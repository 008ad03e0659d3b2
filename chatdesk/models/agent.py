import uuid

from sqlalchemy import TIMESTAMP, Column, Text, Uuid
from sqlalchemy.orm import relationship

from chatdesk.database import Base


class Agent(Base):
    __tablename__ = "agents"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    email = Column(Text)
    created_at = Column(TIMESTAMP(timezone=True))

    assignments = relationship("AgentAssignment", back_populates="agent")
