import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REALTIME_ENABLED", "false")
os.environ.setdefault("OPENAI_API_KEY", "test-key")

from datetime import datetime, timedelta, timezone  # noqa: E402
from unittest.mock import Mock  # noqa: E402
from uuid import uuid4  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from chatdesk.database import Base  # noqa: E402
from chatdesk.models import Agent, AgentAssignment, Chatbot  # noqa: E402
from chatdesk.realtime.events import EventType  # noqa: E402
from chatdesk.realtime.publisher import EventPublisher  # noqa: E402
from chatdesk.services.ai_service import ResponderReply  # noqa: E402
from chatdesk.services.conversation_service import ensure_conversation  # noqa: E402
from chatdesk.services.escalation_service import EscalationPolicy  # noqa: E402
from chatdesk.services.message_service import ResponseOrchestrator  # noqa: E402
from chatdesk.services.sentiment_service import SentimentResult  # noqa: E402


class RecordingPublisher(EventPublisher):
    """Keeps every published event instead of sending it anywhere."""

    def __init__(self):
        self.events = []

    def publish(self, event) -> bool:
        self.events.append(event)
        return True

    def of_type(self, event_type: EventType):
        return [e for e in self.events if e.type == event_type]


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def chatbot(db):
    bot = Chatbot(id=uuid4(), name="Support Bot", status="active", created_at=datetime.now(timezone.utc))
    db.add(bot)
    db.commit()
    return bot


@pytest.fixture
def agent(db):
    agent = Agent(id=uuid4(), name="Alice", email="alice@example.com", created_at=datetime.now(timezone.utc))
    db.add(agent)
    db.commit()
    return agent


@pytest.fixture
def other_agent(db):
    agent = Agent(id=uuid4(), name="Bob", email="bob@example.com", created_at=datetime.now(timezone.utc))
    db.add(agent)
    db.commit()
    return agent


@pytest.fixture
def assignment(db, agent, chatbot):
    row = AgentAssignment(
        agent_id=agent.id,
        chatbot_id=chatbot.id,
        created_at=datetime.now(timezone.utc) - timedelta(days=1),
    )
    db.add(row)
    db.commit()
    return row


@pytest.fixture
def conversation_id(db, chatbot):
    conversation_id = ensure_conversation(db, chatbot.id, "session-1")
    db.commit()
    return conversation_id


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def responder():
    responder = Mock()
    responder.generate.return_value = ResponderReply(message="Hello! How can I help you today?")
    return responder


@pytest.fixture
def classifier():
    classifier = Mock()
    classifier.classify.return_value = SentimentResult(should_escalate=False, sentiment="neutral")
    return classifier


@pytest.fixture
def escalation_policy(classifier, publisher):
    return EscalationPolicy(classifier, publisher=publisher, window_size=5)


@pytest.fixture
def orchestrator(publisher, escalation_policy, responder):
    return ResponseOrchestrator(publisher, escalation_policy, responder)
