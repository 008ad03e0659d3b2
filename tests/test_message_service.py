from unittest.mock import Mock
from uuid import uuid4

import pytest

from chatdesk.models import AgentNotification, Conversation, Message
from chatdesk.realtime.events import EventType
from chatdesk.services.ai_service import ResponderReply
from chatdesk.services.conversation_service import ensure_conversation
from chatdesk.services.errors import RejectedError, ServiceError
from chatdesk.services.escalation_service import ESCALATION_NOTICE
from chatdesk.services.knowledge_service import KnowledgeChunk
from chatdesk.services.message_service import APOLOGY_MESSAGE, OutcomeType, ResponseOrchestrator
from chatdesk.services.ownership_service import hand_back, take_over
from chatdesk.services.sentiment_service import SentimentResult


def _messages(db, conversation_id):
    return db.query(Message).filter(Message.conversation_id == conversation_id).order_by(Message.created_at).all()


class TestHandleCustomerMessage:
    def test_hello_scenario(self, db, chatbot, orchestrator, responder):
        conversation_id = ensure_conversation(db, chatbot.id, "S1")
        db.commit()

        outcome = orchestrator.handle_customer_message(db, conversation_id, "hello")

        assert outcome.outcome == OutcomeType.REPLIED
        messages = _messages(db, conversation_id)
        assert [(m.role, m.agent_id) for m in messages] == [("user", None), ("assistant", None)]
        assert messages[1].content == "Hello! How can I help you today?"
        assert db.query(Conversation).count() == 1
        assert responder.generate.call_count == 1

    def test_publishes_every_message(self, db, conversation_id, orchestrator, publisher):
        orchestrator.handle_customer_message(db, conversation_id, "hello")

        appended = publisher.of_type(EventType.MESSAGE_APPENDED)
        assert [e.message.role for e in appended] == ["user", "assistant"]

    def test_history_is_bounded(self, db, conversation_id, orchestrator, responder):
        for i in range(8):
            orchestrator.handle_customer_message(db, conversation_id, f"question {i}")

        history = responder.generate.call_args[0][0]
        assert len(history) == 6
        assert history[-1].content == "question 7"

    def test_human_owned_never_calls_responder(self, db, conversation_id, orchestrator, responder, classifier, agent):
        take_over(db, orchestrator.publisher, conversation_id, agent.id)

        for text in ["hi", "anyone there?", "hello?"]:
            outcome = orchestrator.handle_customer_message(db, conversation_id, text)
            assert outcome.outcome == OutcomeType.HUMAN_OWNED

        assert responder.generate.call_count == 0
        assert classifier.classify.call_count == 0

    def test_responder_called_again_after_hand_back(self, db, conversation_id, orchestrator, responder, agent):
        take_over(db, orchestrator.publisher, conversation_id, agent.id)
        orchestrator.handle_customer_message(db, conversation_id, "hi")
        hand_back(db, orchestrator.publisher, conversation_id, agent.id, orchestrator.escalation_policy)

        outcome = orchestrator.handle_customer_message(db, conversation_id, "are you back?")

        assert outcome.outcome == OutcomeType.REPLIED
        assert responder.generate.call_count == 1

    def test_escalation_posts_notice_and_skips_responder(
        self, db, conversation_id, orchestrator, responder, classifier, assignment
    ):
        classifier.classify.return_value = SentimentResult(should_escalate=True, sentiment="negative")

        outcome = orchestrator.handle_customer_message(db, conversation_id, "this is terrible")

        assert outcome.outcome == OutcomeType.ESCALATED
        assert outcome.reply.content == ESCALATION_NOTICE
        assert responder.generate.call_count == 0
        assert db.query(AgentNotification).count() == 1

    def test_sentiment_window_uses_customer_texts(self, db, conversation_id, orchestrator, classifier):
        for i in range(7):
            orchestrator.handle_customer_message(db, conversation_id, f"c{i}")

        texts = classifier.classify.call_args[0][0]
        assert texts == ["c2", "c3", "c4", "c5", "c6"]

    def test_responder_failure_posts_single_apology(self, db, conversation_id, orchestrator, responder):
        responder.generate.side_effect = ServiceError("LLM down")

        outcome = orchestrator.handle_customer_message(db, conversation_id, "hello")

        assert outcome.outcome == OutcomeType.FAILED
        messages = _messages(db, conversation_id)
        assert [m.content for m in messages] == ["hello", APOLOGY_MESSAGE]

    def test_takeover_during_generation_discards_reply(self, db, conversation_id, publisher, escalation_policy, agent):
        responder = Mock()

        def _generate(history, context=None, sources=None):
            take_over(db, publisher, conversation_id, agent.id)
            return ResponderReply(message="late bot reply")

        responder.generate.side_effect = _generate
        orchestrator = ResponseOrchestrator(publisher, escalation_policy, responder)

        outcome = orchestrator.handle_customer_message(db, conversation_id, "hello")

        assert outcome.outcome == OutcomeType.SUPPRESSED
        assert "late bot reply" not in [m.content for m in _messages(db, conversation_id)]

    def test_inactive_chatbot_rejected(self, db, chatbot, conversation_id, orchestrator, responder):
        chatbot.status = "inactive"
        db.commit()

        with pytest.raises(RejectedError):
            orchestrator.handle_customer_message(db, conversation_id, "hello")
        assert responder.generate.call_count == 0


class TestRetrieval:
    def test_context_only_with_knowledge_base(self, db, chatbot, conversation_id, publisher, escalation_policy, responder):
        knowledge = Mock()
        knowledge.similar_chunks.return_value = [KnowledgeChunk(text="Opening hours are 9-18", index=0)]
        orchestrator = ResponseOrchestrator(publisher, escalation_policy, responder, knowledge=knowledge)

        orchestrator.handle_customer_message(db, conversation_id, "when are you open?")
        assert knowledge.similar_chunks.call_count == 0
        assert responder.generate.call_args[0][1] is None

        chatbot.knowledge_base_id = uuid4()
        db.commit()
        outcome = orchestrator.handle_customer_message(db, conversation_id, "when are you open?")

        knowledge.similar_chunks.assert_called_with("when are you open?", 3, chatbot.id)
        assert responder.generate.call_args[0][1] == "Opening hours are 9-18"
        assert outcome.outcome == OutcomeType.REPLIED

    def test_retrieval_failure_still_replies(self, db, chatbot, conversation_id, publisher, escalation_policy, responder):
        chatbot.knowledge_base_id = uuid4()
        db.commit()
        knowledge = Mock()
        knowledge.similar_chunks.side_effect = ServiceError("qdrant down")
        orchestrator = ResponseOrchestrator(publisher, escalation_policy, responder, knowledge=knowledge)

        outcome = orchestrator.handle_customer_message(db, conversation_id, "hello")

        assert outcome.outcome == OutcomeType.REPLIED
        assert responder.generate.call_args[0][1] is None


class TestSendAgentMessage:
    def test_owner_can_reply(self, db, conversation_id, orchestrator, agent):
        take_over(db, orchestrator.publisher, conversation_id, agent.id)

        outcome = orchestrator.send_agent_message(db, conversation_id, agent.id, "Let me check that for you.")

        assert outcome.reply.agent_id == agent.id
        assert outcome.reply.role == "assistant"

    def test_non_owner_rejected(self, db, conversation_id, orchestrator, agent, other_agent):
        take_over(db, orchestrator.publisher, conversation_id, agent.id)

        with pytest.raises(RejectedError):
            orchestrator.send_agent_message(db, conversation_id, other_agent.id, "hi")

    def test_knowledge_base_disabled_rejected(self, db, chatbot, conversation_id, orchestrator, agent):
        chatbot.knowledge_base_id = uuid4()
        db.commit()
        take_over(db, orchestrator.publisher, conversation_id, agent.id)

        with pytest.raises(RejectedError) as exc:
            orchestrator.send_agent_message(db, conversation_id, agent.id, "answer about hours", use_knowledge_base=True)
        assert exc.value.code == "knowledge_base_disabled"

    def test_knowledge_base_draft(self, db, chatbot, conversation_id, publisher, escalation_policy, responder, agent):
        chatbot.knowledge_base_id = uuid4()
        db.commit()
        knowledge = Mock()
        knowledge.similar_chunks.return_value = [KnowledgeChunk(text="Refunds take 5 days", index=1)]
        responder.generate.return_value = ResponderReply(message="Refunds take 5 days.", sources=["Document chunk 2"])
        orchestrator = ResponseOrchestrator(publisher, escalation_policy, responder, knowledge=knowledge)
        take_over(db, publisher, conversation_id, agent.id, knowledge_base_enabled=True)

        outcome = orchestrator.send_agent_message(
            db, conversation_id, agent.id, "explain refund timing", use_knowledge_base=True
        )

        assert outcome.reply.content == "Refunds take 5 days."
        assert outcome.reply.agent_id == agent.id
        assert outcome.sources == ["Document chunk 2"]
