from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from chatdesk.logging_config import conversation_logger
from chatdesk.models import Conversation, Message
from chatdesk.realtime.publisher import EventPublisher
from chatdesk.services.ai_service import Responder, ResponderReply
from chatdesk.services.conversation_service import (
    append_message,
    get_conversation,
    get_ownership,
    recent_messages,
)
from chatdesk.services.errors import ChatdeskError, RejectedError, ServiceError
from chatdesk.services.escalation_service import ESCALATION_NOTICE, EscalationDecision, EscalationPolicy
from chatdesk.services.knowledge_service import KnowledgeService, format_context
from chatdesk.services.result import Result
from chatdesk.services.roles import STORED_CUSTOMER, MessageRole

APOLOGY_MESSAGE = "I apologize, but I'm experiencing some technical difficulties. Please try again later."

AGENT_DRAFT_PROMPT = (
    "A human support agent is replying to the customer. Write the reply the agent should send, "
    "based on this instruction from the agent: {instruction}"
)


class OutcomeType(str, Enum):
    REPLIED = "replied"
    HUMAN_OWNED = "human_owned"
    ESCALATED = "escalated"
    SUPPRESSED = "suppressed"
    FAILED = "failed"


@dataclass
class OrchestratorOutcome:
    outcome: OutcomeType
    customer_message: Optional[Message] = None
    reply: Optional[Message] = None
    sources: List[str] = field(default_factory=list)


class ResponseOrchestrator:
    """Decides, per customer message, between a bot reply and silence."""

    def __init__(
        self,
        publisher: EventPublisher,
        escalation_policy: EscalationPolicy,
        responder: Responder,
        knowledge: Optional[KnowledgeService] = None,
        history_turns: int = 5,
        retrieval_k: int = 3,
    ):
        self.publisher = publisher
        self.escalation_policy = escalation_policy
        self.responder = responder
        self.knowledge = knowledge
        self.history_turns = history_turns
        self.retrieval_k = retrieval_k

    def _post(
        self,
        db: Session,
        conversation_id: UUID,
        role: MessageRole,
        content: str,
        agent_id: Optional[UUID] = None,
    ) -> Message:
        try:
            message = append_message(db, conversation_id, role, content, agent_id=agent_id)
            db.commit()
        except ChatdeskError:
            db.rollback()
            raise
        self.publisher.message_appended(message)
        return message

    def _is_human_owned(self, db: Session, conversation_id: UUID) -> bool:
        return get_ownership(db, conversation_id) is not None

    def _retrieve(self, conversation: Conversation, query: str, log) -> Tuple[Optional[str], List[str]]:
        if self.knowledge is None or conversation.chatbot.knowledge_base_id is None:
            return None, []
        try:
            chunks = self.knowledge.similar_chunks(query, self.retrieval_k, conversation.chatbot_id)
        except ServiceError as e:
            log.warning("Retrieval failed, replying without context", context={"error": e.message})
            return None, []
        return format_context(chunks) or None, [chunk.source for chunk in chunks]

    def _generate_reply(self, db: Session, conversation: Conversation, text: str, log) -> Result[ResponderReply]:
        context, sources = self._retrieve(conversation, text, log)
        # last N turns plus the message being answered
        history = recent_messages(db, conversation.id, self.history_turns + 1)
        try:
            return Result.success(self.responder.generate(history, context, sources))
        except ServiceError as e:
            log.error("Responder failed", context={"error": e.message, "code": e.code})
            return Result.from_error(e)

    def handle_customer_message(self, db: Session, conversation_id: UUID, text: str) -> OrchestratorOutcome:
        """Persist a customer message and produce at most one automated message for it.

        Human-owned conversations get no automated reply and no sentiment
        check. Responder failures become a single apology message.
        """
        log = conversation_logger("message_service", conversation_id)
        customer_message = self._post(db, conversation_id, MessageRole.CUSTOMER, text)

        if self._is_human_owned(db, conversation_id):
            log.info("Human owns conversation, automated reply skipped")
            return OrchestratorOutcome(OutcomeType.HUMAN_OWNED, customer_message)

        conversation = get_conversation(db, conversation_id)
        customer_texts = [
            m.content
            for m in recent_messages(db, conversation_id, self.escalation_policy.window_size, role=STORED_CUSTOMER)
        ]
        decision = self.escalation_policy.evaluate(db, conversation, customer_texts)
        if decision == EscalationDecision.ESCALATE:
            notice = self._post(db, conversation_id, MessageRole.AUTOMATED_RESPONDER, ESCALATION_NOTICE)
            return OrchestratorOutcome(OutcomeType.ESCALATED, customer_message, notice)

        result = self._generate_reply(db, conversation, text, log)

        # the responder is not cancelled by a takeover, so ownership is checked again
        if self._is_human_owned(db, conversation_id):
            log.info("Agent took over during generation, reply discarded")
            return OrchestratorOutcome(OutcomeType.SUPPRESSED, customer_message)

        if not result.ok:
            apology = self._post(db, conversation_id, MessageRole.AUTOMATED_RESPONDER, APOLOGY_MESSAGE)
            return OrchestratorOutcome(OutcomeType.FAILED, customer_message, apology)

        reply = self._post(db, conversation_id, MessageRole.AUTOMATED_RESPONDER, result.value.message)
        log.info("Automated reply sent", context={"sources": len(result.value.sources)})
        return OrchestratorOutcome(OutcomeType.REPLIED, customer_message, reply, result.value.sources)

    def send_agent_message(
        self,
        db: Session,
        conversation_id: UUID,
        agent_id: UUID,
        text: str,
        use_knowledge_base: bool = False,
    ) -> OrchestratorOutcome:
        """Post a reply as the owning agent.

        With ``use_knowledge_base`` the text is an instruction: the reply is
        drafted from retrieved context and recent history, then posted under
        the agent's name.
        """
        log = conversation_logger("message_service", conversation_id, agent_id=agent_id)
        conversation = get_conversation(db, conversation_id)
        assignment = get_ownership(db, conversation_id)
        if assignment is None or assignment.agent_id != agent_id:
            raise RejectedError("Only the owning agent can reply in this conversation", "not_owner")

        content, sources = text, []
        if use_knowledge_base:
            if not assignment.knowledge_base_enabled:
                raise RejectedError("Knowledge base is disabled for this conversation", "knowledge_base_disabled")
            if conversation.chatbot.knowledge_base_id is None or self.knowledge is None:
                raise RejectedError("Chatbot has no knowledge base", "no_knowledge_base")
            chunks = self.knowledge.similar_chunks(text, self.retrieval_k, conversation.chatbot_id)
            history = recent_messages(db, conversation_id, self.history_turns)
            history.append({"role": "user", "content": AGENT_DRAFT_PROMPT.format(instruction=text)})
            draft = self.responder.generate(history, format_context(chunks) or None, [c.source for c in chunks])
            content, sources = draft.message, draft.sources
            log.info("Agent reply drafted from knowledge base", context={"sources": len(sources)})

        message = self._post(db, conversation_id, MessageRole.HUMAN_AGENT, content, agent_id=agent_id)
        return OrchestratorOutcome(OutcomeType.REPLIED, reply=message, sources=sources)
