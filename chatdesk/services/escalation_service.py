"""Sentiment-driven escalation.

The policy keeps a rolling window of classifications per conversation and
raises at most one escalation per bot-owned period. Escalating means asking a
human: an ``escalation`` notification goes to one assigned agent, and the
takeover itself is left to that agent.
"""

import threading
import time
from collections import OrderedDict, deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Deque, List, Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from chatdesk.logging_config import conversation_logger, get_logger
from chatdesk.models import AgentNotification, Conversation
from chatdesk.services.agent_service import select_escalation_agent
from chatdesk.services.errors import ChatdeskError, ServiceError
from chatdesk.services.notification_service import create_notification
from chatdesk.services.sentiment_service import SentimentClassifier, SentimentResult

logger = get_logger("escalation_service")

ESCALATION_NOTICE = (
    "I understand you're having some difficulties. I'm connecting you with one of our human "
    "agents who will be able to better assist you. Please hold on for a moment."
)
ESCALATION_NOTIFICATION = "Customer conversation escalated due to negative sentiment in {chatbot_name}"


class EscalationDecision(str, Enum):
    NONE = "none"
    ESCALATE = "escalate"


@dataclass
class _ConversationState:
    window: Deque[SentimentResult]
    escalated: bool = False
    last_seen: float = 0.0


class EscalationPolicy:
    """Per-conversation sentiment state lives only in memory.

    State of conversations idle for ``idle_seconds`` is dropped, and at most
    ``max_conversations`` are kept (least recently seen evicted first).
    """

    def __init__(
        self,
        classifier: SentimentClassifier,
        publisher=None,
        window_size: int = 5,
        max_conversations: int = 10000,
        idle_seconds: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.classifier = classifier
        self.publisher = publisher
        self.window_size = window_size
        self.max_conversations = max_conversations
        self.idle_seconds = idle_seconds
        self._clock = clock
        self._states: "OrderedDict[str, _ConversationState]" = OrderedDict()
        self._lock = threading.Lock()

    @property
    def tracked_conversations(self) -> int:
        with self._lock:
            return len(self._states)

    def window(self, conversation_id: UUID) -> List[SentimentResult]:
        with self._lock:
            state = self._states.get(str(conversation_id))
            return list(state.window) if state else []

    def is_escalated(self, conversation_id: UUID) -> bool:
        with self._lock:
            state = self._states.get(str(conversation_id))
            return bool(state and state.escalated)

    def reset(self, conversation_id: UUID) -> None:
        """Re-arm the policy, e.g. after hand-back or when the conversation is cleared."""
        with self._lock:
            self._states.pop(str(conversation_id), None)

    def _touch(self, key: str) -> _ConversationState:
        # caller holds the lock
        now = self._clock()
        state = self._states.get(key)
        if state is None:
            state = _ConversationState(window=deque(maxlen=self.window_size))
            self._states[key] = state
        else:
            self._states.move_to_end(key)
        state.last_seen = now
        self._evict(now)
        return state

    def _evict(self, now: float) -> None:
        evicted = 0
        while self._states:
            key, oldest = next(iter(self._states.items()))
            if len(self._states) <= self.max_conversations and now - oldest.last_seen < self.idle_seconds:
                break
            del self._states[key]
            evicted += 1
        if evicted:
            logger.info("Escalation state evicted", extra={"context": {"conversations": evicted}})

    def _record(self, key: str, result: SentimentResult) -> None:
        with self._lock:
            self._touch(key).window.append(result)

    def _claim(self, key: str) -> bool:
        with self._lock:
            state = self._touch(key)
            if state.escalated:
                return False
            state.escalated = True
            return True

    def _release(self, key: str) -> None:
        with self._lock:
            state = self._states.get(key)
            if state is not None:
                state.escalated = False

    def evaluate(
        self,
        db: Session,
        conversation: Conversation,
        recent_customer_texts: List[str],
    ) -> EscalationDecision:
        """Classify the latest customer message and decide whether to escalate.

        Never raises: classifier and store failures degrade to ``NONE``.
        """
        key = str(conversation.id)
        log = conversation_logger("escalation_service", conversation.id)

        if self.is_escalated(conversation.id):
            return EscalationDecision.NONE

        try:
            result = self.classifier.classify(recent_customer_texts)
        except ServiceError as e:
            log.warning("Sentiment classification failed", context={"error": e.message})
            return EscalationDecision.NONE

        self._record(key, result)
        if not result.should_escalate:
            return EscalationDecision.NONE
        if not self._claim(key):
            return EscalationDecision.NONE

        try:
            notification = self._notify(db, conversation)
        except (ChatdeskError, SQLAlchemyError) as e:
            db.rollback()
            self._release(key)
            log.error("Escalation notification failed", context={"error": str(e)})
            return EscalationDecision.NONE

        if notification is None:
            self._release(key)
            log.warning("No agent assigned to chatbot, escalation skipped", context={"chatbot_id": str(conversation.chatbot_id)})
            return EscalationDecision.NONE

        log.info(
            "Conversation escalated",
            context={
                "agent_id": str(notification.agent_id),
                "sentiment": result.sentiment,
                "reason": result.reason,
            },
        )
        if self.publisher is not None:
            self.publisher.notification_created(notification)
        return EscalationDecision.ESCALATE

    def _notify(self, db: Session, conversation: Conversation) -> Optional[AgentNotification]:
        agent_id = select_escalation_agent(db, conversation.chatbot_id)
        if agent_id is None:
            return None
        chatbot_name = conversation.chatbot.name
        notification = create_notification(
            db,
            agent_id,
            "escalation",
            ESCALATION_NOTIFICATION.format(chatbot_name=chatbot_name),
            conversation_id=conversation.id,
            chatbot_name=chatbot_name,
        )
        db.commit()
        return notification
