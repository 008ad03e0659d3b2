"""Takeover, hand-back and knowledge-base toggling.

Each operation runs in one transaction: the ownership row change and the
announcement message commit together, then the events are published. The
ownership row's unique constraint is the only arbiter when two agents race.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from chatdesk.logging_config import conversation_logger
from chatdesk.models import ConversationAgent, Message
from chatdesk.realtime.publisher import EventPublisher
from chatdesk.services.agent_service import get_agent
from chatdesk.services.conversation_service import (
    append_message,
    get_conversation,
    get_ownership,
    ownership_payload,
    release_ownership,
    set_ownership,
    toggle_knowledge_base,
)
from chatdesk.services.errors import ChatdeskError, NotFoundError
from chatdesk.services.notification_service import create_notification, mark_conversation_notifications_read
from chatdesk.services.roles import MessageRole
from chatdesk.services.state_machine import ownership_from_assignment, to_bot_owned, to_human_owned

TAKEOVER_MESSAGE = (
    "Hello! I'm {name}, a human agent. I've taken over this conversation to provide you "
    "with personalized assistance. How can I help you?"
)
HANDBACK_MESSAGE = (
    "Thank you for your patience. I'm handing you back to our AI assistant who can "
    "continue to help you with your questions."
)
MANUAL_REQUEST_NOTIFICATION = "Manual intervention requested for {chatbot_name}"


class TakeoverTrigger(str, Enum):
    MANUAL = "manual"
    ESCALATION = "escalation"


def take_over(
    db: Session,
    publisher: EventPublisher,
    conversation_id: UUID,
    agent_id: UUID,
    trigger: TakeoverTrigger = TakeoverTrigger.MANUAL,
    knowledge_base_enabled: Optional[bool] = None,
) -> ConversationAgent:
    """Give the conversation to ``agent_id``.

    Knowledge-base assistance starts disabled unless the caller asks for it.
    Raises ConflictError if another agent (or the same one) already owns it.
    """
    log = conversation_logger("ownership_service", conversation_id, agent_id=agent_id)
    trigger = TakeoverTrigger(trigger)
    kb_enabled = bool(knowledge_base_enabled) if knowledge_base_enabled is not None else False

    try:
        conversation = get_conversation(db, conversation_id)
        agent = get_agent(db, agent_id)
        to_human_owned(ownership_from_assignment(get_ownership(db, conversation_id)).state)

        # authoritative check: the insert fails if someone got there first
        assignment = set_ownership(db, conversation_id, agent_id, kb_enabled)
        announcement = append_message(
            db,
            conversation_id,
            MessageRole.HUMAN_AGENT,
            TAKEOVER_MESSAGE.format(name=agent.name),
            agent_id=agent_id,
        )

        notification = None
        if trigger == TakeoverTrigger.MANUAL:
            notification = create_notification(
                db,
                agent_id,
                "manual_request",
                MANUAL_REQUEST_NOTIFICATION.format(chatbot_name=conversation.chatbot.name),
                conversation_id=conversation_id,
                chatbot_name=conversation.chatbot.name,
            )
        else:
            mark_conversation_notifications_read(db, agent_id, conversation_id, type="escalation")

        db.commit()
    except ChatdeskError:
        db.rollback()
        raise

    log.info("Conversation taken over", context={"trigger": trigger.value, "knowledge_base_enabled": kb_enabled})

    publisher.ownership_changed(ownership_payload(db, conversation_id, assignment))
    publisher.message_appended(announcement)
    if notification is not None:
        publisher.notification_created(notification)
    return assignment


def hand_back(
    db: Session,
    publisher: EventPublisher,
    conversation_id: UUID,
    agent_id: UUID,
    escalation_policy=None,
) -> Message:
    """Return the conversation to the bot. Only the owning agent may do this."""
    log = conversation_logger("ownership_service", conversation_id, agent_id=agent_id)

    try:
        get_conversation(db, conversation_id)
        assignment = get_ownership(db, conversation_id)
        if assignment is None or assignment.agent_id != agent_id:
            raise NotFoundError("Conversation is not assigned to this agent", "not_owner")
        to_bot_owned(ownership_from_assignment(assignment).state)

        message = append_message(
            db,
            conversation_id,
            MessageRole.HUMAN_AGENT,
            HANDBACK_MESSAGE,
            agent_id=agent_id,
        )
        release_ownership(db, conversation_id, agent_id)
        db.commit()
    except ChatdeskError:
        db.rollback()
        raise

    if escalation_policy is not None:
        escalation_policy.reset(conversation_id)
    log.info("Conversation handed back to bot")

    publisher.message_appended(message)
    publisher.ownership_changed(ownership_payload(db, conversation_id, None, datetime.now(timezone.utc)))
    return message


def set_knowledge_base(
    db: Session,
    publisher: EventPublisher,
    conversation_id: UUID,
    enabled: bool,
    agent_id: Optional[UUID] = None,
) -> ConversationAgent:
    """Toggle KB assistance for the live assignment. ``agent_id`` restricts it to the owner."""
    try:
        assignment = get_ownership(db, conversation_id)
        if assignment is not None and agent_id is not None and assignment.agent_id != agent_id:
            raise NotFoundError("Conversation is not assigned to this agent", "not_owner")
        assignment = toggle_knowledge_base(db, conversation_id, enabled)
        db.commit()
    except ChatdeskError:
        db.rollback()
        raise

    conversation_logger("ownership_service", conversation_id).info(
        "Knowledge base toggled", context={"knowledge_base_enabled": enabled}
    )
    publisher.ownership_changed(ownership_payload(db, conversation_id, assignment))
    return assignment
