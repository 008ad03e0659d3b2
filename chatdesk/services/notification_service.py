from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from chatdesk.logging_config import get_logger
from chatdesk.models import NOTIFICATION_TYPES, AgentNotification
from chatdesk.services.agent_service import get_agent
from chatdesk.services.errors import NotFoundError, RejectedError

logger = get_logger("notification_service")


def create_notification(
    db: Session,
    agent_id: UUID,
    type: str,
    message: str,
    conversation_id: Optional[UUID] = None,
    chatbot_name: Optional[str] = None,
) -> AgentNotification:
    if type not in NOTIFICATION_TYPES:
        raise RejectedError(f"Unknown notification type: {type}", "invalid_notification_type")
    if not message or not message.strip():
        raise RejectedError("Notification message is empty", "empty_content")
    get_agent(db, agent_id)

    notification = AgentNotification(
        agent_id=agent_id,
        conversation_id=conversation_id,
        type=type,
        message=message,
        is_read=False,
        chatbot_name=chatbot_name,
        created_at=datetime.now(timezone.utc),
    )
    db.add(notification)
    db.flush()

    logger.info(
        "Notification created",
        extra={
            "context": {
                "notification_id": str(notification.id),
                "agent_id": str(agent_id),
                "conversation_id": str(conversation_id) if conversation_id else None,
                "type": type,
            }
        },
    )
    return notification


def list_notifications_for_agent(
    db: Session,
    agent_id: UUID,
    unread_only: bool = False,
    limit: int = 50,
) -> List[AgentNotification]:
    query = db.query(AgentNotification).filter(AgentNotification.agent_id == agent_id)
    if unread_only:
        query = query.filter(AgentNotification.is_read.is_(False))
    return query.order_by(AgentNotification.created_at.desc()).limit(limit).all()


def count_unread(db: Session, agent_id: UUID) -> int:
    return (
        db.query(func.count(AgentNotification.id))
        .filter(AgentNotification.agent_id == agent_id, AgentNotification.is_read.is_(False))
        .scalar()
        or 0
    )


def mark_notification_read(db: Session, notification_id: UUID) -> AgentNotification:
    notification = db.query(AgentNotification).filter(AgentNotification.id == notification_id).first()
    if not notification:
        raise NotFoundError(f"Notification {notification_id} not found", "notification_not_found")
    notification.is_read = True
    db.flush()
    return notification


def mark_conversation_notifications_read(
    db: Session,
    agent_id: UUID,
    conversation_id: UUID,
    type: Optional[str] = None,
) -> int:
    """Flip every unread notification of the agent for one conversation."""
    query = db.query(AgentNotification).filter(
        AgentNotification.agent_id == agent_id,
        AgentNotification.conversation_id == conversation_id,
        AgentNotification.is_read.is_(False),
    )
    if type is not None:
        query = query.filter(AgentNotification.type == type)
    return query.update({AgentNotification.is_read: True}, synchronize_session="fetch")
