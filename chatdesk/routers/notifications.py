from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from chatdesk.context import AppContext, get_context
from chatdesk.database import get_db
from chatdesk.realtime.events import NotificationPayload
from chatdesk.schemas.notification import NotificationCreate, NotificationListResponse
from chatdesk.services.agent_service import get_agent
from chatdesk.services.notification_service import (
    count_unread,
    create_notification,
    list_notifications_for_agent,
    mark_notification_read,
)

router = APIRouter(tags=["notifications"])


@router.post("/notifications", response_model=NotificationPayload, status_code=201)
def create(request: NotificationCreate, db: Session = Depends(get_db), ctx: AppContext = Depends(get_context)):
    notification = create_notification(
        db,
        request.agent_id,
        request.type,
        request.message,
        conversation_id=request.conversation_id,
        chatbot_name=request.chatbot_name,
    )
    db.commit()
    ctx.publisher.notification_created(notification)
    return NotificationPayload.from_row(notification)


@router.get("/agents/{agent_id}/notifications", response_model=NotificationListResponse)
def list_for_agent(agent_id: UUID, unread_only: bool = False, limit: int = 50, db: Session = Depends(get_db)):
    get_agent(db, agent_id)
    rows = list_notifications_for_agent(db, agent_id, unread_only=unread_only, limit=limit)
    return NotificationListResponse(
        notifications=[NotificationPayload.from_row(n) for n in rows],
        unread=count_unread(db, agent_id),
    )


@router.post("/notifications/{notification_id}/read", response_model=NotificationPayload)
def mark_read(notification_id: UUID, db: Session = Depends(get_db)):
    notification = mark_notification_read(db, notification_id)
    db.commit()
    return NotificationPayload.from_row(notification)
