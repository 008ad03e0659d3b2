from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from chatdesk.context import AppContext, get_context
from chatdesk.database import get_db
from chatdesk.realtime.events import ConversationSnapshot, MessagePayload
from chatdesk.schemas.conversation import (
    ConversationResponse,
    CustomerMessageRequest,
    CustomerMessageResponse,
    EnsureConversationRequest,
)
from chatdesk.services.conversation_service import (
    build_snapshot,
    ensure_conversation,
    get_conversation,
    list_messages,
)

router = APIRouter(tags=["conversations"])


@router.post("/conversations", response_model=ConversationResponse)
def ensure(request: EnsureConversationRequest, db: Session = Depends(get_db)):
    """Resolve the widget's (chatbot, session) pair to its conversation, creating it once."""
    conversation_id = ensure_conversation(db, request.chatbot_id, request.session_id)
    db.commit()
    return get_conversation(db, conversation_id)


@router.post("/conversations/{conversation_id}/messages", response_model=CustomerMessageResponse)
def send_customer_message(
    conversation_id: UUID,
    request: CustomerMessageRequest,
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    outcome = ctx.orchestrator.handle_customer_message(db, conversation_id, request.content)
    return CustomerMessageResponse(
        outcome=outcome.outcome.value,
        customer_message=MessagePayload.from_row(outcome.customer_message),
        reply=MessagePayload.from_row(outcome.reply) if outcome.reply is not None else None,
        sources=outcome.sources,
    )


@router.get("/conversations/{conversation_id}", response_model=ConversationSnapshot)
def get_snapshot(conversation_id: UUID, db: Session = Depends(get_db)):
    return build_snapshot(db, conversation_id)


@router.get("/conversations/{conversation_id}/messages", response_model=List[MessagePayload])
def get_messages(conversation_id: UUID, since: Optional[datetime] = None, db: Session = Depends(get_db)):
    get_conversation(db, conversation_id)
    return [MessagePayload.from_row(m) for m in list_messages(db, conversation_id, since=since)]
