from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from chatdesk.context import AppContext, get_context
from chatdesk.database import get_db
from chatdesk.realtime.events import MessagePayload, OwnershipPayload
from chatdesk.schemas.agent import (
    AgentMessageRequest,
    AgentMessageResponse,
    AssignmentRequest,
    AssignmentResponse,
    HandbackRequest,
    KnowledgeBaseRequest,
    TakeoverRequest,
)
from chatdesk.schemas.conversation import ConversationResponse
from chatdesk.services.agent_service import (
    assign_agent_to_chatbot,
    get_agent,
    list_agent_conversations,
    list_available_conversations,
    remove_agent_assignment,
)
from chatdesk.services.conversation_service import ownership_payload
from chatdesk.services.ownership_service import hand_back, set_knowledge_base, take_over

router = APIRouter(tags=["agents"])


@router.post("/conversations/{conversation_id}/takeover", response_model=OwnershipPayload)
def takeover(
    conversation_id: UUID,
    request: TakeoverRequest,
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    """Agent picks up a conversation. 409 if another agent already holds it."""
    assignment = take_over(
        db,
        ctx.publisher,
        conversation_id,
        request.agent_id,
        trigger=request.trigger,
        knowledge_base_enabled=request.knowledge_base_enabled,
    )
    return ownership_payload(db, conversation_id, assignment)


@router.post("/conversations/{conversation_id}/handback", response_model=OwnershipPayload)
def handback(
    conversation_id: UUID,
    request: HandbackRequest,
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    hand_back(db, ctx.publisher, conversation_id, request.agent_id, ctx.escalation_policy)
    return ownership_payload(db, conversation_id)


@router.post("/conversations/{conversation_id}/knowledge-base", response_model=OwnershipPayload)
def toggle_knowledge_base(
    conversation_id: UUID,
    request: KnowledgeBaseRequest,
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    assignment = set_knowledge_base(db, ctx.publisher, conversation_id, request.enabled, agent_id=request.agent_id)
    return ownership_payload(db, conversation_id, assignment)


@router.post("/conversations/{conversation_id}/agent-messages", response_model=AgentMessageResponse)
def send_agent_message(
    conversation_id: UUID,
    request: AgentMessageRequest,
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    outcome = ctx.orchestrator.send_agent_message(
        db,
        conversation_id,
        request.agent_id,
        request.content,
        use_knowledge_base=request.use_knowledge_base,
    )
    return AgentMessageResponse(message=MessagePayload.from_row(outcome.reply), sources=outcome.sources)


@router.post("/agents/{agent_id}/assignments", response_model=AssignmentResponse, status_code=201)
def create_assignment(agent_id: UUID, request: AssignmentRequest, db: Session = Depends(get_db)):
    assignment = assign_agent_to_chatbot(db, agent_id, request.chatbot_id)
    db.commit()
    return assignment


@router.delete("/agents/{agent_id}/assignments/{chatbot_id}")
def delete_assignment(agent_id: UUID, chatbot_id: UUID, db: Session = Depends(get_db)):
    remove_agent_assignment(db, agent_id, chatbot_id)
    db.commit()
    return {"status": "ok"}


@router.get("/agents/{agent_id}/conversations", response_model=List[ConversationResponse])
def agent_conversations(agent_id: UUID, db: Session = Depends(get_db)):
    get_agent(db, agent_id)
    return list_agent_conversations(db, agent_id)


@router.get("/agents/{agent_id}/available-conversations", response_model=List[ConversationResponse])
def available_conversations(agent_id: UUID, limit: int = 50, db: Session = Depends(get_db)):
    get_agent(db, agent_id)
    return list_available_conversations(db, agent_id, limit=limit)
