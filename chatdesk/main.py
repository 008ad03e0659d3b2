import os

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from chatdesk.config import settings
from chatdesk.context import build_context
from chatdesk.database import SessionLocal, get_db
from chatdesk.logging_config import get_logger, setup_logging
from chatdesk.models import AgentNotification, Conversation, ConversationAgent, Message
from chatdesk.routers import agents, conversations, events, notifications
from chatdesk.services.errors import ChatdeskError

setup_logging(settings.log_level)

logger = get_logger("main")

app = FastAPI(
    title="Chatdesk API",
    description="Conversation hand-off between the chatbot and human agents",
    version="0.1.0",
)

cors_origins = [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(conversations.router)
app.include_router(agents.router)
app.include_router(notifications.router)
app.include_router(events.router)

app.state.context = build_context(settings, SessionLocal)


@app.exception_handler(ChatdeskError)
async def chatdesk_error_handler(request: Request, exc: ChatdeskError):
    if exc.status_code >= 500:
        logger.error("Request failed", extra={"context": {"path": request.url.path, "code": exc.code}})
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})


def _is_subscriptions_enabled() -> bool:
    return not os.environ.get("PYTEST_CURRENT_TEST")


@app.on_event("startup")
async def start_subscriptions() -> None:
    if not _is_subscriptions_enabled():
        return
    await app.state.context.subscriptions.start()
    logger.info("Subscription manager started")


@app.on_event("shutdown")
async def stop_subscriptions() -> None:
    await app.state.context.subscriptions.stop()


@app.get("/health")
async def health():
    return {"status": "ok", "realtime": app.state.context.subscriptions.status.value}


@app.get("/db-check")
def db_check(db: Session = Depends(get_db)):
    return {
        "status": "ok",
        "conversations": db.query(Conversation).count(),
        "messages": db.query(Message).count(),
        "assignments": db.query(ConversationAgent).count(),
        "notifications": db.query(AgentNotification).count(),
    }
