"""Application wiring.

Everything with state (event transport, subscriptions, escalation windows)
is built once here and handed to the routers through ``get_context``.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from fastapi import Request

from chatdesk.config import Settings
from chatdesk.logging_config import get_logger
from chatdesk.realtime.events import ConversationSnapshot
from chatdesk.realtime.publisher import EventPublisher, LocalEventPublisher, RedisEventPublisher
from chatdesk.realtime.subscription_manager import SnapshotLoader, SubscriptionManager
from chatdesk.realtime.transport import InMemoryTransport, RedisTransport
from chatdesk.services.ai_service import Responder
from chatdesk.services.conversation_service import build_snapshot
from chatdesk.services.errors import NotFoundError
from chatdesk.services.escalation_service import EscalationPolicy
from chatdesk.services.knowledge_service import KnowledgeService
from chatdesk.services.llm import OpenAIProvider
from chatdesk.services.message_service import ResponseOrchestrator
from chatdesk.services.sentiment_service import SentimentClassifier

logger = get_logger("context")


@dataclass
class AppContext:
    settings: Settings
    publisher: EventPublisher
    subscriptions: SubscriptionManager
    escalation_policy: EscalationPolicy
    responder: Responder
    knowledge: Optional[KnowledgeService]
    orchestrator: ResponseOrchestrator


def make_snapshot_loader(session_factory) -> SnapshotLoader:
    """Reads run in a worker thread, the store session is sync."""

    def _load(conversation_id: UUID) -> Optional[ConversationSnapshot]:
        db = session_factory()
        try:
            return build_snapshot(db, conversation_id)
        except NotFoundError:
            return None
        finally:
            db.close()

    async def loader(conversation_id: UUID) -> Optional[ConversationSnapshot]:
        return await asyncio.to_thread(_load, conversation_id)

    return loader


def build_context(settings: Settings, session_factory) -> AppContext:
    if settings.realtime_enabled:
        transport = RedisTransport(
            settings.redis_url,
            socket_timeout_seconds=max(settings.redis_socket_timeout_seconds, 1.0),
            backoff_seconds=settings.reconnect_backoff_seconds,
            backoff_max_seconds=settings.reconnect_backoff_max_seconds,
        )
        publisher = RedisEventPublisher(settings.redis_url, settings.redis_socket_timeout_seconds)
    else:
        transport = InMemoryTransport()
        publisher = LocalEventPublisher(transport)

    subscriptions = SubscriptionManager(
        transport,
        snapshot_loader=make_snapshot_loader(session_factory),
        reconcile_interval_seconds=settings.reconcile_interval_seconds,
    )

    provider = OpenAIProvider(
        settings.openai_api_key,
        default_model=settings.openai_model,
        timeout_seconds=settings.llm_timeout_seconds,
    )
    responder = Responder(provider)
    escalation_policy = EscalationPolicy(
        SentimentClassifier(provider),
        publisher=publisher,
        window_size=settings.escalation_window_size,
        max_conversations=settings.escalation_max_conversations,
        idle_seconds=settings.escalation_idle_seconds,
    )
    knowledge = None
    if settings.qdrant_host and settings.embedding_url:
        knowledge = KnowledgeService(
            settings.qdrant_host,
            settings.qdrant_collection,
            settings.embedding_url,
            api_key=settings.qdrant_api_key,
        )

    orchestrator = ResponseOrchestrator(
        publisher,
        escalation_policy,
        responder,
        knowledge=knowledge,
        history_turns=settings.history_turns,
        retrieval_k=settings.retrieval_k,
    )
    logger.info(
        "Context built",
        extra={"context": {"realtime": settings.realtime_enabled, "knowledge": knowledge is not None}},
    )
    return AppContext(
        settings=settings,
        publisher=publisher,
        subscriptions=subscriptions,
        escalation_policy=escalation_policy,
        responder=responder,
        knowledge=knowledge,
        orchestrator=orchestrator,
    )


def get_context(request: Request) -> AppContext:
    return request.app.state.context
