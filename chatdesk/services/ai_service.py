from dataclasses import dataclass, field
from typing import List, Optional

from chatdesk.logging_config import get_logger
from chatdesk.services.errors import ServiceError
from chatdesk.services.llm import LLMProvider
from chatdesk.services.roles import STORED_CUSTOMER

logger = get_logger("ai_service")

SYSTEM_PROMPT = """You are a helpful customer support assistant.
Answer briefly and politely. If the provided context does not contain the answer, say so instead of guessing."""

CONTEXT_TEMPLATE = "Use the following information to answer the question:\n\n{context}"


@dataclass
class ResponderReply:
    message: str
    sources: List[str] = field(default_factory=list)


def history_to_llm_messages(history) -> List[dict]:
    """Stored message rows -> chat-completion messages. Customer rows stay ``user``."""
    llm_messages = []
    for message in history:
        if isinstance(message, dict):
            llm_messages.append(message)
            continue
        role = "user" if message.role == STORED_CUSTOMER else "assistant"
        llm_messages.append({"role": role, "content": message.content})
    return llm_messages


class Responder:
    """Produces the automated reply for a bot-owned conversation."""

    def __init__(self, provider: LLMProvider, model: Optional[str] = None, max_tokens: int = 800):
        self.provider = provider
        self.model = model
        self.max_tokens = max_tokens

    def generate(self, history, context: Optional[str] = None, sources: Optional[List[str]] = None) -> ResponderReply:
        messages = [{"role": "system", "content": SYSTEM_PROMPT}]
        if context:
            messages.append({"role": "system", "content": CONTEXT_TEMPLATE.format(context=context)})
        messages.extend(history_to_llm_messages(history))

        response = self.provider.generate(messages, model=self.model, max_tokens=self.max_tokens)
        reply = (response.content or "").strip()
        if not reply:
            logger.warning("Responder returned empty content", extra={"context": {"model": response.model}})
            raise ServiceError("Responder returned an empty reply", "empty_reply")
        return ResponderReply(message=reply, sources=list(sources or []))
