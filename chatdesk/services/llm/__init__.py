from chatdesk.services.llm.base import LLMProvider, LLMResponse
from chatdesk.services.llm.openai_provider import OpenAIProvider

__all__ = ["LLMProvider", "LLMResponse", "OpenAIProvider"]
