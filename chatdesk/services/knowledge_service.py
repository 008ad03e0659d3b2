from dataclasses import dataclass
from typing import List, Optional

import httpx

from chatdesk.logging_config import get_logger
from chatdesk.services.errors import ServiceError

logger = get_logger("knowledge_service")


@dataclass
class KnowledgeChunk:
    text: str
    index: int
    score: Optional[float] = None

    @property
    def source(self) -> str:
        return f"Document chunk {self.index + 1}"


class KnowledgeService:
    """Similarity search over a chatbot's documents (BGE-M3 embeddings in Qdrant)."""

    def __init__(
        self,
        qdrant_host: str,
        collection: str,
        embedding_url: str,
        api_key: Optional[str] = None,
        timeout_seconds: float = 30.0,
    ):
        self.qdrant_host = qdrant_host.rstrip("/")
        self.collection = collection
        self.embedding_url = embedding_url
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds

    def get_embedding(self, text: str) -> List[float]:
        with httpx.Client(timeout=self.timeout_seconds) as client:
            response = client.post(self.embedding_url, json={"inputs": text})
        if response.status_code != 200:
            raise ServiceError(f"Embedding error: {response.status_code}", "embedding_error")

        data = response.json()
        # TEI returns [[...]], some deployments return {"embedding": [...]}
        if isinstance(data, list) and data:
            return data[0] if isinstance(data[0], list) else data
        return data.get("embedding") or data.get("embeddings") or []

    def similar_chunks(self, query: str, k: int, scope_id) -> List[KnowledgeChunk]:
        """Top-k chunks for ``query`` restricted to one chatbot's documents."""
        try:
            embedding = self.get_embedding(query)
            headers = {"api-key": self.api_key} if self.api_key else {}
            with httpx.Client(timeout=self.timeout_seconds) as client:
                response = client.post(
                    f"{self.qdrant_host}/collections/{self.collection}/points/search",
                    headers=headers,
                    json={
                        "vector": embedding,
                        "limit": k,
                        "filter": {"must": [{"key": "metadata.chatbot_id", "match": {"value": str(scope_id)}}]},
                        "with_payload": True,
                    },
                )
        except httpx.HTTPError as e:
            logger.error(f"Knowledge search failed: {e}")
            raise ServiceError(f"Retrieval unavailable: {e}", "retrieval_unavailable") from e

        if response.status_code != 200:
            logger.error(f"Qdrant search error: {response.status_code} - {response.text}")
            raise ServiceError(f"Retrieval error: {response.status_code}", "retrieval_error")

        chunks = []
        for index, point in enumerate(response.json().get("result", [])):
            payload = point.get("payload") or {}
            text = payload.get("content")
            if text:
                chunks.append(KnowledgeChunk(text=text, index=index, score=point.get("score")))

        logger.info(f"Knowledge search: found {len(chunks)} chunks for '{query[:30]}...'")
        return chunks


def format_context(chunks: List[KnowledgeChunk]) -> str:
    return "\n\n".join(chunk.text for chunk in chunks)
