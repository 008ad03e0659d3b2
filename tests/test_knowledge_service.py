from unittest.mock import MagicMock, Mock, patch

import httpx
import pytest

from chatdesk.services.errors import ServiceError
from chatdesk.services.knowledge_service import KnowledgeChunk, KnowledgeService, format_context


@pytest.fixture
def service():
    return KnowledgeService("http://qdrant:6333/", "chatdesk_knowledge", "http://bge-m3:80/embed", api_key="k")


def _response(status_code, payload):
    response = Mock()
    response.status_code = status_code
    response.json.return_value = payload
    response.text = str(payload)
    return response


class TestFormatContext:
    def test_joins_chunks(self):
        chunks = [KnowledgeChunk(text="First", index=0), KnowledgeChunk(text="Second", index=1)]
        assert format_context(chunks) == "First\n\nSecond"

    def test_empty(self):
        assert format_context([]) == ""

    def test_source_label_is_one_based(self):
        assert KnowledgeChunk(text="x", index=2).source == "Document chunk 3"


class TestSimilarChunks:
    @patch("chatdesk.services.knowledge_service.httpx.Client")
    def test_filters_by_chatbot_and_limits_k(self, mock_client_class, service):
        mock_client = MagicMock()
        mock_client_class.return_value.__enter__.return_value = mock_client
        mock_client.post.side_effect = [
            _response(200, [[0.1, 0.2]]),
            _response(
                200,
                {
                    "result": [
                        {"score": 0.9, "payload": {"content": "Opening hours 9-18"}},
                        {"score": 0.8, "payload": {"content": "Closed on Sunday"}},
                    ]
                },
            ),
        ]

        chunks = service.similar_chunks("hours?", 3, "bot-1")

        assert [c.text for c in chunks] == ["Opening hours 9-18", "Closed on Sunday"]
        assert [c.source for c in chunks] == ["Document chunk 1", "Document chunk 2"]
        search_call = mock_client.post.call_args_list[1]
        assert search_call.args[0] == "http://qdrant:6333/collections/chatdesk_knowledge/points/search"
        body = search_call.kwargs["json"]
        assert body["limit"] == 3
        assert body["vector"] == [0.1, 0.2]
        assert body["filter"]["must"][0] == {"key": "metadata.chatbot_id", "match": {"value": "bot-1"}}

    @patch("chatdesk.services.knowledge_service.httpx.Client")
    def test_search_error_raises_service_error(self, mock_client_class, service):
        mock_client = MagicMock()
        mock_client_class.return_value.__enter__.return_value = mock_client
        mock_client.post.side_effect = [_response(200, [[0.1]]), _response(500, {"status": "error"})]

        with pytest.raises(ServiceError):
            service.similar_chunks("hours?", 3, "bot-1")

    @patch("chatdesk.services.knowledge_service.httpx.Client")
    def test_connection_error_raises_service_error(self, mock_client_class, service):
        mock_client = MagicMock()
        mock_client_class.return_value.__enter__.return_value = mock_client
        mock_client.post.side_effect = httpx.ConnectError("refused")

        with pytest.raises(ServiceError) as exc:
            service.similar_chunks("hours?", 3, "bot-1")
        assert exc.value.code == "retrieval_unavailable"
