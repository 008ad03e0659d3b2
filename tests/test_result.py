from chatdesk.services.errors import RejectedError, ServiceError
from chatdesk.services.result import Result


class TestResultSuccess:
    def test_success_creates_ok_result(self):
        result = Result.success("reply")
        assert result.ok is True
        assert result.value == "reply"
        assert result.error is None


class TestResultFailure:
    def test_from_error_keeps_message_and_code(self):
        result = Result.from_error(ServiceError("Responder timed out", "llm_unavailable"))
        assert result.ok is False
        assert result.value is None
        assert result.error == "Responder timed out"
        assert result.error_code == "llm_unavailable"

    def test_from_error_uses_class_code_by_default(self):
        result = Result.from_error(RejectedError("Message content is empty"))
        assert result.error_code == "rejected"
