class ChatdeskError(Exception):
    """Base for errors surfaced to the immediate caller."""

    code = "error"
    status_code = 400

    def __init__(self, message: str, code: str | None = None):
        self.message = message
        if code:
            self.code = code
        super().__init__(message)


class NotFoundError(ChatdeskError):
    code = "not_found"
    status_code = 404


class ConflictError(ChatdeskError):
    code = "conflict"
    status_code = 409


class RejectedError(ChatdeskError):
    code = "rejected"
    status_code = 422


class ServiceError(ChatdeskError):
    """Transient downstream failure (Responder, Classifier, Retrieval, Store)."""

    code = "service_error"
    status_code = 503


class TransportDegradedWarning(UserWarning):
    """Event delivery fell back to reconciliation polling. Advisory only."""
