from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from chatdesk.services.errors import ChatdeskError

T = TypeVar("T")


@dataclass
class Result(Generic[T]):
    """Outcome of a downstream call (responder, classifier, retrieval)."""

    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @staticmethod
    def success(value: T) -> "Result[T]":
        return Result(ok=True, value=value)

    @staticmethod
    def from_error(exc: ChatdeskError) -> "Result[T]":
        return Result(ok=False, error=exc.message, error_code=exc.code)
