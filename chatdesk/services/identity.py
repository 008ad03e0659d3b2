"""Conversation identity.

A conversation id is a pure function of (chatbot id, session id), so the
widget, the agent console and the embed page all land on the same row
without asking the store first.
"""

import hashlib
from uuid import UUID

from chatdesk.services.errors import RejectedError


def require_session_id(session_id: str | None) -> str:
    """Single accessor for a caller-supplied session id. Blank ids are refused."""
    if session_id is None or not str(session_id).strip():
        raise RejectedError("session_id is required", "missing_session")
    return str(session_id).strip()


def derive_conversation_id(chatbot_id, session_id: str) -> UUID:
    """SHA-256 of ``{chatbot_id}_session_{session_id}`` laid out as a UUID.

    Layout: ``h[0:8]-h[8:12]-4h[12:15]-h[15:19]-h[19:31]`` (version nibble
    pinned to 4), matching ids already written by the store-side function.
    """
    combined = f"{chatbot_id}_session_{session_id}"
    digest = hashlib.sha256(combined.encode("utf-8")).hexdigest()
    formatted = f"{digest[0:8]}-{digest[8:12]}-4{digest[12:15]}-{digest[15:19]}-{digest[19:31]}"
    return UUID(formatted)
