from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from chatdesk.realtime.events import ConversationSnapshot, MessagePayload, OwnershipPayload, as_utc


class ConversationView:
    """Client-side state of one conversation built from at-least-once events.

    Messages merge by id and are always listed in creation order, whatever
    order they arrived in. Ownership keeps the most recent change.
    """

    def __init__(self, conversation_id: UUID):
        self.conversation_id = conversation_id
        self._messages: Dict[UUID, MessagePayload] = {}
        self.ownership: Optional[OwnershipPayload] = None

    def apply_message(self, message: MessagePayload) -> bool:
        """Returns False for a duplicate."""
        if message.conversation_id != self.conversation_id or message.id in self._messages:
            return False
        self._messages[message.id] = message
        return True

    def apply_ownership(self, ownership: OwnershipPayload) -> bool:
        if ownership.conversation_id != self.conversation_id:
            return False
        if self.ownership is not None:
            if as_utc(ownership.changed_at) < as_utc(self.ownership.changed_at) or ownership == self.ownership:
                return False
        self.ownership = ownership
        return True

    def apply_snapshot(self, snapshot: ConversationSnapshot) -> int:
        added = sum(1 for message in snapshot.messages if self.apply_message(message))
        self.apply_ownership(snapshot.ownership)
        return added

    @property
    def messages(self) -> List[MessagePayload]:
        return sorted(self._messages.values(), key=lambda m: (as_utc(m.created_at), str(m.id)))

    @property
    def is_human_owned(self) -> bool:
        return self.ownership is not None and self.ownership.state == "human_owned"

    @property
    def last_message_at(self) -> Optional[datetime]:
        messages = self.messages
        return messages[-1].created_at if messages else None
