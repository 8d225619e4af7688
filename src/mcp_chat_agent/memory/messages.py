"""
Stored chat messages and their persisted JSON form.

Each list entry is a JSON object {"message": {"role", "text"}, "timestamp"}.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from ..errors import MessageDeserializationError


class MessageRole(str, Enum):
    """Message roles for stored conversations."""
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    SUMMARY = "summary"


# Role names written by older clients
_ROLE_ALIASES = {
    "ai": MessageRole.ASSISTANT,
    "human": MessageRole.USER,
}


@dataclass(frozen=True)
class StoredMessage:
    """One persisted chat message. Never mutated, only superseded."""

    role: MessageRole
    text: str
    stored_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def user(cls, text: str) -> "StoredMessage":
        return cls(role=MessageRole.USER, text=text)

    @classmethod
    def assistant(cls, text: str) -> "StoredMessage":
        return cls(role=MessageRole.ASSISTANT, text=text)

    @classmethod
    def system(cls, text: str) -> "StoredMessage":
        return cls(role=MessageRole.SYSTEM, text=text)

    @classmethod
    def summary(cls, text: str) -> "StoredMessage":
        return cls(role=MessageRole.SUMMARY, text=text)

    @property
    def is_conversational(self) -> bool:
        """True for user and assistant turns."""
        return self.role in (MessageRole.USER, MessageRole.ASSISTANT)

    def to_dict(self) -> dict:
        return {
            "role": self.role.value,
            "content": self.text,
            "timestamp": self.stored_at.isoformat(),
        }


def serialize_message(message: StoredMessage) -> str:
    """Encode a message as one store entry."""
    return json.dumps({
        "message": {"role": message.role.value, "text": message.text},
        "timestamp": message.stored_at.isoformat(),
    })


def deserialize_message(raw: str) -> StoredMessage:
    """Decode one store entry.

    Raises:
        MessageDeserializationError: if the entry is malformed
    """
    try:
        data = json.loads(raw)
        body = data["message"]
        role_name = str(body["role"]).lower()
        role = _ROLE_ALIASES.get(role_name) or MessageRole(role_name)
        text = body.get("text")
        if text is None:
            text = body.get("content")
        if not isinstance(text, str):
            raise ValueError("message text missing")
        timestamp = data.get("timestamp")
        stored_at = datetime.fromisoformat(timestamp) if timestamp else datetime.now(timezone.utc)
        if stored_at.tzinfo is None:
            stored_at = stored_at.replace(tzinfo=timezone.utc)
    except (json.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError) as e:
        raise MessageDeserializationError(f"Failed to deserialize chat message: {e}", cause=e) from e

    return StoredMessage(role=role, text=text, stored_at=stored_at)
