"""
Conversation memory - per-session chat history on top of a KeyValueStore.
"""

import logging
from dataclasses import dataclass

from ..errors import MessageDeserializationError
from .locks import KeyedLocks
from .messages import StoredMessage, deserialize_message, serialize_message
from .store import KeyValueStore

logger = logging.getLogger(__name__)

DEFAULT_KEY_PREFIX = "chat-memory:"


@dataclass
class SessionInfo:
    """A stored session and its message count."""
    session_id: str
    message_count: int


class ConversationMemoryStore:
    """Reads and writes chat history, one list entry per message."""

    def __init__(self, store: KeyValueStore, key_prefix: str = DEFAULT_KEY_PREFIX):
        self.store = store
        self.key_prefix = key_prefix
        self._write_locks = KeyedLocks()

    def key_for(self, session_id: str) -> str:
        """Map a session id to its storage key.

        Args:
            session_id: Caller-supplied id, with or without the key prefix

        Raises:
            ValueError: if the id is empty
        """
        if session_id is None or not str(session_id).strip():
            raise ValueError("session id cannot be null or empty")
        session_id = str(session_id)
        if session_id.startswith(self.key_prefix):
            return session_id
        return f"{self.key_prefix}{session_id}"

    def session_id_for(self, key: str) -> str:
        """Inverse of key_for."""
        return key[len(self.key_prefix):] if key.startswith(self.key_prefix) else key

    @property
    def key_pattern(self) -> str:
        return f"{self.key_prefix}*"

    async def get_messages(self, session_id: str) -> list[StoredMessage]:
        """Get a session's messages; undecodable entries are skipped."""
        key = self.key_for(session_id)
        messages = []
        for index, raw in enumerate(await self.store.read_all(key)):
            try:
                messages.append(deserialize_message(raw))
            except MessageDeserializationError as e:
                logger.warning(f"Skipping stored message {index} of {key}: {e.message}")
        return messages

    async def append_messages(self, session_id: str, messages: list[StoredMessage]) -> None:
        """Append messages to the end of a session."""
        if not messages:
            return
        key = self.key_for(session_id)
        async with self._write_locks.hold(key):
            await self.store.append(key, *[serialize_message(m) for m in messages])

    async def replace_messages(self, session_id: str, messages: list[StoredMessage]) -> None:
        """Replace a session's whole sequence."""
        key = self.key_for(session_id)
        async with self._write_locks.hold(key):
            await self.store.replace(key, [serialize_message(m) for m in messages])

    async def replace_head(
        self,
        session_id: str,
        expected_head: list[StoredMessage],
        new_head: list[StoredMessage],
    ) -> list[StoredMessage] | None:
        """Swap the leading messages for new_head, keeping everything after them.

        Messages appended since the caller read expected_head are kept. Returns
        the new sequence, or None without writing when the session no longer
        starts with expected_head (deleted or rewritten in the meantime).
        """
        key = self.key_for(session_id)
        async with self._write_locks.hold(key):
            current = await self.get_messages(session_id)
            head = current[:len(expected_head)]
            if [(m.role, m.text) for m in head] != [(m.role, m.text) for m in expected_head]:
                logger.warning(f"Session {key} changed underneath a head replacement; not writing")
                return None
            messages = list(new_head) + current[len(expected_head):]
            await self.store.replace(key, [serialize_message(m) for m in messages])
            return messages

    async def delete_messages(self, session_id: str) -> None:
        """Remove a session's history."""
        key = self.key_for(session_id)
        async with self._write_locks.hold(key):
            await self.store.delete(key)
        logger.debug(f"Deleted messages for {key}")

    async def count_messages(self, session_id: str) -> int:
        return await self.store.length(self.key_for(session_id))

    async def list_session_ids(self) -> list[str]:
        """Ids of every stored session, sorted."""
        keys = await self.store.keys(self.key_pattern)
        return sorted(self.session_id_for(k) for k in keys)

    async def list_sessions(self) -> list[SessionInfo]:
        """Every stored session with its message count."""
        sessions = []
        for session_id in await self.list_session_ids():
            sessions.append(SessionInfo(session_id, await self.count_messages(session_id)))
        return sessions
