"""Conversation memory for MCP-Chat-Agent."""

from .conversation import ConversationMemoryStore, SessionInfo
from .locks import KeyedLocks
from .messages import MessageRole, StoredMessage, deserialize_message, serialize_message
from .store import InMemoryKeyValueStore, KeyValueStore, RedisKeyValueStore, create_store

__all__ = [
    "ConversationMemoryStore",
    "SessionInfo",
    "KeyedLocks",
    "MessageRole",
    "StoredMessage",
    "deserialize_message",
    "serialize_message",
    "InMemoryKeyValueStore",
    "KeyValueStore",
    "RedisKeyValueStore",
    "create_store",
]
