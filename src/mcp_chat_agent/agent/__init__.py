"""
Agent module - chat turns and memory compaction.

Includes:
- ChatAgent: Message processing with LLM + dynamic MCP tools
- CompactionEngine: Summarizes older messages of a session
"""

from .core import ChatAgent, ChatResult, new_ephemeral_session_id
from .compaction import (
    CompactionConfig,
    CompactionEngine,
    CompactionResult,
    CompactionStatus,
    build_transcript,
    estimate_tokens,
)

__all__ = [
    "ChatAgent",
    "ChatResult",
    "new_ephemeral_session_id",
    "CompactionConfig",
    "CompactionEngine",
    "CompactionResult",
    "CompactionStatus",
    "build_transcript",
    "estimate_tokens",
]
