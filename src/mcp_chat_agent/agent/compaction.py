"""
Conversation Compaction - bounded chat memory through summarization.

When a session grows past a threshold, everything except the most recent
messages is replaced by a single model-generated summary message:

    [m0 .. m(n-k-1)] [m(n-k) .. m(n-1)]  ->  [summary] [m(n-k) .. m(n-1)]

Key features:
- Keeps the last N messages verbatim
- Summarizes only user/assistant turns (system and older summaries are left out)
- Leaves stored history untouched if summarization fails
- Never compacts the same session twice at once
- Keeps turns that were appended while the summary was being written
- Reports an estimated token saving (characters / 4)
"""

import asyncio
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any

import structlog

from ..errors import SummarizationError
from ..llm.summarizer import Summarizer
from ..memory import ConversationMemoryStore, KeyedLocks, MessageRole, StoredMessage

logger = structlog.get_logger()

# Approximate characters per token (reporting only, not billing-grade)
CHARS_PER_TOKEN = 4

DEFAULT_MIN_MESSAGES_TO_COMPACT = 8
DEFAULT_KEEP_RECENT = 6
DEFAULT_SUMMARIZATION_TIMEOUT = 120.0


@dataclass
class CompactionConfig:
    """Configuration for conversation compaction."""

    min_messages_to_compact: int = DEFAULT_MIN_MESSAGES_TO_COMPACT
    keep_recent_messages: int = DEFAULT_KEEP_RECENT
    summarization_timeout: float = DEFAULT_SUMMARIZATION_TIMEOUT

    def __post_init__(self):
        if self.keep_recent_messages < 1:
            raise ValueError("keep_recent_messages must be at least 1")
        if self.min_messages_to_compact <= self.keep_recent_messages:
            raise ValueError("min_messages_to_compact must be greater than keep_recent_messages")


@dataclass
class CompactionResult:
    """Result of a compaction operation."""

    success: bool
    messages_before: int
    messages_after: int
    estimated_tokens_saved: int
    message: str
    session_id: str = ""
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class CompactionStatus:
    """Whether a session is eligible for compaction."""

    can_compact: bool
    message_count: int
    min_messages: int
    missing_messages: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def estimate_tokens(messages: list[StoredMessage]) -> int:
    """Estimate token count for a list of messages."""
    return sum(len(m.text) for m in messages) // CHARS_PER_TOKEN


def build_transcript(messages: list[StoredMessage]) -> str:
    """Render user/assistant turns as a role-labelled transcript."""
    parts = []
    for msg in messages:
        if msg.role == MessageRole.USER:
            parts.append(f"User: {msg.text}")
        elif msg.role == MessageRole.ASSISTANT:
            parts.append(f"Assistant: {msg.text}")
    return "\n\n".join(parts)


def build_summary_message(summary: str, generated_at: datetime | None = None) -> StoredMessage:
    generated_at = generated_at or datetime.now(timezone.utc)
    return StoredMessage(
        role=MessageRole.SUMMARY,
        text=f"Summary of the earlier conversation (generated automatically at {generated_at.isoformat()}):\n\n{summary}",
        stored_at=generated_at,
    )


class CompactionEngine:
    """Applies the summarization policy to one session at a time."""

    def __init__(
        self,
        memory: ConversationMemoryStore,
        summarizer: Summarizer,
        config: CompactionConfig | None = None,
    ):
        self.memory = memory
        self.summarizer = summarizer
        self.config = config or CompactionConfig()
        self._locks = KeyedLocks()

    async def can_compact(self, session_id: str) -> CompactionStatus:
        """Check a session's message count against the threshold."""
        count = len(await self.memory.get_messages(session_id))
        minimum = self.config.min_messages_to_compact
        return CompactionStatus(
            can_compact=count >= minimum,
            message_count=count,
            min_messages=minimum,
            missing_messages=max(0, minimum - count),
        )

    async def compact_session(self, session_id: str) -> CompactionResult:
        """Compact one session if it is long enough.

        Args:
            session_id: Session to compact

        Returns:
            CompactionResult describing what happened; summarization
            failures are reported here rather than raised
        """
        async with self._locks.hold(self.memory.key_for(session_id)):
            return await self._compact_locked(session_id)

    async def _compact_locked(self, session_id: str) -> CompactionResult:
        messages = await self.memory.get_messages(session_id)
        before = len(messages)

        if before < self.config.min_messages_to_compact:
            return CompactionResult(
                success=False,
                messages_before=before,
                messages_after=before,
                estimated_tokens_saved=0,
                message="Not enough messages to compact",
                session_id=session_id,
            )

        split_index = before - self.config.keep_recent_messages
        old_messages = messages[:split_index]
        recent_messages = messages[split_index:]

        transcript = build_transcript(old_messages)
        if not transcript:
            return CompactionResult(
                success=False,
                messages_before=before,
                messages_after=before,
                estimated_tokens_saved=0,
                message="Nothing to summarize in older messages",
                session_id=session_id,
            )

        logger.info(
            "Compacting session",
            session_id=session_id,
            message_count=before,
            summarizing=len(old_messages),
        )

        try:
            summary = await self._summarize(transcript)
        except SummarizationError as e:
            logger.error("Compaction summarization failed", session_id=session_id, error=e.message)
            return CompactionResult(
                success=False,
                messages_before=before,
                messages_after=before,
                estimated_tokens_saved=0,
                message=f"Error compacting: {e.message}",
                session_id=session_id,
                error=e.message,
            )

        new_head = [build_summary_message(summary)] + recent_messages
        compacted = await self.memory.replace_head(session_id, messages, new_head)
        if compacted is None:
            return CompactionResult(
                success=False,
                messages_before=before,
                messages_after=before,
                estimated_tokens_saved=0,
                message="Error compacting: session changed during compaction",
                session_id=session_id,
                error="session changed during compaction",
            )

        tokens_saved = estimate_tokens(messages) - estimate_tokens(new_head)
        logger.info(
            "Compaction complete",
            session_id=session_id,
            original=before,
            compacted=len(compacted),
            tokens_saved=tokens_saved,
        )

        return CompactionResult(
            success=True,
            messages_before=before,
            messages_after=len(compacted),
            estimated_tokens_saved=tokens_saved,
            message="Compaction completed successfully",
            session_id=session_id,
        )

    async def _summarize(self, transcript: str) -> str:
        try:
            summary = await asyncio.wait_for(
                self.summarizer.summarize(transcript),
                timeout=self.config.summarization_timeout,
            )
        except asyncio.TimeoutError:
            raise SummarizationError(
                f"Summarization timed out after {self.config.summarization_timeout:g}s"
            ) from None
        except Exception as e:
            raise SummarizationError(str(e), cause=e) from e

        if not summary or not summary.strip():
            raise SummarizationError("Summarizer returned an empty summary")
        return summary.strip()
