"""
Tests for conversation compaction module.
"""

import asyncio

import pytest

from mcp_chat_agent.agent.compaction import (
    CHARS_PER_TOKEN,
    CompactionConfig,
    CompactionEngine,
    build_transcript,
    estimate_tokens,
)
from mcp_chat_agent.memory import MessageRole, StoredMessage

from conftest import StaticSummarizer, conversation


def test_estimate_tokens_empty():
    """Test token estimation for empty messages."""
    assert estimate_tokens([]) == 0


def test_estimate_tokens_basic():
    """Test that estimation is characters divided by four."""
    messages = [StoredMessage.user("a" * 10), StoredMessage.assistant("b" * 30)]
    assert estimate_tokens(messages) == 40 // CHARS_PER_TOKEN


def test_build_transcript_labels_and_filters():
    """Test that only user and assistant turns are transcribed."""
    messages = [
        StoredMessage.summary("old summary"),
        StoredMessage.user("How do I restart nginx?"),
        StoredMessage.system("tool instructions"),
        StoredMessage.assistant("Run systemctl restart nginx."),
    ]

    transcript = build_transcript(messages)

    assert transcript == "User: How do I restart nginx?\n\nAssistant: Run systemctl restart nginx."


def test_config_rejects_inverted_window():
    with pytest.raises(ValueError):
        CompactionConfig(min_messages_to_compact=6, keep_recent_messages=6)
    with pytest.raises(ValueError):
        CompactionConfig(min_messages_to_compact=8, keep_recent_messages=0)


@pytest.mark.asyncio
async def test_short_session_is_left_alone(memory):
    """Test the guard below the minimum message count."""
    summarizer = StaticSummarizer()
    engine = CompactionEngine(memory, summarizer)
    await memory.append_messages("s1", conversation(7))

    result = await engine.compact_session("s1")

    assert result.success is False
    assert result.messages_before == result.messages_after == 7
    assert result.estimated_tokens_saved == 0
    assert summarizer.transcripts == []
    assert len(await memory.get_messages("s1")) == 7


@pytest.mark.asyncio
async def test_compaction_shape(memory):
    """Test that the result is one summary followed by the recent suffix."""
    original = conversation(10)
    await memory.append_messages("s1", original)
    summarizer = StaticSummarizer("The user asked four questions.")
    engine = CompactionEngine(memory, summarizer)

    result = await engine.compact_session("s1")
    stored = await memory.get_messages("s1")

    assert result.success is True
    assert result.session_id == "s1"
    assert result.messages_before == 10
    assert result.messages_after == 7
    assert stored[0].role == MessageRole.SUMMARY
    assert "The user asked four questions." in stored[0].text
    assert [(m.role, m.text) for m in stored[1:]] == [(m.role, m.text) for m in original[-6:]]
    assert summarizer.transcripts == [build_transcript(original[:4])]


@pytest.mark.asyncio
async def test_tokens_saved_is_before_minus_after(memory):
    original = [StoredMessage.user("x" * 400) for _ in range(10)]
    await memory.append_messages("s1", original)
    engine = CompactionEngine(memory, StaticSummarizer("short"))

    result = await engine.compact_session("s1")
    stored = await memory.get_messages("s1")

    assert result.estimated_tokens_saved == estimate_tokens(original) - estimate_tokens(stored)
    assert result.estimated_tokens_saved > 0


@pytest.mark.asyncio
async def test_summarizer_failure_leaves_session_untouched(memory):
    """Test that a failing summarizer aborts without writing."""
    original = conversation(9)
    await memory.append_messages("s1", original)
    engine = CompactionEngine(memory, StaticSummarizer(error=RuntimeError("model unavailable")))

    result = await engine.compact_session("s1")

    assert result.success is False
    assert "model unavailable" in result.message
    assert result.error
    assert [m.text for m in await memory.get_messages("s1")] == [m.text for m in original]


@pytest.mark.asyncio
async def test_summarizer_timeout_is_a_failure(memory):
    class SlowSummarizer(StaticSummarizer):
        async def summarize(self, transcript):
            await asyncio.sleep(5)
            return "late"

    await memory.append_messages("s1", conversation(9))
    engine = CompactionEngine(
        memory,
        SlowSummarizer(),
        CompactionConfig(summarization_timeout=0.01),
    )

    result = await engine.compact_session("s1")

    assert result.success is False
    assert "timed out" in result.message
    assert len(await memory.get_messages("s1")) == 9


@pytest.mark.asyncio
async def test_empty_summary_is_a_failure(memory):
    await memory.append_messages("s1", conversation(9))
    engine = CompactionEngine(memory, StaticSummarizer("   "))

    result = await engine.compact_session("s1")

    assert result.success is False
    assert len(await memory.get_messages("s1")) == 9


@pytest.mark.asyncio
async def test_nothing_to_summarize(memory):
    """Test that older messages without user/assistant turns abort compaction."""
    messages = [StoredMessage.system("setup")] * 3 + conversation(6)
    await memory.append_messages("s1", messages)
    summarizer = StaticSummarizer()
    engine = CompactionEngine(memory, summarizer)

    result = await engine.compact_session("s1")

    assert result.success is False
    assert "Nothing to summarize" in result.message
    assert summarizer.transcripts == []


@pytest.mark.asyncio
async def test_concurrent_compactions_do_not_interleave(memory):
    """Test that the second compaction sees the first one's output."""
    await memory.append_messages("s1", conversation(10))
    engine = CompactionEngine(memory, StaticSummarizer())

    first, second = await asyncio.gather(
        engine.compact_session("s1"),
        engine.compact_session("chat-memory:s1"),
    )

    assert first.success is True
    assert second.success is False
    assert second.messages_before == 7
    assert len(await memory.get_messages("s1")) == 7


@pytest.mark.asyncio
async def test_can_compact(memory):
    engine = CompactionEngine(memory, StaticSummarizer())
    await memory.append_messages("s1", conversation(5))

    status = await engine.can_compact("s1")

    assert status.to_dict() == {
        "can_compact": False,
        "message_count": 5,
        "min_messages": 8,
        "missing_messages": 3,
    }
    await memory.append_messages("s1", conversation(3))
    assert (await engine.can_compact("s1")).can_compact is True


class GatedSummarizer(StaticSummarizer):
    """Blocks inside summarize() until released."""

    def __init__(self):
        super().__init__()
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def summarize(self, transcript):
        self.started.set()
        await self.release.wait()
        return await super().summarize(transcript)


@pytest.mark.asyncio
async def test_turns_appended_during_compaction_are_kept(memory):
    """Test that a chat turn stored mid-summarization survives the rewrite."""
    await memory.append_messages("s1", conversation(10))
    summarizer = GatedSummarizer()
    engine = CompactionEngine(memory, summarizer)

    task = asyncio.create_task(engine.compact_session("s1"))
    await summarizer.started.wait()
    await memory.append_messages("s1", [StoredMessage.user("new q"), StoredMessage.assistant("new a")])
    summarizer.release.set()
    result = await task

    stored = await memory.get_messages("s1")
    assert result.success is True
    assert result.messages_after == 9
    assert stored[0].role == MessageRole.SUMMARY
    assert [m.text for m in stored[1:]] == [m.text for m in conversation(10)[4:]] + ["new q", "new a"]


@pytest.mark.asyncio
async def test_session_deleted_during_compaction_is_not_recreated(memory):
    await memory.append_messages("s1", conversation(10))
    summarizer = GatedSummarizer()
    engine = CompactionEngine(memory, summarizer)

    task = asyncio.create_task(engine.compact_session("s1"))
    await summarizer.started.wait()
    await memory.delete_messages("s1")
    summarizer.release.set()
    result = await task

    assert result.success is False
    assert result.error == "session changed during compaction"
    assert await memory.get_messages("s1") == []


@pytest.mark.asyncio
async def test_session_locks_are_released(memory):
    """Test that no per-session lock outlives its compaction."""
    engine = CompactionEngine(memory, StaticSummarizer())
    for session_id in ("a", "b", "c"):
        await memory.append_messages(session_id, conversation(10))

    await asyncio.gather(*[engine.compact_session(s) for s in ("a", "b", "c", "a")])

    assert len(engine._locks) == 0
    assert len(memory._write_locks) == 0
