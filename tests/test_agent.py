"""
Tests for agent module.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from mcp_chat_agent.agent.core import ChatAgent, history_to_llm_messages, new_ephemeral_session_id
from mcp_chat_agent.config import Settings
from mcp_chat_agent.llm.base import LLMMessage, LLMResponse, ToolCall
from mcp_chat_agent.memory import MessageRole, StoredMessage
from mcp_chat_agent.tools import (
    CapabilityCache,
    DynamicToolProvider,
    RequestCorrelationTracker,
    ToolCallStatus,
    ToolRegistry,
)

from conftest import FakeBackends, backend


def _agent(memory, llm, backends=None, **settings):
    registry = ToolRegistry(backends or FakeBackends())
    provider = DynamicToolProvider(registry, CapabilityCache(registry), RequestCorrelationTracker())
    return ChatAgent(llm=llm, memory=memory, tool_provider=provider, settings=Settings(**settings))


def _llm(*responses):
    llm = MagicMock()
    llm.model = "test-model"
    llm.generate = AsyncMock(side_effect=list(responses))
    return llm


def test_ephemeral_session_id():
    session_id = new_ephemeral_session_id()
    assert session_id.startswith("temp-")
    assert session_id != new_ephemeral_session_id()


def test_history_summary_becomes_system_context():
    """Test that summaries are handed to the model as system messages."""
    messages = history_to_llm_messages([
        StoredMessage.summary("Earlier: user set up nginx"),
        StoredMessage.user("and now?"),
        StoredMessage.assistant("restart it"),
    ])

    assert [m.role for m in messages] == ["system", "user", "assistant"]
    assert messages[0].content == "Earlier: user set up nginx"


@pytest.mark.asyncio
async def test_process_message_simple(memory):
    """Test a turn without tools."""
    llm = _llm(LLMResponse(content="Hello! How can I help?"))
    agent = _agent(memory, llm)

    result = await agent.process_message("Hi", session_id="s1")

    assert result.response == "Hello! How can I help?"
    assert result.session_id == "s1"
    assert result.request_id
    stored = await memory.get_messages("s1")
    assert [(m.role, m.text) for m in stored] == [
        (MessageRole.USER, "Hi"),
        (MessageRole.ASSISTANT, "Hello! How can I help?"),
    ]
    assert llm.generate.call_args.kwargs["tools"] is None


@pytest.mark.asyncio
async def test_process_message_without_session_uses_ephemeral_id(memory):
    agent = _agent(memory, _llm(LLMResponse(content="ok")))

    result = await agent.process_message("Hi")

    assert result.session_id.startswith("temp-")
    assert len(await memory.get_messages(result.session_id)) == 2


@pytest.mark.asyncio
async def test_process_message_includes_history(memory):
    await memory.append_messages("s1", [StoredMessage.summary("context"), StoredMessage.user("before")])
    llm = _llm(LLMResponse(content="ok"))
    agent = _agent(memory, llm)

    await agent.process_message("now", session_id="s1")

    sent = llm.generate.call_args.kwargs["messages"]
    assert [(m.role, m.content) for m in sent] == [
        ("system", "context"),
        ("user", "before"),
        ("user", "now"),
    ]


@pytest.mark.asyncio
async def test_process_message_with_tool_call(memory):
    """Test that tool calls run under the turn's request id."""
    llm = _llm(
        LLMResponse(
            content="",
            tool_calls=[ToolCall(id="call_1", name="search", arguments={"q": "python"})],
        ),
        LLMResponse(content="Python 3.13 is the latest release."),
    )
    backends = FakeBackends(alpha={"tools": ["search"], "results": {"search": "3.13"}})
    agent = _agent(memory, llm, backends)
    await agent.tool_provider.add_backend(backend("alpha"))

    result = await agent.process_message("latest python?", session_id="s1", use_tools=True, request_id="req-9")

    assert result.response == "Python 3.13 is the latest release."
    assert result.request_id == "req-9"
    assert [d.name for d in llm.generate.call_args_list[0].kwargs["tools"]] == ["search"]
    tool_message = llm.generate.call_args_list[1].kwargs["messages"][-1]
    assert tool_message.role == "tool"
    assert tool_message.content == "3.13"
    assert tool_message.tool_call_id == "call_1"

    events = agent.tool_provider.tracker.get_events("req-9")
    assert [e.status for e in events] == [ToolCallStatus.CALLING, ToolCallStatus.COMPLETED]
    assert not agent.tool_provider.tracker.is_active("req-9")
    assert len(await memory.get_messages("s1")) == 2


@pytest.mark.asyncio
async def test_use_tools_without_backends_offers_none(memory):
    llm = _llm(LLMResponse(content="ok"))
    agent = _agent(memory, llm)

    await agent.process_message("Hi", session_id="s1", use_tools=True)

    assert llm.generate.call_args.kwargs["tools"] is None


@pytest.mark.asyncio
async def test_tool_iterations_are_bounded(memory):
    """Test that a model that keeps calling tools is cut off."""
    call = LLMResponse(content="still working", tool_calls=[ToolCall(id="c", name="search", arguments={})])
    llm = _llm(*[call] * 3)
    agent = _agent(memory, llm, FakeBackends(alpha={"tools": ["search"]}), max_tool_iterations=3)
    await agent.tool_provider.add_backend(backend("alpha"))

    result = await agent.process_message("loop", session_id="s1", use_tools=True)

    assert llm.generate.await_count == 3
    assert result.response.startswith("still working")
    assert "maximum number of tool iterations" in result.response


@pytest.mark.asyncio
async def test_llm_error_is_reported_but_not_stored(memory):
    """Test that a provider failure is answered but kept out of history."""
    await memory.append_messages("s1", [StoredMessage.user("before"), StoredMessage.assistant("ok")])
    llm = MagicMock()
    llm.generate = AsyncMock(side_effect=RuntimeError("provider down"))
    agent = _agent(memory, llm)

    result = await agent.process_message("Hi", session_id="s1")

    assert "provider down" in result.response
    assert result.session_id == "s1"
    assert [m.text for m in await memory.get_messages("s1")] == ["before", "ok"]


def test_llm_response_wants_tools():
    assert LLMResponse(content="done").wants_tools is False
    call = ToolCall(id="c", name="search", arguments={})
    assert LLMResponse(content="", tool_calls=[call]).wants_tools is True


def test_llm_message_defaults():
    message = LLMMessage(role="user", content="hi")
    assert message.tool_calls is None
    assert message.tool_call_id is None
    assert message.name is None


@pytest.mark.asyncio
async def test_empty_message_rejected(memory):
    agent = _agent(memory, _llm())

    with pytest.raises(ValueError):
        await agent.process_message("   ", session_id="s1")
