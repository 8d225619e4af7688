"""
Tests for the HTTP API.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from mcp_chat_agent.agent import ChatAgent, CompactionEngine
from mcp_chat_agent.api import create_app
from mcp_chat_agent.config import Settings
from mcp_chat_agent.llm.base import LLMResponse, ToolCall
from mcp_chat_agent.memory import ConversationMemoryStore, InMemoryKeyValueStore
from mcp_chat_agent.runtime import AgentRuntime
from mcp_chat_agent.scheduler import CompactionScheduler
from mcp_chat_agent.tools import CapabilityCache, DynamicToolProvider, RequestCorrelationTracker, ToolRegistry

from conftest import FakeBackends, StaticSummarizer, conversation, failing


def _runtime(backends, llm):
    settings = Settings(_env_file=None, mcp_servers="")
    store = InMemoryKeyValueStore()
    memory = ConversationMemoryStore(store)
    engine = CompactionEngine(memory, StaticSummarizer("condensed"))
    scheduler = CompactionScheduler(engine, memory, initial_delay_seconds=3600)
    registry = ToolRegistry(backends)
    tracker = RequestCorrelationTracker()
    provider = DynamicToolProvider(registry, CapabilityCache(registry), tracker)
    agent = ChatAgent(llm=llm, memory=memory, tool_provider=provider, settings=settings)
    return AgentRuntime(
        settings=settings,
        store=store,
        memory=memory,
        engine=engine,
        scheduler=scheduler,
        registry=registry,
        tracker=tracker,
        tool_provider=provider,
        agent=agent,
    )


@pytest.fixture
def llm():
    llm = MagicMock()
    llm.model = "test-model"
    llm.generate = AsyncMock(return_value=LLMResponse(content="Hello from the model"))
    return llm


@pytest.fixture
def backends():
    return FakeBackends(
        alpha={"tools": ["search"], "results": {"search": failing("alpha down")}},
        beta={"tools": ["search", "calc"], "results": {"search": "found it", "calc": "42"}},
        broken={"fail_connect": True},
    )


@pytest.fixture
def runtime(backends, llm):
    return _runtime(backends, llm)


@pytest.fixture
def client(runtime):
    with TestClient(create_app(runtime=runtime)) as client:
        yield client


def _add(client, name, **extra):
    return client.post("/api/mcp/servers", json={"name": name, "url": f"http://{name}/mcp", **extra})


def test_health(client):
    response = client.get("/api/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["memory_store"] == "InMemoryKeyValueStore"
    assert data["scheduler_running"] is True


def test_server_registration_lifecycle(client):
    """Test adding, listing and removing MCP servers."""
    response = _add(client, "alpha", transportType="http")
    assert response.status_code == 200
    assert response.json()["server"]["transport_kind"] == "http-stream"

    servers = client.get("/api/mcp/servers").json()
    assert [s["name"] for s in servers["servers"]] == ["alpha"]

    assert client.delete("/api/mcp/servers/alpha").json() == {"name": "alpha", "removed": True}
    assert client.delete("/api/mcp/servers/alpha").json()["removed"] is False
    assert client.get("/api/mcp/servers").json()["count"] == 0


def test_add_unreachable_server_is_400(client):
    response = _add(client, "broken")

    assert response.status_code == 400
    assert response.json()["error"] == "CONNECTION_ERROR"
    assert client.get("/api/mcp/servers").json()["count"] == 0


def test_add_server_with_bad_transport_is_400(client):
    response = _add(client, "alpha", transportType="smoke-signals")

    assert response.status_code == 400


def test_list_tools(client):
    _add(client, "beta")

    tools = client.get("/api/mcp/tools").json()

    assert {t["name"] for t in tools} == {"search", "calc"}
    assert all(t["backend"] == "beta" for t in tools)


def test_invoke_tool_with_fallback_and_events(client):
    """Test direct invocation and the resulting event timeline."""
    _add(client, "alpha")
    _add(client, "beta")

    response = client.post(
        "/api/mcp/tools/search/invoke",
        json={"arguments": {"q": "x"}, "request_id": "req-1"},
    )

    assert response.status_code == 200
    assert response.json() == {"result": "found it", "request_id": "req-1"}

    events = client.get("/api/mcp/events/req-1").json()["events"]
    assert [(e["backend"], e["status"]) for e in events] == [
        ("alpha", "calling"),
        ("alpha", "error"),
        ("beta", "calling"),
        ("beta", "completed"),
    ]


def test_invoke_unknown_tool_is_404(client):
    _add(client, "beta")

    response = client.post("/api/mcp/tools/nope/invoke", json={})

    assert response.status_code == 404
    assert response.json() == {"error": "TOOL_NOT_FOUND", "message": "Tool not found: nope"}


def test_invoke_failing_tool_is_502(client):
    _add(client, "alpha")

    response = client.post("/api/mcp/tools/search/invoke", json={"arguments": {}})

    assert response.status_code == 502
    assert response.json()["error"] == "TOOL_EXECUTION_ERROR"


def test_events_for_unknown_request(client):
    assert client.get("/api/mcp/events/unknown").json() == {"request_id": "unknown", "events": []}


def test_chat_message_and_session_history(client):
    """Test a chat turn and reading back its stored messages."""
    response = client.post("/api/chat/message", json={"message": "Hi", "sessionId": "s1"})

    assert response.status_code == 200
    data = response.json()
    assert data["response"] == "Hello from the model"
    assert data["session_id"] == "s1"
    assert data["request_id"]

    history = client.get("/api/sessions/s1/messages").json()
    assert [m["role"] for m in history["messages"]] == ["user", "assistant"]

    assert client.delete("/api/sessions/s1").json()["deleted"] is True
    assert client.get("/api/sessions/s1/messages").json()["count"] == 0


def test_chat_message_with_tools(client, llm):
    _add(client, "beta")
    llm.generate = AsyncMock(side_effect=[
        LLMResponse(content="", tool_calls=[ToolCall(id="c1", name="calc", arguments={})]),
        LLMResponse(content="The answer is 42"),
    ])

    data = client.post(
        "/api/chat/message",
        json={"message": "compute", "session_id": "s1", "use_tools": True},
    ).json()

    assert data["response"] == "The answer is 42"
    events = client.get(f"/api/mcp/events/{data['request_id']}").json()["events"]
    assert [e["status"] for e in events] == ["calling", "completed"]


def test_session_messages_can_hide_summary(client, runtime):
    """Test the include_summary filter after a compaction."""
    client.portal.call(runtime.memory.append_messages, "s1", conversation(10))

    result = client.post("/admin/compaction/session/s1").json()
    assert result["success"] is True
    assert result["messages_after"] == 7

    with_summary = client.get("/api/sessions/s1/messages").json()
    without = client.get("/api/sessions/s1/messages", params={"include_summary": "false"}).json()
    assert with_summary["messages"][0]["role"] == "summary"
    assert without["count"] == 6


def test_can_compact_endpoint(client, runtime):
    client.portal.call(runtime.memory.append_messages, "s1", conversation(5))

    data = client.get("/admin/compaction/can-compact/s1").json()

    assert data == {
        "session_id": "s1",
        "can_compact": False,
        "message_count": 5,
        "min_messages": 8,
        "missing_messages": 3,
    }


def test_forced_sweep_and_status(client, runtime):
    """Test admin sweep, enable/disable and status."""
    client.portal.call(runtime.memory.append_messages, "long", conversation(10))
    client.portal.call(runtime.memory.append_messages, "temp-1-x", conversation(10))

    sessions = client.get("/admin/compaction/sessions").json()["sessions"]
    assert [(s["session_id"], s["ephemeral"], s["can_compact"]) for s in sessions] == [
        ("long", False, True),
        ("temp-1-x", True, True),
    ]

    report = client.post("/admin/compaction").json()
    assert report["sessions_compacted"] == 1
    assert report["skipped"] is False

    assert client.post("/admin/compaction/disable").json() == {"enabled": False}
    status = client.get("/admin/compaction/status").json()
    assert status["enabled"] is False
    assert status["last_report"]["sessions_compacted"] == 1

    assert client.post("/admin/compaction/enable").json() == {"enabled": True}
