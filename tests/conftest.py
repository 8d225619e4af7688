"""
Shared test doubles.
"""

import pytest

from mcp_chat_agent.errors import ToolCallError
from mcp_chat_agent.llm.summarizer import Summarizer
from mcp_chat_agent.memory import ConversationMemoryStore, InMemoryKeyValueStore, StoredMessage
from mcp_chat_agent.tools import ToolBackendConfig, ToolSpecification
from mcp_chat_agent.tools.connection import ToolBackendConnection


class FakeConnection(ToolBackendConnection):
    """In-process backend with scripted tools and outcomes."""

    def __init__(self, config, tools=(), results=None, fail_connect=False, fail_listing=False):
        super().__init__(config)
        self.tool_names = list(tools)
        self.results = results or {}
        self.fail_connect = fail_connect
        self.fail_listing = fail_listing
        self.connected = False
        self.closed = False
        self.list_calls = 0
        self.calls = []

    async def connect(self):
        if self.fail_connect:
            raise ConnectionError(f"cannot reach {self.config.endpoint}")
        self.connected = True

    async def list_tools(self):
        self.list_calls += 1
        if self.fail_listing:
            raise ConnectionError("listing failed")
        return [
            ToolSpecification(name=name, description=f"{name} on {self.name}", backend=self.name)
            for name in self.tool_names
        ]

    async def execute(self, request):
        self.calls.append(request)
        request.arguments_dict()
        outcome = self.results.get(request.tool_name, f"{self.name}:{request.tool_name}")
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def close(self):
        self.closed = True


class FakeBackends:
    """Connection factory that builds FakeConnections from per-name specs."""

    def __init__(self, **specs):
        self.specs = specs
        self.connections = {}

    def __call__(self, config):
        connection = FakeConnection(config, **self.specs.get(config.name, {}))
        self.connections.setdefault(config.name, []).append(connection)
        return connection

    def latest(self, name):
        return self.connections[name][-1]


class StaticSummarizer(Summarizer):
    def __init__(self, summary="summary of earlier turns", error=None):
        self.summary = summary
        self.error = error
        self.transcripts = []

    async def summarize(self, transcript):
        self.transcripts.append(transcript)
        if self.error:
            raise self.error
        return self.summary


def backend(name, endpoint=None, transport="http"):
    return ToolBackendConfig(name=name, endpoint=endpoint or f"http://{name}.local/mcp", transport_kind=transport)


def failing(message="backend failed"):
    return ToolCallError(message)


def conversation(turns):
    """Alternating user/assistant messages."""
    return [
        StoredMessage.user(f"question {i}") if i % 2 == 0 else StoredMessage.assistant(f"answer {i}")
        for i in range(turns)
    ]


@pytest.fixture
def memory():
    return ConversationMemoryStore(InMemoryKeyValueStore())
