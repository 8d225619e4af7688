"""
Live connections to MCP tool servers.

Each connection owns one MCP client session. The session's transport
context managers are entered and exited by a dedicated runner task,
because the anyio cancel scopes behind the MCP transports must be
closed by the task that opened them.
"""

import asyncio
import json
import shlex
from abc import ABC, abstractmethod
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any, AsyncIterator, Callable

import structlog
from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client
from mcp.client.streamable_http import streamablehttp_client

from ..errors import BackendConnectionError, ToolCallError
from .base import ToolBackendConfig, ToolExecutionRequest, ToolSpecification, TransportKind

logger = structlog.get_logger()


class ToolBackendConnection(ABC):
    """One live connection to a remote tool-execution server."""

    def __init__(self, config: ToolBackendConfig):
        self.config = config

    @property
    def name(self) -> str:
        return self.config.name

    @abstractmethod
    async def connect(self) -> None:
        """Open the connection; raise BackendConnectionError on failure."""
        pass

    @abstractmethod
    async def list_tools(self) -> list[ToolSpecification]:
        """Get the tools this backend advertises."""
        pass

    @abstractmethod
    async def execute(self, request: ToolExecutionRequest) -> str:
        """Run a tool and return its text result."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release the connection."""
        pass


ConnectionFactory = Callable[[ToolBackendConfig], ToolBackendConnection]


def _render_content(result: Any) -> str:
    """Flatten an MCP CallToolResult into text."""
    parts = []
    for item in result.content or []:
        text = getattr(item, "text", None)
        if text is not None:
            parts.append(text)
        elif hasattr(item, "model_dump_json"):
            parts.append(item.model_dump_json())
        else:
            parts.append(str(item))
    if not parts and getattr(result, "structuredContent", None):
        parts.append(json.dumps(result.structuredContent))
    return "\n".join(parts)


class McpBackendConnection(ToolBackendConnection):
    """MCP client connection over stdio (subprocess) or streamable HTTP."""

    def __init__(
        self,
        config: ToolBackendConfig,
        connect_timeout: float = 30.0,
        call_timeout: float = 60.0,
    ):
        super().__init__(config)
        self.connect_timeout = connect_timeout
        self.call_timeout = call_timeout
        self._session: ClientSession | None = None
        self._runner: asyncio.Task | None = None
        self._ready = asyncio.Event()
        self._shutdown = asyncio.Event()
        self._startup_error: BaseException | None = None

    @asynccontextmanager
    async def _open_transport(self) -> AsyncIterator[tuple[Any, Any]]:
        if self.config.transport_kind is TransportKind.PROCESS_STDIO:
            argv = shlex.split(self.config.endpoint)
            params = StdioServerParameters(command=argv[0], args=argv[1:])
            async with stdio_client(params) as (read, write):
                yield read, write
        else:
            async with streamablehttp_client(self.config.endpoint) as (read, write, _):
                yield read, write

    async def _run(self) -> None:
        try:
            async with AsyncExitStack() as stack:
                read, write = await stack.enter_async_context(self._open_transport())
                session = await stack.enter_async_context(ClientSession(read, write))
                await session.initialize()
                self._session = session
                self._ready.set()
                await self._shutdown.wait()
        except Exception as e:
            if not self._ready.is_set():
                self._startup_error = e
            else:
                logger.warning("MCP backend connection dropped", backend=self.name, error=str(e))
        finally:
            self._session = None
            self._ready.set()

    async def connect(self) -> None:
        self._runner = asyncio.create_task(self._run(), name=f"mcp-backend-{self.name}")
        try:
            await asyncio.wait_for(self._ready.wait(), timeout=self.connect_timeout)
        except asyncio.TimeoutError:
            await self._abort()
            raise BackendConnectionError(
                f"Timed out connecting to MCP server {self.name}",
                context={"backend": self.name},
            ) from None

        if self._startup_error is not None:
            error = self._startup_error
            await self._abort()
            raise BackendConnectionError(
                f"Failed to connect to MCP server {self.name}: {error}",
                context={"backend": self.name},
                cause=error,
            )
        logger.info(
            "MCP backend connected",
            backend=self.name,
            transport=self.config.transport_kind.value,
        )

    def _require_session(self) -> ClientSession:
        if self._session is None:
            raise ToolCallError(f"MCP server {self.name} is not connected", context={"backend": self.name})
        return self._session

    async def list_tools(self) -> list[ToolSpecification]:
        session = self._require_session()
        result = await asyncio.wait_for(session.list_tools(), timeout=self.call_timeout)
        tools = list(result.tools)
        while getattr(result, "nextCursor", None):
            result = await asyncio.wait_for(
                session.list_tools(cursor=result.nextCursor), timeout=self.call_timeout
            )
            tools.extend(result.tools)

        return [
            ToolSpecification(
                name=tool.name,
                description=tool.description or "",
                parameter_schema=tool.inputSchema or {"type": "object", "properties": {}},
                backend=self.name,
            )
            for tool in tools
        ]

    async def execute(self, request: ToolExecutionRequest) -> str:
        session = self._require_session()
        arguments = request.arguments_dict()
        if self.config.log_requests:
            logger.info("MCP tool request", backend=self.name, tool=request.tool_name, arguments=arguments)

        result = await asyncio.wait_for(
            session.call_tool(request.tool_name, arguments),
            timeout=self.call_timeout,
        )
        text = _render_content(result)

        if self.config.log_responses:
            logger.info("MCP tool response", backend=self.name, tool=request.tool_name, is_error=result.isError)

        if result.isError:
            raise ToolCallError(
                text or f"Tool '{request.tool_name}' reported an error",
                context={"backend": self.name, "tool_name": request.tool_name},
            )
        return text

    async def _abort(self) -> None:
        self._shutdown.set()
        runner, self._runner = self._runner, None
        if runner is not None and not runner.done():
            runner.cancel()
            await asyncio.gather(runner, return_exceptions=True)

    async def close(self) -> None:
        self._shutdown.set()
        runner, self._runner = self._runner, None
        if runner is None:
            return
        try:
            await asyncio.wait_for(runner, timeout=self.connect_timeout)
        except asyncio.TimeoutError:
            runner.cancel()
            raise


def mcp_connection_factory(connect_timeout: float = 30.0, call_timeout: float = 60.0) -> ConnectionFactory:
    """Build a factory producing MCP connections with the given timeouts."""

    def factory(config: ToolBackendConfig) -> ToolBackendConnection:
        if config.transport_kind is TransportKind.PROCESS_STDIO and not any(shlex.split(config.endpoint)):
            raise BackendConnectionError(f"Empty command line for MCP server {config.name}")
        return McpBackendConnection(config, connect_timeout=connect_timeout, call_timeout=call_timeout)

    return factory
