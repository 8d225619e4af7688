"""
Registry of remote tool backends.

Tool names are not unique across backends. Backends advertising the same
name are treated as redundant providers: execution tries them in
registration order until one succeeds.
"""

import asyncio

import structlog

from ..errors import BackendConnectionError, ToolExecutionError, ToolNotFoundError
from .base import ToolBackendConfig, ToolExecutionRequest, ToolSpecification
from .connection import ConnectionFactory, ToolBackendConnection, mcp_connection_factory
from .events import RequestContext, ToolCallStatus

logger = structlog.get_logger()


class ToolRegistry:
    """Owns the live backend connections and routes tool calls to them."""

    def __init__(self, connection_factory: ConnectionFactory | None = None):
        self._connection_factory = connection_factory or mcp_connection_factory()
        self._backends: dict[str, ToolBackendConnection] = {}
        self._lock = asyncio.Lock()

    def _snapshot(self) -> list[tuple[str, ToolBackendConnection]]:
        return list(self._backends.items())

    async def add_backend(self, config: ToolBackendConfig) -> None:
        """Connect and register a backend. Nothing is registered on failure."""
        try:
            connection = self._connection_factory(config)
            await connection.connect()
        except BackendConnectionError as e:
            logger.error("Failed to add MCP server", backend=config.name, error=str(e))
            raise
        except Exception as e:
            logger.error("Failed to add MCP server", backend=config.name, error=str(e))
            raise BackendConnectionError(
                f"Failed to connect to MCP server {config.name}: {e}",
                context={"backend": config.name},
                cause=e,
            ) from e

        async with self._lock:
            previous = self._backends.pop(config.name, None)
            self._backends[config.name] = connection

        if previous is not None:
            await self._close_quietly(previous)
            logger.info("MCP server replaced", backend=config.name)
        else:
            logger.info("MCP server added", backend=config.name)

    async def remove_backend(self, name: str) -> bool:
        """Unregister and close a backend. Close errors are only logged."""
        async with self._lock:
            connection = self._backends.pop(name, None)

        if connection is None:
            return False

        await self._close_quietly(connection)
        logger.info("MCP server removed", backend=name)
        return True

    async def _close_quietly(self, connection: ToolBackendConnection) -> None:
        try:
            await connection.close()
        except Exception as e:
            logger.error("Error closing MCP client", backend=connection.name, error=str(e))

    def list_backends(self) -> list[ToolBackendConfig]:
        """Snapshot of registered backend configs, in registration order."""
        return [connection.config for _, connection in self._snapshot()]

    def has_backends(self) -> bool:
        return bool(self._backends)

    async def list_all_tools(self) -> list[ToolSpecification]:
        """Tools of every live backend; backends that fail to answer are skipped."""
        all_tools: list[ToolSpecification] = []
        for name, connection in self._snapshot():
            try:
                all_tools.extend(await connection.list_tools())
            except Exception as e:
                logger.error("Error listing tools for backend", backend=name, error=str(e))
        return all_tools

    async def _advertises(self, name: str, connection: ToolBackendConnection, tool_name: str) -> bool:
        try:
            tools = await connection.list_tools()
        except Exception as e:
            logger.error("Error checking tools on backend", backend=name, error=str(e))
            return False
        return any(tool.name == tool_name for tool in tools)

    async def execute_tool(
        self,
        request: ToolExecutionRequest,
        context: RequestContext | None = None,
        owners: list[str] | None = None,
    ) -> str:
        """Execute a tool on the first advertising backend that succeeds.

        When `owners` is given (backend names from a recent listing), only
        those backends are tried and none is asked for its tool list first.
        """
        tool_name = request.tool_name
        advertised = False
        last_error: BaseException | None = None

        for name, connection in self._snapshot():
            if owners is not None:
                if name not in owners:
                    continue
            elif not await self._advertises(name, connection, tool_name):
                continue

            advertised = True
            if context is not None:
                context.record(tool_name, ToolCallStatus.CALLING, backend=name)

            try:
                result = await connection.execute(request)
            except Exception as e:
                last_error = e
                logger.warning(
                    "Tool execution failed, trying next backend",
                    tool=tool_name,
                    backend=name,
                    error=str(e),
                )
                if context is not None:
                    context.record(tool_name, ToolCallStatus.ERROR, backend=name, error=str(e))
                continue

            if context is not None:
                context.record(tool_name, ToolCallStatus.COMPLETED, backend=name)
            return result

        if not advertised:
            if context is not None:
                context.record(tool_name, ToolCallStatus.ERROR, error="tool not found")
            raise ToolNotFoundError(tool_name)

        raise ToolExecutionError(tool_name, cause=last_error)

    async def close(self) -> None:
        """Close every backend (application shutdown)."""
        async with self._lock:
            connections = list(self._backends.values())
            self._backends.clear()
        for connection in connections:
            await self._close_quietly(connection)
