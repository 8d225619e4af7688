"""
Dynamic tool provider.

The single entry point a chat turn uses for MCP tools: which tools to offer
the model this turn, and how to run a tool call under the turn's request
context. Registration changes go through here so the cache never serves a
listing from before an add or remove.
"""

import structlog

from ..errors import AgentRuntimeError
from ..llm.base import ToolCall, ToolDefinition
from .base import ToolBackendConfig, ToolExecutionRequest, ToolSpecification
from .cache import CapabilityCache
from .events import RequestContext, RequestCorrelationTracker
from .registry import ToolRegistry

logger = structlog.get_logger()


class DynamicToolProvider:
    """Exposes the tools of dynamically registered MCP servers to the agent."""

    def __init__(
        self,
        registry: ToolRegistry,
        cache: CapabilityCache,
        tracker: RequestCorrelationTracker,
    ):
        self.registry = registry
        self.cache = cache
        self.tracker = tracker

    async def add_backend(self, config: ToolBackendConfig) -> None:
        await self.registry.add_backend(config)
        self.cache.invalidate()

    async def remove_backend(self, name: str) -> bool:
        removed = await self.registry.remove_backend(name)
        self.cache.invalidate()
        return removed

    async def available_tools(self) -> list[ToolSpecification]:
        """Tools to offer this turn; empty means no tool calling at all."""
        if not self.registry.has_backends():
            logger.debug("No dynamic MCP servers registered")
            return []

        tools = await self.cache.get_available_tools()
        if not tools:
            logger.debug("No MCP tools available on registered servers")
        return tools

    async def tool_definitions(self) -> list[ToolDefinition] | None:
        """Tool definitions for the LLM, or None when nothing is available."""
        tools = await self.available_tools()
        if not tools:
            return None
        logger.info("Offering dynamic MCP tools", tool_count=len(tools))
        return [ToolDefinition.from_specification(t) for t in tools]

    async def _run(self, request: ToolExecutionRequest, context: RequestContext | None) -> str:
        owners = await self.cache.owners_of(request.tool_name)
        return await self.registry.execute_tool(request, context, owners=owners or None)

    async def execute(self, request: ToolExecutionRequest, context: RequestContext | None = None) -> str:
        """Run a tool; errors propagate with their kind intact."""
        return await self._run(request, context)

    async def execute_tool_call(self, tool_call: ToolCall, context: RequestContext | None = None) -> str:
        """Run a model-issued tool call and render any failure as text for the model."""
        request = ToolExecutionRequest(tool_name=tool_call.name, arguments=tool_call.arguments)
        try:
            return await self._run(request, context)
        except AgentRuntimeError as e:
            logger.error("Error executing tool", tool=tool_call.name, error=e.message)
            return f"Error executing tool '{tool_call.name}': {e.message}"
