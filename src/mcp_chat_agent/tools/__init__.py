"""
Tools module: dynamic MCP backends and tool-call tracking.
"""

from .base import ToolBackendConfig, ToolExecutionRequest, ToolSpecification, TransportKind
from .cache import CapabilityCache
from .connection import McpBackendConnection, ToolBackendConnection, mcp_connection_factory
from .events import RequestContext, RequestCorrelationTracker, ToolCallStatus, ToolExecutionEvent
from .provider import DynamicToolProvider
from .registry import ToolRegistry

__all__ = [
    "ToolBackendConfig",
    "ToolExecutionRequest",
    "ToolSpecification",
    "TransportKind",
    "CapabilityCache",
    "McpBackendConnection",
    "ToolBackendConnection",
    "mcp_connection_factory",
    "RequestContext",
    "RequestCorrelationTracker",
    "ToolCallStatus",
    "ToolExecutionEvent",
    "DynamicToolProvider",
    "ToolRegistry",
]
