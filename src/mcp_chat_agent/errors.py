"""
Exception hierarchy for MCP-Chat-Agent.

Every error carries a machine-readable code so API handlers can map
kinds to responses without string matching.
"""

from typing import Any


class AgentRuntimeError(Exception):
    """Base exception for all runtime errors."""

    error_code: str = "AGENT_RUNTIME_ERROR"

    def __init__(
        self,
        message: str,
        *,
        context: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.context = context or {}
        if cause is not None:
            self.__cause__ = cause

    def to_dict(self) -> dict[str, Any]:
        """Serialize for API responses."""
        return {
            "error": self.error_code,
            "message": self.message,
        }


class BackendConnectionError(AgentRuntimeError):
    """A tool backend could not be reached or is misconfigured."""

    error_code = "CONNECTION_ERROR"


class ToolNotFoundError(AgentRuntimeError):
    """No registered backend advertises the requested tool."""

    error_code = "TOOL_NOT_FOUND"

    def __init__(self, tool_name: str):
        super().__init__(f"Tool not found: {tool_name}", context={"tool_name": tool_name})
        self.tool_name = tool_name


class ToolExecutionError(AgentRuntimeError):
    """Every backend advertising the tool failed to execute it."""

    error_code = "TOOL_EXECUTION_ERROR"

    def __init__(self, tool_name: str, cause: BaseException | None = None):
        detail = f": {cause}" if cause is not None else ""
        super().__init__(
            f"Error executing tool '{tool_name}'{detail}",
            context={"tool_name": tool_name},
            cause=cause,
        )
        self.tool_name = tool_name


class SummarizationError(AgentRuntimeError):
    """The summarization model failed or timed out."""

    error_code = "SUMMARIZATION_FAILURE"


class MessageDeserializationError(AgentRuntimeError):
    """A stored message entry could not be decoded."""

    error_code = "DESERIALIZATION_ERROR"


class ToolCallError(AgentRuntimeError):
    """A single backend reported failure for one tool call."""

    error_code = "TOOL_CALL_ERROR"
