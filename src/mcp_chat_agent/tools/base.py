"""
Base types for remote tool backends.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class TransportKind(str, Enum):
    """How a backend is reached."""

    PROCESS_STDIO = "process-stdio"
    HTTP_STREAM = "http-stream"

    @classmethod
    def parse(cls, value: "str | TransportKind") -> "TransportKind":
        """Accept canonical names and the short aliases used by older clients."""
        if isinstance(value, TransportKind):
            return value
        aliases = {
            "stdio": cls.PROCESS_STDIO,
            "process-stdio": cls.PROCESS_STDIO,
            "http": cls.HTTP_STREAM,
            "http-stream": cls.HTTP_STREAM,
            "streamable-http": cls.HTTP_STREAM,
        }
        try:
            return aliases[value.strip().lower()]
        except KeyError:
            raise ValueError(f"Unknown transport kind: {value}") from None


@dataclass(frozen=True)
class ToolBackendConfig:
    """Registration record of one tool backend. Identity is the name."""

    name: str
    endpoint: str
    transport_kind: TransportKind = TransportKind.HTTP_STREAM
    log_requests: bool = False
    log_responses: bool = False

    def __post_init__(self):
        if not self.name or not self.name.strip():
            raise ValueError("backend name cannot be empty")
        if not self.endpoint or not self.endpoint.strip():
            raise ValueError("backend endpoint cannot be empty")
        object.__setattr__(self, "transport_kind", TransportKind.parse(self.transport_kind))

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "endpoint": self.endpoint,
            "transport_kind": self.transport_kind.value,
            "log_requests": self.log_requests,
            "log_responses": self.log_responses,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolBackendConfig":
        """Create from a dictionary; accepts the legacy url/transportType keys."""
        return cls(
            name=data["name"],
            endpoint=data.get("endpoint") or data.get("url", ""),
            transport_kind=data.get("transport_kind") or data.get("transportType") or "http-stream",
            log_requests=bool(data.get("log_requests", data.get("logRequests", False))),
            log_responses=bool(data.get("log_responses", data.get("logResponses", False))),
        )


@dataclass(frozen=True)
class ToolSpecification:
    """A tool as advertised by a backend."""

    name: str
    description: str = ""
    parameter_schema: dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})
    backend: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameter_schema,
            "backend": self.backend,
        }


@dataclass(frozen=True)
class ToolExecutionRequest:
    """A request to run a named tool with structured arguments."""

    tool_name: str
    arguments: dict[str, Any] | str | None = None

    def arguments_dict(self) -> dict[str, Any]:
        """Arguments as a dict; a JSON string payload is decoded."""
        if self.arguments is None or self.arguments == "":
            return {}
        if isinstance(self.arguments, dict):
            return self.arguments
        decoded = json.loads(self.arguments)
        if not isinstance(decoded, dict):
            raise ValueError("tool arguments must be a JSON object")
        return decoded
