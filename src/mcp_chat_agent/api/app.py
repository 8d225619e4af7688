"""
FastAPI application factory.

Manages the lifecycle of:
- Conversation memory store (Redis or in-memory)
- Dynamically registered MCP servers
- Compaction scheduler
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

import structlog
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, Field

from .. import __version__
from ..cli import configure_logging
from ..config import Settings, get_settings
from ..errors import (
    AgentRuntimeError,
    BackendConnectionError,
    SummarizationError,
    ToolExecutionError,
    ToolNotFoundError,
)
from ..memory import MessageRole
from ..runtime import AgentRuntime, build_runtime
from ..tools import ToolBackendConfig, ToolExecutionRequest

logger = structlog.get_logger()

ERROR_STATUS = {
    BackendConnectionError: 400,
    ToolNotFoundError: 404,
    ToolExecutionError: 502,
    SummarizationError: 502,
}


def _status_for(error: AgentRuntimeError) -> int:
    for kind, status in ERROR_STATUS.items():
        if isinstance(error, kind):
            return status
    return 500


class McpServerRequest(BaseModel):
    """MCP server registration request."""
    name: str
    endpoint: str = Field(validation_alias=AliasChoices("endpoint", "url"))
    transport_kind: str = Field(
        default="http-stream",
        validation_alias=AliasChoices("transport_kind", "transportType"),
    )
    log_requests: bool = Field(default=False, validation_alias=AliasChoices("log_requests", "logRequests"))
    log_responses: bool = Field(default=False, validation_alias=AliasChoices("log_responses", "logResponses"))


class ToolInvokeRequest(BaseModel):
    """Direct tool invocation request."""
    arguments: dict[str, Any] | str | None = None
    request_id: str | None = None


class ChatMessageRequest(BaseModel):
    """Chat turn request."""
    message: str
    session_id: str | None = Field(default=None, validation_alias=AliasChoices("session_id", "sessionId"))
    use_tools: bool = Field(default=False, validation_alias=AliasChoices("use_tools", "useTools"))
    request_id: str | None = Field(default=None, validation_alias=AliasChoices("request_id", "requestId"))


def get_runtime(request: Request) -> AgentRuntime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    return runtime


def create_app(settings: Settings | None = None, runtime: AgentRuntime | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Application settings (defaults to the cached environment settings)
        runtime: Prebuilt components; built from settings at startup when omitted
    """
    settings = settings or (runtime.settings if runtime else get_settings())
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler."""
        app.state.runtime = runtime or build_runtime(settings)
        await app.state.runtime.start()
        logger.info(
            "Application started",
            backends=len(app.state.runtime.registry.list_backends()),
            compaction_enabled=app.state.runtime.scheduler.is_enabled(),
        )

        yield

        await app.state.runtime.shutdown()
        app.state.runtime = None

    app = FastAPI(
        title=settings.app_name,
        description="Chat agent with dynamic MCP tools and compacted conversation memory",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(AgentRuntimeError)
    async def agent_error_handler(request: Request, exc: AgentRuntimeError):
        status = _status_for(exc)
        logger.warning("Request failed", path=request.url.path, error=exc.error_code, status=status)
        return JSONResponse(status_code=status, content=exc.to_dict())

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return JSONResponse(status_code=400, content={"error": "INVALID_REQUEST", "message": str(exc)})

    # ------------------------------------------------------------------ #
    # Health
    # ------------------------------------------------------------------ #
    @app.get("/api/health")
    async def health_check(rt: AgentRuntime = Depends(get_runtime)):
        """Health check endpoint."""
        return {
            "status": "healthy",
            "version": __version__,
            "memory_store": type(rt.store).__name__,
            "mcp_servers": len(rt.registry.list_backends()),
            "scheduler_running": rt.scheduler.status()["running"],
            "llm_configured": bool(
                rt.settings.anthropic_api_key
                or rt.settings.openai_api_key
                or rt.settings.openrouter_api_key
            ),
        }

    # ------------------------------------------------------------------ #
    # MCP servers and tools
    # ------------------------------------------------------------------ #
    @app.get("/api/mcp/servers")
    async def list_servers(rt: AgentRuntime = Depends(get_runtime)):
        """List registered MCP servers."""
        servers = rt.registry.list_backends()
        return {"servers": [s.to_dict() for s in servers], "count": len(servers)}

    @app.post("/api/mcp/servers")
    async def add_server(body: McpServerRequest, rt: AgentRuntime = Depends(get_runtime)):
        """Register (or replace) an MCP server."""
        config = ToolBackendConfig(
            name=body.name,
            endpoint=body.endpoint,
            transport_kind=body.transport_kind,
            log_requests=body.log_requests,
            log_responses=body.log_responses,
        )
        await rt.tool_provider.add_backend(config)
        return {"status": "added", "server": config.to_dict()}

    @app.delete("/api/mcp/servers/{name}")
    async def remove_server(name: str, rt: AgentRuntime = Depends(get_runtime)):
        """Unregister an MCP server."""
        removed = await rt.tool_provider.remove_backend(name)
        return {"name": name, "removed": removed}

    @app.get("/api/mcp/tools")
    async def list_tools(rt: AgentRuntime = Depends(get_runtime)):
        """List tools currently offered by the registered servers."""
        tools = await rt.tool_provider.available_tools()
        return [t.to_dict() for t in tools]

    @app.post("/api/mcp/tools/{tool_name}/invoke")
    async def invoke_tool(
        tool_name: str,
        body: ToolInvokeRequest | None = None,
        rt: AgentRuntime = Depends(get_runtime),
    ):
        """Run one tool directly, under its own correlation id."""
        body = body or ToolInvokeRequest()
        request = ToolExecutionRequest(tool_name=tool_name, arguments=body.arguments)
        with rt.tracker.request(body.request_id) as context:
            result = await rt.tool_provider.execute(request, context)
        return {"result": result, "request_id": context.correlation_id}

    @app.get("/api/mcp/events/{request_id}")
    async def get_events(request_id: str, rt: AgentRuntime = Depends(get_runtime)):
        """Tool-call timeline of one request."""
        events = rt.tracker.get_events(request_id)
        return {"request_id": request_id, "events": [e.to_dict() for e in events]}

    # ------------------------------------------------------------------ #
    # Chat and sessions
    # ------------------------------------------------------------------ #
    @app.post("/api/chat/message")
    async def chat_message(body: ChatMessageRequest, rt: AgentRuntime = Depends(get_runtime)):
        """Process one chat turn."""
        result = await rt.agent.process_message(
            body.message,
            session_id=body.session_id,
            use_tools=body.use_tools,
            request_id=body.request_id,
        )
        return result.to_dict()

    @app.get("/api/sessions/{session_id}/messages")
    async def get_session_messages(
        session_id: str,
        include_summary: bool = True,
        rt: AgentRuntime = Depends(get_runtime),
    ):
        """Stored history of a session."""
        messages = await rt.memory.get_messages(session_id)
        if not include_summary:
            messages = [m for m in messages if m.role != MessageRole.SUMMARY]
        return {
            "session_id": session_id,
            "messages": [m.to_dict() for m in messages],
            "count": len(messages),
        }

    @app.delete("/api/sessions/{session_id}")
    async def delete_session(session_id: str, rt: AgentRuntime = Depends(get_runtime)):
        """Forget a session."""
        await rt.memory.delete_messages(session_id)
        return {"session_id": session_id, "deleted": True}

    # ------------------------------------------------------------------ #
    # Compaction admin
    # ------------------------------------------------------------------ #
    @app.get("/admin/compaction/can-compact/{session_id}")
    async def can_compact(session_id: str, rt: AgentRuntime = Depends(get_runtime)):
        status = await rt.engine.can_compact(session_id)
        return {"session_id": session_id, **status.to_dict()}

    @app.post("/admin/compaction/session/{session_id}")
    async def compact_session(session_id: str, rt: AgentRuntime = Depends(get_runtime)):
        """Compact one session now."""
        result = await rt.engine.compact_session(session_id)
        return result.to_dict()

    @app.post("/admin/compaction")
    async def force_sweep(rt: AgentRuntime = Depends(get_runtime)):
        """Sweep every session now; returns a skipped report if a sweep is running."""
        report = await rt.scheduler.force_sweep()
        return report.to_dict()

    @app.post("/admin/compaction/enable")
    async def enable_compaction(rt: AgentRuntime = Depends(get_runtime)):
        rt.scheduler.set_enabled(True)
        return {"enabled": True}

    @app.post("/admin/compaction/disable")
    async def disable_compaction(rt: AgentRuntime = Depends(get_runtime)):
        rt.scheduler.set_enabled(False)
        return {"enabled": False}

    @app.get("/admin/compaction/status")
    async def compaction_status(rt: AgentRuntime = Depends(get_runtime)):
        return rt.scheduler.status()

    @app.get("/admin/compaction/sessions")
    async def compaction_sessions(rt: AgentRuntime = Depends(get_runtime)):
        """Stored sessions with their message counts and eligibility."""
        threshold = rt.engine.config.min_messages_to_compact
        sessions = await rt.memory.list_sessions()
        return {
            "sessions": [
                {
                    "session_id": s.session_id,
                    "message_count": s.message_count,
                    "ephemeral": rt.scheduler.is_ephemeral(s.session_id),
                    "can_compact": s.message_count >= threshold,
                }
                for s in sessions
            ],
            "count": len(sessions),
            "min_messages": threshold,
        }

    return app
