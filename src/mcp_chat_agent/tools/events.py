"""
Tool-call event tracking per logical chat request.

A chat request opens a RequestContext before any tool may run. The context
is handed down explicitly to every call that can invoke a tool, so events
land on the right timeline whether the call path hops tasks or threads.
"""

import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Iterator

import structlog

logger = structlog.get_logger()

DEFAULT_RETENTION_SECONDS = 300.0


class ToolCallStatus(str, Enum):
    """Lifecycle status of a tool execution."""
    CALLING = "calling"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass(frozen=True)
class ToolExecutionEvent:
    """One point on a request's tool-call timeline."""

    request_id: str
    tool_name: str
    status: ToolCallStatus
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    backend: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "request_id": self.request_id,
            "tool_name": self.tool_name,
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.backend:
            data["backend"] = self.backend
        if self.error:
            data["error"] = self.error
        return data


@dataclass(frozen=True)
class RequestContext:
    """Correlation scope of one logical chat request."""

    correlation_id: str
    tracker: "RequestCorrelationTracker | None" = None

    def record(
        self,
        tool_name: str,
        status: ToolCallStatus,
        backend: str | None = None,
        error: str | None = None,
    ) -> None:
        if self.tracker is not None:
            self.tracker.record(self.correlation_id, tool_name, status, backend=backend, error=error)


class RequestCorrelationTracker:
    """Keeps the tool-call timelines of recent chat requests."""

    def __init__(
        self,
        retention_seconds: float = DEFAULT_RETENTION_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.retention_seconds = retention_seconds
        self._clock = clock
        self._events: dict[str, list[ToolExecutionEvent]] = {}
        self._active: set[str] = set()
        self._lock = threading.Lock()

    def begin_request(self, request_id: str | None = None) -> RequestContext:
        """Open a correlation scope; prunes expired timelines first."""
        self.prune()
        request_id = request_id or str(uuid.uuid4())
        with self._lock:
            self._active.add(request_id)
        return RequestContext(correlation_id=request_id, tracker=self)

    def end_request(self, context: RequestContext) -> None:
        """Close a scope. Its events stay readable until pruned."""
        with self._lock:
            self._active.discard(context.correlation_id)

    @contextmanager
    def request(self, request_id: str | None = None) -> Iterator[RequestContext]:
        """Scope a block of work to one correlation id."""
        context = self.begin_request(request_id)
        try:
            yield context
        finally:
            self.end_request(context)

    def is_active(self, request_id: str) -> bool:
        with self._lock:
            return request_id in self._active

    def record(
        self,
        request_id: str | None,
        tool_name: str,
        status: ToolCallStatus,
        backend: str | None = None,
        error: str | None = None,
    ) -> ToolExecutionEvent | None:
        """Append an event to a request's timeline. No id means nothing to record."""
        if not request_id:
            return None

        event = ToolExecutionEvent(
            request_id=request_id,
            tool_name=tool_name,
            status=status,
            timestamp=datetime.fromtimestamp(self._clock(), tz=timezone.utc),
            backend=backend,
            error=error,
        )
        with self._lock:
            self._events.setdefault(request_id, []).append(event)

        logger.info(
            "Tool call event",
            request_id=request_id,
            tool=tool_name,
            status=status.value,
            backend=backend,
        )
        return event

    def get_events(self, request_id: str) -> list[ToolExecutionEvent]:
        """Get a copy of the timeline for one request (empty if unknown)."""
        with self._lock:
            return list(self._events.get(request_id, ()))

    def prune(self) -> int:
        """Drop timelines whose first event is older than the retention window."""
        cutoff = self._clock() - self.retention_seconds
        with self._lock:
            expired = [
                request_id
                for request_id, events in self._events.items()
                if not events or events[0].timestamp.timestamp() < cutoff
            ]
            for request_id in expired:
                del self._events[request_id]

        if expired:
            logger.debug("Pruned tool call timelines", count=len(expired))
        return len(expired)
