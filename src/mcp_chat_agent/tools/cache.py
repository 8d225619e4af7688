"""
TTL cache of the tools advertised by all backends.
"""

import asyncio
import time
from typing import Callable

import structlog

from .base import ToolSpecification
from .registry import ToolRegistry

logger = structlog.get_logger()

DEFAULT_TTL_SECONDS = 30.0


class CapabilityCache:
    """Snapshot of tool name -> specification, refreshed at most once per TTL.

    Refresh is single-flight: concurrent callers that find the snapshot stale
    queue on one lock, and all but the first see it fresh on the re-check.
    An invalidate() that lands while a refresh is running leaves the snapshot
    stale, since the listing may predate the change.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.registry = registry
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._tools: dict[str, ToolSpecification] = {}
        self._owners: dict[str, list[str]] = {}
        self._last_refresh: float | None = None
        self._generation = 0
        self._refresh_lock = asyncio.Lock()

    def _is_stale(self) -> bool:
        if self._last_refresh is None:
            return True
        return self._clock() - self._last_refresh > self.ttl_seconds

    async def _ensure_fresh(self) -> None:
        if self._is_stale():
            async with self._refresh_lock:
                if self._is_stale():
                    await self._refresh()

    async def get_available_tools(self) -> list[ToolSpecification]:
        """Cached tool specifications; empty when no backend offers any."""
        await self._ensure_fresh()
        return list(self._tools.values())

    async def owners_of(self, tool_name: str) -> list[str]:
        """Backends advertising a tool in the cached listing, in registration order."""
        await self._ensure_fresh()
        return list(self._owners.get(tool_name, ()))

    async def _refresh(self) -> None:
        generation = self._generation
        tools = await self.registry.list_all_tools()
        snapshot: dict[str, ToolSpecification] = {}
        owners: dict[str, list[str]] = {}
        for tool in tools:
            snapshot[tool.name] = tool
            if tool.backend and tool.backend not in owners.setdefault(tool.name, []):
                owners[tool.name].append(tool.backend)
        self._tools = snapshot
        self._owners = owners
        if generation == self._generation:
            self._last_refresh = self._clock()
        logger.debug("Tool cache refreshed", tool_count=len(snapshot))

    def invalidate(self) -> None:
        """Force the next lookup to refresh regardless of TTL."""
        self._generation += 1
        self._last_refresh = None
        logger.debug("Tool cache invalidated")
