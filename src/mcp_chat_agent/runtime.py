"""
Runtime wiring.

Builds every long-lived component from Settings once, so the HTTP app and the
CLI share the same construction and shutdown order.
"""

from dataclasses import dataclass

import structlog

from .agent import ChatAgent, CompactionConfig, CompactionEngine
from .config import Settings, get_settings
from .errors import BackendConnectionError
from .llm import LLMSummarizer, create_llm, create_summary_llm
from .memory import ConversationMemoryStore, KeyValueStore, create_store
from .scheduler import CompactionScheduler
from .tools import (
    CapabilityCache,
    DynamicToolProvider,
    RequestCorrelationTracker,
    ToolBackendConfig,
    ToolRegistry,
    mcp_connection_factory,
)

logger = structlog.get_logger()


@dataclass
class AgentRuntime:
    """Every long-lived component of a running service."""

    settings: Settings
    store: KeyValueStore
    memory: ConversationMemoryStore
    engine: CompactionEngine
    scheduler: CompactionScheduler
    registry: ToolRegistry
    tracker: RequestCorrelationTracker
    tool_provider: DynamicToolProvider
    agent: ChatAgent

    async def register_startup_backends(self) -> int:
        """Register the MCP servers listed in settings; failures are logged and skipped."""
        try:
            entries = self.settings.mcp_servers_list
        except ValueError as e:
            logger.error("Ignoring invalid MCP_SERVERS", error=str(e))
            return 0

        registered = 0
        for entry in entries:
            try:
                config = ToolBackendConfig.from_dict(entry)
                await self.tool_provider.add_backend(config)
                registered += 1
            except (BackendConnectionError, KeyError, TypeError, ValueError, AttributeError) as e:
                logger.error("Failed to register startup MCP server", server=str(entry)[:80], error=str(e))
        logger.info("Startup MCP servers registered", registered=registered, configured=len(entries))
        return registered

    async def start(self) -> None:
        await self.register_startup_backends()
        self.scheduler.start()

    async def shutdown(self) -> None:
        await self.scheduler.stop()
        await self.registry.close()
        await self.store.close()
        logger.info("Runtime shutdown complete")


def build_memory(settings: Settings) -> tuple[KeyValueStore, ConversationMemoryStore]:
    store = create_store(settings.redis_url)
    return store, ConversationMemoryStore(store, key_prefix=settings.memory_key_prefix)


def build_engine(settings: Settings, memory: ConversationMemoryStore) -> CompactionEngine:
    return CompactionEngine(
        memory,
        LLMSummarizer(create_summary_llm(settings)),
        CompactionConfig(
            min_messages_to_compact=settings.min_messages_to_compact,
            keep_recent_messages=settings.messages_to_keep_recent,
            summarization_timeout=settings.summarization_timeout_seconds,
        ),
    )


def build_runtime(settings: Settings | None = None) -> AgentRuntime:
    """Construct, but do not start, the service components."""
    settings = settings or get_settings()

    store, memory = build_memory(settings)
    engine = build_engine(settings, memory)
    scheduler = CompactionScheduler(
        engine,
        memory,
        interval_seconds=settings.compaction_interval_seconds,
        initial_delay_seconds=settings.compaction_initial_delay_seconds,
        enabled=settings.compaction_enabled,
        ephemeral_prefix=settings.ephemeral_session_prefix,
    )

    registry = ToolRegistry(mcp_connection_factory(
        connect_timeout=settings.backend_connect_timeout_seconds,
        call_timeout=settings.tool_call_timeout_seconds,
    ))
    cache = CapabilityCache(registry, ttl_seconds=settings.mcp_tool_cache_ttl_seconds)
    tracker = RequestCorrelationTracker(retention_seconds=settings.correlation_retention_seconds)
    tool_provider = DynamicToolProvider(registry, cache, tracker)

    agent = ChatAgent(
        llm=create_llm(settings=settings),
        memory=memory,
        tool_provider=tool_provider,
        settings=settings,
    )

    return AgentRuntime(
        settings=settings,
        store=store,
        memory=memory,
        engine=engine,
        scheduler=scheduler,
        registry=registry,
        tracker=tracker,
        tool_provider=tool_provider,
        agent=agent,
    )
