"""
Command-line interface for MCP-Chat-Agent.
"""

import argparse
import asyncio
import logging
import sys

import structlog
import uvicorn

from .config import get_settings

logger = structlog.get_logger()


def configure_logging(level: str = "INFO") -> None:
    """Configure structlog and stdlib logging to share one console format."""
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format="%(message)s")
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=True),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def main() -> None:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog="mcp-chat-agent",
        description="MCP-Chat-Agent - chat service with dynamic MCP tools and compacted memory",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument("--host", default=None, help="Host to bind to")
    serve_parser.add_argument("--port", type=int, default=None, help="Port to bind to")
    serve_parser.add_argument("--reload", action="store_true", help="Enable auto-reload")

    config_parser = subparsers.add_parser("config", help="Show configuration")
    config_parser.add_argument("--check", action="store_true", help="Check configuration validity")

    subparsers.add_parser("sessions", help="List stored conversation sessions")

    compact_parser = subparsers.add_parser("compact", help="Compact conversation memory")
    compact_parser.add_argument("session_id", nargs="?", help="Session to compact (omit to sweep all)")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    configure_logging(get_settings().log_level)

    if args.command == "serve":
        run_server(args.host, args.port, args.reload)
    elif args.command == "config":
        show_config(args.check)
    elif args.command == "sessions":
        asyncio.run(list_sessions())
    elif args.command == "compact":
        asyncio.run(compact(args.session_id))
    else:
        parser.print_help()


def run_server(host: str | None, port: int | None, reload: bool) -> None:
    """Run the FastAPI server."""
    settings = get_settings()
    host = host or settings.host
    port = port or settings.port
    logger.info("Starting MCP-Chat-Agent server", host=host, port=port)

    uvicorn.run(
        "mcp_chat_agent.api.app:create_app",
        host=host,
        port=port,
        reload=reload,
        factory=True,
        log_level=settings.log_level.lower(),
    )


async def list_sessions() -> None:
    """List stored sessions with their message counts."""
    from .runtime import build_memory

    settings = get_settings()
    store, memory = build_memory(settings)
    try:
        sessions = await memory.list_sessions()
    finally:
        await store.close()

    if not sessions:
        print("No stored sessions.")
        return

    print(f"\n{'Session':<40} {'Messages':<10} {'Eligible':<10}")
    print("-" * 62)
    for s in sessions:
        eligible = "yes" if s.message_count >= settings.min_messages_to_compact else "no"
        print(f"{s.session_id:<40} {s.message_count:<10} {eligible:<10}")


async def compact(session_id: str | None) -> None:
    """Compact one session, or sweep every non-ephemeral session."""
    from .runtime import build_engine, build_memory
    from .scheduler import CompactionScheduler

    settings = get_settings()
    store, memory = build_memory(settings)
    engine = build_engine(settings, memory)
    try:
        if session_id:
            result = await engine.compact_session(session_id)
            print(f"{result.session_id}: {result.message} "
                  f"({result.messages_before} -> {result.messages_after} messages, "
                  f"~{result.estimated_tokens_saved} tokens saved)")
            return

        scheduler = CompactionScheduler(
            engine,
            memory,
            ephemeral_prefix=settings.ephemeral_session_prefix,
        )
        report = await scheduler.force_sweep()
        for result in report.results:
            print(f"{result.session_id}: {result.message}")
        print(f"\nScanned {report.sessions_scanned}, compacted {report.sessions_compacted}, "
              f"failed {report.sessions_failed}, ~{report.tokens_saved} tokens saved")
    finally:
        await store.close()


def show_config(check: bool) -> None:
    """Show current configuration."""
    settings = get_settings()

    def mask(value: str) -> str:
        if not value:
            return "(not set)"
        return value[:4] + "..." + value[-4:] if len(value) > 10 else "****"

    print("\n=== MCP-Chat-Agent Configuration ===\n")

    print("Server:")
    print(f"  Host: {settings.host}")
    print(f"  Port: {settings.port}")
    print(f"  Debug: {settings.debug}")

    print("\nLLM Providers:")
    print(f"  Default: {settings.default_provider}")
    print(f"  Default Model: {settings.default_model or '(provider default)'}")
    print(f"  Summary Model: {settings.summary_model or '(same as default)'}")
    print(f"  Anthropic Key: {mask(settings.anthropic_api_key)}")
    print(f"  OpenAI Key: {mask(settings.openai_api_key)}")
    print(f"  OpenRouter Key: {mask(settings.openrouter_api_key)}")

    print("\nMemory:")
    print(f"  Redis: {'configured' if settings.redis_url else '(in-memory)'}")
    print(f"  Key Prefix: {settings.memory_key_prefix}")

    print("\nMCP:")
    print(f"  Tool Cache TTL: {settings.mcp_tool_cache_ttl_seconds:g}s")
    print(f"  Connect Timeout: {settings.backend_connect_timeout_seconds:g}s")
    print(f"  Tool Call Timeout: {settings.tool_call_timeout_seconds:g}s")

    print("\nCompaction:")
    print(f"  Enabled: {settings.compaction_enabled}")
    print(f"  Interval: {settings.compaction_interval_seconds:g}s "
          f"(initial delay {settings.compaction_initial_delay_seconds:g}s)")
    print(f"  Threshold: {settings.min_messages_to_compact} messages, "
          f"keep {settings.messages_to_keep_recent}")

    if check:
        print("\n=== Configuration Check ===\n")
        errors = []
        warnings = []

        key_for_provider = {
            "anthropic": settings.anthropic_api_key,
            "openai": settings.openai_api_key,
            "openrouter": settings.openrouter_api_key,
        }
        if not key_for_provider.get(settings.default_provider):
            errors.append(f"API key for default provider '{settings.default_provider}' is required")

        try:
            settings.mcp_servers_list
        except ValueError as e:
            errors.append(f"MCP_SERVERS is invalid: {e}")

        if not settings.redis_url:
            warnings.append("REDIS_URL not set - conversation memory is lost on restart")

        if errors:
            print("❌ Errors:")
            for e in errors:
                print(f"   - {e}")

        if warnings:
            print("⚠️  Warnings:")
            for w in warnings:
                print(f"   - {w}")

        if not errors and not warnings:
            print("✅ Configuration looks good!")
        elif not errors:
            print("\n✅ Configuration is valid (with warnings)")
        else:
            print("\n❌ Configuration has errors - fix them before starting")


if __name__ == "__main__":
    main()
