#!/usr/bin/env python3
"""
Live Feedback MCP Server

An MCP server giving editor clients real-time, incremental feedback while
a user types.

KEY IDEA: two phases per change.
- Instant phase: cheap providers run concurrently under a tight deadline
  and their findings are returned with the call
- Deferred phase: expensive providers run once typing pauses (debounce),
  always on the latest snapshot, and are delivered through feedback_poll

Tools provided:
- feedback_start_session: Open a feedback session
- feedback_end_session: Close a session and return its metrics
- feedback_process_change: Submit a change, get instant feedback
- feedback_poll: Collect deferred feedback
- feedback_history: Past feedback for a session
- feedback_status: Engine health, metrics and cache statistics
"""

import asyncio
import logging
import os
import signal
import sys
import time
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import (
    Tool,
    TextContent,
)

from .config import get_config, EngineConfig, ServerConfig
from .engine import FeedbackEngine
from .handlers import (
    handle_feedback_end_session,
    handle_feedback_history,
    handle_feedback_poll,
    handle_feedback_process_change,
    handle_feedback_start_session,
    handle_feedback_status,
)
from .profiling import configure_logging, enable_profiling

logger = logging.getLogger(__name__)


_engine_config: EngineConfig | None = None
_server_config: ServerConfig | None = None
_engine: FeedbackEngine | None = None

# Shutdown flag for graceful termination
_shutdown_event: asyncio.Event | None = None


def get_instances() -> tuple[EngineConfig, ServerConfig, FeedbackEngine]:
    """Get or create the process engine."""
    global _engine_config, _server_config, _engine

    if _engine is None:
        _engine_config, _server_config = get_config()
        _engine = FeedbackEngine.create(_engine_config)

    return _engine_config, _server_config, _engine


async def cleanup_resources() -> None:
    """Cleanup resources on shutdown."""
    global _engine

    if _engine is not None:
        await _engine.close()
        _engine = None


_CURSOR_SCHEMA = {
    "type": "object",
    "properties": {
        "line": {"type": "integer", "minimum": 1, "description": "1-based line"},
        "column": {"type": "integer", "minimum": 0, "description": "0-based column"},
    },
    "required": ["line", "column"],
}


def create_server() -> Server:
    """Create and configure the MCP server."""
    server = Server("live-feedback")

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        """List available tools."""
        return [
            Tool(
                name="feedback_start_session",
                description=(
                    "Start a real-time feedback session for a user. "
                    "Returns a session_id to pass to the other feedback tools."
                ),
                inputSchema={
                    "type": "object",
                    "properties": {
                        "user_id": {
                            "type": "string",
                            "description": "Identifier of the user owning the session",
                        },
                        "config": {
                            "type": "object",
                            "description": (
                                "Optional session settings: enabled_providers (list of ids, "
                                "default all), feedback_level (minimal|normal|verbose), "
                                "auto_triggers (bool), debounce_delay_ms, max_history_size."
                            ),
                        },
                    },
                    "required": ["user_id"],
                },
            ),
            Tool(
                name="feedback_end_session",
                description="End a feedback session and return its cumulative metrics.",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "session_id": {"type": "string"},
                    },
                    "required": ["session_id"],
                },
            ),
            Tool(
                name="feedback_process_change",
                description=(
                    "Submit the full current content of a file after an edit. "
                    "Returns instant findings (syntax, patterns, completion, hints). "
                    "Deferred analysis runs after typing pauses; collect it with feedback_poll."
                ),
                inputSchema={
                    "type": "object",
                    "properties": {
                        "session_id": {"type": "string"},
                        "file_path": {"type": "string"},
                        "content": {
                            "type": "string",
                            "description": "Full file content (snapshot, not a diff)",
                        },
                        "cursor": _CURSOR_SCHEMA,
                        "change_kind": {
                            "type": "string",
                            "enum": ["edit", "insert", "delete"],
                            "description": "Default: edit",
                        },
                        "trigger_character": {
                            "type": "string",
                            "description": "Character that triggered the change, e.g. '.'",
                        },
                    },
                    "required": ["session_id", "file_path", "content"],
                },
            ),
            Tool(
                name="feedback_poll",
                description=(
                    "Collect deferred feedback published since the last poll. "
                    "With timeout > 0, waits up to that many seconds for the next one."
                ),
                inputSchema={
                    "type": "object",
                    "properties": {
                        "session_id": {"type": "string"},
                        "timeout": {
                            "type": "number",
                            "description": "Seconds to wait when nothing is pending (max 30). Default: 0",
                        },
                    },
                    "required": ["session_id"],
                },
            ),
            Tool(
                name="feedback_history",
                description="Return past feedback for a session, oldest first.",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "session_id": {"type": "string"},
                        "limit": {
                            "type": "integer",
                            "minimum": 0,
                            "description": "Return only the most recent N entries",
                        },
                    },
                    "required": ["session_id"],
                },
            ),
            Tool(
                name="feedback_status",
                description=(
                    "Check engine health: latency, success rate, cache hit rate, "
                    "active sessions and registered providers."
                ),
                inputSchema={
                    "type": "object",
                    "properties": {
                        "session_id": {
                            "type": "string",
                            "description": "Optionally include details for one session",
                        },
                    },
                },
            ),
        ]

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
        """Handle tool calls."""
        start_time = time.time()
        arguments = arguments or {}

        try:
            _, server_config, engine = get_instances()
            await engine.start()

            if name == "feedback_start_session":
                result = await handle_feedback_start_session(arguments, engine)
            elif name == "feedback_end_session":
                result = await handle_feedback_end_session(arguments, engine)
            elif name == "feedback_process_change":
                result = await handle_feedback_process_change(arguments, engine)
            elif name == "feedback_poll":
                result = await handle_feedback_poll(arguments, engine)
            elif name == "feedback_history":
                result = await handle_feedback_history(arguments, engine)
            elif name == "feedback_status":
                result = await handle_feedback_status(arguments, engine, server_config)
            else:
                result = [TextContent(type="text", text=f"Unknown tool: {name}")]

            logger.debug(f"[TOOL] {name}: {(time.time() - start_time) * 1000:.1f}ms")
            return result

        except Exception as e:
            logger.exception(f"[TOOL] {name} failed")
            return [TextContent(type="text", text=f"Error: {str(e)}")]

    return server


async def run_server():
    """Run the MCP server with graceful shutdown."""
    global _shutdown_event
    _shutdown_event = asyncio.Event()

    server = create_server()

    # Setup signal handlers for graceful shutdown
    loop = asyncio.get_running_loop()

    def handle_shutdown(sig):
        logger.info(f"Received {sig.name}, shutting down gracefully...")
        _shutdown_event.set()

    # Register signal handlers (Unix only)
    if sys.platform != "win32":
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda s=sig: handle_shutdown(s))

    try:
        async with stdio_server() as (read_stream, write_stream):
            # Run server until shutdown signal
            server_task = asyncio.create_task(
                server.run(
                    read_stream,
                    write_stream,
                    server.create_initialization_options(),
                )
            )

            # Wait for either server completion or shutdown signal
            done, pending = await asyncio.wait(
                [server_task, asyncio.create_task(_shutdown_event.wait())],
                return_when=asyncio.FIRST_COMPLETED,
            )

            # Cancel pending tasks
            for task in pending:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

    finally:
        # Cleanup resources
        await cleanup_resources()


def main():
    """Main entry point."""
    if os.getenv("FEEDBACK_PROFILE"):
        enable_profiling()
    else:
        configure_logging()
    try:
        asyncio.run(run_server())
    except KeyboardInterrupt:
        pass
    except Exception as e:
        logger.error(f"Server error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
