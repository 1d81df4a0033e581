#!/usr/bin/env python3
"""
Console text chat over a realtime session.

Connects with the API key from the environment (or .env), registers a demo
`get_current_time` tool, then sends either the --message argument or each line
read from stdin, printing the streamed reply as it arrives.
"""

import argparse
import asyncio
import os
import sys
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional

from realtime_session.bot.realtime_session import RealtimeSession
from realtime_session.config.logging_config import configure_logging
from realtime_session.config.settings import RealtimeSettings
from realtime_session.exceptions import RealtimeError
from realtime_session.models.event_types import EventType
from realtime_session.models.events import RealtimeEvent
from realtime_session.models.session_schemas import Modality, SessionConfig, ToolDefinition

RESPONSE_TIMEOUT = 60.0

TIME_TOOL = ToolDefinition(
    name="get_current_time",
    description="Get the current date and time in UTC",
    parameters={"type": "object", "properties": {}},
)


def get_current_time(arguments: Dict[str, Any]) -> Dict[str, str]:
    """Demo tool handler."""
    return {"utc_time": datetime.now(timezone.utc).isoformat()}


def parse_args(argv: Optional[List[str]] = None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Chat with a realtime model from the console"
    )
    parser.add_argument(
        "--model",
        default=None,
        help="Realtime model (default: OPENAI_REALTIME_MODEL env var or the built-in default)",
    )
    parser.add_argument(
        "--instructions",
        default="You are a helpful assistant. Keep answers short.",
        help="System instructions for the session",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "WARNING"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: WARNING or LOG_LEVEL env var)",
    )
    parser.add_argument(
        "--message",
        default=None,
        help="Send a single message and exit instead of reading stdin",
    )
    return parser.parse_args(argv)


def print_delta(event: RealtimeEvent) -> None:
    """Print streamed assistant text as it arrives."""
    item, delta = event.get("item"), event.get("delta")
    if item is None or not delta or item.role != "assistant":
        return
    text = delta.get("text") or delta.get("transcript")
    if text:
        print(text, end="", flush=True)


def is_final(event: RealtimeEvent) -> bool:
    """A response that asked for a tool is followed by another one."""
    output = (event.get("response") or {}).get("output") or []
    return not any(item.get("type") == "function_call" for item in output)


async def request_reply(session: RealtimeSession, timeout: float = RESPONSE_TIMEOUT) -> bool:
    """
    Ask for a response and wait until the model's final reply is done.

    Tool calls are answered by the session itself, which then requests a
    follow-up response; this keeps waiting through those.
    """
    finished = asyncio.Event()
    token = session.on(
        EventType.RESPONSE_DONE,
        lambda event: finished.set() if is_final(event) else None,
    )
    try:
        await session.create_response()
        await asyncio.wait_for(finished.wait(), timeout=timeout)
        return True
    except asyncio.TimeoutError:
        return False
    finally:
        session.off(token)


async def chat(session: RealtimeSession, messages: AsyncIterator[str]) -> None:
    async for message in messages:
        message = message.strip()
        if not message:
            continue
        await session.send_user_message(message)
        if not await request_reply(session):
            print("\n[no response]", file=sys.stderr)
        print()


async def read_lines(message: Optional[str] = None) -> AsyncIterator[str]:
    """Yield the single --message, or stdin lines without blocking the event loop."""
    if message is not None:
        yield message
        return
    print("Type a message and press Enter (Ctrl-D to quit).", file=sys.stderr)
    loop = asyncio.get_running_loop()
    while True:
        line = await loop.run_in_executor(None, sys.stdin.readline)
        if not line:
            break
        yield line


async def run(args) -> int:
    settings = RealtimeSettings.from_env()
    if not settings.api_key:
        print("Error: OPENAI_API_KEY environment variable is required", file=sys.stderr)
        return 1

    session = RealtimeSession(settings=settings)
    session.add_tool(TIME_TOOL, get_current_time)
    session.on(EventType.CONVERSATION_UPDATED, print_delta)

    try:
        await session.connect(
            model=args.model,
            session_config=SessionConfig(
                modalities=[Modality.TEXT],
                instructions=args.instructions,
            ),
        )
        await chat(session, read_lines(args.message))
    except RealtimeError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        await session.disconnect()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for the realtime-session console script."""
    args = parse_args(argv)
    configure_logging(args.log_level, log_to_file=False)
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
