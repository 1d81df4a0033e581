"""
Realtime Session - client for streaming conversational APIs over WebSocket

This package opens a persistent duplex WebSocket connection to a realtime
conversational API, negotiates the session configuration, exchanges typed
protocol events, rebuilds conversation state from streamed deltas and answers
function calls with registered tools.

Key Components:
- bot: the RealtimeSession controller and the tool invocation loop
- config: constants, logging setup and environment-backed settings
- handlers: the event dispatcher (subscriptions, one-shot waits, wildcards)
- models: event envelopes, session schemas and the conversation store
- services: the WebSocket transport
- cli: the `realtime-session` console chat

Getting Started:
1. Set up environment variables (or a .env file):
   - OPENAI_API_KEY: Your OpenAI API key
   - OPENAI_REALTIME_MODEL: Model to use (optional)
   - LOG_LEVEL: Logging level (default INFO)

2. Chat from the console:
   ```bash
   realtime-session --message "What time is it?"
   ```
"""

from realtime_session.bot.realtime_session import RealtimeSession
from realtime_session.models.session_schemas import SessionConfig, ToolDefinition

__version__ = "0.1.0"

__all__ = ["RealtimeSession", "SessionConfig", "ToolDefinition"]
