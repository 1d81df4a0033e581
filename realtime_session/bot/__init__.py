"""
Bot module: the realtime session controller and its tool loop.

Key components:
- RealtimeSession: owns the transport, dispatcher, conversation store and tool
  registry for one connection; exposes the outbound verbs, session
  negotiation and subscriptions.
- ToolRegistry / ToolInvocationLoop: run registered tools when the model
  completes a function call, then send the output and request a new response.

Usage examples:
```python
from realtime_session.bot import RealtimeSession

async def ask(question):
    session = RealtimeSession(api_key=os.getenv("OPENAI_API_KEY"))
    session.add_tool(
        {"name": "get_weather", "parameters": {"type": "object", "properties": {}}},
        lambda args: {"forecast": "sunny"},
    )
    await session.connect()
    await session.send_user_message(question)
    await session.create_response()
    item = await session.wait_for_next_completed_item(timeout=30)
    await session.disconnect()
    return item.text or item.transcript
```
"""

from realtime_session.bot.realtime_session import RealtimeSession
from realtime_session.bot.tool_loop import ToolCallState, ToolInvocationLoop, ToolRegistry

__all__ = ["RealtimeSession", "ToolCallState", "ToolInvocationLoop", "ToolRegistry"]
