"""
Models module for protocol data and conversation state.

Key components:
- event_types: the closed set of event type tags and their origin.
- events: Pydantic event envelopes with typed variants for session and error
  events and a generic fallback for every other tag; encode/decode helpers.
- session_schemas: Pydantic models for the session configuration.
- conversation: ConversationStore, which folds streamed events into immutable
  per-item records.

Usage examples:
```python
from realtime_session.models.events import decode, encode

event = decode('{"type": "response.text.delta", "item_id": "item_1", "delta": "Hi"}')
assert event.get("delta") == "Hi"
frame = encode(event)
```
"""

from realtime_session.models.conversation import ConversationItem, ConversationStore, ItemStatus
from realtime_session.models.event_types import EventType
from realtime_session.models.events import GenericEvent, RealtimeEvent, create_event, decode, encode
from realtime_session.models.session_schemas import SessionConfig, ToolDefinition
