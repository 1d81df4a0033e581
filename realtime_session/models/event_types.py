"""
Closed set of Realtime API event type tags.

Tags are grouped by origin: events the client sends, events the server sends,
convenience events synthesized locally by the session controller, and the
wildcard buckets used by the dispatcher for fan-out.
"""

from enum import Enum
from typing import Union


class EventType(str, Enum):
    """Protocol type tag of a realtime event."""

    # Client events
    SESSION_UPDATE = "session.update"
    INPUT_AUDIO_BUFFER_APPEND = "input_audio_buffer.append"
    INPUT_AUDIO_BUFFER_COMMIT = "input_audio_buffer.commit"
    INPUT_AUDIO_BUFFER_CLEAR = "input_audio_buffer.clear"
    CONVERSATION_ITEM_CREATE = "conversation.item.create"
    CONVERSATION_ITEM_TRUNCATE = "conversation.item.truncate"
    CONVERSATION_ITEM_DELETE = "conversation.item.delete"
    RESPONSE_CREATE = "response.create"
    RESPONSE_CANCEL = "response.cancel"

    # Server events
    ERROR = "error"
    SESSION_CREATED = "session.created"
    SESSION_UPDATED = "session.updated"
    CONVERSATION_CREATED = "conversation.created"
    INPUT_AUDIO_BUFFER_COMMITTED = "input_audio_buffer.committed"
    INPUT_AUDIO_BUFFER_CLEARED = "input_audio_buffer.cleared"
    INPUT_AUDIO_BUFFER_SPEECH_STARTED = "input_audio_buffer.speech_started"
    INPUT_AUDIO_BUFFER_SPEECH_STOPPED = "input_audio_buffer.speech_stopped"
    CONVERSATION_ITEM_CREATED = "conversation.item.created"
    CONVERSATION_ITEM_TRUNCATED = "conversation.item.truncated"
    CONVERSATION_ITEM_DELETED = "conversation.item.deleted"
    INPUT_AUDIO_TRANSCRIPTION_COMPLETED = (
        "conversation.item.input_audio_transcription.completed"
    )
    INPUT_AUDIO_TRANSCRIPTION_FAILED = "conversation.item.input_audio_transcription.failed"
    RESPONSE_CREATED = "response.created"
    RESPONSE_DONE = "response.done"
    RESPONSE_OUTPUT_ITEM_ADDED = "response.output_item.added"
    RESPONSE_OUTPUT_ITEM_DONE = "response.output_item.done"
    RESPONSE_CONTENT_PART_ADDED = "response.content_part.added"
    RESPONSE_CONTENT_PART_DONE = "response.content_part.done"
    RESPONSE_TEXT_DELTA = "response.text.delta"
    RESPONSE_TEXT_DONE = "response.text.done"
    RESPONSE_AUDIO_TRANSCRIPT_DELTA = "response.audio_transcript.delta"
    RESPONSE_AUDIO_TRANSCRIPT_DONE = "response.audio_transcript.done"
    RESPONSE_AUDIO_DELTA = "response.audio.delta"
    RESPONSE_AUDIO_DONE = "response.audio.done"
    RESPONSE_FUNCTION_CALL_ARGUMENTS_DELTA = "response.function_call_arguments.delta"
    RESPONSE_FUNCTION_CALL_ARGUMENTS_DONE = "response.function_call_arguments.done"
    RATE_LIMITS_UPDATED = "rate_limits.updated"

    # Convenience events synthesized by the session controller
    CONVERSATION_UPDATED = "conversation.updated"
    CONVERSATION_INTERRUPTED = "conversation.interrupted"
    CONVERSATION_ITEM_APPENDED = "conversation.item.appended"
    CONVERSATION_ITEM_COMPLETED = "conversation.item.completed"

    # Wildcard buckets
    ALL = "realtime.event"
    SERVER_ALL = "server.all"
    CLIENT_ALL = "client.all"

    def __str__(self) -> str:
        return self.value


EventTag = Union[EventType, str]

CLIENT_EVENTS = frozenset({
    EventType.SESSION_UPDATE,
    EventType.INPUT_AUDIO_BUFFER_APPEND,
    EventType.INPUT_AUDIO_BUFFER_COMMIT,
    EventType.INPUT_AUDIO_BUFFER_CLEAR,
    EventType.CONVERSATION_ITEM_CREATE,
    EventType.CONVERSATION_ITEM_TRUNCATE,
    EventType.CONVERSATION_ITEM_DELETE,
    EventType.RESPONSE_CREATE,
    EventType.RESPONSE_CANCEL,
})

SYNTHETIC_EVENTS = frozenset({
    EventType.CONVERSATION_UPDATED,
    EventType.CONVERSATION_INTERRUPTED,
    EventType.CONVERSATION_ITEM_APPENDED,
    EventType.CONVERSATION_ITEM_COMPLETED,
})

WILDCARD_EVENTS = frozenset({
    EventType.ALL,
    EventType.SERVER_ALL,
    EventType.CLIENT_ALL,
})

SERVER_EVENTS = frozenset(
    set(EventType) - CLIENT_EVENTS - SYNTHETIC_EVENTS - WILDCARD_EVENTS
)

_KNOWN_VALUES = {member.value: member for member in EventType}
_WILDCARD_VALUES = frozenset(member.value for member in WILDCARD_EVENTS)


def normalize_tag(tag: EventTag) -> str:
    """
    Return the wire string for a tag.

    Raises:
        ValueError: If the tag is not an EventType or a non-empty string
    """
    if isinstance(tag, EventType):
        return tag.value
    if not isinstance(tag, str) or not tag.strip():
        raise ValueError(f"Malformed event tag: {tag!r}")
    return tag


def is_server_event(tag: EventTag) -> bool:
    """
    Static origin classification used for server/client fan-out.

    Tags outside the closed set are treated as server events, since anything
    the client does not know about can only have come off the wire.
    """
    value = normalize_tag(tag)
    member = _KNOWN_VALUES.get(value)
    if member is None:
        return True
    return member in SERVER_EVENTS


def is_wildcard(tag: EventTag) -> bool:
    return normalize_tag(tag) in _WILDCARD_VALUES
