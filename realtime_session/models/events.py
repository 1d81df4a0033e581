"""
Pydantic models for Realtime API event envelopes.

Every frame on the wire is a JSON object `{event_id, type, ...}`. A handful of
tags the client interprets directly get typed models; every other tag, known or
not, decodes to `GenericEvent`, which carries the remaining fields untouched.
The protocol is therefore forward compatible: new server tags never fail to
decode.
"""

import json
import logging
import uuid
from typing import Any, ClassVar, Dict, Literal, Optional, Tuple, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from realtime_session.config.constants import LOGGER_NAME
from realtime_session.exceptions import DecodeError, UnknownTypeError
from realtime_session.models.event_types import EventTag, EventType, normalize_tag
from realtime_session.models.session_schemas import SessionConfig

logger = logging.getLogger(LOGGER_NAME)

ENVELOPE_KEYS = ("event_id", "type")


def generate_event_id(prefix: str = "event_") -> str:
    """Return a fresh, unique identifier for an outbound event."""
    return f"{prefix}{uuid.uuid4().hex}"


class RealtimeEvent(BaseModel):
    """Base model for all realtime events."""
    model_config = ConfigDict(extra="allow")

    REQUIRED_FIELDS: ClassVar[Tuple[str, ...]] = ()

    event_id: str = ""
    type: str

    @property
    def payload(self) -> Dict[str, Any]:
        """Type-specific fields, without the envelope keys."""
        return {k: v for k, v in self.to_dict().items() if k not in ENVELOPE_KEYS}

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)

    def get(self, key: str, default: Any = None) -> Any:
        return self.payload.get(key, default)


class SessionUpdateEvent(RealtimeEvent):
    """Client request to change the session configuration."""

    REQUIRED_FIELDS: ClassVar[Tuple[str, ...]] = ("session",)

    type: Literal["session.update"] = "session.update"
    session: SessionConfig

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "type": self.type,
            "session": self.session.to_payload(),
            **(self.model_extra or {}),
        }


class SessionCreatedEvent(SessionUpdateEvent):
    """First event of every connection, carrying the server's session."""

    type: Literal["session.created"] = "session.created"


class SessionUpdatedEvent(SessionUpdateEvent):
    """Server acknowledgement of a session update."""

    type: Literal["session.updated"] = "session.updated"


class ErrorDetail(BaseModel):
    """Error details reported by the server."""
    model_config = ConfigDict(extra="allow")

    type: Optional[str] = None
    code: Optional[str] = None
    message: Optional[str] = None
    param: Optional[str] = None
    event_id: Optional[str] = None


class ErrorEvent(RealtimeEvent):
    """Server-reported error, delivered in-band rather than raised."""

    REQUIRED_FIELDS: ClassVar[Tuple[str, ...]] = ("error",)

    type: Literal["error"] = "error"
    error: ErrorDetail = Field(default_factory=ErrorDetail)

    @property
    def message(self) -> str:
        return self.error.message or self.error.code or "unknown error"


class GenericEvent(RealtimeEvent):
    """Fallback variant for every tag without a typed model."""
    # The payload lives in `data`
    model_config = ConfigDict(extra="forbid")

    data: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("type")
    def validate_type(cls, v):
        """Typed tags must use their own model so decode(encode(e)) == e holds."""
        if not v:
            raise ValueError("Event type cannot be empty")
        if v in TYPED_EVENTS:
            raise ValueError(f"Use the typed model for '{v}' events")
        return v

    @field_validator("data")
    def validate_data(cls, v):
        """Envelope keys live on the event, never inside the payload map."""
        return {k: val for k, val in v.items() if k not in ENVELOPE_KEYS}

    @property
    def payload(self) -> Dict[str, Any]:
        return self.data

    def to_dict(self) -> Dict[str, Any]:
        return {"event_id": self.event_id, "type": self.type, **self.data}


TYPED_EVENTS: Dict[str, Type[RealtimeEvent]] = {
    EventType.SESSION_UPDATE.value: SessionUpdateEvent,
    EventType.SESSION_CREATED.value: SessionCreatedEvent,
    EventType.SESSION_UPDATED.value: SessionUpdatedEvent,
    EventType.ERROR.value: ErrorEvent,
}


def create_event(tag: EventTag, **fields: Any) -> RealtimeEvent:
    """
    Build an outbound event with a freshly generated identifier.

    Args:
        tag: Event type tag
        **fields: Type-specific payload fields

    Returns:
        The typed variant for the tag, or a GenericEvent
    """
    return from_dict({"event_id": generate_event_id(), "type": normalize_tag(tag), **fields})


def from_dict(data: Dict[str, Any]) -> RealtimeEvent:
    """
    Build an event from an already-parsed JSON object.

    Raises:
        DecodeError: If the envelope has no usable type tag or a typed payload is invalid
        UnknownTypeError: If a typed tag is missing a required field
    """
    tag = data.get("type")
    if not isinstance(tag, str) or not tag:
        raise DecodeError(f"Event envelope has no type: {str(data)[:100]}")

    event_id = data.get("event_id") or ""
    if not isinstance(event_id, str):
        event_id = str(event_id)

    variant = TYPED_EVENTS.get(tag)
    if variant is None:
        body = {k: v for k, v in data.items() if k not in ENVELOPE_KEYS}
        return GenericEvent(event_id=event_id, type=tag, data=body)

    missing = [name for name in variant.REQUIRED_FIELDS if data.get(name) is None]
    if missing:
        raise UnknownTypeError(f"Event '{tag}' is missing required field(s): {', '.join(missing)}")

    try:
        return variant.model_validate({**data, "event_id": event_id})
    except ValidationError as e:
        raise DecodeError(f"Invalid '{tag}' event: {e}") from e


def decode(frame: Union[str, bytes, bytearray]) -> RealtimeEvent:
    """
    Decode one inbound frame into an event.

    Raises:
        DecodeError: If the frame is not a JSON object with a type tag
        UnknownTypeError: If a typed tag is missing a required field
    """
    if isinstance(frame, (bytes, bytearray)):
        try:
            frame = bytes(frame).decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeError(f"Frame is not valid UTF-8: {e}") from e

    try:
        data = json.loads(frame)
    except (json.JSONDecodeError, TypeError) as e:
        raise DecodeError(f"Malformed JSON frame: {e}") from e

    if not isinstance(data, dict):
        raise DecodeError(f"Frame is not a JSON object: {str(frame)[:100]}")

    return from_dict(data)


def encode(event: RealtimeEvent) -> str:
    """Encode an event as a JSON text frame."""
    return json.dumps(event.to_dict())
