"""
Exception hierarchy for the realtime session client.

Transport and handshake failures are raised to the caller of `connect`.
Decode failures are logged and the offending frame is dropped. Tool failures
are converted into function-call-output error payloads. Server-reported
problems arrive as `error` events on the event stream, not as exceptions.
"""

from typing import Optional


class RealtimeError(Exception):
    """Base class for all realtime session errors."""


class RealtimeConnectionError(RealtimeError, ConnectionError):
    """Transport-level failure; fatal to the current connection."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(RealtimeConnectionError):
    """The server rejected the credential (HTTP 401/403 or an auth close code)."""


class NotConnectedError(RealtimeError):
    """An operation needed a ready connection and there was none."""


class HandshakeTimeout(RealtimeError, TimeoutError):
    """No session.created event arrived within the handshake bound."""


class AckTimeout(RealtimeError, TimeoutError):
    """No session.updated acknowledgement arrived within the update bound."""


class DecodeError(RealtimeError, ValueError):
    """An inbound frame was not a well-formed event envelope."""


class UnknownTypeError(DecodeError):
    """A well-known event tag was missing a structurally required field."""


class ToolNotFound(RealtimeError, LookupError):
    """No handler is registered under the requested tool name."""

    def __init__(self, name: str):
        super().__init__(f"Tool '{name}' not found")
        self.name = name


class ToolExecutionError(RealtimeError):
    """A tool handler raised, timed out, or returned an unusable result."""

    def __init__(self, name: str, message: str):
        super().__init__(message)
        self.name = name
