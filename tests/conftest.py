import asyncio
import json
import logging
from typing import Any, Callable, Dict, List, Optional, Union

import pytest

from realtime_session.config.settings import RealtimeSettings
from realtime_session.exceptions import NotConnectedError
from realtime_session.services.websocket_transport import ConnectionState

SESSION_PAYLOAD = {
    "id": "sess_001",
    "object": "realtime.session",
    "model": "gpt-4o-realtime-preview-test",
    "modalities": ["text", "audio"],
    "instructions": "",
    "voice": "alloy",
}


@pytest.fixture(autouse=True)
def reset_logging():
    """Reset logging configuration before each test"""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    logging.basicConfig(level=logging.NOTSET)
    package_logger = logging.getLogger("realtime_session")
    for handler in package_logger.handlers[:]:
        package_logger.removeHandler(handler)
    package_logger.propagate = True
    yield


class _Close:
    def __init__(self, code: int, reason: str, abnormal: bool):
        self.code = code
        self.reason = reason
        self.abnormal = abnormal


class FakeTransport:
    """
    In-memory stand-in for WebSocketTransport.

    Inbound frames are pushed with `push`; sent frames are recorded in `sent`.
    An optional `responder` is called with each sent event and may return
    events to push back, which is how tests script server replies.
    """

    def __init__(self, send_session_created: bool = True):
        self.state = ConnectionState.DISCONNECTED
        self.send_session_created = send_session_created
        self.sent: List[str] = []
        self.url: Optional[str] = None
        self.headers: Dict[str, str] = {}
        self.subprotocols: Optional[List[str]] = None
        self.close_code: Optional[int] = None
        self.close_reason: str = ""
        self.close_calls = 0
        self.open_error: Optional[Exception] = None
        self.responder: Optional[Callable[[Dict[str, Any]], Optional[List[Dict[str, Any]]]]] = None
        self._inbound: Optional[asyncio.Queue] = None
        self._lost_handler = None

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    async def open(self, url, headers, subprotocols=None):
        self.url, self.headers, self.subprotocols = url, headers, subprotocols
        if self.open_error is not None:
            self.state = ConnectionState.CLOSED
            raise self.open_error
        self._inbound = asyncio.Queue()
        self.state = ConnectionState.CONNECTED
        if self.send_session_created:
            self.push({"type": "session.created", "event_id": "event_srv_1", "session": SESSION_PAYLOAD})

    async def send(self, data):
        if not self.is_connected:
            raise NotConnectedError("Transport is not connected")
        self.sent.append(data)
        if self.responder is not None:
            for reply in self.responder(json.loads(data)) or []:
                self.push(reply)

    def push(self, frame: Union[str, bytes, Dict[str, Any]]) -> None:
        if isinstance(frame, dict):
            frame = json.dumps(frame)
        self._inbound.put_nowait(frame)

    def drop(self, code: int = 1011, reason: str = "") -> None:
        """Simulate the server closing the connection abnormally."""
        self._inbound.put_nowait(_Close(code, reason, abnormal=True))

    async def receive(self):
        while self.state == ConnectionState.CONNECTED:
            frame = await self._inbound.get()
            if isinstance(frame, _Close):
                self.close_code, self.close_reason = frame.code, frame.reason
                self.state = ConnectionState.CLOSED
                if frame.abnormal and self._lost_handler is not None:
                    await self._lost_handler()
                break
            yield frame

    def set_connection_handlers(self, lost_handler=None):
        self._lost_handler = lost_handler

    async def close(self, code=1000, reason=""):
        self.close_calls += 1
        if self.state != ConnectionState.CONNECTED:
            return
        self.state = ConnectionState.CLOSED
        if self.close_code is None:
            self.close_code, self.close_reason = code, reason

    def sent_events(self) -> List[Dict[str, Any]]:
        return [json.loads(frame) for frame in self.sent]

    def sent_types(self) -> List[str]:
        return [event["type"] for event in self.sent_events()]


def ack_session_updates(event: Dict[str, Any]):
    """Responder that acknowledges every session.update."""
    if event["type"] == "session.update":
        return [{"type": "session.updated", "event_id": "event_srv_ack", "session": event["session"]}]
    return None


async def settle(rounds: int = 20) -> None:
    """Let the receive task drain everything already pushed."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def test_settings():
    return RealtimeSettings(
        api_key="test-api-key",
        model="gpt-4o-realtime-preview-test",
        session_created_timeout=0.5,
        session_update_timeout=0.2,
        tool_timeout=0.5,
    )
