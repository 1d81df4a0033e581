"""
Duplex WebSocket transport for the Realtime API.

The transport only moves frames. It knows nothing about events: the session
controller encodes outbound events to text frames and decodes what
`receive()` yields.
"""

import asyncio
import logging
import time
import traceback
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional, Union

import websockets
from websockets.exceptions import (
    ConnectionClosed,
    ConnectionClosedError,
    ConnectionClosedOK,
    InvalidStatus,
    WebSocketException,
)

from realtime_session.config.constants import (
    CONNECTION_TIMEOUT,
    LOGGER_NAME,
    WS_MAX_SIZE,
    WS_NORMAL_CLOSURE,
    WS_PING_INTERVAL,
    WS_PING_TIMEOUT,
)
from realtime_session.exceptions import (
    AuthenticationError,
    NotConnectedError,
    RealtimeConnectionError,
)

logger = logging.getLogger(LOGGER_NAME)

Frame = Union[str, bytes]


class ConnectionState(str, Enum):
    """Lifecycle of a transport connection."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSING = "closing"
    CLOSED = "closed"


class WebSocketTransport:
    """
    Single WebSocket connection with a single-consumer receive stream.
    """

    def __init__(self, connect_timeout: float = CONNECTION_TIMEOUT):
        self.connect_timeout = connect_timeout
        self.ws = None
        self.state = ConnectionState.DISCONNECTED
        self.close_code: Optional[int] = None
        self.close_reason: str = ""
        self._connection_lost_handler: Optional[Callable[[], Awaitable[None]]] = None

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    async def open(self, url: str, headers: Dict[str, str],
                   subprotocols: Optional[List[str]] = None) -> None:
        """
        Open the connection and wait until it is ready.

        Args:
            url: WebSocket URL including the query string
            headers: Extra handshake headers
            subprotocols: Subprotocols to offer

        Raises:
            AuthenticationError: If the handshake was rejected with 401 or 403
            RealtimeConnectionError: For any other handshake or network failure
        """
        if self.state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            raise RealtimeConnectionError("Transport is already open")

        self.state = ConnectionState.CONNECTING
        self.close_code = None
        self.close_reason = ""

        try:
            logger.debug(f"WebSocket URL: {url}")
            connection_start = time.time()
            self.ws = await asyncio.wait_for(
                websockets.connect(
                    url,
                    additional_headers=headers,
                    subprotocols=subprotocols,
                    max_size=WS_MAX_SIZE,
                    ping_interval=WS_PING_INTERVAL,
                    ping_timeout=WS_PING_TIMEOUT,
                    compression=None,
                ),
                timeout=self.connect_timeout,
            )
            connection_time = time.time() - connection_start
            logger.debug(f"WebSocket connection established in {connection_time:.2f} seconds")
        except asyncio.TimeoutError as e:
            self.state = ConnectionState.CLOSED
            logger.error(f"Timeout while connecting (after {self.connect_timeout}s)")
            raise RealtimeConnectionError(
                f"Timed out opening connection after {self.connect_timeout}s"
            ) from e
        except InvalidStatus as e:
            self.state = ConnectionState.CLOSED
            status_code = e.response.status_code
            if status_code in (401, 403):
                logger.error(f"Handshake rejected with HTTP {status_code}")
                raise AuthenticationError(
                    "Authentication failed; check the API key and its access to the Realtime API",
                    status_code=status_code,
                ) from e
            raise RealtimeConnectionError(
                f"Handshake failed with HTTP {status_code}", status_code=status_code
            ) from e
        except (OSError, WebSocketException) as e:
            self.state = ConnectionState.CLOSED
            logger.error(f"Failed to open WebSocket connection: {e}")
            logger.debug(f"Connection error details: {traceback.format_exc()}")
            raise RealtimeConnectionError(f"WebSocket connection failed: {e}") from e

        self.state = ConnectionState.CONNECTED
        logger.info("WebSocket connection open")

    async def send(self, data: Frame) -> None:
        """
        Send one frame.

        Raises:
            NotConnectedError: If the connection is not open
        """
        if self.state != ConnectionState.CONNECTED or self.ws is None:
            raise NotConnectedError("Transport is not connected")
        try:
            await self.ws.send(data)
        except ConnectionClosed as e:
            self._record_close(e)
            self.state = ConnectionState.CLOSED
            raise NotConnectedError(f"Connection closed while sending: {e}") from e

    async def receive(self) -> AsyncIterator[Frame]:
        """
        Yield inbound frames in arrival order until the connection closes.

        A normal closure ends the stream quietly. An abnormal closure records
        the close code and reason and calls the connection lost handler first.
        """
        if self.ws is None:
            return

        while self.state == ConnectionState.CONNECTED:
            try:
                message = await self.ws.recv()
            except ConnectionClosedOK as e:
                logger.info("WebSocket connection closed normally")
                self._record_close(e)
                self.state = ConnectionState.CLOSED
                break
            except ConnectionClosedError as e:
                logger.warning(f"Connection closed during receive: {e}")
                self._record_close(e)
                logger.debug(f"WebSocket close code: {self.close_code}, reason: {self.close_reason}")
                self.state = ConnectionState.CLOSED
                await self._notify_connection_lost()
                break
            yield message

    def _record_close(self, error: ConnectionClosed) -> None:
        frame = error.rcvd or error.sent
        if frame is not None:
            self.close_code = frame.code
            self.close_reason = frame.reason

    async def _notify_connection_lost(self) -> None:
        if self._connection_lost_handler is None:
            return
        try:
            logger.debug("Calling connection lost handler")
            await self._connection_lost_handler()
        except Exception as e:
            logger.error(f"Error in connection lost handler: {e}")
            logger.debug(f"Connection lost handler error details: {traceback.format_exc()}")

    def set_connection_handlers(self,
                                lost_handler: Optional[Callable[[], Awaitable[None]]] = None) -> None:
        """
        Set the handler for abnormal connection loss.

        Args:
            lost_handler: Async function to call when the connection drops
        """
        self._connection_lost_handler = lost_handler
        logger.debug("Connection event handlers registered")

    async def close(self, code: int = WS_NORMAL_CLOSURE, reason: str = "") -> None:
        """
        Close the connection. Safe to call more than once.
        """
        if self.ws is None:
            return

        ws, self.ws = self.ws, None
        if self.state == ConnectionState.CONNECTED:
            self.state = ConnectionState.CLOSING
        try:
            logger.debug("Closing WebSocket connection")
            await ws.close(code, reason)
        except Exception as e:
            logger.warning(f"Error closing WebSocket: {e}")
        finally:
            if self.close_code is None:
                self.close_code = code
                self.close_reason = reason
            self.state = ConnectionState.CLOSED
        logger.info("WebSocket connection closed")
