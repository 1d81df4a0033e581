"""
Unit tests for the WebSocket transport.

websockets.connect is patched, so these tests exercise the state machine,
error mapping and the receive stream without any network access.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK, InvalidStatus
from websockets.frames import Close

from realtime_session.exceptions import (
    AuthenticationError,
    NotConnectedError,
    RealtimeConnectionError,
)
from realtime_session.services.websocket_transport import ConnectionState, WebSocketTransport

URL = "wss://api.openai.com/v1/realtime?model=gpt-4o-realtime-preview-test"
HEADERS = {"Authorization": "Bearer test-api-key", "OpenAI-Beta": "realtime=v1"}


@pytest.fixture
def transport():
    return WebSocketTransport(connect_timeout=1)


@pytest.fixture
def mock_ws():
    return AsyncMock()


async def open_transport(transport, mock_ws):
    with patch("websockets.connect", new=AsyncMock(return_value=mock_ws)) as mock_connect:
        await transport.open(URL, HEADERS, ["realtime"])
    return mock_connect


@pytest.mark.asyncio
async def test_open_success(transport, mock_ws):
    mock_connect = await open_transport(transport, mock_ws)

    assert transport.state == ConnectionState.CONNECTED
    assert transport.is_connected
    args, kwargs = mock_connect.call_args
    assert args == (URL,)
    assert kwargs["additional_headers"] == HEADERS
    assert kwargs["subprotocols"] == ["realtime"]
    assert kwargs["compression"] is None


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code", [401, 403])
async def test_open_auth_failure(transport, status_code):
    error = InvalidStatus(MagicMock(status_code=status_code))
    with patch("websockets.connect", new=AsyncMock(side_effect=error)):
        with pytest.raises(AuthenticationError) as exc_info:
            await transport.open(URL, HEADERS)

    assert exc_info.value.status_code == status_code
    assert transport.state == ConnectionState.CLOSED


@pytest.mark.asyncio
async def test_open_other_status(transport):
    error = InvalidStatus(MagicMock(status_code=500))
    with patch("websockets.connect", new=AsyncMock(side_effect=error)):
        with pytest.raises(RealtimeConnectionError) as exc_info:
            await transport.open(URL, HEADERS)

    assert not isinstance(exc_info.value, AuthenticationError)
    assert exc_info.value.status_code == 500


@pytest.mark.asyncio
async def test_open_network_failure(transport):
    with patch("websockets.connect", new=AsyncMock(side_effect=OSError("Connection refused"))):
        with pytest.raises(RealtimeConnectionError):
            await transport.open(URL, HEADERS)

    assert transport.state == ConnectionState.CLOSED
    assert isinstance(RealtimeConnectionError("x"), ConnectionError)


@pytest.mark.asyncio
async def test_open_timeout(mock_ws):
    transport = WebSocketTransport(connect_timeout=0.01)

    async def slow_connect(*args, **kwargs):
        await asyncio.sleep(1)
        return mock_ws

    with patch("websockets.connect", new=slow_connect):
        with pytest.raises(RealtimeConnectionError, match="Timed out"):
            await transport.open(URL, HEADERS)


@pytest.mark.asyncio
async def test_send_requires_connection(transport):
    with pytest.raises(NotConnectedError):
        await transport.send('{"type": "response.create"}')


@pytest.mark.asyncio
async def test_send(transport, mock_ws):
    await open_transport(transport, mock_ws)
    await transport.send('{"type": "response.create"}')
    mock_ws.send.assert_awaited_once_with('{"type": "response.create"}')


@pytest.mark.asyncio
async def test_send_on_closed_socket(transport, mock_ws):
    await open_transport(transport, mock_ws)
    mock_ws.send.side_effect = ConnectionClosedError(None, None)

    with pytest.raises(NotConnectedError):
        await transport.send("{}")
    assert transport.state == ConnectionState.CLOSED


@pytest.mark.asyncio
async def test_receive_until_normal_close(transport, mock_ws):
    await open_transport(transport, mock_ws)
    lost_handler = AsyncMock()
    transport.set_connection_handlers(lost_handler=lost_handler)
    mock_ws.recv.side_effect = [
        '{"type": "session.created"}',
        b'{"type": "response.done"}',
        ConnectionClosedOK(Close(1000, ""), Close(1000, ""), True),
    ]

    frames = [frame async for frame in transport.receive()]

    assert frames == ['{"type": "session.created"}', b'{"type": "response.done"}']
    assert transport.state == ConnectionState.CLOSED
    assert transport.close_code == 1000
    lost_handler.assert_not_awaited()


@pytest.mark.asyncio
async def test_receive_abnormal_close(transport, mock_ws):
    await open_transport(transport, mock_ws)
    lost_handler = AsyncMock()
    transport.set_connection_handlers(lost_handler=lost_handler)
    mock_ws.recv.side_effect = [ConnectionClosedError(Close(1008, "invalid api key"), None)]

    frames = [frame async for frame in transport.receive()]

    assert frames == []
    assert transport.state == ConnectionState.CLOSED
    assert transport.close_code == 1008
    assert transport.close_reason == "invalid api key"
    lost_handler.assert_awaited_once()


@pytest.mark.asyncio
async def test_close_is_idempotent(transport, mock_ws):
    await open_transport(transport, mock_ws)

    await transport.close()
    await transport.close()

    mock_ws.close.assert_awaited_once_with(1000, "")
    assert transport.state == ConnectionState.CLOSED
    assert transport.close_code == 1000


@pytest.mark.asyncio
async def test_close_swallows_remote_errors(transport, mock_ws):
    await open_transport(transport, mock_ws)
    mock_ws.close.side_effect = OSError("broken pipe")

    await transport.close()

    assert transport.state == ConnectionState.CLOSED


@pytest.mark.asyncio
async def test_close_before_open(transport):
    await transport.close()
    assert transport.state == ConnectionState.DISCONNECTED
