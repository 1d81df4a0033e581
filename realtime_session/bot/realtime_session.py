"""
Realtime session controller.

RealtimeSession owns one transport, one dispatcher, one conversation store and
one tool registry. A single receive task decodes inbound frames and dispatches
them in arrival order; internal subscribers fold them into the conversation,
run tools, and synthesize the convenience `conversation.*` events.
"""

import asyncio
import base64
import logging
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Optional, Union

from realtime_session.bot.tool_loop import ToolHandler, ToolInvocationLoop, ToolRegistry
from realtime_session.config.constants import (
    AUTH_CLOSE_CODES,
    DEFAULT_SAMPLE_RATE,
    LOGGER_NAME,
    OPENAI_BETA_HEADER,
    OPENAI_BETA_VALUE,
    REALTIME_SUBPROTOCOL,
)
from realtime_session.config.settings import RealtimeSettings
from realtime_session.exceptions import (
    AckTimeout,
    AuthenticationError,
    DecodeError,
    HandshakeTimeout,
    NotConnectedError,
    RealtimeError,
)
from realtime_session.handlers.event_dispatcher import (
    EventCallback,
    EventDispatcher,
    PendingWait,
    SubscriptionToken,
)
from realtime_session.models.conversation import ConversationItem, ConversationStore, ItemStatus
from realtime_session.models.event_types import EventTag, EventType
from realtime_session.models.events import (
    ErrorDetail,
    ErrorEvent,
    RealtimeEvent,
    SessionUpdateEvent,
    create_event,
    decode,
    encode,
    generate_event_id,
)
from realtime_session.models.session_schemas import SessionConfig, ToolDefinition
from realtime_session.services.websocket_transport import WebSocketTransport

logger = logging.getLogger(LOGGER_NAME)

# Events the conversation store folds into item state
CONVERSATION_EVENTS = (
    EventType.CONVERSATION_ITEM_CREATED,
    EventType.CONVERSATION_ITEM_TRUNCATED,
    EventType.CONVERSATION_ITEM_DELETED,
    EventType.INPUT_AUDIO_TRANSCRIPTION_COMPLETED,
    EventType.INPUT_AUDIO_BUFFER_SPEECH_STOPPED,
    EventType.RESPONSE_CREATED,
    EventType.RESPONSE_DONE,
    EventType.RESPONSE_OUTPUT_ITEM_ADDED,
    EventType.RESPONSE_OUTPUT_ITEM_DONE,
    EventType.RESPONSE_TEXT_DELTA,
    EventType.RESPONSE_AUDIO_TRANSCRIPT_DELTA,
    EventType.RESPONSE_AUDIO_DELTA,
    EventType.RESPONSE_FUNCTION_CALL_ARGUMENTS_DELTA,
)

# Events after which a completed item is announced
COMPLETION_EVENTS = frozenset({
    EventType.CONVERSATION_ITEM_CREATED.value,
    EventType.RESPONSE_OUTPUT_ITEM_DONE.value,
})

# Filters for session_events() and conversation_events()
SESSION_EVENTS = (
    EventType.SESSION_CREATED,
    EventType.SESSION_UPDATED,
    EventType.ERROR,
)

CONVERSATION_STREAM_EVENTS = (
    EventType.CONVERSATION_UPDATED,
    EventType.CONVERSATION_ITEM_APPENDED,
    EventType.CONVERSATION_ITEM_COMPLETED,
    EventType.CONVERSATION_INTERRUPTED,
)


class RealtimeSession:
    """
    Client for one realtime conversational session.

    Usage:
        session = RealtimeSession(api_key="sk-...")
        await session.connect()
        await session.send_user_message("Hello")
        await session.create_response()
        item = await session.wait_for_next_completed_item(timeout=30)
        await session.disconnect()
    """

    def __init__(self, api_key: Optional[str] = None,
                 settings: Optional[RealtimeSettings] = None,
                 transport_factory: Callable[[], WebSocketTransport] = WebSocketTransport,
                 sample_rate: int = DEFAULT_SAMPLE_RATE):
        settings = settings or RealtimeSettings()
        if api_key is not None:
            settings = settings.model_copy(update={"api_key": api_key})
        self.settings = settings

        self.dispatcher = EventDispatcher()
        self.store = ConversationStore(sample_rate=sample_rate)
        self.registry = ToolRegistry()
        self.tool_loop = ToolInvocationLoop(
            self.registry, self.store, self._send_event, timeout=settings.tool_timeout
        )

        self.transport: Optional[WebSocketTransport] = None
        self._transport_factory = transport_factory
        self._recv_task: Optional[asyncio.Task] = None
        self._current_session: Optional[SessionConfig] = None
        self._captured_audio = bytearray()
        self._event_streams: List[asyncio.Queue] = []
        self._update_lock: Optional[asyncio.Lock] = None

        self._install_internal_handlers()
        logger.info(f"RealtimeSession initialized with model: {settings.model}")

    # ---------------------------
    # State
    # ---------------------------

    @property
    def is_connected(self) -> bool:
        return self.transport is not None and self.transport.is_connected

    @property
    def current_session(self) -> Optional[SessionConfig]:
        """Last server-acknowledged session configuration."""
        return self._current_session

    @property
    def conversation(self) -> ConversationStore:
        return self.store

    @property
    def tools(self) -> Dict[str, ToolDefinition]:
        return self.registry.definitions

    def _require_connection(self) -> None:
        if not self.is_connected:
            raise NotConnectedError("Not connected to Realtime API")

    # ---------------------------
    # Connection lifecycle
    # ---------------------------

    async def connect(self, model: Optional[str] = None,
                      session_config: Optional[SessionConfig] = None,
                      headers: Optional[Dict[str, str]] = None) -> SessionConfig:
        """
        Connect and complete the session handshake.

        Args:
            model: Model name; defaults to the configured model
            session_config: Configuration to apply right after the handshake
            headers: Extra handshake headers

        Returns:
            SessionConfig: The session as reported by the server (or as updated)

        Raises:
            RealtimeError: If already connected
            AuthenticationError: If the credential was rejected
            RealtimeConnectionError: If the connection could not be opened
            HandshakeTimeout: If no session.created arrived in time
        """
        if self.is_connected:
            raise RealtimeError("Already connected")
        if self.transport is not None:
            # Left over from a connection the server dropped
            await self.transport.close()
            self.transport = None

        model = model or self.settings.model
        url = f"{self.settings.url}?model={model}"
        connection_headers = {OPENAI_BETA_HEADER: OPENAI_BETA_VALUE}
        if self.settings.api_key:
            connection_headers["Authorization"] = f"Bearer {self.settings.api_key}"
        connection_headers.update(headers or {})

        logger.info(f"Connecting to Realtime API with model: {model}")
        logger.debug(f"Using headers: Authorization: Bearer [API_KEY_HIDDEN], {OPENAI_BETA_HEADER}: {OPENAI_BETA_VALUE}")

        transport = self._transport_factory()
        transport.set_connection_handlers(lost_handler=self._on_connection_lost)
        await transport.open(url, connection_headers, [REALTIME_SUBPROTOCOL])
        self.transport = transport

        # Registered before the receive task starts so session.created cannot be missed
        created_wait = self.dispatcher.wait_for_next(
            EventType.SESSION_CREATED, timeout=self.settings.session_created_timeout
        )
        self._recv_task = asyncio.create_task(self._recv_loop(transport))

        created = await created_wait
        if created is None:
            close_code, close_reason = transport.close_code, transport.close_reason
            await self.disconnect()
            if close_code in AUTH_CLOSE_CODES:
                raise AuthenticationError(
                    f"Connection closed by server ({close_code}): {close_reason or 'authentication failed'}",
                    status_code=close_code,
                )
            raise HandshakeTimeout(
                f"No session.created event within {self.settings.session_created_timeout}s; "
                "verify the API key and access to the Realtime API"
            )

        self._current_session = created.session
        logger.info("Successfully connected to Realtime API")

        if session_config is not None:
            await self.update_session(session_config)
        return self._current_session

    async def disconnect(self) -> None:
        """
        Close the connection and reset all per-connection state.

        Pending waits resolve to None. Registered tools are kept so the
        instance can reconnect with the same tools.
        """
        logger.info("Disconnecting from Realtime API")

        if self._recv_task is not None:
            if not self._recv_task.done():
                logger.debug("Cancelling receive task")
                self._recv_task.cancel()
                try:
                    await self._recv_task
                except asyncio.CancelledError:
                    logger.debug("Receive task cancelled successfully")
                except Exception as e:
                    logger.warning(f"Error while cancelling receive task: {e}")
            self._recv_task = None

        if self.transport is not None:
            await self.transport.close()
            self.transport = None

        self.dispatcher.release_pending_waits()
        for queue in self._event_streams:
            queue.put_nowait(None)

        self._current_session = None
        self._captured_audio.clear()
        self.store.clear()
        self.dispatcher.clear()
        self._install_internal_handlers()
        logger.info("Disconnected from Realtime API")

    async def reset(self) -> None:
        """Disconnect and also forget every registered tool."""
        await self.disconnect()
        self.registry.clear()
        self.tool_loop.invocations.clear()

    async def _recv_loop(self, transport: WebSocketTransport) -> None:
        logger.debug("Receive loop started")
        async for frame in transport.receive():
            try:
                event = decode(frame)
            except DecodeError as e:
                logger.warning(f"Dropping undecodable frame: {e}")
                continue
            logger.debug(f"Received event: {event.type}")
            await self.dispatcher.dispatch(event)

        logger.info("Receive loop exited, connection marked as inactive")
        # Nothing else will arrive on this connection
        self.dispatcher.release_pending_waits()

    async def _on_connection_lost(self) -> None:
        transport = self.transport
        code = transport.close_code if transport else None
        reason = transport.close_reason if transport else ""
        await self.dispatcher.dispatch(ErrorEvent(
            event_id=generate_event_id(),
            error=ErrorDetail(
                type="connection_error",
                code=str(code) if code is not None else None,
                message=reason or "Connection closed unexpectedly",
            ),
        ))

    # ---------------------------
    # Session negotiation
    # ---------------------------

    async def update_session(self, config: SessionConfig, require_ack: bool = False) -> bool:
        """
        Send a session.update and wait for the server's acknowledgement.

        Registered tools are merged into the configuration's tool list.

        Args:
            config: Desired session configuration
            require_ack: Raise AckTimeout instead of returning False on timeout

        Returns:
            bool: True if acknowledged and committed as the current session
        """
        self._require_connection()
        config = self._with_registered_tools(config)

        if self._update_lock is None:
            self._update_lock = asyncio.Lock()
        # One update in flight at a time so each session.updated matches one request
        async with self._update_lock:
            ack_wait = self.dispatcher.wait_for_next(
                EventType.SESSION_UPDATED, timeout=self.settings.session_update_timeout
            )
            try:
                await self._send_event(SessionUpdateEvent(event_id=generate_event_id(), session=config))
            except Exception:
                ack_wait.cancel()
                raise
            ack = await ack_wait

        if ack is None:
            logger.warning("No session.updated acknowledgement; current session left unchanged")
            if require_ack:
                raise AckTimeout(
                    f"No session.updated event within {self.settings.session_update_timeout}s"
                )
            return False

        self._current_session = config
        logger.info("Session configuration updated")
        return True

    def _with_registered_tools(self, config: SessionConfig) -> SessionConfig:
        if not self.registry.definitions:
            return config
        named = {tool.name for tool in config.tools}
        extra = [tool for name, tool in self.registry.definitions.items() if name not in named]
        return config.model_copy(update={"tools": list(config.tools) + extra})

    # ---------------------------
    # Outbound verbs
    # ---------------------------

    async def _send_event(self, event: RealtimeEvent) -> None:
        """Encode and send an event, then dispatch it locally."""
        self._require_connection()
        logger.debug(f"Sending event: {event.type}")
        await self.transport.send(encode(event))
        await self.dispatcher.dispatch(event)

    async def send_user_message(self, text: str) -> None:
        """Add a user text message to the conversation."""
        await self._send_event(create_event(
            EventType.CONVERSATION_ITEM_CREATE,
            item={
                "type": "message",
                "role": "user",
                "content": [{"type": "input_text", "text": text}],
            },
        ))

    async def send_audio(self, audio: bytes) -> None:
        """Append raw PCM16 audio to the input buffer."""
        self._require_connection()
        self._captured_audio.extend(audio)
        await self._send_event(create_event(
            EventType.INPUT_AUDIO_BUFFER_APPEND,
            audio=base64.b64encode(audio).decode("ascii"),
        ))

    async def commit_audio_buffer(self) -> None:
        """Commit the input buffer; the audio sent so far goes to the next user item."""
        self._require_connection()
        if self._captured_audio:
            self.store.queue_input_audio(bytes(self._captured_audio))
            self._captured_audio.clear()
        await self._send_event(create_event(EventType.INPUT_AUDIO_BUFFER_COMMIT))

    async def clear_audio_buffer(self) -> None:
        self._require_connection()
        self._captured_audio.clear()
        await self._send_event(create_event(EventType.INPUT_AUDIO_BUFFER_CLEAR))

    async def create_response(self, **overrides: Any) -> None:
        """
        Ask the model to respond.

        Keyword overrides (instructions, modalities, voice, tools, tool_choice,
        temperature, max_output_tokens, ...) apply to this response only.
        """
        response = {
            key: value.value if isinstance(value, Enum) else value
            for key, value in overrides.items()
            if value is not None
        }
        if "modalities" in response:
            response["modalities"] = [
                m.value if isinstance(m, Enum) else m for m in response["modalities"]
            ]
        fields = {"response": response} if response else {}
        await self._send_event(create_event(EventType.RESPONSE_CREATE, **fields))

    async def cancel_response(self) -> None:
        await self._send_event(create_event(EventType.RESPONSE_CANCEL))

    async def truncate_item(self, item_id: str, content_index: int, audio_end_ms: int) -> None:
        """Truncate a previous assistant item's audio at `audio_end_ms`."""
        await self._send_event(create_event(
            EventType.CONVERSATION_ITEM_TRUNCATE,
            item_id=item_id,
            content_index=content_index,
            audio_end_ms=audio_end_ms,
        ))

    async def delete_item(self, item_id: str) -> None:
        await self._send_event(create_event(EventType.CONVERSATION_ITEM_DELETE, item_id=item_id))

    # ---------------------------
    # Tools
    # ---------------------------

    def add_tool(self, definition: Union[ToolDefinition, Dict[str, Any]],
                 handler: ToolHandler) -> ToolDefinition:
        """
        Register a tool. It is offered to the model on the next update_session.
        """
        return self.registry.add(definition, handler)

    def remove_tool(self, name: str) -> bool:
        return self.registry.remove(name)

    def has_tool(self, name: str) -> bool:
        return self.registry.has(name)

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> str:
        return await self.registry.call(name, arguments, timeout=self.settings.tool_timeout)

    # ---------------------------
    # Subscriptions
    # ---------------------------

    def on(self, tag: EventTag, handler: EventCallback) -> SubscriptionToken:
        return self.dispatcher.on(tag, handler)

    def on_next(self, tag: EventTag, handler: EventCallback) -> SubscriptionToken:
        return self.dispatcher.on_next(tag, handler)

    def off(self, token: SubscriptionToken) -> bool:
        return self.dispatcher.off(token)

    def wait_for_next(self, tag: EventTag, timeout: Optional[float] = None) -> PendingWait:
        return self.dispatcher.wait_for_next(tag, timeout)

    async def wait_for_next_item(self, timeout: Optional[float] = None) -> Optional[ConversationItem]:
        """Wait for the next item appended to the conversation."""
        event = await self.dispatcher.wait_for_next(EventType.CONVERSATION_ITEM_APPENDED, timeout)
        return event.get("item") if event is not None else None

    async def wait_for_next_completed_item(self, timeout: Optional[float] = None) -> Optional[ConversationItem]:
        """Wait for the next conversation item to reach `completed`."""
        event = await self.dispatcher.wait_for_next(EventType.CONVERSATION_ITEM_COMPLETED, timeout)
        return event.get("item") if event is not None else None

    async def events(self, tags: Optional[Iterable[EventTag]] = None) -> AsyncIterator[RealtimeEvent]:
        """
        Iterate over dispatched events, inbound, outbound and synthetic.

        Args:
            tags: Only yield events for these tags (wildcards allowed); all
                events when omitted

        The iteration ends when the session disconnects.
        """
        queue: asyncio.Queue = asyncio.Queue()
        self._event_streams.append(queue)
        tokens = [self.dispatcher.on(tag, queue.put_nowait) for tag in (tags or [EventType.ALL])]
        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield event
        finally:
            for token in tokens:
                self.dispatcher.off(token)
            self._event_streams.remove(queue)

    def session_events(self) -> AsyncIterator[RealtimeEvent]:
        """Stream of session lifecycle events (created, updated, error)."""
        return self.events(SESSION_EVENTS)

    def conversation_events(self) -> AsyncIterator[RealtimeEvent]:
        """Stream of the synthetic conversation events."""
        return self.events(CONVERSATION_STREAM_EVENTS)

    # ---------------------------
    # Internal subscribers
    # ---------------------------

    def _install_internal_handlers(self) -> None:
        # The store runs before the tool loop so accumulated arguments are visible to it
        for tag in CONVERSATION_EVENTS:
            self.dispatcher.on(tag, self._on_conversation_event)
        self.dispatcher.on(EventType.RESPONSE_OUTPUT_ITEM_DONE, self.tool_loop.handle_output_item_done)
        self.dispatcher.on(EventType.INPUT_AUDIO_BUFFER_SPEECH_STARTED, self._on_speech_started)
        self.dispatcher.on(EventType.ERROR, self._on_error)

    async def _on_conversation_event(self, event: RealtimeEvent) -> None:
        tag = str(event.type)
        captured_audio = None
        if tag == EventType.INPUT_AUDIO_BUFFER_SPEECH_STOPPED.value:
            captured_audio = bytes(self._captured_audio) if self._captured_audio else None
            self._captured_audio.clear()

        item, delta = self.store.process_event(event, captured_audio)
        if item is None:
            return

        if tag == EventType.CONVERSATION_ITEM_CREATED.value:
            await self._dispatch_synthetic(EventType.CONVERSATION_ITEM_APPENDED, item=item)
        await self._dispatch_synthetic(EventType.CONVERSATION_UPDATED, item=item, delta=delta)
        if tag in COMPLETION_EVENTS and item.status == ItemStatus.COMPLETED:
            await self._dispatch_synthetic(EventType.CONVERSATION_ITEM_COMPLETED, item=item)

    async def _on_speech_started(self, event: RealtimeEvent) -> None:
        await self._dispatch_synthetic(
            EventType.CONVERSATION_INTERRUPTED,
            item_id=event.get("item_id"),
            audio_start_ms=event.get("audio_start_ms"),
        )

    def _on_error(self, event: RealtimeEvent) -> None:
        message = event.message if isinstance(event, ErrorEvent) else event.get("error")
        logger.error(f"Received error from Realtime API: {message}")

    async def _dispatch_synthetic(self, tag: EventType, **fields: Any) -> None:
        await self.dispatcher.dispatch(create_event(tag, **fields))
