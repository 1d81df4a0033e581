"""
Tool registry and invocation loop.

When the server finishes a `function_call` output item, the loop looks up the
named tool, runs its handler with the decoded arguments, sends the result back
as a `function_call_output` item and asks for a new response. Failures are
reported to the model the same way, as an `{"error": ...}` output, so the
conversation always continues.
"""

import asyncio
import inspect
import json
import logging
from collections import OrderedDict
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Union

from pydantic import BaseModel, Field

from realtime_session.config.constants import LOGGER_NAME, MAX_QUEUED_ITEMS, TOOL_TIMEOUT
from realtime_session.exceptions import ToolExecutionError, ToolNotFound
from realtime_session.models.conversation import ConversationStore
from realtime_session.models.event_types import EventType
from realtime_session.models.events import RealtimeEvent, create_event
from realtime_session.models.session_schemas import ToolDefinition

logger = logging.getLogger(LOGGER_NAME)

ToolHandler = Callable[[Dict[str, Any]], Any]
SendEvent = Callable[[RealtimeEvent], Awaitable[None]]


class ToolCallState(str, Enum):
    """Progress of one function call."""
    REQUESTED = "requested"
    INVOKING = "invoking"
    RESOLVED = "resolved"
    FAILED = "failed"


class ToolInvocation(BaseModel):
    """Record of one function call and its outcome."""
    name: str
    call_id: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
    state: ToolCallState = ToolCallState.REQUESTED
    output: Optional[str] = None
    error: Optional[str] = None


def parse_arguments(raw: Any) -> Dict[str, Any]:
    """Decode function call arguments; anything unusable becomes an empty dict."""
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str) and raw.strip():
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Malformed tool arguments, using empty arguments: {raw[:100]}")
            return {}
        if isinstance(decoded, dict):
            return decoded
    return {}


class ToolRegistry:
    """
    Name-keyed table of tool definitions and their handlers.
    """

    def __init__(self):
        self._tools: Dict[str, Tuple[ToolDefinition, ToolHandler]] = {}

    def add(self, definition: Union[ToolDefinition, Dict[str, Any]],
            handler: ToolHandler) -> ToolDefinition:
        """
        Register a tool, replacing any tool with the same name.

        Args:
            definition: Tool definition or its dict form
            handler: Function or coroutine function taking the argument dict

        Returns:
            ToolDefinition: The validated definition
        """
        if not callable(handler):
            raise TypeError("Tool handler must be callable")
        if not isinstance(definition, ToolDefinition):
            definition = ToolDefinition.model_validate(definition)
        if definition.name in self._tools:
            logger.info(f"Replacing tool: {definition.name}")
        self._tools[definition.name] = (definition, handler)
        logger.debug(f"Tool registered: {definition.name}")
        return definition

    def remove(self, name: str) -> bool:
        return self._tools.pop(name, None) is not None

    def has(self, name: str) -> bool:
        return name in self._tools

    @property
    def definitions(self) -> Dict[str, ToolDefinition]:
        return {name: entry[0] for name, entry in self._tools.items()}

    def clear(self) -> None:
        self._tools.clear()

    async def call(self, name: str, arguments: Dict[str, Any],
                   timeout: Optional[float] = None) -> str:
        """
        Invoke a tool handler.

        Args:
            name: Registered tool name
            arguments: Decoded call arguments
            timeout: Upper bound for the handler, in seconds

        Returns:
            str: The handler result, JSON-encoded unless it already is a string

        Raises:
            ToolNotFound: If no tool is registered under `name`
            ToolExecutionError: If the handler raises, times out, or returns
                something that cannot be JSON-encoded
        """
        entry = self._tools.get(name)
        if entry is None:
            raise ToolNotFound(name)
        handler = entry[1]

        try:
            if inspect.iscoroutinefunction(handler):
                result = await asyncio.wait_for(handler(arguments), timeout=timeout)
            else:
                # Sync handlers run in a worker thread
                result = await asyncio.wait_for(asyncio.to_thread(handler, arguments), timeout=timeout)
            if inspect.isawaitable(result):
                result = await asyncio.wait_for(result, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise ToolExecutionError(name, f"Tool '{name}' timed out after {timeout}s") from e
        except Exception as e:
            raise ToolExecutionError(name, str(e) or e.__class__.__name__) from e

        if isinstance(result, str):
            return result
        try:
            return json.dumps(result)
        except (TypeError, ValueError) as e:
            raise ToolExecutionError(name, f"Tool '{name}' returned a non-serializable result: {e}") from e


class ToolInvocationLoop:
    """
    Runs registered tools for completed function calls and sends the results.
    """

    def __init__(self, registry: ToolRegistry, store: ConversationStore,
                 send_event: SendEvent, timeout: float = TOOL_TIMEOUT,
                 history_size: int = MAX_QUEUED_ITEMS):
        self.registry = registry
        self.store = store
        self.timeout = timeout
        self.history_size = history_size
        self._send_event = send_event
        self.invocations: "OrderedDict[str, ToolInvocation]" = OrderedDict()

    async def handle_output_item_done(self, event: RealtimeEvent) -> Optional[ToolInvocation]:
        """
        Handle `response.output_item.done`; non-function items are ignored.
        """
        data = event.get("item") or {}
        if data.get("type") != "function_call":
            return None

        name, call_id = data.get("name"), data.get("call_id")
        if not name or not call_id:
            logger.warning(f"Function call item without name or call_id: {data.get('id')}")
            return None

        raw_arguments = data.get("arguments")
        item = self.store.get_item(data.get("id")) if data.get("id") else None
        if item is not None and item.tool is not None and item.tool.arguments:
            raw_arguments = item.tool.arguments

        invocation = ToolInvocation(name=name, call_id=call_id,
                                    arguments=parse_arguments(raw_arguments))
        self._remember(invocation)
        return await self.run(invocation)

    async def run(self, invocation: ToolInvocation) -> ToolInvocation:
        """Invoke the tool, then send its output and request a new response."""
        invocation.state = ToolCallState.INVOKING
        logger.info(f"Calling tool: {invocation.name} with arguments: {invocation.arguments}")

        try:
            invocation.output = await self.registry.call(
                invocation.name, invocation.arguments, timeout=self.timeout
            )
            invocation.state = ToolCallState.RESOLVED
            logger.debug(f"Tool result: {invocation.output}")
        except (ToolNotFound, ToolExecutionError) as e:
            logger.error(f"Tool call {invocation.call_id} failed: {e}")
            invocation.error = str(e)
            invocation.output = json.dumps({"error": str(e)})
            invocation.state = ToolCallState.FAILED

        await self._send_event(create_event(
            EventType.CONVERSATION_ITEM_CREATE,
            item={
                "type": "function_call_output",
                "call_id": invocation.call_id,
                "output": invocation.output,
            },
        ))
        await self._send_event(create_event(EventType.RESPONSE_CREATE))
        return invocation

    def _remember(self, invocation: ToolInvocation) -> None:
        self.invocations[invocation.call_id] = invocation
        while len(self.invocations) > self.history_size:
            self.invocations.popitem(last=False)
