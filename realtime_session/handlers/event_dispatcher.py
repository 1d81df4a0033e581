"""
Event dispatcher for realtime protocol events.

Subscribers register per type tag, either persistently (`on`) or for the next
matching event only (`on_next`). Every registration returns an opaque
SubscriptionToken, so removal never depends on comparing callbacks.

A dispatch runs subscribers one after another, awaiting coroutine subscribers
before moving on, then re-dispatches to the wildcard buckets:
`realtime.event` for everything, plus exactly one of `server.all` or
`client.all` depending on where the tag originates.
"""

import asyncio
import inspect
import itertools
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Union

from realtime_session.config.constants import LOGGER_NAME
from realtime_session.models.event_types import (
    EventTag,
    EventType,
    is_server_event,
    is_wildcard,
    normalize_tag,
)
from realtime_session.models.events import RealtimeEvent

logger = logging.getLogger(LOGGER_NAME)

EventCallback = Callable[[RealtimeEvent], Union[None, Awaitable[None]]]


@dataclass(frozen=True)
class SubscriptionToken:
    """Handle identifying one registration."""
    tag: str
    serial: int
    one_shot: bool = False


class PendingWait:
    """
    Single-slot rendezvous for the next event of one tag.

    Resolved exactly once, by whichever comes first: a matching event (the
    result is the event), the timeout (the result is None), a forced release
    (None), or cancellation. The losing paths are always deregistered.
    """

    def __init__(self, dispatcher: "EventDispatcher", tag: str, timeout: Optional[float]):
        self.tag = tag
        self._dispatcher = dispatcher
        self._future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._timer: Optional[asyncio.TimerHandle] = None
        self.token = dispatcher.on_next(tag, self._on_event)
        if timeout is not None:
            self._timer = asyncio.get_running_loop().call_later(timeout, self._on_timeout)

    def _on_event(self, event: RealtimeEvent) -> None:
        self._settle(event, deregister=False)

    def _on_timeout(self) -> None:
        logger.debug(f"Timed out waiting for '{self.tag}'")
        self._settle(None, deregister=True)

    def _settle(self, result: Optional[RealtimeEvent], deregister: bool) -> None:
        if self._future.done():
            return
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if deregister:
            self._dispatcher.off(self.token)
        self._dispatcher._forget_wait(self)
        self._future.set_result(result)

    def release(self) -> None:
        """Resolve with None now, deregistering the event path."""
        self._settle(None, deregister=True)

    def cancel(self) -> None:
        """Cancel the wait; awaiting it afterwards raises CancelledError."""
        if self._future.done():
            return
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._dispatcher.off(self.token)
        self._dispatcher._forget_wait(self)
        self._future.cancel()

    def done(self) -> bool:
        return self._future.done()

    def result(self) -> Optional[RealtimeEvent]:
        return self._future.result()

    def __await__(self):
        return self._future.__await__()


class EventDispatcher:
    """
    Routes realtime events to persistent and one-shot subscribers.
    """

    def __init__(self) -> None:
        self._handlers: Dict[str, List[tuple]] = defaultdict(list)
        self._next_handlers: Dict[str, List[tuple]] = defaultdict(list)
        self._pending_waits: List[PendingWait] = []
        self._serials = itertools.count(1)

    def on(self, tag: EventTag, handler: EventCallback) -> SubscriptionToken:
        """
        Register a persistent subscriber.

        Args:
            tag: Event type tag (an EventType or the raw tag string)
            handler: Function or coroutine function taking the event

        Returns:
            SubscriptionToken to pass to `off`
        """
        return self._register(self._handlers, tag, handler, one_shot=False)

    def on_next(self, tag: EventTag, handler: EventCallback) -> SubscriptionToken:
        """Register a subscriber consumed by the next event of `tag`."""
        return self._register(self._next_handlers, tag, handler, one_shot=True)

    def _register(self, table, tag, handler, one_shot: bool) -> SubscriptionToken:
        value = normalize_tag(tag)
        if not callable(handler):
            raise TypeError("Event handler must be callable")
        token = SubscriptionToken(tag=value, serial=next(self._serials), one_shot=one_shot)
        table[value].append((token, handler))
        logger.debug(f"Handler registered for event: {value}")
        return token

    def off(self, token: SubscriptionToken) -> bool:
        """
        Remove one registration.

        Returns:
            bool: True if the registration existed
        """
        table = self._next_handlers if token.one_shot else self._handlers
        entries = table.get(token.tag)
        if not entries:
            return False
        remaining = [entry for entry in entries if entry[0] != token]
        removed = len(remaining) != len(entries)
        if remaining:
            table[token.tag] = remaining
        else:
            del table[token.tag]
        return removed

    def off_tag(self, tag: EventTag) -> None:
        """Remove every registration, persistent and one-shot, for a tag."""
        value = normalize_tag(tag)
        self._handlers.pop(value, None)
        self._next_handlers.pop(value, None)

    def wait_for_next(self, tag: EventTag, timeout: Optional[float] = None) -> PendingWait:
        """
        Wait for the next occurrence of an event.

        Must be called from within a running event loop.

        Args:
            tag: Event type tag to wait for
            timeout: Seconds before the wait resolves to None; None waits forever

        Returns:
            PendingWait: awaitable resolving to the event, or None on timeout
        """
        wait = PendingWait(self, normalize_tag(tag), timeout)
        self._pending_waits.append(wait)
        logger.debug(f"Waiting for next event: {wait.tag}")
        return wait

    def _forget_wait(self, wait: PendingWait) -> None:
        if wait in self._pending_waits:
            self._pending_waits.remove(wait)

    def release_pending_waits(self) -> int:
        """
        Resolve every outstanding wait with None.

        Returns:
            int: Number of waits released
        """
        waits = list(self._pending_waits)
        for wait in waits:
            wait.release()
        if waits:
            logger.debug(f"Released {len(waits)} pending wait(s)")
        return len(waits)

    async def dispatch(self, event: RealtimeEvent) -> None:
        """
        Dispatch an event to all subscribers of its tag and the wildcard buckets.

        Subscriber exceptions are logged and never propagate.
        """
        tag = normalize_tag(event.type)
        await self._dispatch_to(tag, event)

        if tag != EventType.ALL.value:
            await self._dispatch_to(EventType.ALL.value, event)

        if not is_wildcard(tag):
            bucket = EventType.SERVER_ALL if is_server_event(tag) else EventType.CLIENT_ALL
            await self._dispatch_to(bucket.value, event)

    async def _dispatch_to(self, tag: str, event: RealtimeEvent) -> None:
        handlers = list(self._handlers.get(tag, []))
        for _, handler in handlers:
            await self._invoke(handler, tag, event)

        next_handlers = self._next_handlers.pop(tag, [])
        for _, handler in next_handlers:
            await self._invoke(handler, tag, event)

    async def _invoke(self, handler: EventCallback, tag: str, event: RealtimeEvent) -> None:
        try:
            result = handler(event)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error in handler for event {tag}: {e}", exc_info=True)

    def clear(self) -> None:
        """Clear all registered subscribers."""
        self._handlers.clear()
        self._next_handlers.clear()
        logger.debug("All event handlers cleared")

    def handler_count(self, tag: EventTag) -> int:
        value = normalize_tag(tag)
        return len(self._handlers.get(value, [])) + len(self._next_handlers.get(value, []))

    def has_handlers(self, tag: EventTag) -> bool:
        return self.handler_count(tag) > 0
