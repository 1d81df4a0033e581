"""
Unit tests for the EventDispatcher.

These tests verify subscription handling, one-shot delivery, wildcard fan-out
and the wait_for_next rendezvous with its timeout and release paths.
"""

import asyncio
from unittest.mock import MagicMock

import pytest

from realtime_session.handlers.event_dispatcher import EventDispatcher
from realtime_session.models.event_types import EventType
from realtime_session.models.events import create_event, from_dict


@pytest.fixture
def dispatcher():
    return EventDispatcher()


def server_event(tag="response.text.delta", **fields):
    return from_dict({"type": tag, "event_id": "evt_srv", **fields})


@pytest.mark.asyncio
async def test_persistent_handlers_run_in_order(dispatcher):
    calls = []

    async def async_handler(event):
        calls.append("async")

    dispatcher.on(EventType.RESPONSE_TEXT_DELTA, lambda event: calls.append("sync"))
    dispatcher.on("response.text.delta", async_handler)

    await dispatcher.dispatch(server_event())
    await dispatcher.dispatch(server_event())

    assert calls == ["sync", "async", "sync", "async"]


@pytest.mark.asyncio
async def test_failing_handler_does_not_stop_others(dispatcher, caplog):
    handler = MagicMock()

    def broken(event):
        raise RuntimeError("boom")

    dispatcher.on(EventType.RESPONSE_DONE, broken)
    dispatcher.on(EventType.RESPONSE_DONE, handler)

    await dispatcher.dispatch(server_event("response.done"))

    handler.assert_called_once()
    assert "boom" in caplog.text


@pytest.mark.asyncio
async def test_on_next_fires_once(dispatcher):
    handler = MagicMock()
    dispatcher.on_next(EventType.RESPONSE_DONE, handler)

    await dispatcher.dispatch(server_event("response.done"))
    await dispatcher.dispatch(server_event("response.done"))

    handler.assert_called_once()
    assert not dispatcher.has_handlers(EventType.RESPONSE_DONE)


@pytest.mark.asyncio
async def test_off_uses_token_not_callback(dispatcher):
    handler = MagicMock()
    first = dispatcher.on(EventType.RESPONSE_DONE, handler)
    dispatcher.on(EventType.RESPONSE_DONE, handler)

    assert dispatcher.off(first) is True
    assert dispatcher.off(first) is False
    assert dispatcher.handler_count(EventType.RESPONSE_DONE) == 1

    await dispatcher.dispatch(server_event("response.done"))
    handler.assert_called_once()


@pytest.mark.asyncio
async def test_off_tag_removes_everything(dispatcher):
    dispatcher.on(EventType.ERROR, MagicMock())
    dispatcher.on_next(EventType.ERROR, MagicMock())
    dispatcher.off_tag("error")
    assert dispatcher.handler_count(EventType.ERROR) == 0


@pytest.mark.asyncio
async def test_server_event_fan_out(dispatcher):
    seen = {"all": [], "server": [], "client": []}
    dispatcher.on(EventType.ALL, lambda e: seen["all"].append(e.type))
    dispatcher.on(EventType.SERVER_ALL, lambda e: seen["server"].append(e.type))
    dispatcher.on(EventType.CLIENT_ALL, lambda e: seen["client"].append(e.type))

    await dispatcher.dispatch(server_event("session.created", session={}))

    assert seen == {"all": ["session.created"], "server": ["session.created"], "client": []}


@pytest.mark.asyncio
async def test_client_event_fan_out(dispatcher):
    seen = {"all": [], "server": [], "client": []}
    dispatcher.on(EventType.ALL, lambda e: seen["all"].append(e.type))
    dispatcher.on(EventType.SERVER_ALL, lambda e: seen["server"].append(e.type))
    dispatcher.on(EventType.CLIENT_ALL, lambda e: seen["client"].append(e.type))

    await dispatcher.dispatch(create_event(EventType.RESPONSE_CREATE))

    assert seen == {"all": ["response.create"], "server": [], "client": ["response.create"]}


@pytest.mark.asyncio
async def test_unknown_tag_goes_to_server_bucket(dispatcher):
    handler = MagicMock()
    dispatcher.on(EventType.SERVER_ALL, handler)
    await dispatcher.dispatch(server_event("vendor.custom_event"))
    handler.assert_called_once()


@pytest.mark.asyncio
async def test_wait_for_next_resolves_with_event(dispatcher):
    wait = dispatcher.wait_for_next(EventType.RESPONSE_DONE, timeout=1.0)
    event = server_event("response.done", response={"id": "resp_1"})

    await dispatcher.dispatch(event)

    assert wait.done()
    assert await wait is event
    assert not dispatcher.has_handlers(EventType.RESPONSE_DONE)


@pytest.mark.asyncio
async def test_wait_for_next_timeout_returns_none(dispatcher):
    result = await dispatcher.wait_for_next(EventType.RESPONSE_DONE, timeout=0.01)

    assert result is None
    # The event path was deregistered when the timer won
    assert not dispatcher.has_handlers(EventType.RESPONSE_DONE)


@pytest.mark.asyncio
async def test_event_after_timeout_is_not_delivered(dispatcher):
    wait = dispatcher.wait_for_next(EventType.RESPONSE_DONE, timeout=0.01)
    assert await wait is None

    await dispatcher.dispatch(server_event("response.done"))
    assert wait.result() is None


@pytest.mark.asyncio
async def test_release_pending_waits(dispatcher):
    first = dispatcher.wait_for_next(EventType.SESSION_UPDATED, timeout=10)
    second = dispatcher.wait_for_next(EventType.RESPONSE_DONE)

    assert dispatcher.release_pending_waits() == 2

    assert await first is None
    assert await second is None
    assert dispatcher.release_pending_waits() == 0


@pytest.mark.asyncio
async def test_cancel_wait(dispatcher):
    wait = dispatcher.wait_for_next(EventType.RESPONSE_DONE, timeout=10)
    wait.cancel()

    with pytest.raises(asyncio.CancelledError):
        await wait
    assert not dispatcher.has_handlers(EventType.RESPONSE_DONE)


def test_register_rejects_non_callable(dispatcher):
    with pytest.raises(TypeError):
        dispatcher.on(EventType.ERROR, "not callable")


def test_register_rejects_malformed_tag(dispatcher):
    with pytest.raises(ValueError):
        dispatcher.on("", MagicMock())


def test_clear(dispatcher):
    dispatcher.on(EventType.ERROR, MagicMock())
    dispatcher.on_next(EventType.RESPONSE_DONE, MagicMock())
    dispatcher.clear()
    assert not dispatcher.has_handlers(EventType.ERROR)
    assert not dispatcher.has_handlers(EventType.RESPONSE_DONE)
