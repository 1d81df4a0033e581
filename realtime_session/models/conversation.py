"""
Conversation state management for realtime sessions.

This module provides the ConversationStore class, an event-sourced fold of
server events into per-item state. Items are immutable records; each event
produces a new record from the previous one plus explicit overrides.

Deltas can reach the client before the item they belong to has been announced
(transcriptions in particular). Such data is parked in bounded side tables
keyed by item id and attached when the `conversation.item.created` event for
that id arrives. Side tables are emptied entry by entry as items consume them,
or wholesale by `clear()`.
"""

import base64
import binascii
import logging
from collections import OrderedDict
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from realtime_session.config.constants import (
    DEFAULT_SAMPLE_RATE,
    LOGGER_NAME,
    MAX_QUEUED_ITEMS,
)
from realtime_session.models.event_types import EventType
from realtime_session.models.events import RealtimeEvent

logger = logging.getLogger(LOGGER_NAME)

Delta = Optional[Dict[str, Any]]
ProcessResult = Tuple[Optional["ConversationItem"], Delta]


class ItemStatus(str, Enum):
    """Lifecycle status of a conversation item."""
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    INCOMPLETE = "incomplete"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ItemStatus":
        try:
            return cls(value)
        except ValueError:
            return cls.IN_PROGRESS


class ToolCall(BaseModel):
    """Function call requested by the model, with its accumulating arguments."""
    model_config = ConfigDict(frozen=True)

    type: str = "function"
    name: Optional[str] = None
    call_id: Optional[str] = None
    arguments: str = ""


class ConversationItem(BaseModel):
    """Aggregate state of one conversation item."""
    model_config = ConfigDict(frozen=True)

    id: str
    type: str = "message"
    role: Optional[str] = None
    status: ItemStatus = ItemStatus.IN_PROGRESS
    audio: bytes = b""
    text: str = ""
    transcript: str = ""
    tool: Optional[ToolCall] = None
    output: Optional[str] = None
    raw: Dict[str, Any] = Field(default_factory=dict)


class ConversationStore:
    """
    In-memory store of conversation items and responses for one session.

    Each relevant event tag maps to one processor; `process_event` returns the
    affected item (or None) and the delta that was applied (or None).
    """

    def __init__(self, sample_rate: int = DEFAULT_SAMPLE_RATE,
                 max_queued_items: int = MAX_QUEUED_ITEMS):
        self.sample_rate = sample_rate
        self.max_queued_items = max_queued_items
        self._processors: Dict[str, Callable[..., ProcessResult]] = {
            EventType.CONVERSATION_ITEM_CREATED.value: self._process_item_created,
            EventType.CONVERSATION_ITEM_TRUNCATED.value: self._process_item_truncated,
            EventType.CONVERSATION_ITEM_DELETED.value: self._process_item_deleted,
            EventType.INPUT_AUDIO_TRANSCRIPTION_COMPLETED.value: self._process_transcription_completed,
            EventType.INPUT_AUDIO_BUFFER_SPEECH_STOPPED.value: self._process_speech_stopped,
            EventType.RESPONSE_CREATED.value: self._process_response_created,
            EventType.RESPONSE_DONE.value: self._process_response_done,
            EventType.RESPONSE_OUTPUT_ITEM_ADDED.value: self._process_output_item_added,
            EventType.RESPONSE_OUTPUT_ITEM_DONE.value: self._process_output_item_done,
            EventType.RESPONSE_TEXT_DELTA.value: self._process_text_delta,
            EventType.RESPONSE_AUDIO_TRANSCRIPT_DELTA.value: self._process_audio_transcript_delta,
            EventType.RESPONSE_AUDIO_DELTA.value: self._process_audio_delta,
            EventType.RESPONSE_FUNCTION_CALL_ARGUMENTS_DELTA.value: self._process_arguments_delta,
        }
        self.clear()

    def clear(self) -> None:
        """Reset all items, responses and side tables."""
        self._items: Dict[str, ConversationItem] = {}
        self._responses: Dict[str, Dict[str, Any]] = {}
        self._queued_audio: "OrderedDict[str, bytes]" = OrderedDict()
        self._queued_text: "OrderedDict[str, str]" = OrderedDict()
        self._queued_transcripts: "OrderedDict[str, str]" = OrderedDict()
        self._queued_arguments: "OrderedDict[str, str]" = OrderedDict()
        self._queued_input_audio: Optional[bytes] = None

    def process_event(self, event: RealtimeEvent,
                      captured_audio: Optional[bytes] = None) -> ProcessResult:
        """
        Fold one event into the conversation state.

        Args:
            event: The inbound event
            captured_audio: Locally captured input audio, used by speech_stopped

        Returns:
            Tuple of (item, delta); (None, None) for tags with no processor
        """
        tag = str(event.type)
        processor = self._processors.get(tag)
        if processor is None:
            return None, None
        if tag == EventType.INPUT_AUDIO_BUFFER_SPEECH_STOPPED.value:
            return processor(event, captured_audio)
        return processor(event)

    def queue_input_audio(self, audio: bytes) -> None:
        """Stash captured user audio for the next created user item."""
        self._queued_input_audio = bytes(audio)

    # ---------------------------
    # Queries
    # ---------------------------

    def get_item(self, item_id: str) -> Optional[ConversationItem]:
        return self._items.get(item_id)

    def get_items(self) -> List[ConversationItem]:
        """All items in creation order."""
        return list(self._items.values())

    def get_completed_items(self) -> List[ConversationItem]:
        return [item for item in self._items.values() if item.status == ItemStatus.COMPLETED]

    def get_in_progress_items(self) -> List[ConversationItem]:
        return [item for item in self._items.values() if item.status == ItemStatus.IN_PROGRESS]

    def get_response(self, response_id: str) -> Optional[Dict[str, Any]]:
        return self._responses.get(response_id)

    @property
    def queued_item_ids(self) -> List[str]:
        """Item ids that currently have data parked in a side table."""
        ids = []
        for table in (self._queued_audio, self._queued_text,
                      self._queued_transcripts, self._queued_arguments):
            ids.extend(item_id for item_id in table if item_id not in ids)
        return ids

    # ---------------------------
    # Side tables
    # ---------------------------

    def _queue(self, table: OrderedDict, item_id: str, value, append: bool) -> None:
        if item_id in table and append:
            table[item_id] = table[item_id] + value
        else:
            table[item_id] = value
        table.move_to_end(item_id)
        while len(table) > self.max_queued_items:
            evicted, _ = table.popitem(last=False)
            logger.warning(f"Side table full, dropping queued data for item {evicted}")

    def _store(self, item: ConversationItem) -> ConversationItem:
        self._items[item.id] = item
        return item

    # ---------------------------
    # Event processors
    # ---------------------------

    def _process_item_created(self, event: RealtimeEvent) -> ProcessResult:
        data = event.get("item") or {}
        item_id = data.get("id")
        if not item_id:
            logger.warning("conversation.item.created without an item id, ignoring")
            return None, None

        text = "".join(
            part.get("text") or ""
            for part in data.get("content") or []
            if part.get("type") in ("text", "input_text")
        )

        item = ConversationItem(
            id=item_id,
            type=data.get("type", "message"),
            role=data.get("role"),
            status=ItemStatus.parse(data.get("status")),
            audio=self._queued_audio.pop(item_id, b""),
            text=text + self._queued_text.pop(item_id, ""),
            transcript=self._queued_transcripts.pop(item_id, ""),
            raw=data,
        )

        if item.role == "user" and self._queued_input_audio is not None:
            item = item.model_copy(update={
                "audio": self._queued_input_audio,
                "status": ItemStatus.COMPLETED,
            })
            self._queued_input_audio = None

        if item.type == "function_call":
            arguments = (data.get("arguments") or "") + self._queued_arguments.pop(item_id, "")
            item = item.model_copy(update={
                "tool": ToolCall(name=data.get("name"), call_id=data.get("call_id"),
                                 arguments=arguments),
                "status": ItemStatus.IN_PROGRESS,
            })
        elif item.type == "function_call_output":
            item = item.model_copy(update={
                "output": data.get("output"),
                "status": ItemStatus.COMPLETED,
            })

        return self._store(item), None

    def _process_item_truncated(self, event: RealtimeEvent) -> ProcessResult:
        item_id = event.get("item_id")
        audio_end_ms = event.get("audio_end_ms")
        item = self._items.get(item_id)
        if item is None or audio_end_ms is None:
            logger.debug(f"Truncation for unknown item {item_id}, skipping")
            return None, None

        cut_index = max(0, int(audio_end_ms) * self.sample_rate // 1000)
        updated = item.model_copy(update={
            "audio": item.audio[:min(cut_index, len(item.audio))],
            "transcript": "",
        })
        return self._store(updated), None

    def _process_item_deleted(self, event: RealtimeEvent) -> ProcessResult:
        item = self._items.pop(event.get("item_id"), None)
        if item is None:
            logger.debug(f"Deletion for unknown item {event.get('item_id')}, skipping")
        return item, None

    def _process_transcription_completed(self, event: RealtimeEvent) -> ProcessResult:
        item_id = event.get("item_id")
        # An empty transcript still counts as received.
        transcript = event.get("transcript") or " "

        item = self._items.get(item_id)
        if item is None:
            self._queue(self._queued_transcripts, item_id, transcript, append=False)
            return None, None

        updated = item.model_copy(update={"transcript": transcript})
        return self._store(updated), {"transcript": transcript}

    def _process_text_delta(self, event: RealtimeEvent) -> ProcessResult:
        item_id, delta = event.get("item_id"), event.get("delta") or ""
        item = self._items.get(item_id)
        if item is None:
            self._queue(self._queued_text, item_id, delta, append=True)
            return None, None
        updated = item.model_copy(update={"text": item.text + delta})
        return self._store(updated), {"text": delta}

    def _process_audio_transcript_delta(self, event: RealtimeEvent) -> ProcessResult:
        item_id, delta = event.get("item_id"), event.get("delta") or ""
        item = self._items.get(item_id)
        if item is None:
            self._queue(self._queued_transcripts, item_id, delta, append=True)
            return None, None
        updated = item.model_copy(update={"transcript": item.transcript + delta})
        return self._store(updated), {"transcript": delta}

    def _process_audio_delta(self, event: RealtimeEvent) -> ProcessResult:
        item_id = event.get("item_id")
        try:
            audio = base64.b64decode(event.get("delta") or "")
        except (binascii.Error, ValueError) as e:
            logger.warning(f"Dropping undecodable audio delta for item {item_id}: {e}")
            return None, None

        item = self._items.get(item_id)
        if item is None:
            self._queue(self._queued_audio, item_id, audio, append=True)
            return None, None
        updated = item.model_copy(update={"audio": item.audio + audio})
        return self._store(updated), {"audio": audio}

    def _process_arguments_delta(self, event: RealtimeEvent) -> ProcessResult:
        item_id, delta = event.get("item_id"), event.get("delta") or ""
        item = self._items.get(item_id)
        if item is None:
            self._queue(self._queued_arguments, item_id, delta, append=True)
            return None, None
        tool = item.tool or ToolCall()
        updated = item.model_copy(update={
            "tool": tool.model_copy(update={"arguments": tool.arguments + delta}),
        })
        return self._store(updated), {"arguments": delta}

    def _process_output_item_done(self, event: RealtimeEvent) -> ProcessResult:
        data = event.get("item") or {}
        item = self._items.get(data.get("id"))
        if item is None:
            logger.debug(f"output_item.done for unknown item {data.get('id')}, skipping")
            return None, None

        update: Dict[str, Any] = {"status": ItemStatus.COMPLETED, "raw": data}
        if item.tool is not None and not item.tool.arguments and data.get("arguments"):
            update["tool"] = item.tool.model_copy(update={"arguments": data["arguments"]})
        return self._store(item.model_copy(update=update)), None

    def _process_speech_stopped(self, event: RealtimeEvent,
                                captured_audio: Optional[bytes]) -> ProcessResult:
        if captured_audio is not None:
            self.queue_input_audio(captured_audio)
        return None, None

    def _process_response_created(self, event: RealtimeEvent) -> ProcessResult:
        response = dict(event.get("response") or {})
        response_id = response.get("id")
        if response_id and response_id not in self._responses:
            response.setdefault("output", [])
            self._responses[response_id] = response
        return None, None

    def _process_output_item_added(self, event: RealtimeEvent) -> ProcessResult:
        response = self._responses.get(event.get("response_id"))
        item_id = (event.get("item") or {}).get("id")
        if response is None or not item_id:
            return None, None
        output = response.setdefault("output", [])
        if item_id not in output:
            output.append(item_id)
        return None, None

    def _process_response_done(self, event: RealtimeEvent) -> ProcessResult:
        response = event.get("response") or {}
        response_id = response.get("id")
        if not response_id:
            return None, None
        existing = self._responses.setdefault(response_id, {"output": []})
        output_ids = [item.get("id") for item in response.get("output") or [] if item.get("id")]
        existing.update({k: v for k, v in response.items() if k != "output"})
        for item_id in output_ids:
            if item_id not in existing["output"]:
                existing["output"].append(item_id)
        return None, None
