"""
Streaming Assembler

Rebuilds one assistant message from the raw chunks of a streamed completion.
Visible text is buffered as it arrives; tool-call fragments are merged into
positional slots, with argument text concatenated in arrival order.

Slots are expected to open in order (0, 1, 2, ...) and a slot is closed as
soon as the next one opens. A fragment addressed to a closed slot, or one
that skips past the next free slot, means the provider is not following the
protocol and the stream is rejected.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from mcp import types
from pydantic import ValidationError

from .errors import TransportError
from .models import AssistantMessage, FunctionCall, StreamingChunk, StreamingDelta, ToolCall, ToolCallDelta

logger = logging.getLogger(__name__)


class _Slot:
    __slots__ = ("arguments", "id", "name", "type")

    def __init__(self) -> None:
        self.id = ""
        self.type = ""
        self.name = ""
        self.arguments: list[str] = []


class StreamAssembler:
    """Accumulates one streamed assistant turn."""

    def __init__(self) -> None:
        self._text_parts: list[str] = []
        self._slots: list[_Slot] = []
        self.role: str | None = None
        self.finish_reason: str | None = None
        self.chunk_count = 0

    @property
    def text(self) -> str:
        return "".join(self._text_parts)

    @property
    def has_tool_calls(self) -> bool:
        """Any tool fragment at all makes this a tool round."""
        return bool(self._slots)

    def add_chunk(self, chunk: dict[str, Any]) -> str | None:
        """
        Merge one raw stream chunk.

        Returns:
            The visible text fragment carried by the chunk, if any, so the
            caller can forward it immediately.

        Raises:
            TransportError: If the chunk is malformed or a tool-call fragment
                is addressed to a slot out of order.
        """
        self.chunk_count += 1
        try:
            parsed = StreamingChunk.model_validate(chunk)
        except ValidationError as e:
            raise TransportError(f"Malformed stream chunk: {e}", code=types.PARSE_ERROR) from e

        if not parsed.choices:
            return None

        choice = parsed.choices[0]
        delta = choice.delta or StreamingDelta()

        if delta.role:
            self.role = self.role or delta.role

        for tcd in delta.tool_calls or []:
            self.add_tool_call_delta(tcd)

        if choice.finish_reason:
            self.finish_reason = choice.finish_reason

        if delta.content:
            self._text_parts.append(delta.content)
            return delta.content
        return None

    def add_tool_call_delta(self, delta: ToolCallDelta) -> None:
        """Merge one tool-call fragment into the slot its index addresses."""
        slot = self._slot_for(delta.index)

        if delta.id:
            slot.id = delta.id
        if delta.type:
            slot.type = delta.type
        if delta.function is not None:
            if delta.function.name:
                slot.name = delta.function.name
            if delta.function.arguments:
                slot.arguments.append(delta.function.arguments)

    def _slot_for(self, index: int | None) -> _Slot:
        # No index: the provider is continuing the slot in progress
        if index is None:
            index = max(len(self._slots) - 1, 0)

        current = len(self._slots) - 1
        if index == current:
            return self._slots[index]
        if index == current + 1:
            self._slots.append(_Slot())
            return self._slots[index]
        if index < current:
            raise TransportError(
                f"Tool call fragment for slot {index} arrived after slot {current} opened",
                code=types.PARSE_ERROR,
            )
        raise TransportError(
            f"Tool call fragment for slot {index} skips ahead of slot {current + 1}",
            code=types.PARSE_ERROR,
        )

    def build(self) -> AssistantMessage:
        """Return the assembled assistant message for this turn."""
        tool_calls: list[ToolCall] = []
        for i, slot in enumerate(self._slots):
            if not slot.name:
                raise TransportError(f"Tool call in slot {i} has no function name", code=types.PARSE_ERROR)
            call_id = slot.id or f"call_{uuid.uuid4().hex[:24]}"
            if not slot.id:
                logger.warning("Tool call in slot %d has no id, generated %s", i, call_id)
            tool_calls.append(
                ToolCall(
                    id=call_id,
                    type=slot.type or "function",
                    function=FunctionCall(name=slot.name, arguments="".join(slot.arguments) or "{}"),
                )
            )

        return AssistantMessage(content=self.text or None, tool_calls=tool_calls or None)

    def arguments_for(self, index: int) -> str:
        """Concatenated argument text seen so far for one slot."""
        return "".join(self._slots[index].arguments)
