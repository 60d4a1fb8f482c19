"""
Streaming Response Handler

Streaming chat loop:
- text fragments forwarded to the caller as they arrive
- tool-call fragments assembled per round by StreamAssembler
- tool calls of a round fanned out concurrently, with one event per finished
  call, and joined before the next round
- a single cancel signal honoured while waiting on the model or on tools

Fatal conditions are raised, not emitted; the orchestrator turns them into
the stream's terminal event.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncGenerator, AsyncIterator
from typing import TYPE_CHECKING, Any

from .errors import ChatCancelled, TransportError
from .logging_utils import log_llm_reply
from .models import (
    AssistantMessage,
    ChatTurnResult,
    ConversationHistory,
    StreamEvent,
    ToolCall,
    ToolCallOutcome,
    ToolDefinition,
)
from .stream_assembler import StreamAssembler
from .tool_executor import function_calls

if TYPE_CHECKING:
    from rustun_agent.clients import LLMClient

    from .tool_executor import ToolExecutor

logger = logging.getLogger(__name__)


class StreamingHandler:
    """Handles streaming responses and tool call iterations."""

    def __init__(
        self,
        llm_client: LLMClient,
        tool_executor: ToolExecutor,
        chat_conf: dict[str, Any],
    ):
        self.llm_client = llm_client
        self.tool_executor = tool_executor
        self.chat_conf = chat_conf

    async def stream_and_handle_tools(
        self,
        conv: ConversationHistory,
        tools_payload: list[ToolDefinition],
        cancel: asyncio.Event,
        result: ChatTurnResult,
    ) -> AsyncGenerator[StreamEvent]:
        """
        Yield ``content`` and ``tool_call`` events until the model answers
        without tool calls. ``result`` receives the final text and every
        executed call.

        Raises:
            TransportError: If a model round trip fails.
            IterationLimitExceeded: If the round bound is reached.
            ChatCancelled: If ``cancel`` fires at any point.
        """
        rounds = 0

        while True:
            if cancel.is_set():
                raise ChatCancelled()

            cancel_waiter = asyncio.ensure_future(cancel.wait())
            try:
                assembler = StreamAssembler()
                round_stream = self._stream_round(conv, tools_payload, assembler, cancel, cancel_waiter, rounds)
                async with contextlib.aclosing(round_stream):
                    async for fragment in round_stream:
                        yield StreamEvent.content_delta(fragment)

                # The transport ends its stream quietly once cancel is set
                if cancel.is_set():
                    raise ChatCancelled()

                assistant_msg = assembler.build()
                self.log_round_response(assistant_msg, rounds)

                calls = function_calls(assistant_msg.tool_calls)
                if not calls:
                    conv.add_message(AssistantMessage(content=assistant_msg.content))
                    result.message = assembler.text
                    logger.info("← LLM: final answer after %d tool rounds", rounds)
                    return

                conv.add_message(AssistantMessage(content=assistant_msg.content, tool_calls=calls))

                outcomes: dict[int, ToolCallOutcome] = {}
                async for index, outcome in self._execute_round(calls, cancel_waiter):
                    outcomes[index] = outcome
                    result.tool_calls.append(outcome.record)
                    yield StreamEvent.tool_call_completed(outcome.record)

                # Transcript order follows the request order, not completion order
                conv.extend([outcomes[i].message for i in range(len(calls))])
            finally:
                cancel_waiter.cancel()

            rounds += 1
            self.tool_executor.check_tool_hop_limit(rounds)

    async def _stream_round(
        self,
        conv: ConversationHistory,
        tools_payload: list[ToolDefinition],
        assembler: StreamAssembler,
        cancel: asyncio.Event,
        cancel_waiter: asyncio.Future[Any],
        hop_number: int,
    ) -> AsyncGenerator[str]:
        """Stream one model response into ``assembler``, yielding visible text."""
        logger.info("→ LLM: starting streaming request (hop %d)", hop_number)

        stream = self.llm_client.get_streaming_response_with_tools(conv.get_api_format(), tools_payload, cancel)
        try:
            while True:
                chunk = await self._next_or_cancel(stream, cancel_waiter)
                if chunk is None:
                    break
                if fragment := assembler.add_chunk(chunk):
                    yield fragment
        finally:
            await stream.aclose()

        logger.info(
            "← LLM: streaming completed (hop %d), finish_reason=%s, chunks=%d",
            hop_number,
            assembler.finish_reason,
            assembler.chunk_count,
        )

    @staticmethod
    async def _next_or_cancel(
        stream: AsyncIterator[dict[str, Any]],
        cancel_waiter: asyncio.Future[Any],
    ) -> dict[str, Any] | None:
        """Next chunk, or None at end of stream; raises ChatCancelled once cancel has fired."""
        next_chunk = asyncio.ensure_future(anext(stream))
        await asyncio.wait({next_chunk, cancel_waiter}, return_when=asyncio.FIRST_COMPLETED)

        if cancel_waiter.done():
            # Cancel wins even when the stream finished in the same tick
            next_chunk.cancel()
            with contextlib.suppress(asyncio.CancelledError, StopAsyncIteration, TransportError):
                await next_chunk
            raise ChatCancelled()

        try:
            return next_chunk.result()
        except StopAsyncIteration:
            return None

    async def _execute_round(
        self,
        calls: list[ToolCall],
        cancel_waiter: asyncio.Future[Any],
    ) -> AsyncGenerator[tuple[int, ToolCallOutcome]]:
        """Fan out one round's calls; yield (call index, outcome) as each finishes."""
        tasks = self.tool_executor.start_tool_calls(calls)
        positions = {task: i for i, task in enumerate(tasks)}
        try:
            pending: set[asyncio.Future[Any]] = set(tasks)
            while pending:
                done, _ = await asyncio.wait(pending | {cancel_waiter}, return_when=asyncio.FIRST_COMPLETED)
                if cancel_waiter in done:
                    logger.info("Cancelled while %d tool calls were running", len(pending))
                    raise ChatCancelled()
                for task in done:
                    pending.discard(task)
                    yield positions[task], task.result()
        finally:
            unfinished = [task for task in tasks if not task.done()]
            for task in unfinished:
                task.cancel()
            if unfinished:
                await asyncio.gather(*unfinished, return_exceptions=True)

        logger.info("← Tools: round of %d tool calls joined", len(calls))

    def log_round_response(self, assistant_msg: AssistantMessage, hop_number: int) -> None:
        reply_data: dict[str, Any] = {
            "message": assistant_msg.to_dict(),
            "model": self.llm_client.config.get("model", ""),
        }
        log_llm_reply(reply_data, f"streaming hop {hop_number}", self.chat_conf)
