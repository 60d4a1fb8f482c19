"""
Simple Chat Handler

Blocking chat loop:
- one request/response per round, no delta handling
- tool calls of a round executed one after another

Duplication with the streaming handler is intentional; the two paths have
very different complexity.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from .errors import ChatCancelled
from .logging_utils import log_llm_reply
from .models import AssistantMessage, ChatTurnResult, ConversationHistory, ToolDefinition
from .tool_executor import function_calls

if TYPE_CHECKING:
    from rustun_agent.clients import LLMClient

    from .tool_executor import ToolExecutor

logger = logging.getLogger(__name__)


class SimpleChatHandler:
    """Handles non-streaming chat operations."""

    def __init__(
        self,
        llm_client: LLMClient,
        tool_executor: ToolExecutor,
        chat_conf: dict[str, Any],
    ):
        self.llm_client = llm_client
        self.tool_executor = tool_executor
        self.chat_conf = chat_conf

    async def generate_assistant_response(
        self,
        conv: ConversationHistory,
        tools_payload: list[ToolDefinition],
        cancel: asyncio.Event | None = None,
    ) -> ChatTurnResult:
        """
        Run rounds until the model answers without tool calls.

        The transcript ``conv`` is extended in place: each assistant turn,
        then one tool message per call of that turn.

        Raises:
            TransportError: If a model round trip fails.
            IterationLimitExceeded: If the round bound is reached.
            ChatCancelled: If ``cancel`` is set before a round starts.
        """
        result = ChatTurnResult()
        rounds = 0

        while True:
            if cancel is not None and cancel.is_set():
                raise ChatCancelled()

            logger.info("→ LLM: requesting non-streaming response (round %d)", rounds + 1)
            reply = await self.llm_client.get_response_with_tools(conv.get_api_format(), tools_payload)
            log_llm_reply(reply.model_dump(), f"round {rounds + 1}", self.chat_conf)

            calls = function_calls(reply.message.tool_calls)
            if not calls:
                conv.add_message(AssistantMessage(content=reply.message.content))
                result.message = reply.message.content or ""
                logger.info("← LLM: final answer after %d tool rounds", rounds)
                return result

            conv.add_message(AssistantMessage(content=reply.message.content, tool_calls=calls))

            outcomes = await self.tool_executor.execute_tool_calls(calls)
            conv.extend([outcome.message for outcome in outcomes])
            result.tool_calls.extend(outcome.record for outcome in outcomes)

            rounds += 1
            self.tool_executor.check_tool_hop_limit(rounds)
