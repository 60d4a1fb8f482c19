"""
Chat Orchestrator

Caller-facing coordination layer. Seeds a fresh transcript for each request
(system prompt, caller-supplied history, the new user message) and delegates
to the blocking or streaming handler.

Transcripts are never shared between invocations; cross-request memory is
whatever history the caller sends back.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncGenerator
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict

from rustun_agent.config import Configuration

from .errors import ChatCancelled, IterationLimitExceeded, TransportError
from .models import (
    AgentChatRequest,
    AgentChatResponse,
    AssistantMessage,
    ChatTurnResult,
    ConversationHistory,
    StreamEvent,
    SystemMessage,
    ToolDefinition,
    UserMessage,
)
from .resource_loader import ResourceLoader
from .simple_chat_handler import SimpleChatHandler
from .streaming_handler import StreamingHandler
from .tool_executor import ToolExecutor
from .tool_registry import CapabilityRegistry

if TYPE_CHECKING:
    from rustun_agent.clients.llm_client import LLMClient

logger = logging.getLogger(__name__)


class ChatOrchestrator:
    """
    Conversation orchestrator:
    1. Builds the transcript for the request
    2. Runs the round loop in blocking or streaming mode
    3. Returns the answer, or emits events ending in exactly one terminal event
    """

    class ChatOrchestratorConfig(BaseModel):
        model_config = ConfigDict(arbitrary_types_allowed=True)

        llm_client: Any  # LLMClient or any object with the same two request methods
        registry: CapabilityRegistry
        configuration: Configuration
        resource_loader: ResourceLoader | None = None

    def __init__(self, service_config: ChatOrchestratorConfig):
        self.llm_client: LLMClient = service_config.llm_client
        self.registry = service_config.registry
        self.configuration = service_config.configuration
        self.chat_conf = self.configuration.get_chat_service_config()
        self.resource_loader = service_config.resource_loader or ResourceLoader(self.configuration)

        self.tool_executor: ToolExecutor | None = None
        self.streaming_handler: StreamingHandler | None = None
        self.simple_chat_handler: SimpleChatHandler | None = None
        self._tools: list[ToolDefinition] = []
        self._system_prompt = ""

        self._init_lock = asyncio.Lock()
        self._ready = asyncio.Event()

    async def initialize(self) -> None:
        """Load the system prompt and build the handlers. Safe to call twice."""
        async with self._init_lock:
            if self._ready.is_set():
                logger.debug("Chat orchestrator already initialized")
                return

            logger.info("→ Orchestrator: initializing chat orchestrator")

            self._system_prompt = await asyncio.to_thread(self.resource_loader.load)
            self._tools = self.registry.list_tools()

            self.tool_executor = ToolExecutor(self.registry, self.configuration)
            self.streaming_handler = StreamingHandler(self.llm_client, self.tool_executor, self.chat_conf)
            self.simple_chat_handler = SimpleChatHandler(self.llm_client, self.tool_executor, self.chat_conf)

            logger.info(
                "← Orchestrator: ready - %d tools, max %d rounds",
                len(self._tools),
                self.configuration.get_max_tool_hops(),
            )

            if self.chat_conf.get("logging", {}).get("system_prompt", False):
                logger.info("System prompt being used:\n%s", self._system_prompt)
            else:
                logger.debug("System prompt logging disabled in configuration")

            self._ready.set()

    def build_conversation(self, request: AgentChatRequest) -> ConversationHistory:
        """Fresh transcript: system prompt, caller history, then the new user message."""
        conv = ConversationHistory(system_prompt=SystemMessage(content=self._system_prompt))
        for turn in request.history:
            if turn.role == "user":
                conv.add_message(UserMessage(content=turn.content))
            else:
                conv.add_message(AssistantMessage(content=turn.content))
        conv.add_message(UserMessage(content=request.message))
        return conv

    async def chat(self, request: AgentChatRequest, cancel: asyncio.Event | None = None) -> AgentChatResponse:
        """
        Blocking chat.

        Raises:
            TransportError, IterationLimitExceeded, ChatCancelled: Fatal
                conditions; tool failures never raise.
        """
        await self.initialize()
        assert self.simple_chat_handler is not None

        logger.info("→ Orchestrator: processing non-streaming chat (history=%d)", len(request.history))
        conv = self.build_conversation(request)
        result = await self.simple_chat_handler.generate_assistant_response(conv, self._tools, cancel)
        logger.info("← Orchestrator: completed non-streaming chat, %d tool calls", len(result.tool_calls))

        return AgentChatResponse(
            message=result.message,
            conversation_id=request.conversation_id,
            tool_calls=result.tool_calls,
        )

    async def handle_chat_request(
        self, request: AgentChatRequest, cancel: asyncio.Event | None = None
    ) -> AgentChatResponse:
        """Blocking chat that reports fatal conditions in ``error`` instead of raising."""
        try:
            return await self.chat(request, cancel)
        except TransportError as e:
            logger.error("Chat failed, model transport error: %s", e.message)
            error = f"LLM request failed: {e.message}"
        except (IterationLimitExceeded, ChatCancelled) as e:
            logger.warning("Chat stopped: %s", e)
            error = str(e)

        return AgentChatResponse(conversation_id=request.conversation_id, error=error)

    async def chat_stream(
        self,
        request: AgentChatRequest,
        cancel: asyncio.Event | None = None,
    ) -> AsyncGenerator[StreamEvent]:
        """
        Streaming chat. Yields ``content`` and ``tool_call`` events followed
        by exactly one ``done`` or ``error`` event.
        """
        await self.initialize()
        assert self.streaming_handler is not None

        cancel = cancel or asyncio.Event()
        result = ChatTurnResult()
        conv = self.build_conversation(request)

        logger.info("→ Orchestrator: processing streaming chat (history=%d)", len(request.history))
        try:
            events = self.streaming_handler.stream_and_handle_tools(conv, self._tools, cancel, result)
            async with contextlib.aclosing(events):
                async for event in events:
                    yield event
        except ChatCancelled as e:
            logger.info("← Orchestrator: stream cancelled by caller")
            yield StreamEvent.failed(str(e), "cancelled")
            return
        except TransportError as e:
            logger.error("Stream failed, model transport error: %s", e.message)
            yield StreamEvent.failed(f"LLM request failed: {e.message}", "transport")
            return
        except IterationLimitExceeded as e:
            logger.warning("Stream stopped: %s", e)
            yield StreamEvent.failed(str(e), "iteration_limit")
            return
        except Exception as e:
            logger.exception("Unexpected error during streaming chat")
            yield StreamEvent.failed(f"internal error: {e!s}", "internal")
            return

        logger.info("← Orchestrator: completed streaming chat, %d tool calls", len(result.tool_calls))
        yield StreamEvent.done(result.message, result.tool_calls)

    def get_tool_count(self) -> int:
        return len(self.registry.list_tools())

    async def cleanup(self) -> None:
        """Close the LLM HTTP client."""
        logger.info("→ Orchestrator: starting cleanup")
        await self.llm_client.close()
        logger.info("← Orchestrator: cleanup completed")
