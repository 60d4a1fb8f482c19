"""
Tool Execution Handler

Runs the tool calls of one round against the capability registry:
- serially, for the blocking chat path
- as independent concurrent tasks, for the streaming path

Each dispatch produces its own ToolCallRecord and ToolMessage; callers merge
them into the transcript only after the whole round has finished. A failing
dispatch is turned into an ``{"error": ...}`` payload and never aborts the
round.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING

from .errors import IterationLimitExceeded
from .logging_utils import (
    log_tool_arguments,
    log_tool_execution_error,
    log_tool_execution_start,
    log_tool_execution_success,
    log_tool_results,
)
from .models import ToolCall, ToolCallOutcome, ToolCallRecord, ToolMessage

if TYPE_CHECKING:
    from rustun_agent.config import Configuration

    from .tool_registry import CapabilityRegistry

logger = logging.getLogger(__name__)


def function_calls(calls: list[ToolCall] | None) -> list[ToolCall]:
    """Only ``function`` tool calls are dispatched; other kinds are inert."""
    result: list[ToolCall] = []
    for call in calls or []:
        if call.type != "function":
            logger.warning("Skipping tool call %s of unsupported type %r", call.id, call.type)
            continue
        result.append(call)
    return result


class ToolExecutor:
    """Dispatches tool calls through the capability registry."""

    def __init__(self, registry: CapabilityRegistry, configuration: Configuration) -> None:
        self.registry = registry
        self.configuration = configuration

    async def execute_call(self, call: ToolCall, index: int = 0, total: int = 1) -> ToolCallOutcome:
        """Execute one call; failures become the call's result payload."""
        tool_name = call.function.name
        arguments = call.function.arguments

        chat_logging = self.configuration.get_chat_service_config().get("logging", {})
        log_tool_arguments(
            tool_name,
            arguments,
            f"call {index + 1}/{total}",
            chat_logging.get("tool_arguments_truncate", 500),
        )
        log_tool_execution_start(tool_name, index, total)

        try:
            result = await self.registry.invoke(tool_name, arguments)
            content = result.content
            if result.success:
                log_tool_execution_success(tool_name, len(content))
            else:
                log_tool_execution_error(tool_name, result.error or content)
        except Exception as e:
            logger.exception("Tool %s raised during dispatch", tool_name)
            content = json.dumps({"error": f"tool execution failed: {e!s}"}, ensure_ascii=False)
            log_tool_execution_error(tool_name, str(e))

        log_tool_results(tool_name, content, chat_logging.get("tool_results_truncate", 200))

        return ToolCallOutcome(
            record=ToolCallRecord(tool=tool_name, arguments=arguments, result=content),
            message=ToolMessage(content=content, tool_call_id=call.id, name=tool_name),
        )

    async def execute_tool_calls(self, calls: list[ToolCall]) -> list[ToolCallOutcome]:
        """Execute calls one after another, in request order."""
        logger.info("→ Tools: executing %d tool calls sequentially", len(calls))
        outcomes = [await self.execute_call(call, i, len(calls)) for i, call in enumerate(calls)]
        logger.info("← Tools: completed all tool executions")
        return outcomes

    def start_tool_calls(self, calls: list[ToolCall]) -> list[asyncio.Task[ToolCallOutcome]]:
        """Fan calls out as concurrent tasks; the caller owns the join."""
        logger.info("→ Tools: dispatching %d tool calls concurrently", len(calls))
        return [
            asyncio.create_task(self.execute_call(call, i, len(calls)), name=f"tool:{call.function.name}:{call.id}")
            for i, call in enumerate(calls)
        ]

    def check_tool_hop_limit(self, rounds: int) -> None:
        """
        Raise once ``rounds`` model round trips have ended in tool calls.

        Raises:
            IterationLimitExceeded: When the configured bound is reached.
        """
        max_tool_hops = self.configuration.get_max_tool_hops()
        if rounds >= max_tool_hops:
            logger.warning("Maximum tool hops (%d) reached, stopping", max_tool_hops)
            raise IterationLimitExceeded(max_tool_hops)
