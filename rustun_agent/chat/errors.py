"""
Chat Error Taxonomy

Fatal errors end an invocation. Tool errors never do: they are rendered as a
``{"error": ...}`` payload and fed back to the model as the tool's result.
"""

from __future__ import annotations

import json

from mcp import McpError, types


class TransportError(McpError):
    """Provider unreachable, malformed reply, or provider-reported API error."""

    def __init__(self, message: str, code: int = types.INTERNAL_ERROR) -> None:
        super().__init__(types.ErrorData(code=code, message=message))

    @property
    def message(self) -> str:
        return self.error.message


class IterationLimitExceeded(Exception):
    """The model kept requesting tools for more round trips than allowed."""

    def __init__(self, max_rounds: int) -> None:
        super().__init__(f"too many iterations: stopped after {max_rounds} model round trips")
        self.max_rounds = max_rounds


class ChatCancelled(Exception):
    """The caller cancelled the invocation."""

    def __init__(self, message: str = "Stream cancelled by client") -> None:
        super().__init__(message)


# ---------- Tool dispatch errors ----------


class ToolError(Exception):
    """A single tool dispatch failed; contained to that call."""

    kind = "tool_error"

    def to_payload(self) -> str:
        return json.dumps({"error": str(self)}, ensure_ascii=False)


class UnknownToolError(ToolError):
    kind = "unknown_tool"

    def __init__(self, name: str) -> None:
        super().__init__(f"unknown tool: {name}")
        self.name = name


class ToolArgumentError(ToolError):
    kind = "argument_error"


class UpstreamError(ToolError):
    """The resource-management layer rejected the operation."""

    kind = "upstream_error"
