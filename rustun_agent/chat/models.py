"""
Chat Service Data Models

Data structures for the agent: LLM API message types, tool definitions,
streaming delta models, and the caller-facing request/response/event models.
All strongly typed with Pydantic for validation and type safety.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ==============================================================================
# CORE CHAT MESSAGES (LLM API Types)
# ==============================================================================


class SystemMessage(BaseModel):
    """System message for setting context."""

    role: Literal["system"] = "system"
    content: str


class UserMessage(BaseModel):
    """User message."""

    role: Literal["user"] = "user"
    content: str


class FunctionCall(BaseModel):
    """Function call within a tool call."""

    name: str
    arguments: str = Field(default="{}")  # JSON string, not yet validated


class ToolCall(BaseModel):
    """Tool call requested by the model."""

    id: str
    # Only "function" is executed; other kinds are carried but inert
    type: str = "function"
    function: FunctionCall


class AssistantMessage(BaseModel):
    """Assistant message with optional tool calls."""

    role: Literal["assistant"] = "assistant"
    content: str | None = None
    tool_calls: list[ToolCall] | None = None

    @field_validator("tool_calls")
    @classmethod
    def validate_tool_calls(cls, v: list[ToolCall] | None) -> list[ToolCall] | None:
        """Convert empty tool_calls list to None to avoid API errors."""
        if v is not None and len(v) == 0:
            return None
        return v

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AssistantMessage:
        """Create AssistantMessage from a provider message dict."""
        tool_calls = None
        if data.get("tool_calls"):
            tool_calls = [
                ToolCall(
                    id=tc["id"],
                    type=tc.get("type") or "function",
                    function=FunctionCall(
                        name=tc["function"]["name"],
                        arguments=tc["function"].get("arguments") or "{}",
                    ),
                )
                for tc in data["tool_calls"]
            ]

        return cls(
            content=data.get("content"),
            tool_calls=tool_calls,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict format for the provider request."""
        result: dict[str, Any] = {
            "role": self.role,
            "content": self.content or "",
        }
        if self.tool_calls:
            result["tool_calls"] = [tc.model_dump() for tc in self.tool_calls]
        return result


class ToolMessage(BaseModel):
    """Tool result message answering one tool call."""

    role: Literal["tool"] = "tool"
    content: str
    tool_call_id: str
    name: str


# Union of all message types for conversation
ChatCompletionMessage = SystemMessage | UserMessage | AssistantMessage | ToolMessage


# ==============================================================================
# TOOL DEFINITIONS AND SCHEMAS
# ==============================================================================


class ToolFunctionParameters(BaseModel):
    """Function parameters schema for tools."""

    type: Literal["object"] = "object"
    properties: dict[str, Any] = Field(default_factory=dict)
    required: list[str] = Field(default_factory=list)


class ToolFunctionDefinition(BaseModel):
    """Tool function definition."""

    name: str
    description: str
    parameters: ToolFunctionParameters


class ToolDefinition(BaseModel):
    """Complete tool definition for the chat-completions API. Immutable."""

    model_config = ConfigDict(frozen=True)

    type: Literal["function"] = "function"
    function: ToolFunctionDefinition

    @property
    def name(self) -> str:
        return self.function.name


class ToolCallRecord(BaseModel):
    """Audit trail entry for one executed tool call."""

    tool: str
    arguments: str
    result: str


# ==============================================================================
# RESPONSE MODELS
# ==============================================================================


class LLMResponseData(BaseModel):
    """Structured blocking LLM response data."""

    message: AssistantMessage
    finish_reason: str | None = None
    index: int = 0
    model: str


# ==============================================================================
# STREAMING MODELS
# ==============================================================================


class FunctionCallDelta(BaseModel):
    """Partial function call data in streaming response."""

    name: str | None = None
    arguments: str | None = None


class ToolCallDelta(BaseModel):
    """Partial tool call data in streaming response, addressed by slot index."""

    index: int | None = None
    id: str | None = None
    type: str | None = None
    function: FunctionCallDelta | None = None


class StreamingDelta(BaseModel):
    """Delta content in streaming response."""

    role: str | None = None
    content: str | None = None
    tool_calls: list[ToolCallDelta] | None = None


class StreamingChoice(BaseModel):
    """Single choice in streaming response."""

    index: int = 0
    delta: StreamingDelta | None = None
    finish_reason: str | None = None


class StreamingChunk(BaseModel):
    """Single chunk in streaming response. Usage-only chunks carry no choices."""

    id: str | None = None
    model: str | None = None
    choices: list[StreamingChoice] | None = None


# ==============================================================================
# CONVERSATION MANAGEMENT
# ==============================================================================


class ConversationHistory(BaseModel):
    """Append-only transcript for one invocation."""

    system_prompt: SystemMessage | None = None
    messages: list[ChatCompletionMessage] = Field(default_factory=list)  # type: ignore

    def add_message(self, message: ChatCompletionMessage) -> None:
        """Add a message to the conversation."""
        self.messages.append(message)

    def extend(self, messages: list[ToolMessage]) -> None:
        self.messages.extend(messages)

    def get_api_format(self) -> list[ChatCompletionMessage]:
        """Get conversation in API format."""
        result: list[ChatCompletionMessage] = []
        if self.system_prompt:
            result.append(self.system_prompt)
        result.extend(self.messages)
        return result


# ==============================================================================
# CALLER-FACING MODELS
# ==============================================================================


class HistoryMessage(BaseModel):
    """A prior turn supplied by the caller."""

    role: Literal["user", "assistant"]
    content: str


class AgentChatRequest(BaseModel):
    """Chat request from the user."""

    message: str = Field(min_length=1)
    conversation_id: str | None = None
    history: list[HistoryMessage] = Field(default_factory=list)


class AgentChatResponse(BaseModel):
    """Blocking chat result. ``error`` is set only for fatal failures."""

    message: str = ""
    conversation_id: str | None = None
    tool_calls: list[ToolCallRecord] = Field(default_factory=list)
    error: str | None = None


StreamEventType = Literal["content", "tool_call", "done", "error"]
ErrorReason = Literal["transport", "iteration_limit", "cancelled", "internal"]


class StreamEvent(BaseModel):
    """
    One event of a streaming invocation.

    ``content`` and ``tool_call`` events are non-terminal; exactly one ``done``
    or ``error`` event ends every stream.
    """

    model_config = ConfigDict(populate_by_name=True)

    type: StreamEventType
    content: str | None = None
    tool_call: ToolCallRecord | None = None
    full_message: str | None = Field(default=None, serialization_alias="fullMessage")
    tool_calls: list[ToolCallRecord] | None = Field(default=None, serialization_alias="toolCalls")
    error: str | None = None
    reason: ErrorReason | None = None

    @property
    def is_terminal(self) -> bool:
        return self.type in ("done", "error")

    @classmethod
    def content_delta(cls, text: str) -> StreamEvent:
        return cls(type="content", content=text)

    @classmethod
    def tool_call_completed(cls, record: ToolCallRecord) -> StreamEvent:
        return cls(type="tool_call", tool_call=record)

    @classmethod
    def done(cls, full_message: str, tool_calls: list[ToolCallRecord]) -> StreamEvent:
        return cls(type="done", full_message=full_message, tool_calls=list(tool_calls))

    @classmethod
    def failed(cls, error: str, reason: ErrorReason) -> StreamEvent:
        return cls(type="error", error=error, reason=reason)

    def to_wire(self) -> dict[str, Any]:
        """JSON-ready dict using the event-stream key names."""
        return self.model_dump(by_alias=True, exclude_none=True)


class ToolExecutionResult(BaseModel):
    """Outcome of one registry dispatch; ``content`` is always a usable payload."""

    content: str
    success: bool = True
    error: str | None = None
    error_kind: str | None = None


class ToolCallOutcome(BaseModel):
    """One finished dispatch: the caller-visible record plus its transcript message."""

    record: ToolCallRecord
    message: ToolMessage


class ChatTurnResult(BaseModel):
    """Final answer text and every tool call executed across all rounds."""

    message: str = ""
    tool_calls: list[ToolCallRecord] = Field(default_factory=list)
