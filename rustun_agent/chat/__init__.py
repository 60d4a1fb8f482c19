"""
Chat Service Module

Tool-calling chat orchestration: capability registry, blocking and streaming
round loops, and the caller-facing orchestrator.
"""

from .chat_orchestrator import ChatOrchestrator
from .models import AgentChatRequest, AgentChatResponse, HistoryMessage, StreamEvent, ToolCallRecord
from .tool_registry import CapabilityRegistry

__all__ = [
    "AgentChatRequest",
    "AgentChatResponse",
    "CapabilityRegistry",
    "ChatOrchestrator",
    "HistoryMessage",
    "StreamEvent",
    "ToolCallRecord",
]
