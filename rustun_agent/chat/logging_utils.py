"""
Chat Logging Utilities

Shared logging functionality with feature control, used by both the blocking
and the streaming handlers.
"""

from __future__ import annotations

import logging
from typing import Any

logger = logging.getLogger(__name__)

# Feature flags per module, installed by configure_logging()
_module_features: dict[str, dict[str, bool]] = {}

_LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# Config module name -> logger hierarchies it controls
_MODULE_LOGGERS = {
    "chat": ["rustun_agent.chat"],
    "clients": ["rustun_agent.clients", "httpx"],
    "routes": ["rustun_agent.routes"],
}


def configure_logging(logging_config: dict[str, Any]) -> None:
    """
    Apply the ``logging`` config section: global level and format,
    per-module levels, and feature flags checked by should_log_feature().
    """
    global_level = logging_config.get("level", "WARNING")
    root = logging.getLogger()
    root.setLevel(_LEVEL_MAP.get(global_level, logging.WARNING))

    if "format" in logging_config:
        for handler in root.handlers:
            if isinstance(handler, logging.StreamHandler):
                handler.setFormatter(logging.Formatter(logging_config["format"]))

    _module_features.clear()
    for module_name, module_config in logging_config.get("modules", {}).items():
        if not isinstance(module_config, dict):
            continue

        module_level = _LEVEL_MAP.get(module_config.get("level", global_level), logging.WARNING)
        for logger_name in _MODULE_LOGGERS.get(module_name, []):
            logging.getLogger(logger_name).setLevel(module_level)

        _module_features[module_name] = dict(module_config.get("enable_features", {}))


def should_log_feature(module: str, feature: str) -> bool:
    """Check if a specific logging feature is enabled."""
    return _module_features.get(module, {}).get(feature, False)


def _truncate(text: str, length: int) -> str:
    if length > 0 and len(text) > length:
        return text[:length] + "..."
    return text


def log_llm_reply(reply: dict[str, Any], context: str, chat_conf: dict[str, Any]) -> None:
    """
    LLM reply logging with feature control and configuration-based truncation.

    Args:
        reply: Response data containing message and model
        context: Descriptive context for the log entry
        chat_conf: Chat service configuration containing logging settings
    """
    if not should_log_feature("chat", "llm_replies"):
        return

    message = reply.get("message", {})
    content = message.get("content") or ""
    tool_calls = message.get("tool_calls") or []

    truncate_length = chat_conf.get("logging", {}).get("llm_reply", 500)
    content = _truncate(content, truncate_length)

    log_parts = [f"LLM Reply ({context}):"]
    if content:
        log_parts.append(f"Content: {content}")

    if tool_calls:
        log_parts.append(f"Tool calls: {len(tool_calls)}")
        for i, call in enumerate(tool_calls):
            name = call.get("function", {}).get("name", "unknown")
            log_parts.append(f"  [{i}] {name}")

    log_parts.append(f"Model: {reply.get('model', 'unknown')}")

    logger.info(" | ".join(log_parts))


def log_tool_execution_start(tool_name: str, call_index: int = 0, total_calls: int = 1) -> None:
    """
    Log the start of tool execution with consistent formatting.

    Args:
        tool_name: Name of the tool being executed
        call_index: Index of current call (0-based)
        total_calls: Total number of calls in the round
    """
    if total_calls > 1:
        logger.info("→ Tool[%s]: executing tool call %d/%d", tool_name, call_index + 1, total_calls)
    else:
        logger.info("→ Tool[%s]: executing tool", tool_name)


def log_tool_execution_success(tool_name: str, content_length: int) -> None:
    logger.info("← Tool[%s]: success, content length: %d", tool_name, content_length)


def log_tool_execution_error(tool_name: str, error_msg: str) -> None:
    logger.error("← Tool[%s]: failed with error: %s", tool_name, error_msg)


def log_tool_arguments(tool_name: str, arguments: str, context: str, truncate_length: int = 500) -> None:
    """
    Log raw tool arguments received from the model.

    Args:
        tool_name: Name of the tool being called
        arguments: Raw argument payload
        context: Descriptive context for the log entry
        truncate_length: Maximum length for argument logging
    """
    if not should_log_feature("chat", "tool_arguments"):
        return

    logger.info("→ Tool[%s]: arguments (%s): %s", tool_name, context, _truncate(arguments, truncate_length))


def log_tool_results(tool_name: str, results: str, truncate_length: int = 200) -> None:
    if not should_log_feature("chat", "tool_results"):
        return

    logger.info("← Tool[%s]: results: %s", tool_name, _truncate(results, truncate_length))
