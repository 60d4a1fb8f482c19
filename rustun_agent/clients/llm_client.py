"""
LLM HTTP client for OpenAI-compatible chat-completions providers.

Blocking requests return one typed LLMResponseData. Streaming requests yield
raw chunk dicts parsed from the server-sent event stream; assembling them is
left to the caller. Every provider or protocol failure is raised as a
TransportError.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import AsyncGenerator
from typing import Any, cast

import httpx
from mcp import types

from rustun_agent.chat.errors import TransportError
from rustun_agent.chat.logging_utils import should_log_feature
from rustun_agent.chat.models import (
    AssistantMessage,
    ChatCompletionMessage,
    LLMResponseData,
    ToolDefinition,
)
from rustun_agent.config import Configuration

logger = logging.getLogger(__name__)

HTTP_OK = 200
SSE_DATA_PREFIX = "data:"
SSE_DONE = "[DONE]"


def serialize_messages(messages: list[ChatCompletionMessage]) -> list[dict[str, Any]]:
    """Convert typed messages to the provider's request shape."""
    result: list[dict[str, Any]] = []
    for msg in messages:
        if isinstance(msg, AssistantMessage):
            result.append(msg.to_dict())
        else:
            result.append(msg.model_dump(exclude_none=True))
    return result


def _error_envelope_message(data: Any) -> str | None:
    """Return a readable message if ``data`` is a provider error envelope."""
    if not isinstance(data, dict) or not data.get("error"):
        return None

    error = data["error"]
    if isinstance(error, dict):
        message = error.get("message") or "unknown error"
        error_type = error.get("type")
        return f"API error: {message} (type: {error_type})" if error_type else f"API error: {message}"
    return f"API error: {error}"


class LLMClient:
    """HTTP client for the configured chat-completions provider."""

    def __init__(
        self,
        configuration: Configuration,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.configuration = configuration
        self._config = configuration.get_llm_config()
        self._provider = self._detect_provider(self._config["base_url"])
        api_key = configuration.llm_api_key

        pool = configuration.get_connection_pool_config()
        self.client = httpx.AsyncClient(
            base_url=self._config["base_url"],
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            timeout=pool["request_timeout_seconds"],
            http2=True,
            limits=httpx.Limits(
                max_connections=pool["max_connections"],
                max_keepalive_connections=pool["max_keepalive_connections"],
                keepalive_expiry=pool["keepalive_expiry_seconds"],
            ),
            trust_env=False,
            transport=transport,
        )

        logger.info("LLM client initialized with provider: %s, model: %s", self._provider, self._config["model"])

    @property
    def config(self) -> dict[str, Any]:
        return self._config

    @property
    def provider(self) -> str:
        return self._provider

    @staticmethod
    def _detect_provider(base_url: str) -> str:
        if "deepseek.com" in base_url:
            return "deepseek"
        if "openai.com" in base_url:
            return "openai"
        if "openrouter.ai" in base_url:
            return "openrouter"
        return "unknown"

    def _build_payload(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        stream: bool = False,
    ) -> dict[str, Any]:
        """
        Build the request body. Every provider config key other than the
        connection settings is passed through as a completion parameter.
        """
        payload: dict[str, Any] = {
            "model": self._config["model"],
            "messages": messages,
        }
        if stream:
            payload["stream"] = True

        excluded_keys = {"base_url", "model"}
        for key, value in self._config.items():
            if key not in excluded_keys and value is not None:
                payload[key] = value

        if tools:
            payload["tools"] = tools

        return payload

    def _log_http_request(self, method: str, url: str, status_code: int, duration_ms: float) -> None:
        if should_log_feature("clients", "http_requests"):
            logger.info("HTTP %s %s | Status: %d | Duration: %.2fms", method, url, status_code, duration_ms)

    async def get_response_with_tools(
        self,
        messages: list[ChatCompletionMessage],
        tools: list[ToolDefinition] | None = None,
    ) -> LLMResponseData:
        """
        One blocking round trip. Takes ``choices[0]`` of the reply.

        Raises:
            TransportError: On connection failure, a non-success status, an
                error envelope, or a reply without choices.
        """
        dict_tools = [tool.model_dump() for tool in tools] if tools else None
        payload = self._build_payload(serialize_messages(messages), dict_tools)

        logger.info("→ LLM: POST /chat/completions (%d messages)", len(messages))
        try:
            start_time = time.monotonic()
            response = await self.client.post("/chat/completions", json=payload)
            duration_ms = (time.monotonic() - start_time) * 1000
            self._log_http_request("POST", "/chat/completions", response.status_code, duration_ms)

            try:
                result = response.json()
            except json.JSONDecodeError as e:
                if response.status_code != HTTP_OK:
                    raise TransportError(f"API returned status {response.status_code}: {response.text[:500]}") from e
                raise TransportError(f"Invalid JSON in API response: {e}", code=types.PARSE_ERROR) from e

            if envelope := _error_envelope_message(result):
                raise TransportError(envelope)
            if response.status_code != HTTP_OK:
                raise TransportError(f"API returned status {response.status_code}")

            if not result.get("choices"):
                raise TransportError("No choices in API response", code=types.PARSE_ERROR)

            choice = result["choices"][0]
            reply = LLMResponseData(
                message=AssistantMessage.from_dict(choice["message"]),
                finish_reason=choice.get("finish_reason"),
                index=choice.get("index", 0),
                model=result.get("model") or self._config["model"],
            )

        except TransportError:
            raise
        except httpx.HTTPError as e:
            logger.error("HTTP error: %s", e)
            raise TransportError(f"HTTP error: {e!s}") from e
        except (KeyError, TypeError, AttributeError) as e:
            logger.error("Unexpected response format: %s", e)
            raise TransportError(f"Unexpected response format: {e!s}", code=types.PARSE_ERROR) from e

        logger.info("← LLM: finish_reason=%s", reply.finish_reason)
        return reply

    async def get_streaming_response_with_tools(
        self,
        messages: list[ChatCompletionMessage],
        tools: list[ToolDefinition] | None = None,
        cancel: asyncio.Event | None = None,
    ) -> AsyncGenerator[dict[str, Any]]:
        """
        Stream one round trip, yielding raw chunk dicts.

        The sequence ends at the ``[DONE]`` sentinel, at end of body, or as
        soon as ``cancel`` is set; leaving the generator releases the
        connection.

        Raises:
            TransportError: On connection failure, a non-success status, an
                error envelope inside the stream, or an undecodable event.
        """
        dict_tools = [tool.model_dump() for tool in tools] if tools else None
        payload = self._build_payload(serialize_messages(messages), dict_tools, stream=True)

        logger.info("→ LLM: streaming POST /chat/completions (%d messages)", len(messages))
        chunk_count = 0
        try:
            async with self.client.stream(
                "POST",
                "/chat/completions",
                json=payload,
                headers={"Accept": "text/event-stream", "Accept-Encoding": "identity"},
            ) as response:
                if response.status_code != HTTP_OK:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    try:
                        envelope = _error_envelope_message(json.loads(body))
                    except json.JSONDecodeError:
                        envelope = None
                    raise TransportError(envelope or f"Streaming API error {response.status_code}: {body[:500]}")

                async for line in response.aiter_lines():
                    if cancel is not None and cancel.is_set():
                        logger.info("← LLM: stream cancelled after %d chunks", chunk_count)
                        return

                    line = line.strip()
                    if not line.startswith(SSE_DATA_PREFIX):
                        # blank separators, comments, event: lines
                        continue

                    data = line[len(SSE_DATA_PREFIX) :].strip()
                    if data == SSE_DONE:
                        break

                    try:
                        chunk = cast(dict[str, Any], json.loads(data))
                    except json.JSONDecodeError as e:
                        raise TransportError(f"Invalid JSON in stream chunk: {e}", code=types.PARSE_ERROR) from e

                    if envelope := _error_envelope_message(chunk):
                        raise TransportError(envelope)

                    chunk_count += 1
                    if "choices" in chunk:
                        yield chunk

            if chunk_count == 0:
                raise TransportError("No streaming chunks received from API")

        except TransportError:
            raise
        except httpx.HTTPError as e:
            logger.error("HTTP error during streaming: %s (%s)", e, type(e).__name__)
            raise TransportError(f"HTTP error: {e!s}") from e

        logger.info("← LLM: streaming completed, %d chunks", chunk_count)

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self) -> LLMClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()
