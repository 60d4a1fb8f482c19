#!/usr/bin/env python3
"""
Tests for the chat orchestrator in blocking and streaming mode, driven by a
scripted model in place of the HTTP client.
"""

import asyncio
import contextlib
import json

import pytest

from rustun_agent.chat import AgentChatRequest, CapabilityRegistry, ChatOrchestrator, HistoryMessage
from rustun_agent.chat.errors import IterationLimitExceeded, TransportError
from rustun_agent.chat.models import AssistantMessage, FunctionCall, LLMResponseData, ToolCall, ToolCallRecord
from rustun_agent.clients.llm_client import serialize_messages
from rustun_agent.config import CONFIG_ENV_VAR, Configuration
from rustun_agent.routes import ClientCreate, IPAllocator, IPConfig, RouteService
from rustun_agent.routes.memory_repo import InMemoryRouteRepository


@pytest.fixture(autouse=True)
def _default_config(monkeypatch):
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)


def turn(*content, calls=(), hang=False):
    """One scripted model reply: text pieces, then tool calls."""
    return {"content": list(content), "calls": list(calls), "hang": hang}


def call(call_id, name, arguments="{}", call_type="function"):
    return ToolCall(id=call_id, type=call_type, function=FunctionCall(name=name, arguments=arguments))


class ScriptedLLM:
    """Stands in for LLMClient; replays one scripted turn per request."""

    def __init__(self, turns):
        self.turns = list(turns)
        self.requests = []
        self.streams_closed = 0
        self.config = {"model": "stub-model"}

    def _next_turn(self, messages):
        self.requests.append(serialize_messages(messages))
        if not self.turns:
            raise AssertionError("unexpected model request")
        scripted = self.turns.pop(0)
        if isinstance(scripted, Exception):
            raise scripted
        return scripted

    async def get_response_with_tools(self, messages, tools=None):
        scripted = self._next_turn(messages)
        return LLMResponseData(
            message=AssistantMessage(content="".join(scripted["content"]) or None, tool_calls=scripted["calls"]),
            finish_reason="tool_calls" if scripted["calls"] else "stop",
            model="stub-model",
        )

    async def get_streaming_response_with_tools(self, messages, tools=None, cancel=None):
        scripted = self._next_turn(messages)

        # Like the HTTP client, stop quietly before the next chunk once cancelled
        def cancelled():
            return cancel is not None and cancel.is_set()

        try:
            for piece in scripted["content"]:
                if cancelled():
                    return
                yield {"choices": [{"delta": {"content": piece}}]}
            if scripted["hang"]:
                await asyncio.Event().wait()
            for i, c in enumerate(scripted["calls"]):
                if cancelled():
                    return
                args = c.function.arguments
                half = len(args) // 2
                head = {"index": i, "id": c.id, "type": c.type, "function": {"name": c.function.name}}
                head["function"]["arguments"] = args[:half]
                yield {"choices": [{"delta": {"tool_calls": [head]}}]}
                yield {"choices": [{"delta": {"tool_calls": [{"index": i, "function": {"arguments": args[half:]}}]}}]}
            if cancelled():
                return
            yield {"choices": [{"delta": {}, "finish_reason": "tool_calls" if scripted["calls"] else "stop"}]}
        finally:
            self.streams_closed += 1

    async def close(self):
        pass


class BlockingRouteService(RouteService):
    """list_clusters never returns until cancelled."""

    def __init__(self, repo, allocator):
        super().__init__(repo, allocator)
        self.started = asyncio.Event()
        self.cancelled = False

    async def list_clusters(self):
        self.started.set()
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return []


def _service(service_class=RouteService):
    configuration = Configuration()
    return service_class(InMemoryRouteRepository(), IPAllocator(IPConfig.from_dict(configuration.get_ipam_config())))


def _orchestrator(llm, service=None):
    configuration = Configuration()
    registry = CapabilityRegistry(service or _service())
    return ChatOrchestrator(
        ChatOrchestrator.ChatOrchestratorConfig(llm_client=llm, registry=registry, configuration=configuration)
    )


async def _collect(orchestrator, request, cancel=None):
    events = [event async for event in orchestrator.chat_stream(request, cancel)]
    assert sum(event.is_terminal for event in events) == 1
    assert events[-1].is_terminal
    return events


def test_blocking_tool_round_then_answer():
    async def run():
        service = _service()
        await service.create_client(ClientCreate(cluster="prod", name="a"))
        await service.create_client(ClientCreate(cluster="prod", name="b"))

        llm = ScriptedLLM(
            [
                turn(calls=[call("call_1", "list_clusters")]),
                turn("You have one cluster, prod, with 2 clients."),
            ]
        )
        orchestrator = _orchestrator(llm, service)
        response = await orchestrator.chat(AgentChatRequest(message="List my clusters", conversation_id="c-1"))
        return llm, response

    llm, response = asyncio.run(run())

    assert response.error is None
    assert response.conversation_id == "c-1"
    assert response.message == "You have one cluster, prod, with 2 clients."
    assert response.tool_calls == [
        ToolCallRecord(tool="list_clusters", arguments="{}", result='[{"name": "prod", "client_count": 2}]')
    ]

    assert len(llm.requests) == 2
    first, second = llm.requests
    assert [m["role"] for m in first] == ["system", "user"]
    assert "Product Knowledge Base" in first[0]["content"]
    assert [m["role"] for m in second] == ["system", "user", "assistant", "tool"]
    assert second[2]["tool_calls"][0]["id"] == "call_1"
    assert second[3]["tool_call_id"] == "call_1"
    assert second[3]["content"] == '[{"name": "prod", "client_count": 2}]'


def test_streaming_text_only():
    async def run():
        llm = ScriptedLLM([turn("Hel", "lo", "!")])
        return await _collect(_orchestrator(llm), AgentChatRequest(message="hi"))

    events = asyncio.run(run())

    assert [e.type for e in events] == ["content", "content", "content", "done"]
    assert [e.content for e in events[:3]] == ["Hel", "lo", "!"]
    assert events[-1].full_message == "Hello!"
    assert events[-1].tool_calls == []


def test_streaming_tool_round_then_answer():
    async def run():
        llm = ScriptedLLM(
            [
                turn("Creating it now. ", calls=[call("call_1", "create_client", '{"cluster": "dev", "name": "NAS"}')]),
                turn("Created NAS in dev."),
            ]
        )
        service = _service()
        events = await _collect(_orchestrator(llm, service), AgentChatRequest(message="Add a NAS to dev"))
        return llm, service, events

    llm, service, events = asyncio.run(run())

    assert [e.type for e in events] == ["content", "tool_call", "content", "done"]
    record = events[1].tool_call
    assert record.tool == "create_client"
    assert record.arguments == '{"cluster": "dev", "name": "NAS"}'
    assert json.loads(record.result)["private_ip"] == "10.12.0.10"

    done = events[-1]
    assert done.full_message == "Created NAS in dev."
    assert done.tool_calls == [record]

    wire = done.to_wire()
    assert wire["fullMessage"] == "Created NAS in dev."
    assert wire["toolCalls"][0]["tool"] == "create_client"

    # The assembled arguments reached the transcript intact
    assistant = llm.requests[1][2]
    assert assistant["content"] == "Creating it now. "
    assert assistant["tool_calls"][0]["function"]["arguments"] == '{"cluster": "dev", "name": "NAS"}'
    assert llm.streams_closed == 2


def test_streaming_round_with_several_calls():
    calls = [
        call("call_a", "list_clusters"),
        call("call_b", "list_clients"),
        call("call_c", "create_client", '{"cluster": "dev"}'),
    ]

    async def run():
        llm = ScriptedLLM([turn(calls=calls), turn("Done.")])
        service = _service()
        events = await _collect(_orchestrator(llm, service), AgentChatRequest(message="do things"))
        return llm, service, events

    llm, service, events = asyncio.run(run())

    tool_events = [e for e in events if e.type == "tool_call"]
    assert sorted(e.tool_call.tool for e in tool_events) == ["create_client", "list_clients", "list_clusters"]
    assert len(events[-1].tool_calls) == 3

    transcript = llm.requests[1]
    assert [m["role"] for m in transcript] == ["system", "user", "assistant", "tool", "tool", "tool"]
    assert [m["tool_call_id"] for m in transcript[3:]] == ["call_a", "call_b", "call_c"]
    assert [m["name"] for m in transcript[3:]] == ["list_clusters", "list_clients", "create_client"]


def test_tool_failure_is_fed_back_to_model():
    async def run():
        llm = ScriptedLLM(
            [
                turn(calls=[call("call_1", "get_client", '{"cluster": "prod", "identity": "ghost"}')]),
                turn("That client does not exist."),
            ]
        )
        response = await _orchestrator(llm).chat(AgentChatRequest(message="show ghost"))
        return llm, response

    llm, response = asyncio.run(run())

    assert response.error is None
    assert response.message == "That client does not exist."
    assert json.loads(response.tool_calls[0].result) == {"error": "client not found: prod/ghost"}
    assert llm.requests[1][-1]["content"] == response.tool_calls[0].result


def test_unknown_tool_and_bad_arguments_are_fed_back():
    async def run():
        llm = ScriptedLLM(
            [
                turn(calls=[call("call_1", "drop_database"), call("call_2", "get_client", '{"cluster": ')]),
                turn("Sorry."),
            ]
        )
        return await _collect(_orchestrator(llm), AgentChatRequest(message="break things"))

    events = asyncio.run(run())

    assert events[-1].type == "done"
    results = {r.tool: json.loads(r.result) for r in events[-1].tool_calls}
    assert results["drop_database"] == {"error": "unknown tool: drop_database"}
    assert "error" in results["get_client"]


def test_iteration_limit_blocking():
    turns = [turn(calls=[call(f"call_{n}", "list_clusters")]) for n in range(11)]

    async def run():
        llm = ScriptedLLM(turns)
        with pytest.raises(IterationLimitExceeded):
            await _orchestrator(llm).chat(AgentChatRequest(message="loop"))
        return llm

    assert len(asyncio.run(run()).requests) == 10

    async def run_handled():
        llm = ScriptedLLM(turns)
        return await _orchestrator(llm).handle_chat_request(AgentChatRequest(message="loop"))

    response = asyncio.run(run_handled())
    assert "too many iterations" in response.error
    assert response.tool_calls == []


def test_iteration_limit_streaming():
    async def run():
        llm = ScriptedLLM([turn(calls=[call(f"call_{n}", "list_clusters")]) for n in range(11)])
        events = await _collect(_orchestrator(llm), AgentChatRequest(message="loop"))
        return llm, events

    llm, events = asyncio.run(run())

    assert len(llm.requests) == 10
    assert len([e for e in events if e.type == "tool_call"]) == 10
    assert events[-1].type == "error"
    assert events[-1].reason == "iteration_limit"


def test_configured_round_limit(tmp_path, monkeypatch):
    override = tmp_path / "override.yaml"
    override.write_text("chat:\n  service:\n    max_tool_hops: 2\n")
    monkeypatch.setenv(CONFIG_ENV_VAR, str(override))

    async def run():
        llm = ScriptedLLM([turn(calls=[call(f"call_{n}", "list_clusters")]) for n in range(3)])
        with pytest.raises(IterationLimitExceeded, match="after 2 model round trips"):
            await _orchestrator(llm).chat(AgentChatRequest(message="loop"))
        return llm

    assert len(asyncio.run(run()).requests) == 2


def test_transport_error_blocking():
    async def run():
        orchestrator = _orchestrator(ScriptedLLM([TransportError("connection refused")]))
        with pytest.raises(TransportError):
            await orchestrator.chat(AgentChatRequest(message="hi"))

        orchestrator = _orchestrator(ScriptedLLM([TransportError("connection refused")]))
        return await orchestrator.handle_chat_request(AgentChatRequest(message="hi"))

    response = asyncio.run(run())
    assert response.error == "LLM request failed: connection refused"


def test_transport_error_streaming():
    async def run():
        llm = ScriptedLLM([turn(calls=[call("call_1", "list_clusters")]), TransportError("connection reset")])
        return await _collect(_orchestrator(llm), AgentChatRequest(message="hi"))

    events = asyncio.run(run())

    assert [e.type for e in events] == ["tool_call", "error"]
    assert events[-1].reason == "transport"
    assert events[-1].error == "LLM request failed: connection reset"


def test_cancel_while_tools_run():
    async def run():
        service = _service(BlockingRouteService)
        llm = ScriptedLLM([turn(calls=[call("call_1", "list_clusters")]), turn("never requested")])
        orchestrator = _orchestrator(llm, service)
        cancel = asyncio.Event()

        consumer = asyncio.create_task(_collect(orchestrator, AgentChatRequest(message="list"), cancel))
        await asyncio.wait_for(service.started.wait(), timeout=5)
        cancel.set()
        events = await asyncio.wait_for(consumer, timeout=5)
        return llm, service, events

    llm, service, events = asyncio.run(run())

    assert len(events) == 1
    assert events[0].type == "error"
    assert events[0].reason == "cancelled"
    assert len(llm.requests) == 1
    assert service.cancelled


def test_cancel_while_model_streams():
    async def run():
        llm = ScriptedLLM([turn("Thinking", hang=True)])
        cancel = asyncio.Event()
        events = []
        async for event in _orchestrator(llm).chat_stream(AgentChatRequest(message="hi"), cancel):
            events.append(event)
            if event.type == "content":
                cancel.set()
        return llm, events

    llm, events = asyncio.run(asyncio.wait_for(run(), timeout=5))

    assert [e.type for e in events] == ["content", "error"]
    assert events[-1].reason == "cancelled"
    assert llm.streams_closed == 1


def test_cancel_when_model_stream_ends_quietly():
    async def run():
        llm = ScriptedLLM([turn("Hel", "lo", "!")])
        cancel = asyncio.Event()
        events = []
        async for event in _orchestrator(llm).chat_stream(AgentChatRequest(message="hi"), cancel):
            events.append(event)
            if event.type == "content":
                cancel.set()
        return llm, events

    llm, events = asyncio.run(asyncio.wait_for(run(), timeout=5))

    # The stream ran out right after cancel; the turn still ends as cancelled
    assert [e.type for e in events] == ["content", "error"]
    assert events[-1].reason == "cancelled"
    assert len(llm.requests) == 1
    assert llm.streams_closed == 1


def test_leaving_the_event_stream_closes_the_model_stream():
    async def run():
        llm = ScriptedLLM([turn("Hel", "lo", "!")])
        events = _orchestrator(llm).chat_stream(AgentChatRequest(message="hi"))
        async with contextlib.aclosing(events):
            async for event in events:
                break
        return event, llm.streams_closed

    first, closed = asyncio.run(run())

    assert first.type == "content"
    assert closed == 1


def test_cancel_before_start():
    async def run():
        llm = ScriptedLLM([turn("unused")])
        orchestrator = _orchestrator(llm)
        cancel = asyncio.Event()
        cancel.set()

        response = await orchestrator.handle_chat_request(AgentChatRequest(message="hi"), cancel)
        events = await _collect(orchestrator, AgentChatRequest(message="hi"), cancel)
        return llm, response, events

    llm, response, events = asyncio.run(run())

    assert response.error == "Stream cancelled by client"
    assert [e.reason for e in events] == ["cancelled"]
    assert llm.requests == []


def test_non_function_calls_are_not_dispatched():
    async def run():
        llm = ScriptedLLM([turn("Done.", calls=[call("call_1", "list_clusters", call_type="web_search")])])
        response = await _orchestrator(llm).chat(AgentChatRequest(message="hi"))
        return llm, response

    llm, response = asyncio.run(run())

    assert response.message == "Done."
    assert response.tool_calls == []
    assert len(llm.requests) == 1


def test_history_seeds_transcript():
    request = AgentChatRequest(
        message="And now?",
        history=[
            HistoryMessage(role="user", content="Hi"),
            HistoryMessage(role="assistant", content="Hello, how can I help?"),
        ],
    )

    async def run():
        llm = ScriptedLLM([turn("Now I answer.")])
        await _orchestrator(llm).chat(request)
        return llm

    transcript = asyncio.run(run()).requests[0]

    assert [m["role"] for m in transcript] == ["system", "user", "assistant", "user"]
    assert transcript[1]["content"] == "Hi"
    assert transcript[2]["content"] == "Hello, how can I help?"
    assert transcript[3]["content"] == "And now?"


def test_invocations_do_not_share_transcripts():
    async def run():
        llm = ScriptedLLM([turn("first"), turn("second")])
        orchestrator = _orchestrator(llm)
        await orchestrator.chat(AgentChatRequest(message="one"))
        await orchestrator.chat(AgentChatRequest(message="two"))
        return llm

    first, second = asyncio.run(run()).requests

    assert len(first) == len(second) == 2
    assert second[1]["content"] == "two"


def test_identical_requests_give_identical_answers():
    script = [turn(calls=[call("call_1", "list_clusters")]), turn("You have no clusters yet.")]

    async def run():
        llm = ScriptedLLM(script * 2)
        orchestrator = _orchestrator(llm)
        first = await orchestrator.chat(AgentChatRequest(message="List my clusters"))
        second = await orchestrator.chat(AgentChatRequest(message="List my clusters"))
        return llm, first, second

    llm, first, second = asyncio.run(run())

    assert first.message == "You have no clusters yet."
    assert first == second
    assert len(llm.requests) == 4
    assert llm.requests[:2] == llm.requests[2:]


def test_initialize_is_idempotent():
    async def run():
        orchestrator = _orchestrator(ScriptedLLM([]))
        await orchestrator.initialize()
        handler = orchestrator.streaming_handler
        await asyncio.gather(orchestrator.initialize(), orchestrator.initialize())
        return orchestrator, handler

    orchestrator, handler = asyncio.run(run())

    assert orchestrator.streaming_handler is handler
    assert orchestrator.get_tool_count() == 6
