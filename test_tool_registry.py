#!/usr/bin/env python3
"""
Tests for the capability registry: advertised tool definitions and dispatch,
including every failure kind being returned as an error payload.
"""

import asyncio
import json

from rustun_agent.chat.tool_registry import CapabilityRegistry, ToolName
from rustun_agent.routes import ClientCreate, IPAllocator, IPConfig, RouteService
from rustun_agent.routes.memory_repo import InMemoryRouteRepository

IPAM = {"network": "10.12.0.0/16", "gateway": "10.12.0.1", "start_ip": "10.12.0.10", "mask": "255.255.0.0"}


def _registry():
    service = RouteService(InMemoryRouteRepository(), IPAllocator(IPConfig.from_dict(IPAM)))
    return CapabilityRegistry(service)


def test_tool_definitions():
    registry = _registry()
    tools = {tool.name: tool for tool in registry.list_tools()}

    assert set(tools) == {t.value for t in ToolName}
    assert tools["list_clusters"].function.parameters.required == []
    assert tools["list_clients"].function.parameters.required == []
    assert tools["get_client"].function.parameters.required == ["cluster", "identity"]
    assert tools["create_client"].function.parameters.required == ["cluster"]
    assert tools["update_client"].function.parameters.required == ["cluster", "identity"]
    assert tools["delete_client"].function.parameters.required == ["cluster", "identity"]
    assert tools["create_client"].function.parameters.properties["ciders"]["items"] == {"type": "string"}

    # Listing is pure: a fresh list of the same definitions every time
    again = registry.list_tools()
    assert again == registry.list_tools()
    again.clear()
    assert len(registry.list_tools()) == 6


def test_openai_tool_format():
    openai_tools = _registry().get_openai_tools()

    assert len(openai_tools) == 6
    for tool in openai_tools:
        assert tool["type"] == "function"
        assert tool["function"]["parameters"]["type"] == "object"
        assert tool["function"]["description"]


def test_create_get_update_delete_flow():
    async def run():
        registry = _registry()

        created = await registry.invoke("create_client", '{"cluster": "prod", "name": "Laptop"}')
        assert created.success
        client = json.loads(created.content)
        assert client["private_ip"] == "10.12.0.10"

        fetched = await registry.invoke(
            "get_client", json.dumps({"cluster": "prod", "identity": client["identity"]})
        )
        assert json.loads(fetched.content) == client

        updated = await registry.invoke(
            "update_client",
            json.dumps(
                {
                    "cluster": "prod",
                    "identity": client["identity"],
                    "name": "Work Laptop",
                    "ciders": ["192.168.1.0/24"],
                    "private_ip": "10.12.200.200",
                }
            ),
        )
        updated_client = json.loads(updated.content)
        assert updated_client["name"] == "Work Laptop"
        assert updated_client["ciders"] == ["192.168.1.0/24"]
        assert updated_client["private_ip"] == "10.12.0.10"

        key = json.dumps({"cluster": "prod", "identity": client["identity"]})
        deleted = await registry.invoke("delete_client", key)
        assert json.loads(deleted.content) == {"success": True, "message": "client deleted"}
        assert not registry.route_service.allocator.is_allocated("prod", "10.12.0.10")

    asyncio.run(run())


def test_list_operations():
    async def run():
        registry = _registry()
        await registry.route_service.create_client(ClientCreate(cluster="prod"))
        await registry.route_service.create_client(ClientCreate(cluster="prod"))

        clusters = await registry.invoke("list_clusters", "")
        assert clusters.content == '[{"name": "prod", "client_count": 2}]'

        all_clients = json.loads((await registry.invoke("list_clients", "{}")).content)
        assert len(all_clients) == 2

        filtered = json.loads((await registry.invoke("list_clients", '{"cluster": "dev"}')).content)
        assert filtered == []

    asyncio.run(run())


def test_unknown_tool():
    async def run():
        result = await _registry().invoke("drop_database", "{}")

        assert not result.success
        assert result.error_kind == "unknown_tool"
        assert json.loads(result.content) == {"error": "unknown tool: drop_database"}

    asyncio.run(run())


def test_argument_errors():
    async def run():
        registry = _registry()

        malformed = await registry.invoke("get_client", '{"cluster": "prod", "identity": ')
        assert malformed.error_kind == "argument_error"
        assert "error" in json.loads(malformed.content)

        missing = await registry.invoke("get_client", '{"cluster": "prod"}')
        assert missing.error_kind == "argument_error"
        assert "identity" in json.loads(missing.content)["error"]

        empty_cluster = await registry.invoke("create_client", '{"cluster": ""}')
        assert empty_cluster.error_kind == "argument_error"

        wrong_type = await registry.invoke("create_client", '{"cluster": "prod", "ciders": "10.0.0.0/8"}')
        assert wrong_type.error_kind == "argument_error"

    asyncio.run(run())


def test_upstream_errors_keep_message():
    async def run():
        result = await _registry().invoke("get_client", '{"cluster": "prod", "identity": "missing"}')

        assert result.error_kind == "upstream_error"
        assert json.loads(result.content) == {"error": "client not found: prod/missing"}

    asyncio.run(run())
