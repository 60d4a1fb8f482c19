"""
Rustun MCP Server

Exposes the agent's capability registry over MCP, so the same cluster and
client operations can be driven by any MCP host. Every tool delegates to
CapabilityRegistry.invoke and returns its textual payload unchanged.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from mcp.server.fastmcp import FastMCP

from rustun_agent.chat.logging_utils import configure_logging
from rustun_agent.chat.tool_registry import CapabilityRegistry, ToolName
from rustun_agent.config import Configuration
from rustun_agent.routes import create_route_service

logger = logging.getLogger(__name__)

mcp = FastMCP("rustun-agent")

_registry: CapabilityRegistry | None = None


async def get_registry() -> CapabilityRegistry:
    """Registry bound to the configured route storage, built on first use."""
    global _registry
    if _registry is None:
        configuration = Configuration()
        _registry = CapabilityRegistry(await create_route_service(configuration))
    return _registry


def set_registry(registry: CapabilityRegistry | None) -> None:
    global _registry
    _registry = registry


async def _invoke(name: ToolName, arguments: dict[str, Any]) -> str:
    registry = await get_registry()
    # Omitted optionals stay omitted so the registry applies its own defaults
    payload = {key: value for key, value in arguments.items() if value is not None}
    result = await registry.invoke(name.value, json.dumps(payload))
    return result.content


@mcp.tool()
async def list_clusters() -> str:
    """Get all clusters with their names and client counts"""
    return await _invoke(ToolName.LIST_CLUSTERS, {})


@mcp.tool()
async def list_clients(cluster: str | None = None) -> str:
    """Get client list, optionally filtered by cluster"""
    return await _invoke(ToolName.LIST_CLIENTS, {"cluster": cluster})


@mcp.tool()
async def get_client(cluster: str, identity: str) -> str:
    """Get detailed information of a single client by cluster name and client identity"""
    return await _invoke(ToolName.GET_CLIENT, {"cluster": cluster, "identity": identity})


@mcp.tool()
async def create_client(cluster: str, name: str = "", ciders: list[str] | None = None) -> str:
    """Create a new VPN client; identity and IP address are assigned automatically"""
    return await _invoke(ToolName.CREATE_CLIENT, {"cluster": cluster, "name": name, "ciders": ciders})


@mcp.tool()
async def update_client(
    cluster: str,
    identity: str,
    name: str | None = None,
    ciders: list[str] | None = None,
) -> str:
    """Update a client's name and CIDR routes"""
    return await _invoke(
        ToolName.UPDATE_CLIENT,
        {"cluster": cluster, "identity": identity, "name": name, "ciders": ciders},
    )


@mcp.tool()
async def delete_client(cluster: str, identity: str) -> str:
    """Delete a client and release its IP address"""
    return await _invoke(ToolName.DELETE_CLIENT, {"cluster": cluster, "identity": identity})


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    configure_logging(Configuration().get_logging_config())
    logger.info("Rustun MCP server starting with %d tools", len(ToolName))
    mcp.run()


if __name__ == "__main__":
    main()
