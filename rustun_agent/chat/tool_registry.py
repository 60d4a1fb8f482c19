"""
Capability Registry

The fixed set of operations the model may call, and their dispatch onto the
route service. Tool names received from the model are resolved against a
closed enum; anything else is an UnknownToolError.

invoke() never raises for a bad call: argument problems, unknown names and
upstream failures all come back as a ``{"error": ...}`` payload so the model
can correct itself on the next round.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from rustun_agent.routes import ClientCreate, ClientUpdate, RouteError, RouteService

from .errors import ToolArgumentError, ToolError, UnknownToolError, UpstreamError
from .models import ToolDefinition, ToolExecutionResult, ToolFunctionDefinition, ToolFunctionParameters

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)
T = TypeVar("T")


class ToolName(StrEnum):
    LIST_CLUSTERS = "list_clusters"
    LIST_CLIENTS = "list_clients"
    GET_CLIENT = "get_client"
    CREATE_CLIENT = "create_client"
    UPDATE_CLIENT = "update_client"
    DELETE_CLIENT = "delete_client"


# ---------- Argument models ----------


class _Arguments(BaseModel):
    model_config = ConfigDict(extra="ignore")


class ListClustersArgs(_Arguments):
    pass


class ListClientsArgs(_Arguments):
    cluster: str | None = None


class ClientKeyArgs(_Arguments):
    cluster: str = Field(min_length=1)
    identity: str = Field(min_length=1)


class UpdateClientArgs(ClientKeyArgs):
    # cluster/identity select the client; private_ip, gateway etc. are dropped
    name: str | None = None
    ciders: list[str] | None = None


# ---------- Static tool definitions ----------

_CLUSTER_PROPERTY = {"type": "string", "description": "Cluster name where the client belongs"}
_IDENTITY_PROPERTY = {"type": "string", "description": "Unique client identifier (UUID)"}


def _tool(name: ToolName, description: str, properties: dict[str, Any], required: list[str]) -> ToolDefinition:
    return ToolDefinition(
        function=ToolFunctionDefinition(
            name=name.value,
            description=description,
            parameters=ToolFunctionParameters(properties=properties, required=required),
        )
    )


TOOL_DEFINITIONS: tuple[ToolDefinition, ...] = (
    _tool(
        ToolName.LIST_CLUSTERS,
        "Get all clusters with their names and client counts",
        {},
        [],
    ),
    _tool(
        ToolName.LIST_CLIENTS,
        "Get client list, optionally filtered by cluster. Returns detailed client information "
        "including identity, name, IP address, etc.",
        {
            "cluster": {
                "type": "string",
                "description": "Cluster name to filter clients. If not provided, returns all clients",
            }
        },
        [],
    ),
    _tool(
        ToolName.GET_CLIENT,
        "Get detailed information of a single client by cluster name and client identity",
        {"cluster": _CLUSTER_PROPERTY, "identity": _IDENTITY_PROPERTY},
        ["cluster", "identity"],
    ),
    _tool(
        ToolName.CREATE_CLIENT,
        "Create a new VPN client. System will automatically generate client identity (UUID) and IP "
        "address configuration. If specified cluster doesn't exist, it will be created automatically",
        {
            "cluster": _CLUSTER_PROPERTY,
            "name": {
                "type": "string",
                "description": "Friendly name for the client, e.g.: Headquarters, Branch, NAS, Laptop, Phone",
            },
            "ciders": {
                "type": "array",
                "description": 'CIDR route list for the client, e.g. ["192.168.1.0/24"]',
                "items": {"type": "string"},
            },
        },
        ["cluster"],
    ),
    _tool(
        ToolName.UPDATE_CLIENT,
        "Update existing client information. Can modify name and CIDR routes, but cannot modify "
        "cluster, identity and IP configuration",
        {
            "cluster": _CLUSTER_PROPERTY,
            "identity": _IDENTITY_PROPERTY,
            "name": {"type": "string", "description": "New friendly name for the client"},
            "ciders": {"type": "array", "description": "New CIDR route list", "items": {"type": "string"}},
        },
        ["cluster", "identity"],
    ),
    _tool(
        ToolName.DELETE_CLIENT,
        "Delete specified client. After deletion, the IP address occupied by the client will be released",
        {"cluster": _CLUSTER_PROPERTY, "identity": _IDENTITY_PROPERTY},
        ["cluster", "identity"],
    ),
)


def _dumps(data: Any) -> str:
    return json.dumps(data, ensure_ascii=False)


class CapabilityRegistry:
    """Advertises the tool set and dispatches named calls to the route service."""

    def __init__(self, route_service: RouteService) -> None:
        self.route_service = route_service
        self._handlers: dict[ToolName, Callable[[str], Awaitable[str]]] = {
            ToolName.LIST_CLUSTERS: self._list_clusters,
            ToolName.LIST_CLIENTS: self._list_clients,
            ToolName.GET_CLIENT: self._get_client,
            ToolName.CREATE_CLIENT: self._create_client,
            ToolName.UPDATE_CLIENT: self._update_client,
            ToolName.DELETE_CLIENT: self._delete_client,
        }

    def list_tools(self) -> list[ToolDefinition]:
        """Return the tool definitions. Pure; safe for any caller."""
        return list(TOOL_DEFINITIONS)

    def get_openai_tools(self) -> list[dict[str, Any]]:
        return [tool.model_dump() for tool in TOOL_DEFINITIONS]

    async def invoke(self, name: str, raw_arguments: str) -> ToolExecutionResult:
        """Dispatch one call. Always returns a textual payload."""
        try:
            tool = self._resolve(name)
            content = await self._handlers[tool](raw_arguments)
        except ToolError as e:
            logger.warning("Tool %s failed (%s): %s", name, e.kind, e)
            return ToolExecutionResult(content=e.to_payload(), success=False, error=str(e), error_kind=e.kind)

        return ToolExecutionResult(content=content)

    @staticmethod
    def _resolve(name: str) -> ToolName:
        try:
            return ToolName(name)
        except ValueError:
            raise UnknownToolError(name) from None

    @staticmethod
    def _parse(model: type[M], raw_arguments: str) -> M:
        try:
            return model.model_validate_json(raw_arguments.strip() or "{}")
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'arguments'}: {err['msg']}" for err in e.errors()
            )
            raise ToolArgumentError(f"invalid arguments: {problems}") from e

    async def _call_upstream(self, operation: Awaitable[T]) -> T:
        try:
            return await operation
        except RouteError as e:
            raise UpstreamError(str(e)) from e

    # ---------- Handlers ----------

    async def _list_clusters(self, raw_arguments: str) -> str:
        self._parse(ListClustersArgs, raw_arguments)
        clusters = await self._call_upstream(self.route_service.list_clusters())
        return _dumps([c.model_dump() for c in clusters])

    async def _list_clients(self, raw_arguments: str) -> str:
        args = self._parse(ListClientsArgs, raw_arguments)
        clients = await self._call_upstream(self.route_service.list_clients(args.cluster))
        return _dumps([c.model_dump() for c in clients])

    async def _get_client(self, raw_arguments: str) -> str:
        args = self._parse(ClientKeyArgs, raw_arguments)
        client = await self._call_upstream(self.route_service.get_client(args.cluster, args.identity))
        return _dumps(client.model_dump())

    async def _create_client(self, raw_arguments: str) -> str:
        request = self._parse(ClientCreate, raw_arguments)
        client = await self._call_upstream(self.route_service.create_client(request))
        return _dumps(client.model_dump())

    async def _update_client(self, raw_arguments: str) -> str:
        args = self._parse(UpdateClientArgs, raw_arguments)
        changes = ClientUpdate(name=args.name, ciders=args.ciders)
        client = await self._call_upstream(self.route_service.update_client(args.cluster, args.identity, changes))
        return _dumps(client.model_dump())

    async def _delete_client(self, raw_arguments: str) -> str:
        args = self._parse(ClientKeyArgs, raw_arguments)
        await self._call_upstream(self.route_service.delete_client(args.cluster, args.identity))
        return _dumps({"success": True, "message": "client deleted"})
