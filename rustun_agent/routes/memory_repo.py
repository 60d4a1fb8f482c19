"""
In-Memory Route Repository

CONFIG: storage.type = "memory"
PURPOSE: Development/testing - all data lost on restart
"""

from __future__ import annotations

import logging

from .errors import ClientExistsError, ClientNotFoundError, ClusterNotFoundError
from .models import Client
from .repository import RouteRepository

logger = logging.getLogger(__name__)


class InMemoryRouteRepository(RouteRepository):
    """Keeps clients in insertion order. Data lost on restart."""

    def __init__(self, clients: list[Client] | None = None):
        self._clients: list[Client] = [c.model_copy(deep=True) for c in clients or []]

    async def get_all(self) -> list[Client]:
        return [c.model_copy(deep=True) for c in self._clients]

    async def get_by_cluster(self, cluster: str) -> list[Client]:
        return [c.model_copy(deep=True) for c in self._clients if c.cluster == cluster]

    async def get_by_cluster_and_identity(self, cluster: str, identity: str) -> Client:
        return self._find(cluster, identity).model_copy(deep=True)

    async def create(self, client: Client) -> None:
        if any(c.cluster == client.cluster and c.identity == client.identity for c in self._clients):
            raise ClientExistsError(client.cluster, client.identity)
        self._clients.append(client.model_copy(deep=True))

    async def update(self, cluster: str, identity: str, client: Client) -> None:
        for i, existing in enumerate(self._clients):
            if existing.cluster == cluster and existing.identity == identity:
                self._clients[i] = client.model_copy(update={"cluster": cluster, "identity": identity}, deep=True)
                return
        raise ClientNotFoundError(cluster, identity)

    async def delete(self, cluster: str, identity: str) -> None:
        self._clients.remove(self._find(cluster, identity))

    async def delete_cluster(self, cluster: str) -> list[Client]:
        removed = [c for c in self._clients if c.cluster == cluster]
        if not removed:
            raise ClusterNotFoundError(cluster)
        self._clients = [c for c in self._clients if c.cluster != cluster]
        return removed

    async def get_all_clusters(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for client in self._clients:
            counts[client.cluster] = counts.get(client.cluster, 0) + 1
        return counts

    def _find(self, cluster: str, identity: str) -> Client:
        for client in self._clients:
            if client.cluster == cluster and client.identity == identity:
                return client
        raise ClientNotFoundError(cluster, identity)
