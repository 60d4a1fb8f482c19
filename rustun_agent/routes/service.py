"""
Route Service

Resource-management operations on clusters and clients. Identity and address
assignment happen here; the repository only stores what it is given.
"""

from __future__ import annotations

import logging
import uuid

from .ipadm import IPAllocator
from .models import Client, ClientCreate, ClientUpdate, Cluster
from .repository import RouteRepository

logger = logging.getLogger(__name__)


class RouteService:
    """Cluster/client operations over a repository and an address allocator."""

    def __init__(self, repo: RouteRepository, allocator: IPAllocator) -> None:
        self.repo = repo
        self.allocator = allocator

    async def initialize(self) -> None:
        """Seed the allocator with addresses already present in storage."""
        clients = await self.repo.get_all()
        self.allocator.load_existing(clients)

    async def list_clusters(self) -> list[Cluster]:
        counts = await self.repo.get_all_clusters()
        return [Cluster(name=name, client_count=count) for name, count in counts.items()]

    async def list_clients(self, cluster: str | None = None) -> list[Client]:
        if cluster:
            return await self.repo.get_by_cluster(cluster)
        return await self.repo.get_all()

    async def get_client(self, cluster: str, identity: str) -> Client:
        return await self.repo.get_by_cluster_and_identity(cluster, identity)

    async def create_client(self, request: ClientCreate) -> Client:
        """Create a client with a generated identity and an allocated address."""
        allocated = self.allocator.allocate(request.cluster)
        client = Client(
            cluster=request.cluster,
            identity=str(uuid.uuid4()),
            name=request.name,
            private_ip=allocated.ip,
            mask=allocated.mask,
            gateway=allocated.gateway,
            ciders=list(request.ciders),
        )

        try:
            await self.repo.create(client)
        except BaseException:
            self.allocator.release(client.cluster, allocated.ip)
            raise

        logger.info("Created client %s/%s with address %s", client.cluster, client.identity, client.private_ip)
        return client

    async def update_client(self, cluster: str, identity: str, changes: ClientUpdate) -> Client:
        """Update name and routes; cluster, identity and addressing never change."""
        existing = await self.repo.get_by_cluster_and_identity(cluster, identity)

        update: dict[str, object] = {}
        if changes.name is not None:
            update["name"] = changes.name
        if changes.ciders is not None:
            update["ciders"] = list(changes.ciders)
        updated = existing.model_copy(update=update)

        await self.repo.update(cluster, identity, updated)
        logger.info("Updated client %s/%s fields=%s", cluster, identity, sorted(update))
        return updated

    async def delete_client(self, cluster: str, identity: str) -> None:
        """Delete a client and release its address."""
        client = await self.repo.get_by_cluster_and_identity(cluster, identity)
        await self.repo.delete(cluster, identity)
        self.allocator.release(cluster, client.private_ip)
        logger.info("Deleted client %s/%s, released %s", cluster, identity, client.private_ip)

    async def delete_cluster(self, cluster: str) -> int:
        """Delete every client of a cluster; returns how many were removed."""
        removed = await self.repo.delete_cluster(cluster)
        for client in removed:
            self.allocator.release(cluster, client.private_ip)
        logger.info("Deleted cluster %s with %d clients", cluster, len(removed))
        return len(removed)
