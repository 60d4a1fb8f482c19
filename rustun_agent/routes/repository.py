"""
Route Repository Interface

Storage protocol consumed by the route service. Implementations must be safe
under concurrent calls from several tool dispatches at once.
"""

from __future__ import annotations

from typing import Protocol

from .models import Client


class RouteRepository(Protocol):
    """Protocol defining the interface for route storage backends."""

    async def get_all(self) -> list[Client]: ...

    async def get_by_cluster(self, cluster: str) -> list[Client]: ...

    async def get_by_cluster_and_identity(self, cluster: str, identity: str) -> Client:
        """Return the client or raise ClientNotFoundError."""
        ...

    async def create(self, client: Client) -> None:
        """Store a new client or raise ClientExistsError."""
        ...

    async def update(self, cluster: str, identity: str, client: Client) -> None:
        """Replace a stored client, keeping its cluster and identity."""
        ...

    async def delete(self, cluster: str, identity: str) -> None: ...

    async def delete_cluster(self, cluster: str) -> list[Client]:
        """Remove every client of a cluster and return the removed clients."""
        ...

    async def get_all_clusters(self) -> dict[str, int]:
        """Return cluster names mapped to their client counts."""
        ...
