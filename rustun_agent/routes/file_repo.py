"""
JSON File Route Repository

CONFIG: storage.type = "file"
PURPOSE: Reads and writes the Rustun server's routes.json directly
FEATURES: Pretty-printed JSON array, file created on first write if missing,
          blocking file I/O kept off the event loop
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from collections.abc import Callable
from typing import TypeVar

from pydantic import TypeAdapter, ValidationError

from .errors import ClientExistsError, ClientNotFoundError, ClusterNotFoundError
from .models import Client
from .repository import RouteRepository

logger = logging.getLogger(__name__)

T = TypeVar("T")

_routes_adapter = TypeAdapter(list[Client])


class FileRouteRepository(RouteRepository):
    """Route storage backed by a single JSON file."""

    def __init__(self, file_path: str):
        self.file_path = file_path
        self._lock = asyncio.Lock()

    def _load_routes(self) -> list[Client]:
        if not os.path.exists(self.file_path):
            return []
        with open(self.file_path, encoding="utf-8") as f:
            data = f.read()
        if not data.strip():
            return []
        try:
            return _routes_adapter.validate_json(data)
        except ValidationError as e:
            raise ValueError(f"failed to parse routes file {self.file_path}: {e}") from e

    def _save_routes(self, routes: list[Client]) -> None:
        directory = os.path.dirname(self.file_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        payload = json.dumps([c.model_dump() for c in routes], indent=2, ensure_ascii=False)
        tmp_path = f"{self.file_path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(payload)
        os.replace(tmp_path, self.file_path)
        logger.debug("Saved %d routes to %s", len(routes), self.file_path)

    async def _read(self) -> list[Client]:
        async with self._lock:
            return await asyncio.to_thread(self._load_routes)

    async def _modify(self, mutate: Callable[[list[Client]], T]) -> T:
        """Run a read-modify-write cycle under the repository lock."""
        async with self._lock:
            routes = await asyncio.to_thread(self._load_routes)
            result = mutate(routes)
            await asyncio.to_thread(self._save_routes, routes)
            return result

    async def get_all(self) -> list[Client]:
        return await self._read()

    async def get_by_cluster(self, cluster: str) -> list[Client]:
        return [c for c in await self._read() if c.cluster == cluster]

    async def get_by_cluster_and_identity(self, cluster: str, identity: str) -> Client:
        for client in await self._read():
            if client.cluster == cluster and client.identity == identity:
                return client
        raise ClientNotFoundError(cluster, identity)

    async def create(self, client: Client) -> None:
        def _create(routes: list[Client]) -> None:
            if any(c.cluster == client.cluster and c.identity == client.identity for c in routes):
                raise ClientExistsError(client.cluster, client.identity)
            routes.append(client)

        await self._modify(_create)

    async def update(self, cluster: str, identity: str, client: Client) -> None:
        def _update(routes: list[Client]) -> None:
            for i, existing in enumerate(routes):
                if existing.cluster == cluster and existing.identity == identity:
                    routes[i] = client.model_copy(update={"cluster": cluster, "identity": identity})
                    return
            raise ClientNotFoundError(cluster, identity)

        await self._modify(_update)

    async def delete(self, cluster: str, identity: str) -> None:
        def _delete(routes: list[Client]) -> None:
            for i, existing in enumerate(routes):
                if existing.cluster == cluster and existing.identity == identity:
                    del routes[i]
                    return
            raise ClientNotFoundError(cluster, identity)

        await self._modify(_delete)

    async def delete_cluster(self, cluster: str) -> list[Client]:
        def _delete_cluster(routes: list[Client]) -> list[Client]:
            removed = [c for c in routes if c.cluster == cluster]
            if not removed:
                raise ClusterNotFoundError(cluster)
            routes[:] = [c for c in routes if c.cluster != cluster]
            return removed

        return await self._modify(_delete_cluster)

    async def get_all_clusters(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for client in await self._read():
            counts[client.cluster] = counts.get(client.cluster, 0) + 1
        return counts
