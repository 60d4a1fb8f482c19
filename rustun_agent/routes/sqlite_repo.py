"""
SQLite Route Repository

CONFIG: storage.type = "sqlite"
PURPOSE: Route storage in a local database instead of routes.json
FEATURES: Schema created on first use, (cluster, identity) unique,
          route lists stored as JSON text, insertion order preserved
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import aiosqlite

from .errors import ClientExistsError, ClientNotFoundError, ClusterNotFoundError
from .models import Client
from .repository import RouteRepository

logger = logging.getLogger(__name__)

_COLUMNS = "cluster, identity, name, private_ip, mask, gateway, ciders"


class SqliteRouteRepository(RouteRepository):
    """Route storage backed by a SQLite database file."""

    def __init__(self, db_path: str = "routes.db"):
        self.db_path = db_path
        self._lock = asyncio.Lock()
        self._initialized = False

    async def _ensure_initialized(self) -> None:
        """Create the clients table if not already done."""
        if self._initialized:
            return

        async with self._lock:
            if self._initialized:
                return

            async with aiosqlite.connect(self.db_path) as db:
                await db.execute("PRAGMA journal_mode=WAL")
                await db.execute("""
                    CREATE TABLE IF NOT EXISTS clients (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        cluster TEXT NOT NULL,
                        identity TEXT NOT NULL,
                        name TEXT NOT NULL DEFAULT '',
                        private_ip TEXT NOT NULL,
                        mask TEXT NOT NULL,
                        gateway TEXT NOT NULL,
                        ciders TEXT NOT NULL DEFAULT '[]',
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    )
                """)
                await db.execute("""
                    CREATE UNIQUE INDEX IF NOT EXISTS idx_cluster_identity
                    ON clients(cluster, identity)
                """)
                await db.commit()

            logger.info("SQLite route storage ready: %s", self.db_path)
            self._initialized = True

    @staticmethod
    def _serialize(client: Client) -> tuple[Any, ...]:
        return (
            client.cluster,
            client.identity,
            client.name,
            client.private_ip,
            client.mask,
            client.gateway,
            json.dumps(client.ciders),
        )

    @staticmethod
    def _deserialize(row: aiosqlite.Row) -> Client:
        return Client(
            cluster=row["cluster"],
            identity=row["identity"],
            name=row["name"],
            private_ip=row["private_ip"],
            mask=row["mask"],
            gateway=row["gateway"],
            ciders=json.loads(row["ciders"]) if row["ciders"] else [],
        )

    async def _select(self, where: str = "", params: tuple[Any, ...] = ()) -> list[Client]:
        await self._ensure_initialized()

        query = f"SELECT {_COLUMNS} FROM clients {where} ORDER BY id"
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(query, params) as cursor:
                rows = await cursor.fetchall()
                return [self._deserialize(row) for row in rows]

    async def get_all(self) -> list[Client]:
        return await self._select()

    async def get_by_cluster(self, cluster: str) -> list[Client]:
        return await self._select("WHERE cluster = ?", (cluster,))

    async def get_by_cluster_and_identity(self, cluster: str, identity: str) -> Client:
        clients = await self._select("WHERE cluster = ? AND identity = ?", (cluster, identity))
        if not clients:
            raise ClientNotFoundError(cluster, identity)
        return clients[0]

    async def create(self, client: Client) -> None:
        await self._ensure_initialized()

        async with aiosqlite.connect(self.db_path) as db:
            try:
                await db.execute(
                    f"INSERT INTO clients ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
                    self._serialize(client),
                )
            except aiosqlite.IntegrityError as e:
                raise ClientExistsError(client.cluster, client.identity) from e
            await db.commit()

    async def update(self, cluster: str, identity: str, client: Client) -> None:
        await self._ensure_initialized()

        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                """
                UPDATE clients
                SET name = ?, private_ip = ?, mask = ?, gateway = ?, ciders = ?,
                    updated_at = CURRENT_TIMESTAMP
                WHERE cluster = ? AND identity = ?
                """,
                (
                    client.name,
                    client.private_ip,
                    client.mask,
                    client.gateway,
                    json.dumps(client.ciders),
                    cluster,
                    identity,
                ),
            )
            if cursor.rowcount == 0:
                raise ClientNotFoundError(cluster, identity)
            await db.commit()

    async def delete(self, cluster: str, identity: str) -> None:
        await self._ensure_initialized()

        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "DELETE FROM clients WHERE cluster = ? AND identity = ?",
                (cluster, identity),
            )
            if cursor.rowcount == 0:
                raise ClientNotFoundError(cluster, identity)
            await db.commit()

    async def delete_cluster(self, cluster: str) -> list[Client]:
        removed = await self.get_by_cluster(cluster)
        if not removed:
            raise ClusterNotFoundError(cluster)

        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("DELETE FROM clients WHERE cluster = ?", (cluster,))
            await db.commit()
        return removed

    async def get_all_clusters(self) -> dict[str, int]:
        await self._ensure_initialized()

        async with (
            aiosqlite.connect(self.db_path) as db,
            db.execute("SELECT cluster, COUNT(*) FROM clients GROUP BY cluster ORDER BY MIN(id)") as cursor,
        ):
            rows = await cursor.fetchall()
            return {row[0]: row[1] for row in rows}
