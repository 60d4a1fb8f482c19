"""
Repository Factory

Factory functions building the route repository and route service from
configuration.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .file_repo import FileRouteRepository
from .ipadm import IPAllocator, IPConfig
from .memory_repo import InMemoryRouteRepository
from .repository import RouteRepository
from .service import RouteService
from .sqlite_repo import SqliteRouteRepository

if TYPE_CHECKING:
    from rustun_agent.config import Configuration

logger = logging.getLogger(__name__)


def create_repository(storage_config: dict[str, Any]) -> RouteRepository:
    """Create the route repository selected by ``storage.type``."""
    storage_type = storage_config.get("type", "file")

    if storage_type == "memory":
        logger.info("Using in-memory route storage")
        return InMemoryRouteRepository()

    if storage_type == "file":
        routes_file = storage_config.get("file", {}).get("routes_file", "./routes.json")
        logger.info("Using file route storage: %s", routes_file)
        return FileRouteRepository(routes_file)

    if storage_type == "sqlite":
        db_path = storage_config.get("sqlite", {}).get("db_path", "./routes.db")
        logger.info("Using SQLite route storage: %s", db_path)
        return SqliteRouteRepository(db_path)

    raise ValueError(f"Unsupported storage type '{storage_type}'")


async def create_route_service(configuration: Configuration) -> RouteService:
    """Build the route service from configuration and seed its allocator from storage."""
    repo = create_repository(configuration.get_storage_config())
    allocator = IPAllocator(IPConfig.from_dict(configuration.get_ipam_config()))
    service = RouteService(repo, allocator)
    await service.initialize()
    return service
