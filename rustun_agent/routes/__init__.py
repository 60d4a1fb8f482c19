"""
Route Management Module

Cluster/client storage backends, address allocation and the route service
consumed by the agent's capability registry.
"""

from __future__ import annotations

from .errors import (
    AddressExhaustedError,
    ClientExistsError,
    ClientNotFoundError,
    ClusterNotFoundError,
    RouteError,
)
from .factory import create_repository, create_route_service
from .ipadm import IPAllocator, IPConfig
from .models import AllocatedAddress, Client, ClientCreate, ClientUpdate, Cluster
from .repository import RouteRepository
from .service import RouteService
from .sqlite_repo import SqliteRouteRepository

__all__ = [
    "AddressExhaustedError",
    "AllocatedAddress",
    "Client",
    "ClientCreate",
    "ClientExistsError",
    "ClientNotFoundError",
    "ClientUpdate",
    "Cluster",
    "ClusterNotFoundError",
    "IPAllocator",
    "IPConfig",
    "RouteError",
    "RouteRepository",
    "RouteService",
    "SqliteRouteRepository",
    "create_repository",
    "create_route_service",
]
