"""Errors raised by the route storage and address allocation layer."""

from __future__ import annotations


class RouteError(Exception):
    """Base class for resource-management failures."""


class ClientNotFoundError(RouteError):
    def __init__(self, cluster: str, identity: str) -> None:
        super().__init__(f"client not found: {cluster}/{identity}")
        self.cluster = cluster
        self.identity = identity


class ClusterNotFoundError(RouteError):
    def __init__(self, cluster: str) -> None:
        super().__init__(f"cluster not found: {cluster}")
        self.cluster = cluster


class ClientExistsError(RouteError):
    def __init__(self, cluster: str, identity: str) -> None:
        super().__init__(f"client already exists: {cluster}/{identity}")
        self.cluster = cluster
        self.identity = identity


class AddressExhaustedError(RouteError):
    def __init__(self, cluster: str) -> None:
        super().__init__(f"no available IP in cluster {cluster}")
        self.cluster = cluster
