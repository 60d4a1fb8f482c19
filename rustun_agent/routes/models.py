"""
Route Data Models

Pydantic models for VPN clients, clusters and address allocation.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class Client(BaseModel):
    """A VPN client entry as stored in routes.json."""

    cluster: str
    identity: str
    name: str = ""
    private_ip: str
    mask: str
    gateway: str
    ciders: list[str] = Field(default_factory=list)


class Cluster(BaseModel):
    """A group of clients sharing one address space."""

    name: str
    client_count: int


class ClientCreate(BaseModel):
    """Fields accepted when creating a client; identity and address are assigned."""

    model_config = ConfigDict(extra="ignore")

    cluster: str = Field(min_length=1)
    name: str = ""
    ciders: list[str] = Field(default_factory=list)


class ClientUpdate(BaseModel):
    """Mutable client fields. Anything else sent by a caller is dropped."""

    model_config = ConfigDict(extra="ignore")

    name: str | None = None
    ciders: list[str] | None = None


class AllocatedAddress(BaseModel):
    """An allocated address together with its cluster network settings."""

    ip: str
    gateway: str
    mask: str
