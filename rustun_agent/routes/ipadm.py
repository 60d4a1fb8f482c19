"""
Address Allocation

Per-cluster private address pools. Every cluster uses the same network
settings; pools are created lazily on first allocation.
"""

from __future__ import annotations

import ipaddress
import logging
import threading
from collections.abc import Iterable

from .errors import AddressExhaustedError
from .models import AllocatedAddress, Client

logger = logging.getLogger(__name__)


class IPConfig:
    """Network settings shared by all cluster pools."""

    def __init__(self, network: str, gateway: str, start_ip: str, mask: str) -> None:
        self.network = ipaddress.IPv4Network(network)
        self.gateway = ipaddress.IPv4Address(gateway)
        self.start_ip = ipaddress.IPv4Address(start_ip)
        self.mask = mask

    @classmethod
    def from_dict(cls, config: dict[str, str]) -> IPConfig:
        return cls(config["network"], config["gateway"], config["start_ip"], config["mask"])


class IPAllocator:
    """Hands out unique addresses per cluster; safe to call from concurrent dispatches."""

    def __init__(self, config: IPConfig) -> None:
        self.config = config
        self._allocated: dict[str, set[ipaddress.IPv4Address]] = {}
        self._lock = threading.Lock()

    def load_existing(self, clients: Iterable[Client]) -> None:
        """Mark addresses of already-stored clients as allocated."""
        with self._lock:
            count = 0
            for client in clients:
                try:
                    address = ipaddress.IPv4Address(client.private_ip)
                except ValueError:
                    logger.warning(
                        "Ignoring invalid address %r for %s/%s", client.private_ip, client.cluster, client.identity
                    )
                    continue
                self._allocated.setdefault(client.cluster, set()).add(address)
                count += 1
        logger.info("Address pools initialized with %d existing addresses", count)

    def allocate(self, cluster: str) -> AllocatedAddress:
        """Allocate the lowest free address at or above the start address.

        Raises:
            AddressExhaustedError: If no address is left in the network.
        """
        with self._lock:
            allocated = self._allocated.setdefault(cluster, set())
            current = int(self.config.start_ip)
            last = int(self.config.network.broadcast_address)
            if self.config.network.prefixlen < 31:
                last -= 1

            while current <= last:
                candidate = ipaddress.IPv4Address(current)
                if candidate != self.config.gateway and candidate not in allocated:
                    allocated.add(candidate)
                    logger.debug("Allocated %s in cluster %s", candidate, cluster)
                    return AllocatedAddress(ip=str(candidate), gateway=str(self.config.gateway), mask=self.config.mask)
                current += 1

        raise AddressExhaustedError(cluster)

    def release(self, cluster: str, ip: str) -> None:
        """Return an address to its cluster pool. Unknown addresses are ignored."""
        try:
            address = ipaddress.IPv4Address(ip)
        except ValueError:
            return
        with self._lock:
            pool = self._allocated.get(cluster)
            if pool is not None:
                pool.discard(address)

    def is_allocated(self, cluster: str, ip: str) -> bool:
        with self._lock:
            return ipaddress.IPv4Address(ip) in self._allocated.get(cluster, set())
