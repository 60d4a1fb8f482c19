"""Rustun agent: natural-language management of Rustun VPN clusters and clients."""

__version__ = "0.1.0"
