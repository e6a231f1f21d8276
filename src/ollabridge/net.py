from __future__ import annotations

import httpx

from .config import NetworkFamily

# Binding a wildcard local address pins the socket to one address family.
_LOCAL_ADDRESS: dict[str, str | None] = {
    "ipv4": "0.0.0.0",
    "ipv6": "::",
    "any": None,
}


def make_transport(network_family: NetworkFamily) -> httpx.AsyncHTTPTransport:
    local_address = _LOCAL_ADDRESS.get(network_family)
    if local_address is None:
        return httpx.AsyncHTTPTransport()
    return httpx.AsyncHTTPTransport(local_address=local_address)
