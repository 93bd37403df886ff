"""Discovery of the addresses other devices on the LAN can reach us at."""

from __future__ import annotations

import ipaddress
import logging
import socket
from typing import Iterable, List


LOGGER = logging.getLogger(__name__)

# 10.0.0.0/8 is excluded; it is usually a VPN tunnel.
_LAN_NETWORKS = (
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("172.16.0.0/12"),
)


def is_lan_address(address: str) -> bool:
    try:
        candidate = ipaddress.ip_address(address)
    except ValueError:
        return False
    return any(candidate in network for network in _LAN_NETWORKS)


def _probe_outbound_address() -> str | None:
    # Connecting a UDP socket sends nothing; it only selects the outbound interface.
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as probe:
            probe.connect(("192.168.0.1", 80))
            return probe.getsockname()[0]
    except OSError:
        return None


def _hostname_addresses() -> Iterable[str]:
    try:
        infos = socket.getaddrinfo(socket.gethostname(), None, socket.AF_INET)
    except OSError as error:
        LOGGER.debug("Could not resolve local hostname: %s", error)
        return []
    return [info[4][0] for info in infos]


def local_ip_addresses() -> List[str]:
    """Return the private IPv4 addresses of this host, most likely first."""

    addresses: List[str] = []
    outbound = _probe_outbound_address()
    candidates = ([outbound] if outbound else []) + list(_hostname_addresses())
    for address in candidates:
        if is_lan_address(address) and address not in addresses:
            addresses.append(address)
    return addresses


def build_server_urls(host: str, port: int) -> List[str]:
    """URLs to advertise for a server bound to *host*:*port*."""

    if host in {"0.0.0.0", "::", ""}:
        addresses = local_ip_addresses() or ["127.0.0.1"]
    else:
        addresses = [host]
    return [f"http://{address}:{port}/" for address in addresses]


__all__ = ["build_server_urls", "is_lan_address", "local_ip_addresses"]
