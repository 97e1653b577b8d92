"""
Utility Functions

Common helpers for host naming and interface enumeration.
"""

import ipaddress
import socket
from typing import List, Optional, Tuple

import psutil


def format_address(address: Optional[Tuple[str, int]]) -> str:
    """
    Format an address tuple as a string.

    Args:
        address: Tuple of (host, port), or None.

    Returns:
        Formatted address string.
    """
    if not address:
        return "-"
    return f"{address[0]}:{address[1]}"


def get_hostname() -> str:
    """
    Get the raw host name announced in compat SRV records.

    Returns:
        The operating system host name, or ``localhost`` when unset.
    """
    return socket.gethostname() or "localhost"


def get_interface_addresses(include_loopback: bool = False, include_ipv6: bool = True) -> List[str]:
    """
    Enumerate the IP addresses assigned to local network interfaces.

    Args:
        include_loopback: Whether to include loopback addresses.
        include_ipv6: Whether to include IPv6 addresses.

    Returns:
        Unique addresses in interface order, IPv4 first.
    """
    ipv4: List[str] = []
    ipv6: List[str] = []

    for _, snics in psutil.net_if_addrs().items():
        for snic in snics:
            if snic.family == socket.AF_INET:
                bucket = ipv4
            elif snic.family == socket.AF_INET6 and include_ipv6:
                bucket = ipv6
            else:
                continue

            # Strip the zone index of link-local addresses (fe80::1%eth0)
            host = snic.address.split("%", 1)[0]
            try:
                ip = ipaddress.ip_address(host)
            except ValueError:
                continue

            if ip.is_loopback and not include_loopback:
                continue
            if ip.is_link_local:
                continue
            if host not in bucket:
                bucket.append(host)

    return ipv4 + ipv6
