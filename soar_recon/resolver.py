"""
resolver.py
-----------

Maps a target string to a single address for the Discovery phase.

IP literals are used as-is.  CIDR ranges are reduced to their first host,
since the pipeline scans one host per run.  ``*.sslip.io`` hostnames carry
their address in the name (``192-168-1-1.sslip.io``) and are decoded without
a DNS query; everything else goes through the system resolver, preferring a
public IPv4 address when several are returned.
"""

from __future__ import annotations

import asyncio
import ipaddress
import socket
from typing import Awaitable, Callable, List, Optional

from soar_recon.core import Target
from soar_recon.errors import ResolutionError

SSLIP_SUFFIX = ".sslip.io"

Resolver = Callable[[str], Awaitable[Target]]


def is_sslip_domain(domain: str) -> bool:
    return domain.lower().endswith(SSLIP_SUFFIX)


def ip_from_sslip(domain: str) -> Optional[str]:
    """``10-0-0-5.sslip.io`` -> ``10.0.0.5``; None if the label is not an address."""
    if not is_sslip_domain(domain):
        return None
    label = domain[: -len(SSLIP_SUFFIX)].rsplit(".", 1)[-1]
    candidate = label.replace("-", ".")
    try:
        return str(ipaddress.IPv4Address(candidate))
    except ValueError:
        return None


def _pick_address(addresses: List[str]) -> str:
    for addr in addresses:
        if not ipaddress.ip_address(addr).is_private:
            return addr
    return addresses[0]


async def lookup(host: str, timeout: float = 5.0) -> List[str]:
    """Return the IPv4 addresses of ``host`` in resolver order (may be empty)."""
    loop = asyncio.get_running_loop()
    try:
        infos = await asyncio.wait_for(
            loop.getaddrinfo(host, None, family=socket.AF_INET, type=socket.SOCK_STREAM),
            timeout=timeout,
        )
    except (OSError, asyncio.TimeoutError):
        return []
    addresses: List[str] = []
    for info in infos:
        addr = info[4][0]
        if addr not in addresses:
            addresses.append(addr)
    return addresses


async def resolve_target(raw: str) -> Target:
    """Resolve ``raw`` into a :class:`Target` with an address.

    Raises :class:`ResolutionError` when no address can be found.
    """
    raw = raw.strip()
    target = Target(raw)
    if not raw:
        raise ResolutionError(raw, "empty target")

    kind = target.kind
    if kind in ("ip", "ipv6"):
        try:
            return target.with_address(str(ipaddress.ip_address(raw)))
        except ValueError:
            raise ResolutionError(raw, "not a valid address") from None

    if kind == "cidr":
        try:
            network = ipaddress.ip_network(raw, strict=False)
        except ValueError:
            raise ResolutionError(raw, "not a valid network") from None
        first = next(iter(target.hosts), None)
        if first is None or first == raw:
            raise ResolutionError(raw, f"network {network} has no hosts")
        return target.with_address(first)

    sslip_ip = ip_from_sslip(raw)
    if sslip_ip:
        return target.with_address(sslip_ip, using_fallback_dns=True)

    addresses = await lookup(raw)
    if addresses:
        return target.with_address(_pick_address(addresses))

    raise ResolutionError(raw, "no address records")
