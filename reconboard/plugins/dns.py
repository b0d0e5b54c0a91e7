from __future__ import annotations
import ipaddress
from urllib.parse import urlsplit

import dns.resolver


def host_from_target(target: str) -> str:
    """Strip scheme, path and port from a target line."""
    value = target.strip()
    if "://" in value:
        try:
            return urlsplit(value).hostname or ""
        except ValueError:
            return ""
    value = value.split("/", 1)[0]
    if value.startswith("["):
        return value[1:].split("]", 1)[0]
    if value.count(":") == 1:
        value = value.split(":", 1)[0]
    return value.lower().strip(".")


def resolve_ipv4(host: str) -> list[str]:
    r = dns.resolver.Resolver()
    r.lifetime = 3
    try:
        ans = r.resolve(host, "A")
    except Exception:
        return []
    return sorted({str(x) for x in ans})


def resolve_targets(targets: list[str]) -> tuple[list[str], list[str]]:
    """Turn a mixed list of IPs, hostnames and URLs into unique IPv4 addresses.

    Returns (ips, unresolved_hosts). Literal IPs are kept as given.
    """
    ips: set[str] = set()
    unresolved: list[str] = []
    for target in targets:
        host = host_from_target(target)
        if not host:
            continue
        try:
            ipaddress.ip_address(host)
            ips.add(host)
            continue
        except ValueError:
            pass
        found = resolve_ipv4(host)
        if not found:
            unresolved.append(host)
            continue
        ips.update(found)
    return sorted(ips), unresolved
