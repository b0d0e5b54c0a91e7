from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from urllib.parse import urlsplit

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

_DEFAULT_PORTS = {"http": "80", "https": "443"}


def format_timestamp(value: datetime | None) -> str:
    if value is None:
        return ""
    return value.strftime(TIMESTAMP_FORMAT)


@dataclass(frozen=True)
class ProbeRecord:
    id: int
    url: str
    ip_address: str = ""
    probed_at: datetime | None = None


@dataclass(frozen=True)
class UrlEndpoint:
    hostname: str
    protocol: str
    port: str


def _split_host_port(netloc: str) -> tuple[str, str] | None:
    hostinfo = netloc.rpartition("@")[2]
    if hostinfo.startswith("["):
        host, sep, rest = hostinfo[1:].partition("]")
        if not sep or (rest and not rest.startswith(":")):
            return None
        port = rest[1:]
    else:
        host, sep, port = hostinfo.rpartition(":")
        if not sep:
            host, port = hostinfo, ""
    if port and not (port.isascii() and port.isdigit()):
        return None
    return host, port


def url_endpoint(url: str) -> UrlEndpoint | None:
    """Hostname, scheme and port of a probed URL, or None if it can't be used.

    The hostname keeps its original case and the port is taken verbatim
    from the URL, range unchecked. A URL without an explicit port gets the
    scheme default (80/443), any other scheme gets "unknown".
    """
    try:
        parts = urlsplit(url or "")
    except ValueError:
        return None
    split = _split_host_port(parts.netloc)
    if split is None:
        return None
    hostname, port = split
    if not hostname:
        return None
    protocol = parts.scheme
    if not port:
        port = _DEFAULT_PORTS.get(protocol, "unknown")
    return UrlEndpoint(hostname=hostname, protocol=protocol, port=port)
