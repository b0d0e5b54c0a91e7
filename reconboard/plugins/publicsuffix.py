from __future__ import annotations

import ipaddress

import tldextract

# Bundled public suffix snapshot, never fetched over the network
_EXTRACT = tldextract.TLDExtract(suffix_list_urls=(), cache_dir=None)


def _is_ip_literal(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


def _last_two_labels(host: str) -> str:
    # Known limitation: wrong for multi-label suffixes such as co.uk
    parts = host.split(".")
    if len(parts) >= 2:
        return ".".join(parts[-2:])
    return host


def apex_domain(hostname: str) -> str:
    """Return the registrable (eTLD+1) domain for a hostname.

    Single-label names and IP literals come back unchanged. When the public
    suffix lookup cannot produce a registrable domain (unknown suffix, or the
    name is itself a suffix) the last two labels are used instead.
    """
    host = (hostname or "").strip()
    if not host:
        return ""
    if "." not in host or _is_ip_literal(host):
        return host

    ext = _EXTRACT(host)
    if ext.domain and ext.suffix:
        return f"{ext.domain}.{ext.suffix}"
    return _last_two_labels(host)

