from __future__ import annotations

import logging
import os
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models import IPInfo, IPPort, Result
from .common import format_timestamp
from .ip_intel_service import IPIntelResolver, get_ip_info

log = logging.getLogger(__name__)

_LIST_FIELDS = {
    "tags": "tags",
    "ports": "ports",
    "hostnames": "hostnames",
    "domains": "shodan_domains",
    "vulns": "vulns",
}


def _fallback_enabled() -> bool:
    return os.getenv("RECON_FALLBACK_ENABLED", "1").strip() != "0"


def _port_to_dict(port: IPPort) -> dict[str, Any]:
    out: dict[str, Any] = {
        "id": port.id,
        "port": port.port,
        "protocol": port.protocol,
        "service": port.service,
        "state": port.state,
        "banner": port.banner,
        "discovered_at": format_timestamp(port.discovered_at),
        "is_cdn": port.is_cdn,
        "cdn_name": port.cdn_name,
        "cdn_detected": port.cdn_detected,
        "original_host": port.original_host,
    }
    if port.scan_session_id is not None:
        out["scan_session_id"] = port.scan_session_id
    return out


def _result_to_dict(result: Result) -> dict[str, Any]:
    out: dict[str, Any] = {
        "id": result.id,
        "url": result.url,
        "final_url": result.final_url,
        "title": result.title,
        "response_code": result.response_code,
        "response_reason": result.response_reason,
        "protocol": result.protocol,
        "screenshot": result.screenshot,
        "file_name": result.filename,
        "failed": result.failed,
        "failed_reason": result.failed_reason,
        "probed_at": format_timestamp(result.probed_at),
    }
    if result.scan_session_id is not None:
        out["scan_session_id"] = result.scan_session_id
    return out


def intel_to_dict(info: IPInfo) -> dict[str, Any]:
    """Serialize an intelligence record, leaving out empty values."""
    out: dict[str, Any] = {}
    for key in (
        "organization",
        "isp",
        "asn",
        "country",
        "country_code",
        "city",
        "region",
        "postal",
        "latitude",
        "longitude",
        "os",
    ):
        value = getattr(info, key)
        if value:
            out[key] = value
    for column, key in _LIST_FIELDS.items():
        try:
            values = info.get_list(column)
        except ValueError:
            log.warning("corrupt %s list stored for %s", column, info.ip_address)
            continue
        if values:
            out[key] = values
    if info.last_update is not None:
        out["last_update"] = format_timestamp(info.last_update)
    if info.updated_at is not None:
        out["updated_at"] = format_timestamp(info.updated_at)
    return out


def build_ip_info(
    session: Session, ip: str, resolver: IPIntelResolver | None = None
) -> dict[str, Any]:
    ports = (
        session.execute(select(IPPort).where(IPPort.ip_address == ip).order_by(IPPort.port))
        .scalars()
        .all()
    )
    results = (
        session.execute(select(Result).where(Result.ip_address == ip).order_by(Result.id))
        .scalars()
        .all()
    )

    scan_sessions = {p.scan_session_id for p in ports if p.scan_session_id is not None}
    scan_sessions |= {r.scan_session_id for r in results if r.scan_session_id is not None}

    response: dict[str, Any] = {
        "ip_address": ip,
        "open_ports": [_port_to_dict(p) for p in ports],
        "total_ports": len(ports),
        "domains": [_result_to_dict(r) for r in results],
        "total_domains": len(results),
        "scan_sessions": sorted(scan_sessions),
    }

    if _fallback_enabled():
        resolver = resolver or IPIntelResolver()
        record = resolver.resolve(session, ip).record
    else:
        record = get_ip_info(session, ip)

    if record is not None:
        response["shodan_info"] = intel_to_dict(record)
    return response
