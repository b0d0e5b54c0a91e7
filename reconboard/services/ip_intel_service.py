from __future__ import annotations

import ipaddress
import logging
import os
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Iterable

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import ProviderError, ShodanError
from ..models import IPInfo, IPPort
from ..plugins.dns import resolve_targets
from ..plugins.geolocation import GeoLocation, lookup_geolocation
from ..plugins.naabu import run_naabu_scan
from ..plugins.shodan import ShodanClient, ShodanHost

log = logging.getLogger(__name__)


class LookupState(str, Enum):
    CACHED = "cached"
    NEEDS_FALLBACK = "needs_fallback"
    ENRICHING = "enriching"
    PERSISTED = "persisted"
    FAILED = "failed"


@dataclass
class Resolution:
    ip: str
    state: LookupState
    record: IPInfo | None = None
    ports: list[int] = field(default_factory=list)
    created: bool = False


def _deadline_seconds() -> float:
    try:
        return float(os.getenv("RECON_IP_DEADLINE_SECONDS", "150"))
    except ValueError:
        return 150.0


def is_valid_ip(value: str) -> bool:
    try:
        ipaddress.ip_address((value or "").strip())
    except ValueError:
        return False
    return True


def get_ip_info(session: Session, ip: str) -> IPInfo | None:
    return session.execute(
        select(IPInfo).where(IPInfo.ip_address == ip)
    ).scalar_one_or_none()


def has_port_records(session: Session, ip: str) -> bool:
    return (
        session.execute(select(IPPort.id).where(IPPort.ip_address == ip).limit(1)).first()
        is not None
    )


def insert_ip_info_once(session: Session, info: IPInfo) -> tuple[IPInfo, bool]:
    """Store an intelligence record unless one already exists for the IP.

    Returns (stored_record, created). Losing an insert race against another
    writer counts as success: the winner's record is returned.
    """
    existing = get_ip_info(session, info.ip_address)
    if existing is not None:
        log.debug("IP info already exists for %s, not overwriting", info.ip_address)
        return existing, False

    session.add(info)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        existing = get_ip_info(session, info.ip_address)
        if existing is None:
            raise
        log.info("IP info for %s was stored concurrently, keeping it", info.ip_address)
        return existing, False
    return info, True


def _insert_port_rows(session: Session, rows: list[IPPort]) -> int:
    if not rows:
        return 0
    session.add_all(rows)
    try:
        session.commit()
        return len(rows)
    except IntegrityError:
        session.rollback()

    # Someone else wrote some of the pairs meanwhile: go one by one
    saved = 0
    for row in rows:
        session.add(row)
        try:
            session.commit()
            saved += 1
        except IntegrityError:
            session.rollback()
    return saved


def store_port_records(session: Session, rows: Iterable[IPPort]) -> tuple[int, int]:
    """Insert port records whose (ip, port) pair is not stored yet.

    Returns (saved, skipped). An already known pair is left untouched.
    """
    pending: dict[tuple[str, int], IPPort] = {}
    skipped = 0
    for row in rows:
        key = (row.ip_address, row.port)
        if key in pending:
            skipped += 1
            continue
        pending[key] = row
    if not pending:
        return 0, skipped

    ips = {ip for ip, _ in pending}
    known = {
        (ip, port)
        for ip, port in session.execute(
            select(IPPort.ip_address, IPPort.port).where(IPPort.ip_address.in_(ips))
        ).all()
    }
    fresh = [row for key, row in pending.items() if key not in known]
    skipped += len(pending) - len(fresh)
    saved = _insert_port_rows(session, fresh)
    skipped += len(fresh) - saved
    return saved, skipped


def record_open_ports(
    session: Session,
    ip: str,
    ports: Iterable[int],
    scan_session_id: int | None = None,
    services: dict[int, str] | None = None,
) -> int:
    services = services or {}
    rows = [
        IPPort(
            ip_address=ip,
            port=port,
            protocol="tcp",
            state="open",
            service=services.get(port, ""),
            scan_session_id=scan_session_id,
            is_cdn=False,
            cdn_detected=False,
        )
        for port in ports
    ]
    saved, _ = store_port_records(session, rows)
    return saved


def ip_info_from_geolocation(
    ip: str, geo: GeoLocation, ports: list[int], scan_session_id: int | None = None
) -> IPInfo:
    now = datetime.now()
    info = IPInfo(
        ip_address=ip,
        organization=geo.org,
        isp=geo.isp,
        asn=geo.asn,
        country=geo.country,
        country_code=geo.country_code,
        city=geo.city,
        region=geo.region_name,
        postal=geo.zip,
        latitude=geo.lat,
        longitude=geo.lon,
        last_update=now,
        updated_at=now,
        scan_session_id=scan_session_id,
    )
    if ports:
        info.set_list("ports", ports)
    return info


def ip_info_from_shodan(
    ip: str, host: ShodanHost, scan_session_id: int | None = None
) -> IPInfo:
    info = IPInfo(
        ip_address=ip,
        organization=host.organization,
        isp=host.isp,
        asn=host.asn,
        country=host.country,
        country_code=host.country_code,
        city=host.city,
        region=host.region,
        postal=host.postal,
        latitude=host.latitude,
        longitude=host.longitude,
        os=host.os,
        last_update=host.last_update or datetime.now(),
        scan_session_id=scan_session_id,
    )
    info.set_list("tags", host.tags)
    info.set_list("ports", host.ports)
    info.set_list("hostnames", host.hostnames)
    info.set_list("domains", host.domains)
    info.set_list("vulns", host.vulns)
    return info


class IPIntelResolver:
    """Fallback tier of IP enrichment: geolocation plus an active port probe.

    Runs only when no populated intelligence record exists for the IP, and
    writes at most one record per IP.
    """

    def __init__(
        self,
        geolocate: Callable[[str], GeoLocation] | None = None,
        probe_ports: Callable[[str], list[int]] | None = None,
        deadline_seconds: float | None = None,
    ) -> None:
        self.geolocate = geolocate or lookup_geolocation
        self.probe_ports = probe_ports or run_naabu_scan
        self.deadline_seconds = (
            deadline_seconds if deadline_seconds is not None else _deadline_seconds()
        )

    def resolve(
        self, session: Session, ip: str, scan_session_id: int | None = None
    ) -> Resolution:
        existing = get_ip_info(session, ip)
        if existing is not None and existing.has_org_data():
            return Resolution(ip=ip, state=LookupState.CACHED, record=existing)

        resolution = Resolution(ip=ip, state=LookupState.NEEDS_FALLBACK, record=existing)
        log.info("attempting fallback IP intelligence gathering for %s", ip)
        if not is_valid_ip(ip):
            log.warning("invalid IP address for fallback lookup: %r", ip)
            resolution.state = LookupState.FAILED
            return resolution

        resolution.state = LookupState.ENRICHING
        skip_probe = has_port_records(session, ip)
        geo, ports = self._enrich(ip, skip_probe)
        resolution.ports = ports

        if geo is None:
            resolution.state = LookupState.FAILED
            return resolution

        try:
            record, created = insert_ip_info_once(
                session, ip_info_from_geolocation(ip, geo, ports, scan_session_id)
            )
        except SQLAlchemyError as e:
            session.rollback()
            log.error("failed to store fallback IP data for %s: %s", ip, e)
            resolution.record = None
            resolution.state = LookupState.FAILED
            return resolution
        if created:
            log.info("stored fallback IP data for %s (source=ip-api+naabu)", ip)
        resolution.record = record
        resolution.created = created
        resolution.state = LookupState.PERSISTED
        return resolution

    def _enrich(self, ip: str, skip_probe: bool) -> tuple[GeoLocation | None, list[int]]:
        deadline = time.monotonic() + self.deadline_seconds
        executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="ip-intel")
        try:
            geo_future = executor.submit(self.geolocate, ip)
            probe_future = None if skip_probe else executor.submit(self.probe_ports, ip)
            geo = self._wait(geo_future, deadline, "geolocation", ip)
            ports: list[int] = []
            if probe_future is not None:
                found = self._wait(probe_future, deadline, "port probe", ip)
                if found is not None:
                    ports = sorted(set(found))
                    log.info("port probe completed for %s, ports_found=%d", ip, len(ports))
            else:
                log.debug("port records already present for %s, skipping probe", ip)
        finally:
            # overrunning providers are left to finish on their own
            executor.shutdown(wait=False, cancel_futures=True)
        return geo, ports

    def _wait(self, future: Future, deadline: float, what: str, ip: str) -> Any:
        remaining = max(0.0, deadline - time.monotonic())
        try:
            return future.result(timeout=remaining)
        except FutureTimeout:
            log.warning(
                "%s for %s exceeded the %.0fs deadline", what, ip, self.deadline_seconds
            )
        except ProviderError as e:
            log.warning("%s failed for %s: %s", what, ip, e)
        return None


@dataclass
class CollectSummary:
    processed: int = 0
    saved: int = 0
    skipped: int = 0
    errors: int = 0
    fallback_used: int = 0
    unresolved: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "saved": self.saved,
            "skipped": self.skipped,
            "errors": self.errors,
            "fallback_used": self.fallback_used,
            "unresolved": list(self.unresolved),
        }


def collect_intelligence(
    session: Session,
    targets: list[str],
    shodan: ShodanClient | None = None,
    resolver: IPIntelResolver | None = None,
    scan_session_id: int | None = None,
    rate_limit_per_minute: int = 60,
    sleep: Callable[[float], None] = time.sleep,
) -> CollectSummary:
    """Enrich every IP behind a list of hosts, Shodan first then the fallback tier."""
    resolver = resolver or IPIntelResolver()
    summary = CollectSummary()

    ips, unresolved = resolve_targets(targets)
    for host in unresolved:
        log.warning("failed to resolve host %s", host)
    summary.unresolved = unresolved
    log.info("resolved %d unique IP addresses", len(ips))

    interval = 60.0 / rate_limit_per_minute if rate_limit_per_minute > 0 else 0.0
    for idx, ip in enumerate(ips):
        if idx and interval:
            sleep(interval)
        summary.processed += 1

        if get_ip_info(session, ip) is not None:
            summary.skipped += 1
            continue

        if shodan is not None:
            try:
                host = shodan.get_host(ip, minify=True)
            except ShodanError as e:
                log.warning("failed to query Shodan for %s: %s", ip, e)
            else:
                services = {s.port: s.product for s in host.services if s.product}
                record_open_ports(session, ip, host.ports, scan_session_id, services)
                _, created = insert_ip_info_once(
                    session, ip_info_from_shodan(ip, host, scan_session_id)
                )
                if created:
                    summary.saved += 1
                    log.info("saved IP information for %s (source=shodan)", ip)
                else:
                    summary.skipped += 1
                continue

        resolution = resolver.resolve(session, ip, scan_session_id)
        if resolution.ports:
            record_open_ports(session, ip, resolution.ports, scan_session_id)
        if resolution.state is LookupState.PERSISTED and resolution.created:
            summary.saved += 1
            summary.fallback_used += 1
        elif resolution.state is LookupState.FAILED:
            log.error("both Shodan and fallback failed for %s", ip)
            summary.errors += 1
        else:
            summary.skipped += 1

    log.info(
        "intelligence collection done: processed=%d saved=%d skipped=%d errors=%d fallback_used=%d",
        summary.processed,
        summary.saved,
        summary.skipped,
        summary.errors,
        summary.fallback_used,
    )
    return summary
