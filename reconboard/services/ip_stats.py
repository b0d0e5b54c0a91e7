from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from .common import ProbeRecord, format_timestamp, url_endpoint


@dataclass
class IPDomainEntry:
    domain: str
    result_id: int
    url: str
    protocol: str
    port: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "domain": self.domain,
            "result_id": self.result_id,
            "url": self.url,
            "protocol": self.protocol,
            "port": self.port,
        }


@dataclass
class IPGroup:
    ip_address: str
    first_seen: str
    last_seen: str
    sample_domain: str
    result_id: int
    domain_count: int = 0
    domains: list[IPDomainEntry] = field(default_factory=list)

    def observe(self, seen: str) -> None:
        # Fixed-width "YYYY-MM-DD HH:MM:SS" strings order chronologically
        if seen < self.first_seen:
            self.first_seen = seen
        if seen > self.last_seen:
            self.last_seen = seen

    def to_dict(self) -> dict[str, Any]:
        return {
            "ip_address": self.ip_address,
            "domain_count": self.domain_count,
            "first_seen": self.first_seen,
            "last_seen": self.last_seen,
            "sample_domain": self.sample_domain,
            "result_id": self.result_id,
            "domains": [d.to_dict() for d in self.domains],
        }


@dataclass
class IPStatistics:
    unique_ips: int
    total_results: int
    ip_list: list[IPGroup]

    def to_dict(self) -> dict[str, Any]:
        return {
            "unique_ips": self.unique_ips,
            "total_results": self.total_results,
            "ip_list": [g.to_dict() for g in self.ip_list],
        }


def aggregate_ips(records: Iterable[ProbeRecord]) -> IPStatistics:
    groups: dict[str, IPGroup] = {}
    total_results = 0

    for record in records:
        if not record.ip_address:
            continue
        total_results += 1
        endpoint = url_endpoint(record.url)
        if endpoint is None:
            continue

        seen = format_timestamp(record.probed_at)
        group = groups.get(record.ip_address)
        if group is None:
            group = groups[record.ip_address] = IPGroup(
                ip_address=record.ip_address,
                first_seen=seen,
                last_seen=seen,
                sample_domain=endpoint.hostname,
                result_id=record.id,
            )
        group.domain_count += 1
        group.domains.append(
            IPDomainEntry(
                domain=endpoint.hostname,
                result_id=record.id,
                url=record.url,
                protocol=endpoint.protocol,
                port=endpoint.port,
            )
        )
        group.observe(seen)

    ip_list = sorted(groups.values(), key=lambda g: g.domain_count, reverse=True)
    return IPStatistics(
        unique_ips=len(groups),
        total_results=total_results,
        ip_list=ip_list,
    )
