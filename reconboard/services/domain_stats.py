from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from ..plugins.publicsuffix import apex_domain
from .common import ProbeRecord, url_endpoint


@dataclass
class SubdomainEntry:
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
class ApexDomainGroup:
    domain: str
    is_apex: bool = False
    result_id: int | None = None
    subdomains: list[SubdomainEntry] = field(default_factory=list)
    count: int = 0

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"domain": self.domain, "is_apex": self.is_apex}
        if self.result_id is not None:
            out["result_id"] = self.result_id
        out["subdomains"] = [s.to_dict() for s in self.subdomains]
        out["count"] = self.count
        return out


@dataclass
class DomainStatistics:
    unique_apex_domains: int
    total_subdomains: int
    total_domains: int
    apex_domains: list[ApexDomainGroup]

    def to_dict(self) -> dict[str, Any]:
        return {
            "unique_apex_domains": self.unique_apex_domains,
            "total_subdomains": self.total_subdomains,
            "total_domains": self.total_domains,
            "apex_domains": [a.to_dict() for a in self.apex_domains],
        }


def aggregate_domains(records: Iterable[ProbeRecord]) -> DomainStatistics:
    """Group probed URLs by registrable domain.

    The apex host's own observations are listed among the group's subdomain
    entries too, so ``count == len(subdomains)`` for every group. Records
    whose URL has no usable hostname are skipped but still count towards
    ``total_domains``.
    """
    groups: dict[str, ApexDomainGroup] = {}
    total_records = 0
    total_subdomains = 0

    for record in records:
        total_records += 1
        endpoint = url_endpoint(record.url)
        if endpoint is None:
            continue
        apex_name = apex_domain(endpoint.hostname)
        if not apex_name:
            continue

        group = groups.get(apex_name)
        if group is None:
            group = groups[apex_name] = ApexDomainGroup(domain=apex_name)
        group.count += 1

        if endpoint.hostname == apex_name:
            group.is_apex = True
            if group.result_id is None:
                group.result_id = record.id
        else:
            total_subdomains += 1

        group.subdomains.append(
            SubdomainEntry(
                domain=endpoint.hostname,
                result_id=record.id,
                url=record.url,
                protocol=endpoint.protocol,
                port=endpoint.port,
            )
        )

    # dicts keep first-seen order and sorted() is stable
    apex_domains = sorted(groups.values(), key=lambda g: g.count, reverse=True)
    return DomainStatistics(
        unique_apex_domains=len(groups),
        total_subdomains=total_subdomains,
        total_domains=total_records,
        apex_domains=apex_domains,
    )
