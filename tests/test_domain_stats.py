from __future__ import annotations

from datetime import datetime

from reconboard.services.common import ProbeRecord, url_endpoint
from reconboard.services.domain_stats import aggregate_domains


def _records(*urls: str) -> list[ProbeRecord]:
    return [
        ProbeRecord(id=i, url=url, ip_address="", probed_at=datetime(2024, 1, 1))
        for i, url in enumerate(urls, start=1)
    ]


def test_groups_by_apex_and_counts_subdomains() -> None:
    stats = aggregate_domains(
        _records(
            "https://example.com",
            "https://www.example.com",
            "http://api.example.com:8080/v1",
            "https://shop.example.co.uk",
        )
    )

    assert stats.unique_apex_domains == 2
    assert stats.total_domains == 4
    assert stats.total_subdomains == 3

    first, second = stats.apex_domains
    assert first.domain == "example.com"
    assert first.is_apex is True
    assert first.result_id == 1
    assert first.count == 3
    assert [s.domain for s in first.subdomains] == [
        "example.com",
        "www.example.com",
        "api.example.com",
    ]
    assert first.subdomains[2].port == "8080"
    assert first.subdomains[2].protocol == "http"

    assert second.domain == "example.co.uk"
    assert second.is_apex is False
    assert second.result_id is None
    assert "result_id" not in second.to_dict()


def test_aggregation_is_repeatable() -> None:
    records = _records(
        "https://a.one.com",
        "https://b.two.com",
        "https://c.two.com",
        "https://one.com",
        "https://three.net",
    )
    first = aggregate_domains(records).to_dict()
    second = aggregate_domains(records).to_dict()
    assert first == second


def test_count_matches_subdomain_entries() -> None:
    stats = aggregate_domains(
        _records(
            "https://example.com",
            "https://example.com/again",
            "https://www.example.com",
            "https://other.org",
            "https://x.other.org",
        )
    )
    for group in stats.apex_domains:
        assert group.count == len(group.subdomains)


def test_default_ports() -> None:
    assert url_endpoint("https://a.b.com").port == "443"
    assert url_endpoint("http://a.b.com").port == "80"
    assert url_endpoint("ftp://a.b.com").port == "unknown"

    stats = aggregate_domains(_records("https://a.b.com", "http://a.b.com", "ftp://a.b.com"))
    assert [s.port for s in stats.apex_domains[0].subdomains] == ["443", "80", "unknown"]


def test_url_endpoint_keeps_port_and_host_verbatim() -> None:
    out_of_range = url_endpoint("http://a.com:99999/admin")
    assert out_of_range.hostname == "a.com"
    assert out_of_range.port == "99999"

    mixed = url_endpoint("https://user:pw@Shop.Example.COM:8443/")
    assert mixed.hostname == "Shop.Example.COM"
    assert mixed.port == "8443"

    v6 = url_endpoint("http://[2001:db8::1]:8080/")
    assert v6.hostname == "2001:db8::1"
    assert v6.port == "8080"

    assert url_endpoint("http://a.com:http/") is None
    assert url_endpoint("https://:443/") is None


def test_out_of_range_port_is_still_aggregated() -> None:
    stats = aggregate_domains(_records("http://www.a.com:99999", "https://a.com"))
    assert stats.total_subdomains == 1
    assert [s.port for s in stats.apex_domains[0].subdomains] == ["99999", "443"]


def test_malformed_url_is_skipped_but_counted() -> None:
    stats = aggregate_domains(
        _records("https://www.example.com", "::::not a url", "https://example.com")
    )
    assert stats.total_domains == 3
    assert stats.unique_apex_domains == 1
    assert [s.result_id for s in stats.apex_domains[0].subdomains] == [1, 3]


def test_equal_counts_keep_first_seen_order() -> None:
    stats = aggregate_domains(
        _records(
            "https://zeta.com",
            "https://alpha.com",
            "https://www.alpha.com",
            "https://www.zeta.com",
            "https://big.org",
            "https://a.big.org",
            "https://b.big.org",
        )
    )
    assert [g.domain for g in stats.apex_domains] == ["big.org", "zeta.com", "alpha.com"]


def test_empty_input() -> None:
    stats = aggregate_domains([])
    assert stats.to_dict() == {
        "unique_apex_domains": 0,
        "total_subdomains": 0,
        "total_domains": 0,
        "apex_domains": [],
    }
