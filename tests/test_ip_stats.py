from __future__ import annotations

from datetime import datetime

from reconboard.services.common import ProbeRecord
from reconboard.services.ip_stats import aggregate_ips


def test_first_and_last_seen_widen() -> None:
    records = [
        ProbeRecord(1, "https://a.example.com", "1.2.3.4", datetime(2024, 1, 2, 10, 0, 0)),
        ProbeRecord(2, "https://b.example.com", "1.2.3.4", datetime(2024, 1, 1, 9, 0, 0)),
        ProbeRecord(3, "https://c.example.com", "1.2.3.4", datetime(2024, 1, 3, 11, 0, 0)),
    ]
    stats = aggregate_ips(records)

    assert stats.unique_ips == 1
    group = stats.ip_list[0]
    assert group.first_seen == "2024-01-01 09:00:00"
    assert group.last_seen == "2024-01-03 11:00:00"
    assert group.sample_domain == "a.example.com"
    assert group.result_id == 1
    assert group.domain_count == 3
    assert [d.domain for d in group.domains] == [
        "a.example.com",
        "b.example.com",
        "c.example.com",
    ]


def test_groups_sorted_by_domain_count() -> None:
    seen = datetime(2024, 5, 1, 12, 0, 0)
    records = [
        ProbeRecord(1, "https://one.example.com", "10.0.0.1", seen),
        ProbeRecord(2, "https://two.example.com", "10.0.0.2", seen),
        ProbeRecord(3, "https://three.example.com", "10.0.0.2", seen),
        ProbeRecord(4, "https://four.example.com", "10.0.0.3", seen),
    ]
    stats = aggregate_ips(records)
    assert [g.ip_address for g in stats.ip_list] == ["10.0.0.2", "10.0.0.1", "10.0.0.3"]
    assert stats.total_results == 4


def test_empty_ip_and_malformed_url_are_skipped() -> None:
    seen = datetime(2024, 5, 1, 12, 0, 0)
    records = [
        ProbeRecord(1, "https://no-ip.example.com", "", seen),
        ProbeRecord(2, "::::not a url", "10.0.0.9", seen),
        ProbeRecord(3, "http://ok.example.com:8000", "10.0.0.9", seen),
    ]
    stats = aggregate_ips(records)

    assert stats.total_results == 2
    assert stats.unique_ips == 1
    group = stats.ip_list[0]
    assert group.domain_count == 1
    assert group.result_id == 3
    payload = stats.to_dict()["ip_list"][0]["domains"][0]
    assert payload == {
        "domain": "ok.example.com",
        "result_id": 3,
        "url": "http://ok.example.com:8000",
        "protocol": "http",
        "port": "8000",
    }
