from __future__ import annotations

import threading

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

import reconboard.services.ip_intel_service as intel
from reconboard.errors import GeolocationError, PortProbeError
from reconboard.models import IPInfo, IPPort
from reconboard.plugins.geolocation import GeoLocation
from reconboard.services.ip_intel_service import (
    IPIntelResolver,
    LookupState,
    insert_ip_info_once,
    record_open_ports,
)


class FakeProviders:
    def __init__(self, ports: list[int] | None = None) -> None:
        self.geo_calls: list[str] = []
        self.probe_calls: list[str] = []
        self.ports = ports if ports is not None else [443, 80]

    def geolocate(self, ip: str) -> GeoLocation:
        self.geo_calls.append(ip)
        return GeoLocation(
            query=ip,
            country="Germany",
            country_code="DE",
            region_name="Bavaria",
            city="Munich",
            isp="Example ISP",
            org="Example Org",
            asn="AS64500 Example",
            lat=48.1,
            lon=11.6,
        )

    def probe(self, ip: str) -> list[int]:
        self.probe_calls.append(ip)
        return list(self.ports)

    def resolver(self, **kwargs) -> IPIntelResolver:
        kwargs.setdefault("deadline_seconds", 5)
        return IPIntelResolver(geolocate=self.geolocate, probe_ports=self.probe, **kwargs)


def _info_count(session: Session) -> int:
    return session.execute(select(func.count()).select_from(IPInfo)).scalar_one()


def test_second_resolve_hits_the_stored_record(db_session: Session) -> None:
    fake = FakeProviders()
    resolver = fake.resolver()

    first = resolver.resolve(db_session, "203.0.113.7")
    assert first.state is LookupState.PERSISTED
    assert first.created is True
    assert first.ports == [80, 443]
    assert first.record.organization == "Example Org"
    assert first.record.get_list("ports") == [80, 443]

    second = resolver.resolve(db_session, "203.0.113.7")
    assert second.state is LookupState.CACHED
    assert second.record.id == first.record.id

    assert _info_count(db_session) == 1
    assert fake.geo_calls == ["203.0.113.7"]
    assert fake.probe_calls == ["203.0.113.7"]


def test_invalid_ip_is_skipped_without_provider_calls(db_session: Session) -> None:
    fake = FakeProviders()
    resolution = fake.resolver().resolve(db_session, "not-an-ip")

    assert resolution.state is LookupState.FAILED
    assert resolution.record is None
    assert fake.geo_calls == []
    assert fake.probe_calls == []
    assert _info_count(db_session) == 0


def test_probe_skipped_when_ports_already_known(db_session: Session) -> None:
    record_open_ports(db_session, "198.51.100.4", [22])
    fake = FakeProviders()

    resolution = fake.resolver().resolve(db_session, "198.51.100.4")

    assert resolution.state is LookupState.PERSISTED
    assert fake.probe_calls == []
    assert resolution.ports == []


def test_geolocation_failure_keeps_probed_ports(db_session: Session) -> None:
    probed: list[str] = []

    def geolocate(ip: str) -> GeoLocation:
        raise GeolocationError("rate limited")

    def probe(ip: str) -> list[int]:
        probed.append(ip)
        return [8080]

    resolver = IPIntelResolver(geolocate=geolocate, probe_ports=probe, deadline_seconds=5)
    resolution = resolver.resolve(db_session, "192.0.2.10")

    assert resolution.state is LookupState.FAILED
    assert resolution.ports == [8080]
    assert probed == ["192.0.2.10"]
    assert _info_count(db_session) == 0


def test_probe_failure_still_persists_geolocation(db_session: Session) -> None:
    fake = FakeProviders()

    def probe(ip: str) -> list[int]:
        raise PortProbeError("naabu not found in PATH")

    resolver = IPIntelResolver(geolocate=fake.geolocate, probe_ports=probe, deadline_seconds=5)
    resolution = resolver.resolve(db_session, "192.0.2.11")

    assert resolution.state is LookupState.PERSISTED
    assert resolution.ports == []
    assert resolution.record.get_list("ports") == []


def test_provider_over_deadline_counts_as_failed(db_session: Session) -> None:
    release = threading.Event()
    fake = FakeProviders()

    def slow_probe(ip: str) -> list[int]:
        release.wait(5)
        return [22]

    resolver = IPIntelResolver(
        geolocate=fake.geolocate, probe_ports=slow_probe, deadline_seconds=0.2
    )
    try:
        resolution = resolver.resolve(db_session, "192.0.2.12")
    finally:
        release.set()

    assert resolution.state is LookupState.PERSISTED
    assert resolution.ports == []


def test_empty_record_is_not_overwritten(db_session: Session) -> None:
    db_session.add(IPInfo(ip_address="192.0.2.20"))
    db_session.commit()
    fake = FakeProviders()

    resolution = fake.resolver().resolve(db_session, "192.0.2.20")

    assert resolution.state is LookupState.PERSISTED
    assert resolution.created is False
    assert resolution.record.organization == ""
    assert _info_count(db_session) == 1


def test_lost_insert_race_returns_the_winner(
    session_factory: sessionmaker, monkeypatch: pytest.MonkeyPatch
) -> None:
    real_get = intel.get_ip_info
    calls = {"n": 0}

    def stale_get(session: Session, ip: str):
        calls["n"] += 1
        if calls["n"] == 1:
            # another worker commits between our check and our insert
            with session_factory() as other:
                other.add(IPInfo(ip_address=ip, organization="Winner Org"))
                other.commit()
            return None
        return real_get(session, ip)

    monkeypatch.setattr(intel, "get_ip_info", stale_get)

    with session_factory() as s:
        record, created = insert_ip_info_once(
            s, IPInfo(ip_address="192.0.2.30", organization="Loser Org")
        )
        assert created is False
        assert record.organization == "Winner Org"
        assert s.execute(select(func.count()).select_from(IPInfo)).scalar_one() == 1


def test_duplicate_ports_are_not_inserted_twice(db_session: Session) -> None:
    assert record_open_ports(db_session, "192.0.2.40", [80, 443, 80]) == 2
    assert record_open_ports(db_session, "192.0.2.40", [443, 8443]) == 1
    ports = db_session.execute(
        select(IPPort.port).where(IPPort.ip_address == "192.0.2.40").order_by(IPPort.port)
    ).scalars().all()
    assert ports == [80, 443, 8443]


def test_store_failure_degrades_to_failed(
    db_session: Session, monkeypatch: pytest.MonkeyPatch
) -> None:
    def locked(session: Session, info: IPInfo):
        raise OperationalError("INSERT INTO ip_info", {}, Exception("database is locked"))

    monkeypatch.setattr(intel, "insert_ip_info_once", locked)
    fake = FakeProviders(ports=[8443])

    resolution = fake.resolver().resolve(db_session, "192.0.2.50")

    assert resolution.state is LookupState.FAILED
    assert resolution.record is None
    assert resolution.ports == [8443]
    assert _info_count(db_session) == 0
