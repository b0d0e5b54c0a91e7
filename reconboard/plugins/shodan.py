from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import httpx

from ..errors import ShodanError

log = logging.getLogger(__name__)

SHODAN_API_BASE = "https://api.shodan.io"

_TIME_FORMATS = (
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M:%S.%fZ",
    "%Y-%m-%dT%H:%M:%SZ",
    "%Y-%m-%dT%H:%M:%S%z",
    "%Y-%m-%dT%H:%M:%S.%f%z",
)


def parse_shodan_time(value: Any) -> datetime | None:
    if not value or not isinstance(value, str):
        return None
    for fmt in _TIME_FORMATS:
        try:
            parsed = datetime.strptime(value, fmt)
        except ValueError:
            continue
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        return parsed
    return None


@dataclass(frozen=True)
class ShodanService:
    port: int
    transport: str = "tcp"
    product: str = ""
    version: str = ""
    banner: str = ""


@dataclass
class ShodanHost:
    ip: str
    organization: str = ""
    isp: str = ""
    asn: str = ""
    country: str = ""
    country_code: str = ""
    city: str = ""
    region: str = ""
    postal: str = ""
    latitude: float = 0.0
    longitude: float = 0.0
    os: str = ""
    ports: list[int] = field(default_factory=list)
    hostnames: list[str] = field(default_factory=list)
    domains: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    vulns: list[str] = field(default_factory=list)
    last_update: datetime | None = None
    services: list[ShodanService] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "ShodanHost":
        vulns = data.get("vulns") or []
        if isinstance(vulns, dict):
            vulns = list(vulns.keys())
        services = []
        for item in data.get("data") or []:
            if not isinstance(item, dict) or item.get("port") is None:
                continue
            services.append(
                ShodanService(
                    port=int(item["port"]),
                    transport=item.get("transport") or "tcp",
                    product=item.get("product") or "",
                    version=item.get("version") or "",
                    banner=(item.get("data") or "")[:500],
                )
            )
        return cls(
            ip=str(data.get("ip_str") or ""),
            organization=data.get("org") or "",
            isp=data.get("isp") or "",
            asn=data.get("asn") or "",
            country=data.get("country_name") or "",
            country_code=data.get("country_code") or "",
            city=data.get("city") or "",
            region=data.get("region_code") or "",
            postal=data.get("postal_code") or "",
            latitude=float(data.get("latitude") or 0.0),
            longitude=float(data.get("longitude") or 0.0),
            os=data.get("os") or "",
            ports=sorted(int(p) for p in data.get("ports") or []),
            hostnames=list(data.get("hostnames") or []),
            domains=list(data.get("domains") or []),
            tags=list(data.get("tags") or []),
            vulns=sorted(str(v) for v in vulns),
            last_update=parse_shodan_time(data.get("last_update")),
            services=services,
        )


class ShodanClient:
    def __init__(
        self,
        api_key: str,
        base_url: str = SHODAN_API_BASE,
        timeout_seconds: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    def _get(self, path: str, params: dict[str, Any]) -> httpx.Response:
        try:
            with httpx.Client(
                timeout=self.timeout_seconds, transport=self._transport
            ) as client:
                return client.get(
                    f"{self.base_url}{path}", params={"key": self.api_key, **params}
                )
        except httpx.HTTPError as e:
            raise ShodanError(f"failed to query Shodan API: {e}") from e

    def get_host(self, ip: str, minify: bool = False) -> ShodanHost:
        params = {"minify": "true"} if minify else {}
        r = self._get(f"/shodan/host/{ip}", params)
        if r.status_code != 200:
            raise ShodanError(f"Shodan API error (status {r.status_code}): {r.text[:200]}")
        try:
            data = r.json()
            host = ShodanHost.from_api(data)
        except ValueError as e:
            raise ShodanError(f"failed to parse Shodan response: {e}") from e
        except (TypeError, KeyError, AttributeError) as e:
            raise ShodanError(f"malformed Shodan host data for {ip}: {e}") from e
        if not host.ip:
            host.ip = ip
        return host

    def validate_key(self) -> None:
        r = self._get("/api-info", {})
        if r.status_code == 401:
            raise ShodanError("invalid Shodan API key")
        if r.status_code != 200:
            raise ShodanError(
                f"API key validation failed (status {r.status_code}): {r.text[:200]}"
            )


def client_from_env(validate: bool = True) -> ShodanClient | None:
    """Build a client from SHODAN_API_KEY, or None when unusable."""
    api_key = os.getenv("SHODAN_API_KEY", "").strip()
    if not api_key:
        log.warning("SHODAN_API_KEY not set, only fallback sources will be used")
        return None
    try:
        timeout = float(os.getenv("RECON_SHODAN_TIMEOUT_SECONDS", "30"))
    except ValueError:
        timeout = 30.0
    client = ShodanClient(api_key, timeout_seconds=timeout)
    if validate:
        try:
            client.validate_key()
        except ShodanError as e:
            log.warning("Shodan client unavailable, using fallback sources: %s", e)
            return None
    return client
