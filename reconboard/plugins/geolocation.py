from __future__ import annotations

import os
from dataclasses import dataclass

import httpx

from ..errors import GeolocationError

IP_API_URL = "http://ip-api.com/json/{ip}"
IP_API_FIELDS = (
    "status,message,country,countryCode,region,regionName,city,zip,"
    "lat,lon,timezone,isp,org,as,query"
)


@dataclass(frozen=True)
class GeoLocation:
    query: str
    country: str = ""
    country_code: str = ""
    region: str = ""
    region_name: str = ""
    city: str = ""
    zip: str = ""
    lat: float = 0.0
    lon: float = 0.0
    timezone: str = ""
    isp: str = ""
    org: str = ""
    asn: str = ""

    @classmethod
    def from_api(cls, data: dict) -> "GeoLocation":
        return cls(
            query=str(data.get("query") or ""),
            country=data.get("country") or "",
            country_code=data.get("countryCode") or "",
            region=data.get("region") or "",
            region_name=data.get("regionName") or "",
            city=data.get("city") or "",
            zip=data.get("zip") or "",
            lat=float(data.get("lat") or 0.0),
            lon=float(data.get("lon") or 0.0),
            timezone=data.get("timezone") or "",
            isp=data.get("isp") or "",
            org=data.get("org") or "",
            asn=data.get("as") or "",
        )


def _timeout_seconds() -> float:
    try:
        return float(os.getenv("RECON_GEO_TIMEOUT_SECONDS", "10"))
    except ValueError:
        return 10.0


def lookup_geolocation(
    ip: str,
    timeout_seconds: float | None = None,
    transport: httpx.BaseTransport | None = None,
) -> GeoLocation:
    """Geolocate an IP through ip-api.com (no credential needed)."""
    if timeout_seconds is None:
        timeout_seconds = _timeout_seconds()
    url = IP_API_URL.format(ip=ip)
    try:
        with httpx.Client(
            timeout=timeout_seconds,
            headers={"User-Agent": "reconboard/0.1"},
            transport=transport,
        ) as client:
            r = client.get(url, params={"fields": IP_API_FIELDS})
        r.raise_for_status()
        data = r.json()
    except (httpx.HTTPError, ValueError) as e:
        raise GeolocationError(f"ip-api lookup failed for {ip}: {e}") from e

    if not isinstance(data, dict):
        raise GeolocationError(f"ip-api returned unexpected payload for {ip}")
    if data.get("status") == "fail":
        raise GeolocationError(f"ip-api error for {ip}: {data.get('message', '')}")
    try:
        return GeoLocation.from_api(data)
    except (ValueError, TypeError) as e:
        raise GeolocationError(f"malformed ip-api payload for {ip}: {e}") from e
