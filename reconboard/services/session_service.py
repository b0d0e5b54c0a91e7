from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models import ScanSession
from .common import format_timestamp


def create_scan_session(
    session: Session,
    company_name: str,
    main_domain: str,
    logo_path: str | None = None,
    notes: str = "",
) -> ScanSession:
    company_name = company_name.strip()
    main_domain = main_domain.strip().lower().strip(".")
    if not company_name or not main_domain:
        raise ValueError("company name and main domain are required")

    scan = ScanSession(
        company_name=company_name,
        main_domain=main_domain,
        logo_path=logo_path or "",
        start_time=datetime.now(),
        status="active",
        notes=notes,
    )
    session.add(scan)
    session.commit()
    session.refresh(scan)
    return scan


def latest_scan_session(session: Session) -> ScanSession | None:
    return (
        session.execute(
            select(ScanSession).order_by(ScanSession.start_time.desc()).limit(1)
        )
        .scalars()
        .first()
    )


def scan_session_to_dict(scan: ScanSession) -> dict[str, Any]:
    out: dict[str, Any] = {
        "id": scan.id,
        "company_name": scan.company_name,
        "main_domain": scan.main_domain,
        "start_time": format_timestamp(scan.start_time),
        "status": scan.status,
        "notes": scan.notes or "",
    }
    if scan.end_time is not None:
        out["end_time"] = format_timestamp(scan.end_time)
    return out


def list_scan_sessions(session: Session) -> list[dict[str, Any]]:
    scans = session.execute(select(ScanSession).order_by(ScanSession.id)).scalars().all()
    return [scan_session_to_dict(s) for s in scans]
