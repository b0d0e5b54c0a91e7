from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import ConsoleLog, Header, NetworkLog, Result
from .common import ProbeRecord, format_timestamp
from .domain_stats import aggregate_domains
from .ip_stats import aggregate_ips
from .session_service import latest_scan_session

log = logging.getLogger(__name__)


def _database_size(session: Session) -> int:
    dialect = session.get_bind().dialect.name
    if dialect == "sqlite":
        query = text(
            "SELECT page_count * page_size AS size "
            "FROM pragma_page_count(), pragma_page_size()"
        )
    elif dialect == "postgresql":
        query = text("SELECT pg_database_size(current_database())")
    else:
        return 0
    return int(session.execute(query).scalar_one() or 0)


def _count(session: Session, model: Any) -> int:
    return int(session.execute(select(func.count()).select_from(model)).scalar_one())


def response_code_stats(session: Session) -> list[dict[str, int]]:
    rows = session.execute(
        select(Result.response_code, func.count())
        .group_by(Result.response_code)
        .order_by(Result.response_code)
    ).all()
    return [{"code": code, "count": count} for code, count in rows]


def load_probe_records(session: Session, with_ip_only: bool = False) -> list[ProbeRecord]:
    query = select(Result.id, Result.url, Result.ip_address, Result.probed_at).order_by(
        Result.id
    )
    if with_ip_only:
        query = query.where(Result.ip_address != "")
    return [
        ProbeRecord(id=row.id, url=row.url, ip_address=row.ip_address or "", probed_at=row.probed_at)
        for row in session.execute(query)
    ]


def target_information(session: Session) -> dict[str, Any] | None:
    try:
        scan = latest_scan_session(session)
    except SQLAlchemyError as e:
        log.warning("failed getting target information: %s", e)
        return None
    if scan is None:
        log.info("no scan session recorded yet, omitting target information")
        return None

    info: dict[str, Any] = {
        "company_name": scan.company_name,
        "main_domain": scan.main_domain,
    }
    if scan.logo_path:
        info["logo_path"] = scan.logo_path
    info["scan_start_time"] = format_timestamp(scan.start_time)
    info["scan_status"] = scan.status
    info["notes"] = scan.notes or ""
    return info


def build_statistics(session: Session) -> dict[str, Any]:
    """Assemble the dashboard statistics report.

    Store failures propagate to the caller; only the scan session metadata
    is optional.
    """
    response: dict[str, Any] = {
        "dbsize": _database_size(session),
        "results": _count(session, Result),
        "headers": _count(session, Header),
        "networklogs": _count(session, NetworkLog),
        "consolelogs": _count(session, ConsoleLog),
        "response_code_stats": response_code_stats(session),
    }

    response["domain_stats"] = aggregate_domains(load_probe_records(session)).to_dict()
    response["ip_stats"] = aggregate_ips(
        load_probe_records(session, with_ip_only=True)
    ).to_dict()

    target_info = target_information(session)
    if target_info is not None:
        response["target_info"] = target_info
    return response
