from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy.orm import Session

from ..models import IPPort
from ..plugins.naabu import parse_naabu_output
from .ip_intel_service import store_port_records

log = logging.getLogger(__name__)


def ingest_naabu_results(
    session: Session, lines: Iterable[str], scan_session_id: int | None = None
) -> tuple[int, int]:
    """Store naabu JSON-lines output as port records.

    Returns (saved, skipped). Malformed lines and (ip, port) pairs that are
    already known both count as skipped.
    """
    results, malformed = parse_naabu_output(lines)
    rows = [
        IPPort(
            ip_address=r.ip,
            port=r.port,
            protocol=r.protocol,
            state="open",
            scan_session_id=scan_session_id,
            is_cdn=r.cdn,
            cdn_name=r.cdn_name,
            cdn_detected=True,
            original_host=r.host,
        )
        for r in results
        if r.ip
    ]
    saved, skipped = store_port_records(session, rows)
    skipped += malformed + (len(results) - len(rows))
    log.info("naabu results processed: saved=%d skipped=%d", saved, skipped)
    return saved, skipped
