from __future__ import annotations

import os
from typing import Any, Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker


def _normalize_database_url(raw: str) -> str:
    value = raw.strip()
    if value.startswith("postgres://"):
        return "postgresql+psycopg://" + value[len("postgres://") :]
    if value.startswith("postgresql://"):
        return "postgresql+psycopg://" + value[len("postgresql://") :]
    return value


def _database_url() -> str:
    raw = os.getenv("RECON_DATABASE_URL", "").strip()
    if raw:
        return _normalize_database_url(raw)
    db_path = os.getenv("RECON_DB_PATH", "reconboard.sqlite3").strip()
    return f"sqlite:///{db_path}"


DATABASE_URL = _database_url()
IS_SQLITE = DATABASE_URL.startswith("sqlite")

_engine_kwargs: dict[str, Any] = {
    "future": True,
    "pool_pre_ping": True,
}
if IS_SQLITE:
    # FastAPI serves sync endpoints from a thread pool
    _engine_kwargs["connect_args"] = {"check_same_thread": False}

ENGINE = create_engine(DATABASE_URL, **_engine_kwargs)
SessionLocal = sessionmaker(bind=ENGINE, autoflush=False, autocommit=False, future=True)


def get_session() -> Iterator[Session]:
    with SessionLocal() as session:
        yield session
