from __future__ import annotations

from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from reconboard.models import Base


@pytest.fixture()
def session_factory(tmp_path: Path) -> sessionmaker:
    engine = create_engine(
        f"sqlite:///{tmp_path / 'store.sqlite3'}",
        future=True,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autoflush=False, future=True)
    engine.dispose()


@pytest.fixture()
def db_session(session_factory: sessionmaker) -> Session:
    with session_factory() as s:
        yield s
