from . import db
from .models import Base


def init_db() -> None:
    Base.metadata.create_all(bind=db.ENGINE)
