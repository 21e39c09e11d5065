# SQLAlchemy engine/session wiring. Tests rebind `engine` and
# `SessionLocal` on this module, so get_db looks them up at call time.

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from entry.core.config import settings


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


engine = create_engine(settings.DATABASE_URL, future=True, **_engine_kwargs(settings.DATABASE_URL))
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
