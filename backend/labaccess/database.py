from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from . import config


def engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # request sessions and the audit writer thread share one database file
        return {"connect_args": {"check_same_thread": False, "timeout": 30}}
    return {"pool_pre_ping": True}


engine = create_engine(config.DATABASE_URL, **engine_options(config.DATABASE_URL))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db() -> Iterator[Session]:
    """Session for one request, shared by the access dependencies and the handler."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
