from __future__ import annotations

from typing import Any, Dict, Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from src.core.config import get_settings


def build_engine(url: str, **kwargs: Any) -> Engine:
    opts: Dict[str, Any] = {"pool_pre_ping": True}
    if url.startswith("sqlite"):
        # task handlers run in a worker thread with their own session
        opts["connect_args"] = {"check_same_thread": False}
    opts.update(kwargs)
    return create_engine(url, **opts)


engine = build_engine(get_settings().sqlalchemy_database_uri)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> sessionmaker:
    return SessionLocal
