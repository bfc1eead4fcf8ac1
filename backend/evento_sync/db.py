from __future__ import annotations

from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from evento_sync.core.config import get_settings

Base = declarative_base()


def _sqlite_connect_args(url: str) -> dict[str, bool]:
    return {"check_same_thread": False} if url.startswith("sqlite") else {}


@lru_cache(maxsize=1)
def get_engine():
    url = get_settings().database_url
    return create_engine(url, connect_args=_sqlite_connect_args(url), future=True)


@lru_cache(maxsize=1)
def get_sessionmaker():
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=get_engine())


def SessionLocal() -> Session:
    return get_sessionmaker()()


def init_db() -> None:
    # Models must be imported so their tables are registered on Base.metadata.
    from evento_sync import models  # noqa: F401

    Base.metadata.create_all(bind=get_engine())

