"""Engine and session factory.

Handlers open one short-lived session per unit of work; no session is ever
shared across requests.
"""

from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from salon_bot.config import DATABASE_URL
from salon_bot.db.models import Base


def make_engine(url: str = DATABASE_URL) -> Engine:
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args, pool_pre_ping=True)


engine = make_engine()
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db(bind: Engine | None = None) -> None:
    """Create any missing tables (idempotent)."""
    Base.metadata.create_all(bind=bind or engine)
