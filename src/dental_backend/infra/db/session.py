from __future__ import annotations

from collections.abc import Callable
from typing import Any

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

SessionFactory = Callable[[], Session]


def create_sqlalchemy_engine(database_url: str, **engine_kwargs: Any) -> Engine:
    """Create an engine for ``database_url``.

    In-memory SQLite URLs get a single shared connection so every session
    sees the same database.
    """

    if database_url in {"sqlite://", "sqlite:///:memory:"}:
        engine_kwargs.setdefault("poolclass", StaticPool)
        engine_kwargs.setdefault("connect_args", {"check_same_thread": False})
    return create_engine(database_url, **engine_kwargs)


def create_sqlalchemy_session_factory(engine: Engine) -> SessionFactory:
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, class_=Session)

    def _factory() -> Session:
        return SessionLocal()

    return _factory
