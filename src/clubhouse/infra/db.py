# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

"""SQL persistence for users and sessions."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Column, DateTime, Integer, String, Text, create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from clubhouse.errors import StoreUnavailable

logger = logging.getLogger(__name__)

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC; SQLite drops tzinfo on read so all stored timestamps are naive."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class UserRow(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    password_hash = Column(String, nullable=False)
    role = Column(String, default="user", nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class SessionRow(Base):
    __tablename__ = "sessions"

    id = Column(String, primary_key=True)
    data = Column(Text, nullable=False)
    expires_at = Column(DateTime, index=True, nullable=False)


def make_engine(database_url: str) -> Engine:
    url = make_url(database_url)
    kwargs: dict = {"future": True, "pool_pre_ping": True}
    if url.get_backend_name() == "sqlite":
        # Requests are served from a thread pool.
        kwargs["connect_args"] = {"check_same_thread": False}
        db = url.database
        if db and db != ":memory:":
            Path(db).parent.mkdir(parents=True, exist_ok=True)
    return create_engine(url, **kwargs)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False, future=True)


def init_db(engine: Engine) -> None:
    """Create tables if they do not exist. Any driver failure is fatal."""
    try:
        Base.metadata.create_all(bind=engine)
    except SQLAlchemyError as exc:
        logger.error("Database initialisation failed for %s", engine.url.render_as_string(hide_password=True))
        raise StoreUnavailable("database unavailable") from exc
