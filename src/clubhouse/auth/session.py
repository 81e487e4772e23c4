# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Server-side sessions.

The cookie holds only a random session id signed with the cookie secret. The
identity snapshot lives in the ``sessions`` table, signed with a second secret
so a row edited outside the app is rejected. A session is ACTIVE until
``expires_at``; after that, or after ``destroy``, it resolves to ``None``.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from itsdangerous import BadSignature, URLSafeSerializer
from sqlalchemy import delete
from sqlalchemy.orm import sessionmaker

from clubhouse.infra.db import SessionRow, utcnow

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 60 * 60  # 1 hour
COOKIE_SALT = "clubhouse.session.v1"
STORE_SALT = "clubhouse.session-store.v1"


@dataclass(frozen=True)
class SessionUser:
    """Snapshot of the user taken when the session starts. Never refreshed."""

    id: int
    name: str
    email: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class SessionManager:
    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        secret_key: str,
        store_secret: str,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ):
        if not secret_key or not store_secret:
            raise RuntimeError("Session secrets must not be empty")
        self._sessions = session_factory
        self._cookie = URLSafeSerializer(secret_key, salt=COOKIE_SALT)
        self._store = URLSafeSerializer(store_secret, salt=STORE_SALT)
        self.ttl_seconds = int(ttl_seconds)
        self._clock = clock

    def _session_id(self, cookie_value: Optional[str]) -> Optional[str]:
        if not cookie_value:
            return None
        try:
            sid = self._cookie.loads(cookie_value)
        except BadSignature:
            logger.warning("Rejected session cookie with bad signature")
            return None
        return sid if isinstance(sid, str) and sid else None

    def start(self, user: SessionUser) -> str:
        """Persist a new session for ``user`` and return the cookie value."""
        sid = secrets.token_urlsafe(32)
        row = SessionRow(
            id=sid,
            data=self._store.dumps(asdict(user)),
            expires_at=self._clock() + timedelta(seconds=self.ttl_seconds),
        )
        with self._sessions() as db:
            db.add(row)
            db.commit()
        return self._cookie.dumps(sid)

    def resolve(self, cookie_value: Optional[str]) -> Optional[SessionUser]:
        sid = self._session_id(cookie_value)
        if sid is None:
            return None
        with self._sessions() as db:
            row = db.get(SessionRow, sid)
            if row is None:
                return None
            if row.expires_at <= self._clock():
                db.delete(row)
                db.commit()
                return None
            data = row.data
        try:
            payload = self._store.loads(data)
            return SessionUser(
                id=int(payload["id"]),
                name=str(payload["name"]),
                email=str(payload["email"]),
                role=str(payload["role"]),
            )
        except (BadSignature, KeyError, TypeError, ValueError):
            logger.warning("Discarding unreadable session record")
            return None

    def destroy(self, cookie_value: Optional[str]) -> None:
        sid = self._session_id(cookie_value)
        if sid is None:
            return
        with self._sessions() as db:
            db.execute(delete(SessionRow).where(SessionRow.id == sid))
            db.commit()

    def purge_expired(self) -> int:
        with self._sessions() as db:
            result = db.execute(delete(SessionRow).where(SessionRow.expires_at <= self._clock()))
            db.commit()
            return int(result.rowcount or 0)
