# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from clubhouse.auth.passwords import hash_password, verify_password
from clubhouse.errors import NotFound, ValidationError
from clubhouse.infra.db import UserRow

logger = logging.getLogger(__name__)

ROLES = ("user", "admin")
DEFAULT_ROLE = "user"

# Verified against when the email is unknown, so both login failures cost one argon2 verify.
_DUMMY_HASH = hash_password("clubhouse-no-such-user")


@dataclass(frozen=True)
class UserRecord:
    id: int
    name: str
    email: str
    role: str
    password_hash: str


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def _record(row: UserRow) -> UserRecord:
    return UserRecord(
        id=int(row.id),
        name=row.name,
        email=row.email,
        role=(row.role or DEFAULT_ROLE).lower(),
        password_hash=row.password_hash,
    )


class CredentialStore:
    """User records in the ``users`` table. Owns password hashing."""

    def __init__(self, session_factory: sessionmaker):
        self._sessions = session_factory

    def create_user(self, name: str, email: str, raw_password: str, *, role: str = DEFAULT_ROLE) -> int:
        name = (name or "").strip()
        email = normalize_email(email)
        if not name:
            raise ValidationError("Invalid input: Name is required.")
        if not email or "@" not in email:
            raise ValidationError("Invalid input: Email must be a valid email address.")
        if not raw_password:
            raise ValidationError("Invalid input: Password is required.")
        if role not in ROLES:
            raise ValueError(f"unknown role: {role}")

        with self._sessions() as db:
            if db.scalar(select(UserRow.id).where(UserRow.email == email)) is not None:
                raise ValidationError("Email already registered.")
            row = UserRow(name=name, email=email, password_hash=hash_password(raw_password), role=role)
            db.add(row)
            try:
                db.commit()
            except IntegrityError:
                # Lost a race against a concurrent signup with the same email.
                db.rollback()
                raise ValidationError("Email already registered.") from None
            logger.info("Created user id=%s email=%s role=%s", row.id, email, role)
            return int(row.id)

    def find_by_email(self, email: str) -> Optional[UserRecord]:
        e = normalize_email(email)
        if not e:
            return None
        with self._sessions() as db:
            row = db.scalar(select(UserRow).where(UserRow.email == e))
            return _record(row) if row is not None else None

    def get_user(self, user_id: int) -> Optional[UserRecord]:
        with self._sessions() as db:
            row = db.get(UserRow, int(user_id))
            return _record(row) if row is not None else None

    @staticmethod
    def verify_password(raw_password: str, stored_hash: str) -> bool:
        return verify_password(raw_password, stored_hash)

    def authenticate(self, email: str, raw_password: str) -> Optional[UserRecord]:
        u = self.find_by_email(email)
        if u is None:
            self.verify_password(raw_password, _DUMMY_HASH)
            return None
        if not self.verify_password(raw_password, u.password_hash):
            return None
        return u

    def set_role(self, user_id: int, role: str) -> UserRecord:
        if role not in ROLES:
            raise ValueError(f"unknown role: {role}")
        with self._sessions() as db:
            row = db.get(UserRow, int(user_id))
            if row is None:
                raise NotFound(f"user {user_id}")
            if row.role != role:
                row.role = role
                db.commit()
            return _record(row)

    def count_admins(self) -> int:
        with self._sessions() as db:
            return int(db.scalar(select(func.count()).select_from(UserRow).where(UserRow.role == "admin")) or 0)

    def list_users(self) -> List[UserRecord]:
        with self._sessions() as db:
            return [_record(r) for r in db.scalars(select(UserRow).order_by(UserRow.id))]
