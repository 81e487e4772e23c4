# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Access guards.

A guard looks at the identity already resolved onto ``request.state.user`` and
either lets the request through (returns ``None``) or short-circuits it by
raising. ``guarded`` runs guards in the given order; the first failure wins,
so authentication must be listed before any role check.
"""

from __future__ import annotations

from typing import Callable, Optional

from fastapi import HTTPException, Request

from clubhouse.auth.session import SessionUser
from clubhouse.errors import AuthorizationFailure

Guard = Callable[[Optional[SessionUser]], None]


def current_user_optional(request: Request) -> Optional[SessionUser]:
    return getattr(request.state, "user", None)


def require_authenticated(redirect_to: str = "/login") -> Guard:
    def _guard(user: Optional[SessionUser]) -> None:
        if user is None:
            raise HTTPException(status_code=303, headers={"Location": redirect_to})

    return _guard


def require_role(role: str) -> Guard:
    def _guard(user: Optional[SessionUser]) -> None:
        if user is None or user.role != role:
            raise AuthorizationFailure(role)

    return _guard


def check(user: Optional[SessionUser], *guards: Guard) -> None:
    for g in guards:
        g(user)


def guarded(*guards: Guard):
    """FastAPI dependency: run ``guards`` in order and return the identity."""

    def _dep(request: Request) -> Optional[SessionUser]:
        user = current_user_optional(request)
        check(user, *guards)
        return user

    return _dep


require_admin = guarded(require_authenticated("/login"), require_role("admin"))
