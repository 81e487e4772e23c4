# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

from __future__ import annotations


class ClubhouseError(Exception):
    """Base class for application errors."""


class ValidationError(ClubhouseError):
    """Malformed or missing input. ``message`` is safe to show to the user."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthenticationFailure(ClubhouseError):
    """Unknown email or wrong password."""

    message = "User and password not found."


class AuthorizationFailure(ClubhouseError):
    """Authenticated, but the role does not allow the action."""

    def __init__(self, required_role: str):
        super().__init__(f"role '{required_role}' required")
        self.required_role = required_role


class NotFound(ClubhouseError):
    pass


class StoreUnavailable(ClubhouseError):
    """The database could not be reached or initialised at startup."""
