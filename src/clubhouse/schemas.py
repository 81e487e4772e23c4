# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Form schemas for signup and login.

Validation errors are turned into one short sentence for the page. The raw
pydantic messages are never shown.
"""

from __future__ import annotations

from typing import Annotated, Any, Mapping, Type, TypeVar

import pydantic
from pydantic import BaseModel, BeforeValidator, ConfigDict, EmailStr, Field, StringConstraints

from clubhouse.errors import ValidationError

FIELD_LABELS = {"name": "Name", "email": "Email", "password": "Password"}

M = TypeVar("M", bound=BaseModel)


Email = Annotated[EmailStr, BeforeValidator(str.strip)]
Name = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class _Form(BaseModel):
    model_config = ConfigDict(extra="ignore")


class LoginForm(_Form):
    email: Email
    # Not stripped: surrounding spaces are part of the secret.
    password: str = Field(min_length=1)


class SignupForm(_Form):
    name: Name
    email: Email
    password: str = Field(min_length=1)


def _summary(exc: pydantic.ValidationError) -> str:
    err = exc.errors()[0]
    loc = err.get("loc") or ("input",)
    field = str(loc[0])
    label = FIELD_LABELS.get(field, field)
    if err.get("type") == "missing" or err.get("type") == "string_too_short":
        return f"Invalid input: {label} is required."
    if field == "email":
        return "Invalid input: Email must be a valid email address."
    return f"Invalid input: {label} is not valid."


def parse_form(model: Type[M], data: Mapping[str, Any]) -> M:
    """Validate submitted form data, raising ``ValidationError`` with a readable message."""
    raw = {k: v for k, v in data.items() if isinstance(v, str)}
    try:
        return model.model_validate(raw)
    except pydantic.ValidationError as exc:
        raise ValidationError(_summary(exc)) from None
