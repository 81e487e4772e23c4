#!/usr/bin/env python3
"""Create a user from the command line (the only way to get the first admin)."""

from __future__ import annotations

from getpass import getpass

from dotenv import load_dotenv

from clubhouse.auth.users import ROLES, CredentialStore
from clubhouse.config import database_url_from_env
from clubhouse.errors import ValidationError
from clubhouse.infra.db import init_db, make_engine, make_session_factory


def main() -> None:
    load_dotenv()
    url = database_url_from_env()
    engine = make_engine(url)
    init_db(engine)
    users = CredentialStore(make_session_factory(engine))

    name = input("Name: ").strip()
    email = input("Email: ").strip()
    role = (input("Role [user/admin]: ").strip().lower() or "user")
    if role not in ROLES:
        raise SystemExit(f"Unknown role: {role}")

    existing = users.find_by_email(email)
    if existing is not None:
        users.set_role(existing.id, role)
        print(f"OK -> {existing.email} is now {role}")
        return

    pw1 = getpass("Password: ")
    pw2 = getpass("Repeat password: ")
    if pw1 != pw2:
        raise SystemExit("Passwords do not match")

    try:
        user_id = users.create_user(name, email, pw1, role=role)
    except ValidationError as exc:
        raise SystemExit(exc.message)
    print(f"OK -> user {user_id} ({role}) in {engine.url.render_as_string(hide_password=True)}")


if __name__ == "__main__":
    main()
