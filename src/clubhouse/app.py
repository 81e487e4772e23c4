# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

from __future__ import annotations

import logging
import random
from pathlib import Path
from typing import Optional

from fastapi import Depends, FastAPI, Form, Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from clubhouse.auth.session import SessionManager, SessionUser
from clubhouse.auth.users import CredentialStore
from clubhouse.config import Settings
from clubhouse.errors import AuthenticationFailure, AuthorizationFailure, NotFound, StoreUnavailable, ValidationError
from clubhouse.infra.db import init_db, make_engine, make_session_factory
from clubhouse.permissions import current_user_optional, guarded, require_admin, require_authenticated
from clubhouse.schemas import LoginForm, SignupForm, parse_form

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent
templates = Jinja2Templates(directory=str(BASE_DIR / "templates"))

MEMBER_IMAGES = ["images/photo1.svg", "images/photo2.svg", "images/photo3.svg"]
LOGIN_FAILED = AuthenticationFailure.message
MAX_ROW_ID = 2**63 - 1


def _render(request: Request, template_name: str, ctx: Optional[dict] = None, *, status_code: int = 200):
    """TemplateResponse wrapper injecting the current identity."""
    base_ctx = {"current_user": current_user_optional(request)}
    return templates.TemplateResponse(request, template_name, {**base_ctx, **(ctx or {})}, status_code=status_code)


def get_users(request: Request) -> CredentialStore:
    return request.app.state.users


def get_sessions(request: Request) -> SessionManager:
    return request.app.state.sessions


def _redirect(url: str) -> RedirectResponse:
    return RedirectResponse(url=url, status_code=303)


def _start_session(request: Request, sessions: SessionManager, user: SessionUser, url: str) -> RedirectResponse:
    settings: Settings = request.app.state.settings
    old = request.cookies.get(settings.cookie_name)
    if old:
        sessions.destroy(old)
    resp = _redirect(url)
    resp.set_cookie(
        settings.cookie_name,
        sessions.start(user),
        max_age=sessions.ttl_seconds,
        **settings.cookie_settings(),
    )
    return resp


def _parse_id(raw: Optional[str]) -> Optional[int]:
    """Positive ids that fit a signed 64-bit INTEGER column, else None."""
    try:
        value = int((raw or "").strip())
    except ValueError:
        return None
    if value <= 0 or value > MAX_ROW_ID:
        return None
    return value


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the application and its store clients.

    The database is contacted here, before the server binds its port. Failure
    raises ``StoreUnavailable``.
    """
    settings = settings or Settings.from_env()

    try:
        engine = make_engine(settings.database_url)
    except (SQLAlchemyError, ImportError, OSError) as exc:
        raise StoreUnavailable("cannot create database engine") from exc
    init_db(engine)
    session_factory = make_session_factory(engine)

    users = CredentialStore(session_factory)
    sessions = SessionManager(
        session_factory,
        secret_key=settings.secret_key,
        store_secret=settings.session_store_secret,
        ttl_seconds=settings.session_ttl_seconds,
    )
    try:
        purged = sessions.purge_expired()
    except SQLAlchemyError as exc:
        raise StoreUnavailable("session store unavailable") from exc
    if purged:
        logger.info("Purged %s expired sessions", purged)

    app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)
    app.state.settings = settings
    app.state.engine = engine
    app.state.users = users
    app.state.sessions = sessions

    app.mount("/static", StaticFiles(directory=str(BASE_DIR / "static")), name="static")

    @app.middleware("http")
    async def _session_middleware(request: Request, call_next):
        request.state.user = await run_in_threadpool(sessions.resolve, request.cookies.get(settings.cookie_name))
        return await call_next(request)

    @app.middleware("http")
    async def _log_requests(request: Request, call_next):
        logger.info("request %s %s", request.method, request.url.path)
        response = await call_next(request)
        logger.info("response %s %s status %s", request.method, request.url.path, response.status_code)
        return response

    @app.exception_handler(AuthorizationFailure)
    async def _forbidden(request: Request, exc: AuthorizationFailure):
        user = current_user_optional(request)
        logger.warning("Forbidden %s for %s", request.url.path, user.email if user else "anonymous")
        return _render(request, "403.html", status_code=403)

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return _render(request, "404.html", status_code=404)
        return await http_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return HTMLResponse("<h1>Something went wrong</h1>", status_code=500)

    _register_routes(app)
    return app


def _register_routes(app: FastAPI) -> None:
    @app.get("/", response_class=HTMLResponse)
    def home(request: Request):
        return _render(request, "index.html")

    @app.get("/signup", response_class=HTMLResponse)
    def signup_get(request: Request):
        return _render(request, "signup.html", {"error": "", "name": "", "email": ""})

    @app.post("/signup")
    def signup_post(
        request: Request,
        name: str = Form(""),
        email: str = Form(""),
        password: str = Form(""),
        users: CredentialStore = Depends(get_users),
        sessions: SessionManager = Depends(get_sessions),
    ):
        data = {"name": name, "email": email, "password": password}
        try:
            form = parse_form(SignupForm, data)
            user_id = users.create_user(form.name, form.email, form.password)
        except ValidationError as exc:
            return _render(
                request,
                "signup.html",
                {"error": exc.message, "name": name, "email": email},
            )
        u = users.get_user(user_id)
        logger.info("Signup email=%s", u.email)
        return _start_session(
            request, sessions, SessionUser(id=u.id, name=u.name, email=u.email, role=u.role), "/members"
        )

    @app.get("/login", response_class=HTMLResponse)
    def login_get(request: Request):
        return _render(request, "login.html", {"error": "", "email": ""})

    @app.post("/login")
    def login_post(
        request: Request,
        email: str = Form(""),
        password: str = Form(""),
        users: CredentialStore = Depends(get_users),
        sessions: SessionManager = Depends(get_sessions),
    ):
        data = {"email": email, "password": password}
        try:
            form = parse_form(LoginForm, data)
        except ValidationError as exc:
            return _render(request, "login.html", {"error": exc.message, "email": email})

        u = users.authenticate(form.email, form.password)
        if u is None:
            logger.info("Login failed email=%s", form.email)
            return _render(request, "login.html", {"error": LOGIN_FAILED, "email": form.email})

        logger.info("Login email=%s", u.email)
        return _start_session(
            request, sessions, SessionUser(id=u.id, name=u.name, email=u.email, role=u.role), "/members"
        )

    @app.get("/members", response_class=HTMLResponse)
    def members(request: Request, user: SessionUser = Depends(guarded(require_authenticated("/")))):
        return _render(request, "members.html", {"user": user, "image": random.choice(MEMBER_IMAGES)})

    @app.get("/logout")
    def logout(request: Request, sessions: SessionManager = Depends(get_sessions)):
        settings: Settings = request.app.state.settings
        user = current_user_optional(request)
        sessions.destroy(request.cookies.get(settings.cookie_name))
        if user is not None:
            logger.info("Logout email=%s", user.email)
        resp = _redirect("/")
        resp.delete_cookie(settings.cookie_name, httponly=True, samesite="lax", secure=settings.cookie_secure)
        return resp

    @app.get("/admin", response_class=HTMLResponse)
    def admin(request: Request, user=Depends(require_admin), users: CredentialStore = Depends(get_users)):
        return _render(request, "admin.html", {"users": users.list_users()})

    @app.get("/admin/promote")
    def admin_promote(
        id: Optional[str] = None,
        user: SessionUser = Depends(require_admin),
        users: CredentialStore = Depends(get_users),
    ):
        target = _parse_id(id)
        if target is None:
            return _redirect("/admin")
        try:
            u = users.set_role(target, "admin")
        except NotFound:
            logger.warning("Promote: no user id=%s", target)
            return _redirect("/admin")
        logger.info("Role change by %s: %s -> admin", user.email, u.email)
        return _redirect("/admin")

    @app.get("/admin/demote")
    def admin_demote(
        id: Optional[str] = None,
        user: SessionUser = Depends(require_admin),
        users: CredentialStore = Depends(get_users),
    ):
        target = _parse_id(id)
        if target is None:
            return _redirect("/admin")
        current = users.get_user(target)
        if current is None:
            logger.warning("Demote: no user id=%s", target)
            return _redirect("/admin")
        if current.role == "admin" and users.count_admins() <= 1:
            logger.warning("Demote refused: %s is the last admin", current.email)
            return _redirect("/admin")
        u = users.set_role(target, "user")
        logger.info("Role change by %s: %s -> user", user.email, u.email)
        return _redirect("/admin")
