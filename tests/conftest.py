import sys
from pathlib import Path as _Path
sys.path.insert(0, str(_Path(__file__).resolve().parents[1] / "src"))

from datetime import datetime, timedelta
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from clubhouse.app import create_app
from clubhouse.auth.session import SessionManager
from clubhouse.auth.users import CredentialStore
from clubhouse.config import Settings
from clubhouse.infra.db import init_db, make_engine, make_session_factory

SECRET = "test-cookie-secret"
STORE_SECRET = "test-store-secret"


class FakeClock:
    """Naive-UTC clock that only moves when told to."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture()
def db_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'clubhouse.db'}"


@pytest.fixture()
def session_factory(db_url):
    engine = make_engine(db_url)
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture()
def store(session_factory) -> CredentialStore:
    return CredentialStore(session_factory)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def sessions(session_factory, clock) -> SessionManager:
    return SessionManager(
        session_factory,
        secret_key=SECRET,
        store_secret=STORE_SECRET,
        ttl_seconds=3600,
        clock=clock,
    )


@pytest.fixture()
def settings(db_url) -> Settings:
    return Settings(secret_key=SECRET, session_store_secret=STORE_SECRET, database_url=db_url)


@pytest.fixture()
def app(settings):
    app = create_app(settings)
    yield app
    app.state.engine.dispose()


@pytest.fixture()
def client(app) -> TestClient:
    return TestClient(app)


@pytest.fixture()
def login(client: TestClient):
    def _login(email: str, password: str):
        return client.post("/login", data={"email": email, "password": password}, follow_redirects=False)

    return _login


@pytest.fixture()
def admin_client(app, client, login):
    """The shared client, logged in as a freshly created admin."""
    app.state.users.create_user("Root", "root@x.com", "rootpw", role="admin")
    r = login("root@x.com", "rootpw")
    assert r.status_code == 303
    return client


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"
