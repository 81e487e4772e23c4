import asyncio
import threading

from fastapi.testclient import TestClient
import httpx
import pytest

from clubhouse.app import LOGIN_FAILED, MEMBER_IMAGES, create_app
from clubhouse.config import Settings
from clubhouse.errors import StoreUnavailable


def _signup(client, name="Ann", email="ann@x.com", password="pw"):
    return client.post(
        "/signup",
        data={"name": name, "email": email, "password": password},
        follow_redirects=False,
    )


def test_signup_creates_user_and_logs_in(app, client):
    r = _signup(client)
    assert r.status_code == 303
    assert r.headers["location"] == "/members"
    cookie = r.cookies.get("clubhouse_session")
    assert cookie

    u = app.state.users.find_by_email("ann@x.com")
    assert u.role == "user"
    assert u.password_hash != "pw"
    assert app.state.sessions.resolve(cookie).name == "Ann"

    r = client.get("/members")
    assert r.status_code == 200
    assert "Hello, Ann." in r.text
    assert any(img in r.text for img in MEMBER_IMAGES)


def test_session_cookie_is_http_only(client):
    r = _signup(client)
    set_cookie = r.headers["set-cookie"].lower()
    assert "httponly" in set_cookie
    assert "max-age=3600" in set_cookie


def test_signup_validation_error_rerenders_form(app, client):
    r = _signup(client, name="Ann", email="not-an-email")
    assert r.status_code == 200
    assert "Invalid input: Email must be a valid email address." in r.text
    assert 'value="Ann"' in r.text
    assert app.state.users.list_users() == []


def test_signup_duplicate_email(client):
    assert _signup(client).status_code == 303
    client.cookies.clear()
    r = _signup(client, name="Imposter")
    assert r.status_code == 200
    assert "Email already registered." in r.text


def test_login_success(app, client, login):
    app.state.users.create_user("Ann", "ann@x.com", "pw")
    r = login("ann@x.com", "pw")
    assert r.status_code == 303
    assert r.headers["location"] == "/members"
    assert "Hello, Ann." in client.get("/members").text


def test_login_failures_are_indistinguishable(app, login):
    app.state.users.create_user("Ann", "ann@x.com", "pw")
    wrong_password = login("ann@x.com", "nope")
    unknown_email = login("bob@x.com", "pw")
    for r in (wrong_password, unknown_email):
        assert r.status_code == 200
        assert LOGIN_FAILED in r.text
        assert "clubhouse_session" not in r.headers.get("set-cookie", "")
    assert wrong_password.text.replace("ann@x.com", "EMAIL") == unknown_email.text.replace("bob@x.com", "EMAIL")


def test_login_validation_error(login):
    r = login("ann@x.com", "")
    assert r.status_code == 200
    assert "Invalid input: Password is required." in r.text


def test_members_requires_session(client):
    r = client.get("/members", follow_redirects=False)
    assert r.status_code == 303
    assert r.headers["location"] == "/"


def test_logout_destroys_session_and_is_idempotent(app, client):
    cookie = _signup(client).cookies.get("clubhouse_session")
    r = client.get("/logout", follow_redirects=False)
    assert r.status_code == 303
    assert r.headers["location"] == "/"
    assert app.state.sessions.resolve(cookie) is None

    client.cookies.set("clubhouse_session", cookie)
    assert client.get("/members", follow_redirects=False).status_code == 303
    assert client.get("/logout", follow_redirects=False).status_code == 303


def test_home_is_identity_aware(client):
    assert "Welcome to the Clubhouse" in client.get("/").text
    _signup(client)
    assert "Hello, Ann!" in client.get("/").text


def test_admin_requires_login(client):
    r = client.get("/admin", follow_redirects=False)
    assert r.status_code == 303
    assert r.headers["location"] == "/login"
    r = client.get("/admin/promote?id=1", follow_redirects=False)
    assert r.headers["location"] == "/login"


def test_admin_forbidden_for_user_role(app, client):
    _signup(client)
    assert client.get("/admin").status_code == 403
    ann = app.state.users.find_by_email("ann@x.com")
    assert client.get(f"/admin/promote?id={ann.id}").status_code == 403
    assert app.state.users.get_user(ann.id).role == "user"


def test_admin_lists_users(app, admin_client):
    app.state.users.create_user("Ann", "ann@x.com", "pw")
    r = admin_client.get("/admin")
    assert r.status_code == 200
    assert "ann@x.com" in r.text
    assert "root@x.com" in r.text


def test_promote_then_demote(app, admin_client):
    ann_id = app.state.users.create_user("Ann", "ann@x.com", "pw")

    r = admin_client.get(f"/admin/promote?id={ann_id}", follow_redirects=False)
    assert r.status_code == 303
    assert r.headers["location"] == "/admin"
    assert app.state.users.get_user(ann_id).role == "admin"

    r = admin_client.get(f"/admin/demote?id={ann_id}", follow_redirects=False)
    assert r.status_code == 303
    assert app.state.users.get_user(ann_id).role == "user"


INVALID_ID_QUERIES = ["", "?id=", "?id=abc", "?id=999", "?id=0", "?id=-1", "?id=99999999999999999999999"]


@pytest.mark.parametrize("query", INVALID_ID_QUERIES)
def test_promote_without_valid_target_redirects(app, admin_client, query):
    r = admin_client.get(f"/admin/promote{query}", follow_redirects=False)
    assert r.status_code == 303
    assert r.headers["location"] == "/admin"
    assert app.state.users.count_admins() == 1


@pytest.mark.parametrize("query", INVALID_ID_QUERIES)
def test_demote_without_valid_target_redirects(app, admin_client, query):
    ann_id = app.state.users.create_user("Ann", "ann@x.com", "pw", role="admin")
    r = admin_client.get(f"/admin/demote{query}", follow_redirects=False)
    assert r.status_code == 303
    assert r.headers["location"] == "/admin"
    assert app.state.users.get_user(ann_id).role == "admin"
    assert app.state.users.count_admins() == 2


def test_last_admin_cannot_be_demoted(app, admin_client):
    root = app.state.users.find_by_email("root@x.com")
    r = admin_client.get(f"/admin/demote?id={root.id}", follow_redirects=False)
    assert r.status_code == 303
    assert app.state.users.get_user(root.id).role == "admin"


def test_role_change_applies_at_next_login(app, admin_client):
    ann_id = app.state.users.create_user("Ann", "ann@x.com", "pw")
    ann = TestClient(app)
    ann.post("/login", data={"email": "ann@x.com", "password": "pw"})
    assert ann.get("/admin").status_code == 403

    admin_client.get(f"/admin/promote?id={ann_id}")
    # The running session still carries the old snapshot.
    assert ann.get("/admin").status_code == 403

    ann.get("/logout")
    ann.post("/login", data={"email": "ann@x.com", "password": "pw"})
    assert ann.get("/admin").status_code == 200


def test_unknown_path_is_404(client):
    r = client.get("/unknown-path")
    assert r.status_code == 404
    assert "Page not found" in r.text


def test_static_assets_served(client):
    r = client.get("/static/" + MEMBER_IMAGES[0])
    assert r.status_code == 200


def test_store_unavailable_at_startup(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("")
    settings = Settings(
        secret_key="a",
        session_store_secret="b",
        database_url=f"sqlite:///{blocker / 'db.sqlite'}",
    )
    with pytest.raises(StoreUnavailable):
        create_app(settings)


@pytest.mark.anyio
async def test_slow_login_does_not_block_other_requests(app, monkeypatch):
    started = threading.Event()
    release = threading.Event()
    real_authenticate = app.state.users.authenticate

    def slow_authenticate(email, password):
        started.set()
        release.wait(timeout=5)
        return real_authenticate(email, password)

    monkeypatch.setattr(app.state.users, "authenticate", slow_authenticate)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as ac:
        login = asyncio.create_task(ac.post("/login", data={"email": "ann@x.com", "password": "pw"}))
        for _ in range(500):
            if started.is_set():
                break
            await asyncio.sleep(0.01)
        assert started.is_set()

        r = await ac.get("/")
        assert r.status_code == 200
        assert not login.done()

        release.set()
        r = await login
        assert r.status_code == 200
        assert LOGIN_FAILED in r.text


@pytest.mark.anyio
async def test_concurrent_logins(app):
    for i in range(4):
        app.state.users.create_user(f"User {i}", f"user{i}@x.com", "pw")
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as ac:
        responses = await asyncio.gather(
            *(ac.post("/login", data={"email": f"user{i}@x.com", "password": "pw"}) for i in range(4))
        )
    assert [r.status_code for r in responses] == [303] * 4
    assert len({r.cookies.get("clubhouse_session") for r in responses}) == 4
