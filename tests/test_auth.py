"""Auth: register, login, refresh rotation, logout, profile."""
from fastapi.testclient import TestClient
from sqlmodel import select

from atelier.core.security import decode_access_token, hash_token
from atelier.models import ActivityLog, RefreshToken, User
from helpers import PASSWORD, bearer


def _register(client: TestClient, email="new@example.com", password="Secure123", name="New User"):
    return client.post("/api/auth/register", json={"email": email, "password": password, "name": name})


def test_register_success(client: TestClient):
    r = _register(client, email="New@Example.com")
    assert r.status_code == 201
    j = r.json()
    assert j["success"] is True
    assert j["user"]["email"] == "new@example.com"
    assert j["user"]["role"] == "user"
    payload = decode_access_token(j["accessToken"])
    assert payload["email"] == "new@example.com"
    assert payload["type"] == "access"
    assert "access_token" in r.cookies
    assert "refresh_token" in r.cookies


def test_register_duplicate_email(client: TestClient):
    assert _register(client).status_code == 201
    client.cookies.clear()
    r = _register(client)
    assert r.status_code == 409
    assert r.json()["error"] == "Email already registered"


def test_register_rejects_weak_password(client: TestClient):
    r = _register(client, password="alllowercase1")
    assert r.status_code == 400
    j = r.json()
    assert j["error"] == "Validation failed"
    assert any(d["field"] == "password" for d in j["details"])


def test_register_validation(client: TestClient):
    r = client.post("/api/auth/register", json={"email": "bad", "password": "123", "name": "X"})
    assert r.status_code == 400
    fields = {d["field"] for d in r.json()["details"]}
    assert {"email", "password", "name"} <= fields


def test_login_success_updates_last_login(client: TestClient, make_user, db):
    user = make_user(email="login@example.com")
    r = client.post("/api/auth/login", json={"email": "LOGIN@example.com", "password": PASSWORD})
    assert r.status_code == 200
    assert r.json()["accessToken"]
    db.expire_all()
    stored = db.get(User, user.id)
    assert stored.last_login is not None
    assert stored.last_ip
    actions = db.exec(select(ActivityLog.action).where(ActivityLog.user_id == user.id)).all()
    assert "LOGIN_SUCCESS" in actions


def test_login_wrong_password(client: TestClient, make_user, db):
    make_user(email="wrong@example.com")
    r = client.post("/api/auth/login", json={"email": "wrong@example.com", "password": "Wrongpass1"})
    assert r.status_code == 401
    assert r.json()["error"] == "Invalid email or password"
    assert db.exec(select(ActivityLog).where(ActivityLog.action == "LOGIN_FAILED")).first() is not None


def test_login_unknown_email_same_message(client: TestClient):
    r = client.post("/api/auth/login", json={"email": "ghost@example.com", "password": PASSWORD})
    assert r.status_code == 401
    assert r.json()["error"] == "Invalid email or password"


def test_login_banned_user(client: TestClient, make_user):
    make_user(email="banned@example.com", banned=True)
    r = client.post("/api/auth/login", json={"email": "banned@example.com", "password": PASSWORD})
    assert r.status_code == 403
    assert r.json()["error"] == "Account suspended"


def test_me_requires_auth(client: TestClient):
    r = client.get("/api/auth/me")
    assert r.status_code == 401
    assert r.json()["error"] == "Authentication required"


def test_me_with_bearer_token(client: TestClient, make_user):
    user = make_user(email="me@example.com")
    r = client.get("/api/auth/me", headers=bearer(user))
    assert r.status_code == 200
    j = r.json()["user"]
    assert j["email"] == "me@example.com"
    assert j["is_super_admin"] is False
    assert j["admin_permissions"] is None


def test_me_with_cookie_after_login(client: TestClient, make_user):
    make_user(email="cookie@example.com")
    client.post("/api/auth/login", json={"email": "cookie@example.com", "password": PASSWORD})
    r = client.get("/api/auth/me")
    assert r.status_code == 200
    assert r.json()["user"]["email"] == "cookie@example.com"


def test_me_rejects_garbage_token(client: TestClient):
    r = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401
    assert r.json()["error"] == "Invalid or expired token"


def test_banned_user_token_is_refused(client: TestClient, make_user, db):
    user = make_user(email="later-banned@example.com")
    headers = bearer(user)
    user.banned = True
    db.add(user)
    db.commit()
    r = client.get("/api/auth/me", headers=headers)
    assert r.status_code == 403
    assert r.json()["error"] == "Account suspended"


def test_super_admin_flags_in_me(client: TestClient, make_user):
    owner = make_user(email="owner@example.com", role="admin")
    j = client.get("/api/auth/me", headers=bearer(owner)).json()["user"]
    assert j["is_super_admin"] is True
    assert all(j["admin_permissions"].values())


def test_refresh_rotates_token(client: TestClient, make_user, db):
    make_user(email="rotate@example.com")
    client.post("/api/auth/login", json={"email": "rotate@example.com", "password": PASSWORD})
    old_refresh = client.cookies.get("refresh_token")
    assert old_refresh
    client.cookies.clear()

    r = client.post("/api/auth/refresh", json={"refresh_token": old_refresh})
    assert r.status_code == 200
    new_refresh = r.json()["refreshToken"]
    assert new_refresh != old_refresh
    assert decode_access_token(r.json()["accessToken"]) is not None

    db.expire_all()
    old_row = db.exec(select(RefreshToken).where(RefreshToken.token_hash == hash_token(old_refresh))).one()
    assert old_row.revoked_at is not None

    client.cookies.clear()
    replay = client.post("/api/auth/refresh", json={"refresh_token": old_refresh})
    assert replay.status_code == 401


def test_refresh_token_is_stored_hashed(client: TestClient, make_user, db):
    make_user(email="hashed@example.com")
    client.post("/api/auth/login", json={"email": "hashed@example.com", "password": PASSWORD})
    raw = client.cookies.get("refresh_token")
    rows = db.exec(select(RefreshToken)).all()
    assert rows
    assert all(row.token_hash != raw for row in rows)
    assert any(row.token_hash == hash_token(raw) for row in rows)


def test_refresh_without_token(client: TestClient):
    r = client.post("/api/auth/refresh")
    assert r.status_code == 401


def test_refresh_refused_for_banned_user(client: TestClient, make_user, db):
    user = make_user(email="refresh-banned@example.com")
    client.post("/api/auth/login", json={"email": "refresh-banned@example.com", "password": PASSWORD})
    raw = client.cookies.get("refresh_token")
    client.cookies.clear()
    user.banned = True
    db.add(user)
    db.commit()
    r = client.post("/api/auth/refresh", json={"refresh_token": raw})
    assert r.status_code == 403


def test_logout_revokes_refresh_token(client: TestClient, make_user, db):
    make_user(email="bye@example.com")
    client.post("/api/auth/login", json={"email": "bye@example.com", "password": PASSWORD})
    raw = client.cookies.get("refresh_token")
    client.cookies.clear()
    r = client.post("/api/auth/logout", json={"refresh_token": raw})
    assert r.status_code == 200
    db.expire_all()
    row = db.exec(select(RefreshToken).where(RefreshToken.token_hash == hash_token(raw))).one()
    assert row.revoked_at is not None
    assert client.post("/api/auth/refresh", json={"refresh_token": raw}).status_code == 401


def test_update_profile(client: TestClient, make_user):
    user = make_user(email="profile@example.com")
    r = client.patch("/api/auth/me", json={"name": "<b>Renamed</b>", "phone": "12345678"}, headers=bearer(user))
    assert r.status_code == 200
    j = r.json()["user"]
    assert j["name"] == "bRenamed/b"
    assert j["phone"] == "12345678"


def test_update_profile_requires_fields(client: TestClient, make_user):
    user = make_user(email="empty@example.com")
    r = client.patch("/api/auth/me", json={}, headers=bearer(user))
    assert r.status_code == 400
