from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import SQLAlchemyError

from b2b_starter.config import Settings, settings
from b2b_starter.core.tokens import TokenManager
from b2b_starter.main import create_app
from b2b_starter.models.audit import AuditEvent

PASSWORD = "Correct-horse1"
ADMIN_PASSWORD = "Admin-password1"


@pytest.fixture
def client(auth_service, session_factory):
    app = create_app(config=settings, auth_service=auth_service, session_factory=session_factory)
    return TestClient(app)


def _login(client, email, password):
    response = client.post("/api/v1/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return response.json()


def _bearer(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_tokens(client, auth_service):
    auth_service.bootstrap_admin("admin@example.com", ADMIN_PASSWORD)
    return _login(client, "admin@example.com", ADMIN_PASSWORD)


def test_register_then_login(client):
    response = client.post(
        "/api/v1/auth/register",
        json={"email": "Dave@Example.com", "password": PASSWORD, "full_name": "Dave"},
    )
    assert response.status_code == 201
    body = response.json()
    assert body["email"] == "dave@example.com"
    assert body["status"] == "pending_verification"
    assert "password_hash" not in body

    tokens = _login(client, "dave@example.com", PASSWORD)
    assert tokens["token_type"] == "Bearer"
    assert 0 < tokens["expires_in"] <= 15 * 60
    assert tokens["user"]["email"] == "dave@example.com"


def test_register_rejects_weak_password(client):
    response = client.post("/api/v1/auth/register", json={"email": "weak@example.com", "password": "weakpass"})
    assert response.status_code == 422
    body = response.json()
    assert body["success"] is False
    assert "uppercase" in body["error"]


def test_register_duplicate_email_conflicts(client, active_user):
    response = client.post("/api/v1/auth/register", json={"email": "alice@example.com", "password": PASSWORD})
    assert response.status_code == 409


def test_login_failure_is_generic(client, active_user):
    wrong = client.post("/api/v1/auth/login", json={"email": "alice@example.com", "password": "Wrong-password1"})
    unknown = client.post("/api/v1/auth/login", json={"email": "ghost@example.com", "password": PASSWORD})
    assert wrong.status_code == unknown.status_code == 401
    assert wrong.json()["error"] == unknown.json()["error"]
    assert wrong.headers["WWW-Authenticate"] == "Bearer"


def test_locked_account_returns_423(client, active_user):
    for _ in range(5):
        client.post("/api/v1/auth/login", json={"email": "alice@example.com", "password": "Wrong-password1"})
    response = client.post("/api/v1/auth/login", json={"email": "alice@example.com", "password": PASSWORD})
    assert response.status_code == 423


def test_identity_endpoint(client, active_user):
    tokens = _login(client, "alice@example.com", PASSWORD)
    response = client.get("/api/v1/auth/me", headers=_bearer(tokens["access_token"]))
    assert response.status_code == 200
    body = response.json()
    assert body["user_id"] == active_user.id
    assert body["roles"] == ["user"]
    assert "files:read" in body["permissions"]
    assert "users:read" not in body["permissions"]


def test_missing_token_is_unauthorized(client):
    response = client.get("/api/v1/auth/me")
    assert response.status_code == 401
    assert response.json()["error"] == "Missing bearer token"


def test_invalid_token_is_unauthorized(client):
    response = client.get("/api/v1/auth/me", headers=_bearer("not-a-jwt"))
    assert response.status_code == 401
    assert response.json()["error"] == "Invalid token"


def test_expired_token_is_unauthorized(client, active_user, signing_keys):
    expired = TokenManager(
        signing_keys,
        issuer=settings.JWT_ISSUER,
        audience=settings.JWT_AUDIENCE,
        access_ttl=timedelta(seconds=-30),
    ).generate_token_pair(active_user.id, active_user.email, True, "user")
    response = client.get("/api/v1/auth/me", headers=_bearer(expired.access_token))
    assert response.status_code == 401
    assert response.json()["error"] == "Token has expired"


def test_refresh_and_reuse(client, active_user):
    tokens = _login(client, "alice@example.com", PASSWORD)
    rotated = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert rotated.status_code == 200
    assert rotated.json()["refresh_token"] != tokens["refresh_token"]

    replay = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert replay.status_code == 401

    after_reuse = client.post("/api/v1/auth/refresh", json={"refresh_token": rotated.json()["refresh_token"]})
    assert after_reuse.status_code == 401


def test_logout_reports_revocation(client, active_user):
    tokens = _login(client, "alice@example.com", PASSWORD)
    first = client.post("/api/v1/auth/logout", json={"refresh_token": tokens["refresh_token"]})
    second = client.post("/api/v1/auth/logout", json={"refresh_token": tokens["refresh_token"]})
    assert first.json()["refresh_token_revoked"] is True
    assert second.json()["refresh_token_revoked"] is False


def test_logout_all_and_change_password(client, active_user):
    tokens = _login(client, "alice@example.com", PASSWORD)
    _login(client, "alice@example.com", PASSWORD)

    response = client.post("/api/v1/auth/logout-all", headers=_bearer(tokens["access_token"]))
    assert response.json()["revoked_count"] == 2

    wrong = client.post(
        "/api/v1/auth/change-password",
        headers=_bearer(tokens["access_token"]),
        json={"current_password": "Wrong-password1", "new_password": "New-password2"},
    )
    assert wrong.status_code == 401

    changed = client.post(
        "/api/v1/auth/change-password",
        headers=_bearer(tokens["access_token"]),
        json={"current_password": PASSWORD, "new_password": "New-password2"},
    )
    assert changed.status_code == 200
    _login(client, "alice@example.com", "New-password2")


def test_profile_endpoints(client, active_user):
    tokens = _login(client, "alice@example.com", PASSWORD)
    updated = client.patch(
        "/api/v1/users/me", headers=_bearer(tokens["access_token"]), json={"full_name": "Alice A."}
    )
    assert updated.status_code == 200
    profile = client.get("/api/v1/users/me", headers=_bearer(tokens["access_token"]))
    assert profile.json()["full_name"] == "Alice A."


def test_user_admin_routes_require_permission(client, active_user):
    tokens = _login(client, "alice@example.com", PASSWORD)
    response = client.get("/api/v1/users/", headers=_bearer(tokens["access_token"]))
    assert response.status_code == 403
    assert response.json()["error"] == "Permission users:read required"


def test_admin_lists_and_suspends_users(client, active_user, admin_tokens, session_factory):
    user_tokens = _login(client, "alice@example.com", PASSWORD)
    headers = _bearer(admin_tokens["access_token"])

    listing = client.get("/api/v1/users/", headers=headers, params={"limit": 10})
    assert listing.status_code == 200
    assert listing.json()["total"] == 2

    suspended = client.patch(f"/api/v1/users/{active_user.id}", headers=headers, json={"status": "suspended"})
    assert suspended.status_code == 200
    assert suspended.json()["status"] == "suspended"

    refresh = client.post("/api/v1/auth/refresh", json={"refresh_token": user_tokens["refresh_token"]})
    assert refresh.status_code == 401

    with session_factory() as db:
        events = db.query(AuditEvent).all()
    assert [e.action for e in events] == ["update_user"]
    assert events[0].target_user_id == active_user.id
    assert events[0].details_dict() == {"status": "suspended"}

    trail = client.get(f"/api/v1/users/{active_user.id}/audit", headers=headers)
    assert trail.status_code == 200
    assert [e["action"] for e in trail.json()] == ["update_user"]


def test_admin_cannot_activate_through_patch(client, active_user, admin_tokens):
    response = client.patch(
        f"/api/v1/users/{active_user.id}",
        headers=_bearer(admin_tokens["access_token"]),
        json={"status": "active"},
    )
    assert response.status_code == 422


def test_admin_verify_unlock_and_delete(client, auth_service, admin_tokens):
    headers = _bearer(admin_tokens["access_token"])
    pending = auth_service.register("erin@example.com", PASSWORD)

    verified = client.post(f"/api/v1/users/{pending.id}/verify-email", headers=headers)
    assert verified.json()["status"] == "active"

    unlocked = client.post(f"/api/v1/users/{pending.id}/unlock", headers=headers)
    assert unlocked.status_code == 200

    deleted = client.delete(f"/api/v1/users/{pending.id}", headers=headers)
    assert deleted.status_code == 200
    assert client.get(f"/api/v1/users/{pending.id}", headers=headers).status_code == 404

    # The trail outlives the account it describes.
    trail = client.get(f"/api/v1/users/{pending.id}/audit", headers=headers).json()
    assert [e["action"] for e in trail] == ["delete_user", "unlock_user", "verify_email"]
    assert all(e["actor_id"] is not None for e in trail)


def test_admin_cannot_delete_self(client, auth_service, admin_tokens):
    admin = auth_service.users.get_by_email("admin@example.com")
    response = client.delete(f"/api/v1/users/{admin.id}", headers=_bearer(admin_tokens["access_token"]))
    assert response.status_code == 422


def test_register_is_rate_limited(client):
    for i in range(settings.LOGIN_RATE_LIMIT_PER_MINUTE):
        response = client.post("/api/v1/auth/register", json={"email": f"user{i}@example.com", "password": PASSWORD})
        assert response.status_code == 201
    response = client.post("/api/v1/auth/register", json={"email": "one-more@example.com", "password": PASSWORD})
    assert response.status_code == 429


def test_health_metrics_and_headers(client):
    health = client.get("/health")
    assert health.status_code == 200
    assert health.json()["readiness"]["database"]["ok"] is True
    assert health.headers["X-Content-Type-Options"] == "nosniff"
    assert "X-Request-ID" in health.headers

    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    assert "b2b_auth_logins_total" in metrics.text


def _boom(*args, **kwargs):
    raise SQLAlchemyError("database unavailable")


def test_admin_change_survives_audit_write_failure(client, auth_service, active_user, admin_tokens, monkeypatch):
    monkeypatch.setattr(auth_service.audit, "record", _boom)
    headers = _bearer(admin_tokens["access_token"])

    suspended = client.patch(f"/api/v1/users/{active_user.id}", headers=headers, json={"status": "suspended"})
    assert suspended.status_code == 200
    assert auth_service.users.get_by_id(active_user.id).status == "suspended"

    deleted = client.delete(f"/api/v1/users/{active_user.id}", headers=headers)
    assert deleted.status_code == 200
    assert client.get(f"/api/v1/users/{active_user.id}", headers=headers).status_code == 404


def test_rate_limits_follow_app_config(auth_service, session_factory):
    config = settings.model_copy(update={"LOGIN_RATE_LIMIT_PER_MINUTE": 2})
    client = TestClient(create_app(config=config, auth_service=auth_service, session_factory=session_factory))
    for i in range(2):
        response = client.post("/api/v1/auth/register", json={"email": f"user{i}@example.com", "password": PASSWORD})
        assert response.status_code == 201
    response = client.post("/api/v1/auth/register", json={"email": "third@example.com", "password": PASSWORD})
    assert response.status_code == 429


def test_create_app_uses_configured_database(tmp_path):
    db_file = tmp_path / "auth.db"
    config = Settings(
        DATABASE_URL=f"sqlite:///{db_file}",
        DB_INIT_MODE="create_all",
        ENVIRONMENT="test",
        ADMIN_EMAIL="root@example.com",
        ADMIN_PASSWORD=ADMIN_PASSWORD,
        PASSWORD_HASH_MEMORY_KIB=1024,
        PASSWORD_HASH_ITERATIONS=1,
        PASSWORD_HASH_PARALLELISM=1,
    )
    app = create_app(config=config)

    with app.state.session_factory() as db:
        engine = db.get_bind()
    assert engine.url.database == str(db_file)

    with TestClient(app) as client:
        health = client.get("/health")
        assert health.json()["readiness"]["database"]["ok"] is True
        tokens = _login(client, "root@example.com", ADMIN_PASSWORD)
        assert tokens["user"]["role"] == "admin"

    assert db_file.exists()
    engine.dispose()
