import jwt

from pbms.auth.security import create_access_token, get_password_hash, verify_password
from pbms.config import settings


def test_password_hashing_roundtrip():
    hashed = get_password_hash("secret123")
    assert hashed.startswith("$pbkdf2-sha256$")
    assert verify_password("secret123", hashed)
    assert not verify_password("wrong", hashed)


def test_legacy_bcrypt_hash_verifies():
    import bcrypt
    legacy = bcrypt.hashpw(b"legacy-pass", bcrypt.gensalt(rounds=4)).decode()
    assert verify_password("legacy-pass", legacy)
    assert not verify_password("nope", legacy)


def test_register_forces_user_role(client):
    r = client.post(
        "/auth/register",
        json={"email": "New@Example.com", "password": "secret123", "full_name": "New Person", "role": "admin"},
    )
    assert r.status_code == 201
    body = r.json()
    assert body["user"]["role"] == "user"
    assert body["user"]["email"] == "new@example.com"
    claims = jwt.decode(body["token"], settings.jwt_secret, algorithms=["HS256"])
    assert claims["role"] == "user"
    assert claims["sub"] == body["user"]["id"]


def test_register_duplicate_email(client, member):
    r = client.post(
        "/auth/register",
        json={"email": "USER@example.com", "password": "secret123", "full_name": "Dup"},
    )
    assert r.status_code == 409
    assert r.json() == {"error": "User already exists"}


def test_register_validation_error_shape(client):
    r = client.post("/auth/register", json={"email": "not-an-email", "password": "x"})
    assert r.status_code == 422
    body = r.json()
    assert body["error"] == "Validation failed"
    assert body["errors"]


def test_login(client, member):
    r = client.post("/auth/login", json={"email": "user@example.com", "password": "secret123"})
    assert r.status_code == 200
    assert r.json()["user"]["id"] == str(member.id)
    assert r.json()["user"]["last_login_at"] is not None


def test_login_wrong_password(client, member):
    r = client.post("/auth/login", json={"email": "user@example.com", "password": "wrong"})
    assert r.status_code == 401
    assert r.json()["error"] == "Invalid credentials"


def test_login_inactive_user(client, make_user):
    make_user("user", email="gone@example.com", is_active=False)
    r = client.post("/auth/login", json={"email": "gone@example.com", "password": "secret123"})
    assert r.status_code == 401


def test_me_lists_permissions_and_menu(client, headers, analyst):
    r = client.get("/auth/me", headers=headers(analyst))
    assert r.status_code == 200
    body = r.json()
    assert body["user"]["email"] == "analyst@example.com"
    assert body["role_display_name"] == "Analyst"
    assert "analytics:read" in body["permissions"]
    assert "dashboard:read" in body["permissions"]
    assert "analytics" in body["menu_items"]


def test_missing_token(client):
    r = client.get("/auth/me")
    assert r.status_code == 401
    assert r.json() == {"error": "Access token required"}


def test_invalid_and_expired_tokens(client, member):
    assert client.get("/auth/me", headers={"Authorization": "Bearer garbage"}).status_code == 401
    expired = create_access_token(member, ttl_seconds=-10)
    r = client.get("/auth/me", headers={"Authorization": f"Bearer {expired}"})
    assert r.status_code == 401
    assert r.json()["error"] == "Token expired"


def test_deactivated_user_token_rejected(client, headers, make_user):
    u = make_user("user", is_active=False)
    assert client.get("/auth/me", headers=headers(u)).status_code == 401


def test_unknown_role_is_forbidden(client, headers, make_user):
    u = make_user("superuser")
    assert client.get("/auth/me", headers=headers(u)).status_code == 403


def test_miscased_admin_role_is_forbidden(client, headers, make_user):
    u = make_user("Admin")
    assert client.get("/api/admin/users", headers=headers(u)).status_code == 403
    assert client.get("/auth/me", headers=headers(u)).status_code == 403
