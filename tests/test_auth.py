import base64
import json
import re

import jwt

import config
from conftest import make_user
from security import create_jwt, token_for

REGISTER = {"name": "Maria Lopez", "email": "Maria@Travel.io", "password": "Wander1ust"}


def test_register_login_and_me(client, sent_emails):
    r = client.post("/api/auth/register", json=REGISTER)
    assert r.status_code == 201
    body = r.json()
    assert body["user"]["email"] == "maria@travel.io"
    assert "passwordHash" not in body["user"]
    assert "emailVerificationToken" not in body["user"]
    assert sent_emails[0]["to"] == "maria@travel.io"

    r = client.post("/api/auth/login", json={"email": "maria@travel.io", "password": "Wander1ust"})
    assert r.status_code == 200
    token = r.json()["token"]

    r = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 200
    assert r.json()["user"]["name"] == "Maria Lopez"


def test_register_duplicate_email(client):
    assert client.post("/api/auth/register", json=REGISTER).status_code == 201
    r = client.post("/api/auth/register", json={**REGISTER, "email": "maria@travel.io"})
    assert r.status_code == 400
    assert r.json()["success"] is False


def test_register_rejects_weak_password(client):
    r = client.post("/api/auth/register", json={**REGISTER, "password": "alllowercase"})
    assert r.status_code == 400
    assert r.json()["error"] == "Validation failed"


def test_register_disabled(client, admin_headers):
    client.put("/api/admin/settings", json={"generalSettings": {"registrationEnabled": False}}, headers=admin_headers)
    assert client.post("/api/auth/register", json=REGISTER).status_code == 403


def test_login_bad_credentials(client, reader):
    r = client.post("/api/auth/login", json={"email": "jo@x.com", "password": "Wrong123"})
    assert r.status_code == 401
    r = client.post("/api/auth/login", json={"email": "nobody@x.com", "password": "Wrong123"})
    assert r.status_code == 401


def test_tampered_token_is_rejected(client, reader):
    header, payload, signature = token_for(reader).split(".")
    claims = json.loads(base64.urlsafe_b64decode(payload + "=" * (-len(payload) % 4)))
    claims["role"] = "admin"
    forged_payload = base64.urlsafe_b64encode(json.dumps(claims).encode()).decode().rstrip("=")
    tampered = ".".join([header, forged_payload, signature])
    r = client.get("/api/auth/me", headers={"Authorization": f"Bearer {tampered}"})
    assert r.status_code == 401
    assert r.json()["error"] == "Invalid token"


def test_token_signed_with_other_secret_is_rejected(client, reader):
    forged = jwt.encode({"id": str(reader["_id"]), "role": "admin"}, "not-the-secret", algorithm="HS256")
    assert client.get("/api/auth/me", headers={"Authorization": f"Bearer {forged}"}).status_code == 401


def test_expired_token_is_rejected(client, reader):
    token = create_jwt({"id": str(reader["_id"]), "role": "reader"}, seconds=-10)
    r = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 401
    assert r.json()["error"] == "Token expired"


def test_token_claims(reader):
    claims = jwt.decode(token_for(reader), config.JWT_SECRET, algorithms=["HS256"])
    assert claims["id"] == str(reader["_id"])
    assert claims["role"] == "reader"
    assert claims["exp"] - claims["iat"] == config.JWT_EXPIRE_SECONDS


def test_missing_token(client):
    r = client.get("/api/auth/me")
    assert r.status_code == 401
    assert r.json()["error"] == "Not authorized to access this route"


def test_update_profile_and_password(client, reader_headers):
    r = client.put("/api/auth/profile", json={"bio": "Backpacker", "socialLinks": {"instagram": "https://ig.com/jo"}},
                   headers=reader_headers)
    assert r.status_code == 200
    assert r.json()["user"]["bio"] == "Backpacker"
    assert r.json()["user"]["socialLinks"]["instagram"] == "https://ig.com/jo"

    r = client.put("/api/auth/password", json={"currentPassword": "nope", "newPassword": "Fresh123"},
                   headers=reader_headers)
    assert r.status_code == 401
    r = client.put("/api/auth/password", json={"currentPassword": "Secret123", "newPassword": "Fresh123"},
                   headers=reader_headers)
    assert r.status_code == 200
    assert client.post("/api/auth/login", json={"email": "jo@x.com", "password": "Fresh123"}).status_code == 200


def test_forgot_and_reset_password(client, db, reader, sent_emails):
    assert client.post("/api/auth/forgot-password", json={"email": "ghost@x.com"}).status_code == 404

    r = client.post("/api/auth/forgot-password", json={"email": "jo@x.com"})
    assert r.status_code == 200
    raw = re.search(r"/reset-password/([0-9a-f]{64})", sent_emails[-1]["html"]).group(1)
    stored = db["user"].find_one({"_id": reader["_id"]})
    assert stored["password_reset_token"] != raw

    r = client.post(f"/api/auth/reset-password/{raw}", json={"password": "Brand9new", "confirmPassword": "Mismatch1"})
    assert r.status_code == 400
    r = client.post(f"/api/auth/reset-password/{raw}", json={"password": "Brand9new", "confirmPassword": "Brand9new"})
    assert r.status_code == 200
    assert client.post(f"/api/auth/reset-password/{raw}",
                       json={"password": "Brand9new", "confirmPassword": "Brand9new"}).status_code == 400
    assert client.post("/api/auth/login", json={"email": "jo@x.com", "password": "Brand9new"}).status_code == 200


def test_verify_email(client, db, sent_emails):
    client.post("/api/auth/register", json=REGISTER)
    raw = re.search(r"/verify-email/([0-9a-f]{64})", sent_emails[0]["html"]).group(1)
    assert client.get("/api/auth/verify-email/deadbeef").status_code == 400
    assert client.get(f"/api/auth/verify-email/{raw}").status_code == 200
    assert db["user"].find_one({"email": "maria@travel.io"})["is_email_verified"] is True


# -------------------------------------------------------------------
# Users
# -------------------------------------------------------------------
def test_admin_create_user_duplicate_email(client, reader, admin_headers):
    body = {"name": "Jo Again", "email": "JO@x.com", "password": "Secret123"}
    r = client.post("/api/users", json=body, headers=admin_headers)
    assert r.status_code == 400

    r = client.post("/api/admin/users", json={**body, "email": "new@x.com", "role": "contributor"},
                    headers=admin_headers)
    assert r.status_code == 201
    assert r.json()["data"]["role"] == "contributor"


def test_user_admin_routes_need_admin(client, reader_headers):
    assert client.get("/api/users", headers=reader_headers).status_code == 403
    assert client.get("/api/users").status_code == 401


def test_follow_toggle(client, db, reader, reader_headers):
    other = make_user(db, name="Tom Hill", email="tom@x.com")
    other_id = str(other["_id"])

    r = client.put(f"/api/users/{other_id}/follow", headers=reader_headers)
    assert r.json()["data"] == {"following": True, "followersCount": 1}
    followers = client.get(f"/api/users/{other_id}/followers").json()["data"]
    assert [f["id"] for f in followers] == [str(reader["_id"])]

    r = client.put(f"/api/users/{other_id}/follow", headers=reader_headers)
    assert r.json()["data"] == {"following": False, "followersCount": 0}

    r = client.put(f"/api/users/{reader['_id']}/follow", headers=reader_headers)
    assert r.status_code == 400


def test_delete_user_cleans_follow_lists(client, db, reader, reader_headers, admin_headers):
    other = make_user(db, name="Tom Hill", email="tom@x.com")
    client.put(f"/api/users/{other['_id']}/follow", headers=reader_headers)

    assert client.delete(f"/api/users/{reader['_id']}", headers=admin_headers).status_code == 200
    assert db["user"].find_one({"_id": other["_id"]})["followers"] == []


def test_unknown_user_is_404(client):
    assert client.get("/api/users/not-an-id").status_code == 404
    assert client.get("/api/users/64b7f0c2a1b2c3d4e5f60718").status_code == 404
