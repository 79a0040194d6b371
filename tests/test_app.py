import pytest
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient

import database
from database import create_document, get_documents, pagination_meta, parse_sort
from errors import register_exception_handlers
from middleware import FixedWindowLimiter, RateLimitMiddleware, SecurityHeadersMiddleware
from moderation import contains_profanity, extract_mentions, sanitize_rich_text, strip_html

SORT_FIELDS = {"createdAt": "created_at", "views": "view_count"}


def test_root_and_health(client):
    assert client.get("/").json() == {"app": "BagPackStories API", "status": "ok"}
    data = client.get("/health").json()
    assert data["success"] is True
    assert data["environment"] == "test"
    assert data["timestamp"].endswith("Z")
    assert data["uptime"] >= 0


def test_database_connection_check(client):
    data = client.get("/test").json()
    assert data["backend"] == "✅ Running"
    assert data["connection_status"] == "Connected"
    assert data["database_name"] == "bagpackstories_test"


def test_public_stats(client, db):
    db["post"].insert_one({"slug": "published-post", "status": "published"})
    db["post"].insert_one({"slug": "draft-post", "status": "draft"})
    db["comment"].insert_one({"status": "approved"})
    data = client.get("/api/public/stats").json()["data"]
    assert data["posts"] == 1
    assert data["comments"] == 1
    assert data["guides"] == 0


def test_security_headers_and_unknown_route(client):
    r = client.get("/api/nowhere")
    assert r.status_code == 404
    assert r.json() == {"success": False, "error": "Not Found - /api/nowhere"}
    assert r.headers["X-Content-Type-Options"] == "nosniff"
    assert r.headers["X-Frame-Options"] == "SAMEORIGIN"


def test_invalid_object_id_is_not_found(client, admin_headers):
    r = client.get("/api/admin/posts/not-an-id", headers=admin_headers)
    assert r.status_code == 404
    assert r.json()["success"] is False


def test_rate_limit_status(client):
    data = client.get("/api/rate-limit-status").json()["data"]
    assert data["limit"] == data["remaining"]
    assert data["windowSeconds"] > 0


def test_document_helpers_without_database(monkeypatch):
    monkeypatch.setattr(database, "db", None)
    with pytest.raises(HTTPException) as exc:
        create_document("contact", {"name": "Jo"})
    assert exc.value.status_code == 500
    assert exc.value.detail == "Database not available"
    with pytest.raises(HTTPException):
        get_documents("newsletter")


# -------------------------------------------------------------------
# Rate limiting
# -------------------------------------------------------------------
def test_fixed_window_limiter():
    limiter = FixedWindowLimiter(max_requests=2, window_seconds=60)
    assert limiter.hit("1.2.3.4", now=0) == (True, 1, 60)
    assert limiter.hit("1.2.3.4", now=10) == (True, 0, 60)
    assert limiter.hit("1.2.3.4", now=20) == (False, 0, 60)
    assert limiter.hit("5.6.7.8", now=20)[0] is True
    assert limiter.peek("1.2.3.4", now=30) == (0, 60)

    assert limiter.hit("1.2.3.4", now=61) == (True, 1, 121)
    limiter.reset()
    assert limiter.peek("1.2.3.4", now=62) == (2, 122)


def test_limiter_sweeps_expired_windows():
    limiter = FixedWindowLimiter(max_requests=5, window_seconds=60)
    for i in range(20):
        limiter.hit(f"10.0.0.{i}", now=i)
    assert len(limiter) == 20
    limiter.hit("10.0.1.1", now=100)
    assert len(limiter) == 1


def limited_app(max_requests, trusted_hops=1):
    app = FastAPI()
    app.add_middleware(
        RateLimitMiddleware,
        limiter=FixedWindowLimiter(max_requests, 900),
        enabled=True,
        trusted_hops=trusted_hops,
    )
    app.add_middleware(SecurityHeadersMiddleware)
    register_exception_handlers(app)

    @app.get("/ping")
    def ping():
        return {"ok": True}

    @app.get("/health")
    def health():
        return {"ok": True}

    return TestClient(app)


def test_rate_limit_middleware_returns_429():
    client = limited_app(2)
    assert client.get("/ping").headers["X-RateLimit-Remaining"] == "1"
    assert client.get("/ping").status_code == 200
    r = client.get("/ping")
    assert r.status_code == 429
    assert r.json()["success"] is False
    assert int(r.headers["Retry-After"]) >= 1
    assert client.get("/health").status_code == 200


def test_rate_limit_keys_on_proxy_appended_ip():
    client = limited_app(1)
    assert client.get("/ping", headers={"X-Forwarded-For": "1.1.1.1, 9.9.9.9"}).status_code == 200
    # a client-chosen leftmost entry does not buy a fresh window
    assert client.get("/ping", headers={"X-Forwarded-For": "2.2.2.2, 9.9.9.9"}).status_code == 429
    assert client.get("/ping", headers={"X-Forwarded-For": "9.9.9.9"}).status_code == 429
    assert client.get("/ping", headers={"X-Forwarded-For": "8.8.8.8"}).status_code == 200


def test_spoofed_forwarded_for_cannot_dodge_limit():
    client = limited_app(2)
    codes = [
        client.get("/ping", headers={"X-Forwarded-For": f"10.0.0.{i}, 9.9.9.9"}).status_code
        for i in range(10)
    ]
    assert codes.count(200) == 2
    assert codes.count(429) == 8


def test_forwarded_for_ignored_without_trusted_proxy():
    client = limited_app(1, trusted_hops=0)
    assert client.get("/ping", headers={"X-Forwarded-For": "1.1.1.1"}).status_code == 200
    assert client.get("/ping", headers={"X-Forwarded-For": "2.2.2.2"}).status_code == 429


# -------------------------------------------------------------------
# Pagination and sorting
# -------------------------------------------------------------------
def test_pagination_meta():
    assert pagination_meta(1, 10, 25) == {
        "currentPage": 1,
        "totalPages": 3,
        "total": 25,
        "limit": 10,
        "hasNextPage": True,
        "hasPrevPage": False,
    }
    last = pagination_meta(3, 10, 25)
    assert last["hasNextPage"] is False
    assert last["hasPrevPage"] is True
    empty = pagination_meta(1, 10, 0)
    assert empty["totalPages"] == 0
    assert empty["hasNextPage"] is False


def test_parse_sort():
    default = ("created_at", -1)
    assert parse_sort("-views", SORT_FIELDS, default) == ("view_count", -1)
    assert parse_sort("createdAt", SORT_FIELDS, default) == ("created_at", 1)
    assert parse_sort("password", SORT_FIELDS, default) == default
    assert parse_sort(None, SORT_FIELDS, default) == default


# -------------------------------------------------------------------
# Moderation helpers
# -------------------------------------------------------------------
def test_profanity_uses_word_boundaries():
    assert contains_profanity("What a shit hostel")
    assert not contains_profanity("We stayed in Scunthorpe and Essex")
    assert not contains_profanity("Great views from the Shitake farm")


def test_casino_allowed_in_travel_context():
    assert contains_profanity("Visit my casino site")
    assert not contains_profanity("The casino hotel in Macau was huge")
    assert not contains_profanity("Our trip included a casino night")


def test_sanitize_rich_text():
    html = '<p onclick="x()">Hi <a href="javascript:alert(1)">link</a><script>bad()</script></p>'
    cleaned = sanitize_rich_text(html)
    assert "onclick" not in cleaned
    assert "javascript:" not in cleaned
    assert "<script>" not in cleaned
    assert cleaned.startswith("<p>Hi ")
    assert strip_html("<b>Bold</b> move") == "Bold move"


def test_extract_mentions_dedupes():
    assert extract_mentions("@anna and @ben, thanks @anna!") == ["anna", "ben"]
