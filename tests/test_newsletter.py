from datetime import timedelta

import pytest

import emailer
from database import create_document, now_utc
from emailer import EmailService, render_template
from routers.newsletter import format_count
from scheduler import NewsletterScheduler, newsletter_scheduler
from schemas import Newsletter


@pytest.fixture
def sleeps(monkeypatch):
    calls = []
    monkeypatch.setattr(emailer.time, "sleep", lambda seconds: calls.append(seconds))
    return calls


def add_posts(db, count, days_ago=1):
    for i in range(count):
        create_document("post", {
            "title": f"Story {i}",
            "slug": f"story-{i}",
            "content": "A day on the road",
            "status": "published",
            "published_at": now_utc() - timedelta(days=days_ago),
        })


def add_subscribers(count, **fields):
    for i in range(count):
        create_document("newsletter", Newsletter(email=f"reader{i}@x.com", **fields))


# -------------------------------------------------------------------
# Templates
# -------------------------------------------------------------------
def test_render_template_replaces_tokens():
    out = render_template("Hi {{name}}, {{count}} new posts. {{missing}}", {"name": "Jo", "count": 3})
    assert out == "Hi Jo, 3 new posts. {{missing}}"


def test_render_template_nested_and_empty_values():
    template = "<a href='{{social.instagram}}'>IG</a>{{empty}}|{{social}}"
    out = render_template(template, {"social": {"instagram": "https://ig.com/bps"}, "empty": None})
    assert out == "<a href='https://ig.com/bps'>IG</a>|{{social}}"


def test_format_count():
    assert format_count(0) == "0"
    assert format_count(42) == "42"
    assert format_count(45999) == "45K+"
    assert format_count(2_300_000) == "2M+"


# -------------------------------------------------------------------
# Subscriptions
# -------------------------------------------------------------------
def test_subscribe_unsubscribe_and_reactivate(client, db, sent_emails):
    r = client.post("/api/newsletter/subscribe", json={"email": "Nomad@X.com", "name": "Nomad"})
    assert r.status_code == 201
    assert sent_emails[-1]["to"] == "nomad@x.com"
    doc = db["newsletter"].find_one({"email": "nomad@x.com"})
    assert doc["status"] == "subscribed"
    assert doc["verification_token"]

    assert client.post("/api/newsletter/subscribe", json={"email": "nomad@x.com"}).status_code == 400

    assert client.post("/api/newsletter/unsubscribe", json={"email": "nomad@x.com"}).status_code == 200
    doc = db["newsletter"].find_one({"email": "nomad@x.com"})
    assert doc["is_active"] is False
    assert client.post("/api/newsletter/unsubscribe", json={"email": "ghost@x.com"}).status_code == 404

    r = client.post("/api/newsletter/subscribe", json={"email": "nomad@x.com"})
    assert r.status_code == 200
    assert db["newsletter"].find_one({"email": "nomad@x.com"})["is_active"] is True


def test_verify_subscription(client, db, sent_emails):
    client.post("/api/newsletter/subscribe", json={"email": "nomad@x.com"})
    link = sent_emails[-1]["text"].split("/newsletter/verify/")[1].split()[0]
    assert client.get("/api/newsletter/verify/bogus").status_code == 400
    assert client.get(f"/api/newsletter/verify/{link}").status_code == 200
    assert db["newsletter"].find_one({"email": "nomad@x.com"})["is_verified"] is True


def test_preferences_and_metrics(client):
    client.post("/api/newsletter/subscribe", json={"email": "nomad@x.com"})
    r = client.put("/api/newsletter/preferences",
                   json={"email": "nomad@x.com", "preferences": {"deals": True, "weeklyDigest": False}})
    assert r.status_code == 200

    metrics = client.get("/api/newsletter/public/metrics").json()["data"]
    assert metrics == {
        "weeklyDigest": "0",
        "dealAlerts": "1",
        "destinations": "1",
        "travelTips": "1",
        "totalActive": "1",
    }


def test_admin_endpoints_need_admin(client, reader_headers, admin_headers):
    assert client.get("/api/newsletter/subscribers", headers=reader_headers).status_code == 403
    r = client.get("/api/newsletter/subscribers", headers=admin_headers)
    assert r.status_code == 200
    assert r.json()["pagination"]["total"] == 0


# -------------------------------------------------------------------
# Weekly job
# -------------------------------------------------------------------
def test_weekly_job_skips_without_posts(client, db, sleeps, sent_emails):
    add_subscribers(3)
    add_posts(db, 2, days_ago=10)
    result = NewsletterScheduler().send_weekly_newsletter()
    assert result["skipped"] is True
    assert sent_emails == []


def test_weekly_job_skips_without_subscribers(client, db, sent_emails):
    add_posts(db, 2)
    add_subscribers(2, status="unsubscribed", is_active=False)
    assert NewsletterScheduler().send_weekly_newsletter()["skipped"] is True
    assert sent_emails == []


def test_weekly_job_sends_in_batches(client, db, sleeps, sent_emails):
    add_posts(db, 4)
    add_subscribers(12)
    result = NewsletterScheduler().send_weekly_newsletter()
    assert result["skipped"] is False
    assert result["sent"] == 12
    assert result["failed"] == 0
    assert result["posts"] == 4
    assert len(sleeps) == 1
    assert sent_emails[0]["subject"] == "This Week in Travel: 4 New Stories from BagPackStories"
    assert sent_emails[0]["html"].count("/blog/story-") == 3


def test_weekly_job_continues_after_failure(client, db, sleeps, monkeypatch):
    add_posts(db, 1)
    add_subscribers(3)

    def flaky_send(self, to, subject, html, text="", to_name=None):
        if to == "reader1@x.com":
            raise RuntimeError("smtp went away")
        return True

    monkeypatch.setattr(EmailService, "send_email", flaky_send)
    result = NewsletterScheduler().send_weekly_newsletter()
    assert result["sent"] == 2
    assert result["failed"] == 1


def test_scheduler_start_stop(client, admin_headers):
    try:
        r = client.post("/api/newsletter/scheduler/start", headers=admin_headers)
        assert r.json()["data"]["isRunning"] is True
        assert r.json()["data"]["nextRun"] is not None
        r = client.post("/api/newsletter/scheduler/start", headers=admin_headers)
        assert r.json()["message"] == "Newsletter scheduler is already running"
    finally:
        newsletter_scheduler.stop()
    assert client.get("/api/newsletter/scheduler", headers=admin_headers).json()["data"]["isRunning"] is False


def test_send_weekly_endpoint(client, db, admin_headers, sleeps):
    add_posts(db, 1)
    add_subscribers(1)
    r = client.post("/api/newsletter/send-weekly", headers=admin_headers)
    assert r.status_code == 200
    assert r.json()["data"]["sent"] == 1


# -------------------------------------------------------------------
# Email templates
# -------------------------------------------------------------------
def test_default_templates_are_seeded(client, admin_headers):
    keys = [t["key"] for t in client.get("/api/admin/email-templates", headers=admin_headers).json()["data"]]
    assert keys == ["contributor_submission", "post_approved", "weekly_newsletter"]


def test_template_crud_and_preview(client, admin_headers):
    body = {"key": "trip_reminder", "name": "Trip reminder", "subject": "See you in {{city}}",
            "htmlContent": "<p>Pack for {{city}}, {{traveler.name}}</p>"}
    assert client.post("/api/admin/email-templates", json=body, headers=admin_headers).status_code == 201
    assert client.post("/api/admin/email-templates", json=body, headers=admin_headers).status_code == 400

    r = client.post("/api/admin/email-templates/trip_reminder/preview",
                    json={"variables": {"city": "Lisbon", "traveler": {"name": "Jo"}}}, headers=admin_headers)
    assert r.json()["data"]["subject"] == "See you in Lisbon"
    assert r.json()["data"]["html"] == "<p>Pack for Lisbon, Jo</p>"

    r = client.put("/api/admin/email-templates/trip_reminder", json={"isActive": False}, headers=admin_headers)
    assert r.json()["data"]["isActive"] is False
    assert client.delete("/api/admin/email-templates/trip_reminder", headers=admin_headers).status_code == 200
    assert client.get("/api/admin/email-templates/trip_reminder", headers=admin_headers).status_code == 404


def test_send_template_to_recipients(client, admin_headers, sent_emails):
    r = client.post(
        "/api/admin/email-templates/post_approved/send",
        json={"to": ["a@x.com", "b@x.com"], "variables": {"postTitle": "Hampi", "contributorName": "Jo"}},
        headers=admin_headers,
    )
    assert r.json()["data"] == {"sent": 2, "failed": 0}
    assert [e["to"] for e in sent_emails] == ["a@x.com", "b@x.com"]
    assert sent_emails[0]["subject"] == 'Your post "Hampi" has been approved! - BagPackStories'

    r = client.post("/api/admin/email-templates/post_approved/send", json={"to": []}, headers=admin_headers)
    assert r.status_code == 400


def test_email_config_without_credentials(client, admin_headers):
    data = client.get("/api/newsletter/email-config", headers=admin_headers).json()["data"]
    assert data["configured"] is False
    assert data["connected"] is False
