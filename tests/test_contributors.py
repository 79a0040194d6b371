import pytest

from conftest import auth_header, make_user

POST = {
    "title": "Monsoon in Munnar",
    "content": "<p>Tea estates wrapped in cloud.</p>",
    "excerpt": "Three wet days in the hills",
}


@pytest.fixture
def contributor_headers(db):
    return auth_header(make_user(db, name="Aiko Tan", email="aiko@x.com", role="contributor"))


def test_workspace_is_for_contributors_and_admins(client, reader_headers, admin_headers):
    assert client.get("/api/contributor/posts").status_code == 401
    assert client.get("/api/contributor/posts", headers=reader_headers).status_code == 403
    assert client.get("/api/contributor/dashboard", headers=admin_headers).status_code == 200


def test_own_posts_listed_in_every_status(client, contributor_headers, admin_headers):
    draft = client.post("/api/posts", json=POST, headers=contributor_headers).json()["data"]
    assert draft["status"] == "draft"
    assert client.get("/api/posts", params={"author": draft["authorId"]}).json()["data"] == []

    r = client.post("/api/contributor/posts", json={**POST, "title": "Kochi by ferry"}, headers=contributor_headers)
    assert r.status_code == 201
    assert r.json()["data"]["status"] == "pending"
    client.post("/api/posts", json={**POST, "title": "Admin only"}, headers=admin_headers)

    r = client.get("/api/contributor/posts", headers=contributor_headers)
    body = r.json()
    assert {p["title"] for p in body["data"]} == {"Monsoon in Munnar", "Kochi by ferry"}
    assert body["pagination"]["total"] == 2
    assert body["statusCounts"] == {"draft": 1, "pending": 1, "published": 0, "rejected": 0, "inactive": 0}

    pending = client.get("/api/contributor/posts", params={"status": "pending"}, headers=contributor_headers)
    assert [p["title"] for p in pending.json()["data"]] == ["Kochi by ferry"]


def test_new_submission_notifies_admins(client, contributor_headers, sent_emails):
    client.post("/api/contributor/posts", json=POST, headers=contributor_headers)
    assert sent_emails[-1]["to"] == "admin@bagpack.io"
    assert sent_emails[-1]["subject"] == "New Post Submitted: Monsoon in Munnar - BagPackStories"


def test_rejected_post_is_resubmitted_on_edit(client, contributor_headers, admin_headers):
    post = client.post("/api/contributor/posts", json=POST, headers=contributor_headers).json()["data"]

    r = client.put(f"/api/contributor/posts/{post['id']}", json={"title": "Too early"}, headers=contributor_headers)
    assert r.status_code == 400

    client.put(f"/api/admin/posts/{post['id']}/moderate",
               json={"status": "rejected", "moderationNotes": "Add more photos"}, headers=admin_headers)

    dashboard = client.get("/api/contributor/dashboard", headers=contributor_headers).json()["data"]
    assert dashboard["stats"]["rejectedPosts"] == 1
    rejection = dashboard["recentRejections"][0]
    assert rejection["moderationNotes"] == "Add more photos"
    assert rejection["moderatedBy"] == "Site Admin"

    r = client.put(f"/api/contributor/posts/{post['id']}", json={"title": "Munnar in the rain"},
                   headers=contributor_headers)
    assert r.status_code == 200
    assert r.json()["message"] == "Post updated and resubmitted for approval"
    data = r.json()["data"]
    assert data["status"] == "pending"
    assert data["slug"] == "munnar-in-the-rain"


def test_cannot_touch_other_contributors_posts(client, db, contributor_headers):
    post = client.post("/api/contributor/posts", json=POST, headers=contributor_headers).json()["data"]
    other = auth_header(make_user(db, name="Ravi Iyer", email="ravi@x.com", role="contributor"))

    r = client.put(f"/api/contributor/posts/{post['id']}", json={"title": "Mine now"}, headers=other)
    assert r.status_code == 404
    assert r.json()["error"] == "Post not found or you do not have permission to edit it"
    assert client.delete(f"/api/contributor/posts/{post['id']}", headers=other).status_code == 404


def test_published_posts_cannot_be_deleted(client, db, contributor_headers, admin_headers):
    post = client.post("/api/contributor/posts", json=POST, headers=contributor_headers).json()["data"]
    client.put(f"/api/admin/posts/{post['id']}/approve", headers=admin_headers)
    db["post"].update_one({"slug": post["slug"]}, {"$set": {"view_count": 7, "like_count": 2}})

    r = client.delete(f"/api/contributor/posts/{post['id']}", headers=contributor_headers)
    assert r.status_code == 400

    stats = client.get("/api/contributor/dashboard", headers=contributor_headers).json()["data"]["stats"]
    assert stats["publishedPosts"] == 1
    assert stats["totalViews"] == 7
    assert stats["totalLikes"] == 2

    draft = client.post("/api/posts", json={**POST, "title": "Scrap this"}, headers=contributor_headers).json()["data"]
    assert client.delete(f"/api/contributor/posts/{draft['id']}", headers=contributor_headers).status_code == 200
    assert client.get("/api/contributor/dashboard", headers=contributor_headers).json()["data"]["stats"]["totalPosts"] == 1
