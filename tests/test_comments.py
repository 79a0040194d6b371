from bson import ObjectId

from conftest import auth_header, make_user

COMMENT = {
    "resourceType": "blog",
    "resourceId": "X",
    "author": {"name": "Jo Smith", "email": "jo@x.com"},
    "content": "Great post!",
}


def post_comment(client, **overrides):
    body = {**COMMENT, **overrides}
    return client.post("/api/comments", json=body)


def test_submit_comment_and_list_it(client):
    r = post_comment(client)
    assert r.status_code == 201
    data = r.json()["data"]
    assert data["comment"]["status"] == "approved"
    assert "email" not in data["comment"]["author"]

    r = client.get("/api/comments/blog/X")
    assert r.status_code == 200
    ids = [c["id"] for c in r.json()["data"]["comments"]]
    assert data["commentId"] in ids


def test_submit_strips_html(client):
    r = post_comment(client, content="<b>Lovely</b> <script>x()</script>trip")
    assert r.status_code == 201
    assert "<" not in r.json()["data"]["comment"]["content"]


def test_submit_rejects_profanity(client):
    r = post_comment(client, content="what a shit hotel")
    assert r.status_code == 400
    assert r.json()["success"] is False


def test_submit_validates_author_and_type(client):
    assert post_comment(client, author={"name": "J", "email": "jo@x.com"}).status_code == 400
    assert post_comment(client, resourceType="video").status_code == 400
    assert post_comment(client, content="").status_code == 400


def test_submit_records_user_and_mentions(client, db, reader, reader_headers):
    r = client.post("/api/comments", json={**COMMENT, "content": "Thanks @maria and @tom!"}, headers=reader_headers)
    assert r.status_code == 201
    doc = db["comment"].find_one({"_id": ObjectId(r.json()["data"]["commentId"])})
    assert doc["user_id"] == str(reader["_id"])
    assert {m["name"] for m in doc["mentions"]} == {"maria", "tom"}


def test_missing_parent_is_rejected(client):
    r = post_comment(client, parentId=str(ObjectId()))
    assert r.status_code == 400
    assert r.json()["error"] == "Parent comment not found"


def test_malformed_parent_is_rejected(client):
    r = post_comment(client, parentId="not-an-id")
    assert r.status_code == 400


def test_parent_on_other_resource_is_rejected(client):
    parent_id = post_comment(client, resourceId="Y").json()["data"]["commentId"]
    r = post_comment(client, parentId=parent_id)
    assert r.status_code == 400
    assert r.json()["error"] == "Parent comment belongs to different resource"


def test_unknown_objectid_resource_is_rejected(client):
    r = post_comment(client, resourceId=str(ObjectId()))
    assert r.status_code == 400


def test_replies_are_attached_to_parents(client):
    parent_id = post_comment(client).json()["data"]["commentId"]
    post_comment(client, parentId=parent_id, content="Agreed")

    data = client.get("/api/comments/blog/X").json()["data"]
    assert [c["id"] for c in data["comments"]] == [parent_id]
    assert data["comments"][0]["replyCount"] == 1
    assert data["stats"]["totalComments"] == 2
    assert data["stats"]["replies"] == 1

    replies = client.get("/api/comments/blog/X", params={"parentId": parent_id}).json()["data"]
    assert [c["content"] for c in replies["comments"]] == ["Agreed"]


def test_list_only_returns_approved(client, db, admin_headers):
    keep = post_comment(client, content="first").json()["data"]["commentId"]
    drop = post_comment(client, content="second").json()["data"]["commentId"]
    r = client.patch(f"/api/comments/{drop}/moderate", json={"status": "rejected"}, headers=admin_headers)
    assert r.status_code == 200

    comments = client.get("/api/comments/blog/X").json()["data"]["comments"]
    assert [c["id"] for c in comments] == [keep]
    assert all(c["status"] == "approved" for c in comments)
    assert client.get(f"/api/comments/{drop}").status_code == 404


def test_three_flags_hide_comment(client, db):
    comment_id = post_comment(client).json()["data"]["commentId"]
    for i in range(3):
        user = make_user(db, name=f"Flagger {i}", email=f"flagger{i}@x.com")
        r = client.post(f"/api/comments/{comment_id}/flag", json={"reason": "spam"}, headers=auth_header(user))
        assert r.status_code == 200

    assert r.json()["data"] == {"flagCount": 3, "status": "hidden"}
    doc = db["comment"].find_one({"_id": ObjectId(comment_id)})
    assert doc["status"] == "hidden"
    assert len(doc["flag_reasons"]) == 3
    assert client.get("/api/comments/blog/X").json()["data"]["comments"] == []


def test_same_user_cannot_flag_twice(client, reader_headers):
    comment_id = post_comment(client).json()["data"]["commentId"]
    assert client.post(f"/api/comments/{comment_id}/flag", json={"reason": "spam"},
                       headers=reader_headers).status_code == 200
    r = client.post(f"/api/comments/{comment_id}/flag", json={"reason": "other"}, headers=reader_headers)
    assert r.status_code == 400


def test_flagged_queue_is_admin_only(client, reader_headers, admin_headers):
    comment_id = post_comment(client).json()["data"]["commentId"]
    client.post(f"/api/comments/{comment_id}/flag", json={"reason": "spam"}, headers=reader_headers)

    assert client.get("/api/comments/flagged", headers=reader_headers).status_code == 403
    r = client.get("/api/comments/flagged", headers=admin_headers)
    assert r.status_code == 200
    assert [c["id"] for c in r.json()["data"]["comments"]] == [comment_id]


def test_delete_removes_direct_replies_only(client, db, admin_headers):
    root = post_comment(client).json()["data"]["commentId"]
    child = post_comment(client, parentId=root, content="child").json()["data"]["commentId"]
    grandchild = post_comment(client, parentId=child, content="grandchild").json()["data"]["commentId"]

    r = client.delete(f"/api/comments/{root}", headers=admin_headers)
    assert r.status_code == 200
    assert r.json()["data"]["deletedReplies"] == 1

    assert db["comment"].find_one({"_id": ObjectId(root)}) is None
    assert db["comment"].find_one({"_id": ObjectId(child)}) is None
    assert db["comment"].find_one({"_id": ObjectId(grandchild)}) is not None


def test_like_and_dislike(client, reader_headers):
    comment_id = post_comment(client).json()["data"]["commentId"]
    assert client.post(f"/api/comments/{comment_id}/like").status_code == 401

    r = client.post(f"/api/comments/{comment_id}/like", headers=reader_headers)
    assert r.json()["data"] == {"likes": 1, "score": 1}
    r = client.post(f"/api/comments/{comment_id}/dislike", headers=reader_headers)
    assert r.json()["data"] == {"dislikes": 1, "score": 0}


def test_cannot_like_hidden_comment(client, db, reader_headers):
    comment_id = post_comment(client).json()["data"]["commentId"]
    db["comment"].update_one({"_id": ObjectId(comment_id)}, {"$set": {"status": "hidden"}})
    assert client.post(f"/api/comments/{comment_id}/like", headers=reader_headers).status_code == 400


def test_edit_own_comment_keeps_history(client, db, reader_headers):
    comment_id = post_comment(client).json()["data"]["commentId"]
    r = client.put(f"/api/comments/{comment_id}", json={"content": "Great post, thanks"}, headers=reader_headers)
    assert r.status_code == 200
    doc = db["comment"].find_one({"_id": ObjectId(comment_id)})
    assert doc["edited"] is True
    assert doc["edit_history"][0]["content"] == "Great post!"


def test_cannot_edit_someone_elses_comment(client, db):
    comment_id = post_comment(client).json()["data"]["commentId"]
    other = make_user(db, name="Other Person", email="other@x.com")
    r = client.put(f"/api/comments/{comment_id}", json={"content": "hijacked"}, headers=auth_header(other))
    assert r.status_code == 403


def test_comments_disabled(client, admin_headers):
    r = client.put("/api/admin/settings", json={"generalSettings": {"commentsEnabled": False}}, headers=admin_headers)
    assert r.status_code == 200
    assert post_comment(client).status_code == 403


def test_pagination_metadata(client):
    for i in range(5):
        post_comment(client, content=f"comment {i}")
    pagination = client.get("/api/comments/blog/X", params={"limit": 2, "page": 3}).json()["data"]["pagination"]
    assert pagination["totalPages"] == 3
    assert pagination["totalComments"] == 5
    assert pagination["hasNextPage"] is False
    assert pagination["hasPrevPage"] is True


def test_author_can_delete_own_comment(client, db, reader_headers):
    other = auth_header(make_user(db, name="Ana Lima", email="ana@x.com"))
    comment_id = post_comment(client).json()["data"]["commentId"]

    assert client.delete(f"/api/comments/{comment_id}").status_code == 401
    r = client.delete(f"/api/comments/{comment_id}", headers=other)
    assert r.status_code == 403
    assert r.json()["error"] == "You can only delete your own comments"

    assert client.delete(f"/api/comments/{comment_id}", headers=reader_headers).status_code == 200
    assert db["comment"].find_one({"_id": ObjectId(comment_id)}) is None
