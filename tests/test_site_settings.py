def test_public_settings_expose_safe_subset(client):
    r = client.get("/api/site-settings")
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["siteName"] == "BagPackStories"
    assert data["featureToggles"]["aiItineraryEnabled"] is True
    assert "generalSettings" not in data
    assert "emailSettings" not in data


def test_admin_update_deep_merges(client, admin, admin_headers):
    r = client.put(
        "/api/admin/settings",
        json={"siteName": "BagPack Stories", "generalSettings": {"postsPerPage": 20}, "unknownKey": 1},
        headers=admin_headers,
    )
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["siteName"] == "BagPack Stories"
    assert data["generalSettings"]["postsPerPage"] == 20
    assert data["generalSettings"]["commentsEnabled"] is True
    assert data["updatedBy"] == str(admin["_id"])
    assert "unknownKey" not in data

    assert client.get("/api/site-settings").json()["data"]["siteName"] == "BagPack Stories"
    assert client.get("/api/admin/settings", headers=admin_headers).json()["data"]["generalSettings"]["postsPerPage"] == 20


def test_admin_update_validates(client, admin_headers):
    r = client.put("/api/admin/settings", json={"generalSettings": {"postsPerPage": 0}}, headers=admin_headers)
    assert r.status_code == 400
    assert r.json()["error"] == "Validation failed"


def test_settings_admin_only(client, reader_headers):
    assert client.get("/api/admin/settings", headers=reader_headers).status_code == 403
    assert client.put("/api/admin/settings", json={"siteName": "x"}, headers=reader_headers).status_code == 403
    assert client.get("/api/admin/settings").status_code == 401


def test_registration_toggle(client, admin_headers):
    client.put("/api/admin/settings", json={"generalSettings": {"registrationEnabled": False}}, headers=admin_headers)
    r = client.post("/api/auth/register", json={"name": "New Person", "email": "new@x.com", "password": "Secret123"})
    assert r.status_code == 403
