def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True

    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_login_and_admin_access(client):
    # Anonymous is sent to the login page
    r = client.get("/admin/")
    assert r.status_code in (302, 403)

    r = client.post("/auth/login", data={"email": "admin@example.com", "password": "pw"}, follow_redirects=False)
    assert r.status_code == 302

    r = client.get("/admin/")
    assert r.status_code == 200
    assert b"Green Farm" in r.data or b"Dashboard" in r.data


def test_bad_password_is_rejected(client):
    r = client.post("/auth/login", data={"email": "admin@example.com", "password": "nope"}, follow_redirects=False)
    assert r.status_code == 302
    assert "/auth/login" in r.headers["Location"]

    r = client.get("/api/auth/me")
    assert r.status_code == 401


def test_login_redirects_only_to_local_next(client):
    r = client.post(
        "/auth/login",
        data={"email": "admin@example.com", "password": "pw", "next": "//evil.example.com/"},
        follow_redirects=False,
    )
    assert r.status_code == 302
    assert "evil.example.com" not in r.headers["Location"]


def test_api_requires_authentication(client, company_id):
    r = client.get(f"/api/vegetables?company_id={company_id}")
    assert r.status_code == 401
    assert r.json["error"] == "Authentication required"


def test_auth_me(admin_client, company_id):
    r = admin_client.get("/api/auth/me")
    assert r.status_code == 200
    data = r.json["data"]
    assert data["email"] == "admin@example.com"
    assert data["roles"] == ["admin"]
    assert [m["company_id"] for m in data["memberships"]] == [company_id]
    assert data["memberships"][0]["role"] == "owner"


def test_api_post_without_csrf_token_is_rejected(client, company_id):
    client.post("/auth/login", data={"email": "admin@example.com", "password": "pw"})
    r = client.post("/api/vegetables", json={"company_id": company_id, "name": "x"})
    assert r.status_code == 400
    assert r.json["error"] == "CSRF token missing or invalid."


def test_missing_permission_is_forbidden(staff_client, company_id, new_vegetable):
    veg = new_vegetable()
    r = staff_client.delete(f"/api/vegetables/{veg['id']}")
    assert r.status_code == 403
    assert r.json["missing_permission"] == "vegetables.delete"


def test_admin_pages_render(admin_client):
    for path in ("/admin/me", "/admin/audit", "/admin/members"):
        r = admin_client.get(path)
        assert r.status_code == 200, path


def test_logins_are_audited(admin_client):
    r = admin_client.get("/admin/audit?action=auth.login")
    assert r.status_code == 200
    assert b"auth.login" in r.data
