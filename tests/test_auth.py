from conftest import signup_headers


def test_signup_rejects_mismatched_passwords_without_writing(client, record_store):
    r = client.post(
        "/api/auth/signup",
        json={"email": "new@example.com", "password": "correct-horse", "confirm_password": "wrong-horse"},
    )
    assert r.status_code == 400
    assert r.json()["detail"] == "Passwords do not match"
    assert record_store.find("users") == []
    assert record_store.find("user_profiles") == []


def test_signup_rejects_short_password_and_bad_email(client, record_store):
    short = client.post(
        "/api/auth/signup",
        json={"email": "new@example.com", "password": "short", "confirm_password": "short"},
    )
    assert short.status_code == 400
    bad_email = client.post(
        "/api/auth/signup",
        json={"email": "not-an-email", "password": "correct-horse", "confirm_password": "correct-horse"},
    )
    assert bad_email.status_code == 400
    assert record_store.find("users") == []


def test_signup_then_me_and_duplicate_conflict(client):
    headers = signup_headers(client, "Ivy@Fund.example.com")
    me = client.get("/api/auth/me", headers=headers)
    assert me.status_code == 200
    assert me.json()["email"] == "ivy@fund.example.com"
    assert me.json()["user_type"] == "investor"

    again = client.post(
        "/api/auth/signup",
        json={"email": "ivy@fund.example.com", "password": "correct-horse", "confirm_password": "correct-horse"},
    )
    assert again.status_code == 409


def test_founder_signup_redirects_to_founder_dashboard(client):
    r = client.post(
        "/api/auth/signup",
        json={
            "email": "founder@example.com",
            "password": "correct-horse",
            "confirm_password": "correct-horse",
            "user_type": "founder",
        },
    )
    assert r.status_code == 200
    assert r.json()["redirect_to"] == "/founder-dashboard"


def test_admin_signup_is_not_allowed(client):
    r = client.post(
        "/api/auth/signup",
        json={
            "email": "root@example.com",
            "password": "correct-horse",
            "confirm_password": "correct-horse",
            "user_type": "admin",
        },
    )
    assert r.status_code == 400


def test_login_uses_one_generic_error(client):
    signup_headers(client, "ivy@fund.example.com")
    wrong_password = client.post("/api/auth/login", json={"email": "ivy@fund.example.com", "password": "nope-nope"})
    unknown_user = client.post("/api/auth/login", json={"email": "ghost@example.com", "password": "nope-nope"})
    assert wrong_password.status_code == 401
    assert unknown_user.status_code == 401
    assert wrong_password.json()["detail"] == unknown_user.json()["detail"] == "Invalid email or password"

    ok = client.post("/api/auth/login", json={"email": "IVY@fund.example.com", "password": "correct-horse"})
    assert ok.status_code == 200
    assert ok.json()["redirect_to"] == "/dashboard"


def test_missing_or_invalid_token_is_unauthorized(client):
    assert client.get("/api/auth/me").status_code == 401
    assert client.get("/api/auth/me", headers={"Authorization": "Bearer garbage"}).status_code == 401


def test_founder_cannot_use_investor_endpoints(client, founder_headers):
    assert client.get("/api/companies", headers=founder_headers).status_code == 403
    assert client.get("/api/dashboard", headers=founder_headers).status_code == 403


def test_account_update_syncs_investor_details(client, investor_headers, record_store):
    r = client.put("/api/account", json={"first_name": "Ivy", "last_name": "Lee", "phone": "555"}, headers=investor_headers)
    assert r.status_code == 200
    assert r.json()["first_name"] == "Ivy"
    details = record_store.find_one("investor_details")
    assert details["name"] == "Ivy Lee"
    assert details["email"] == "ivy@fund.example.com"
