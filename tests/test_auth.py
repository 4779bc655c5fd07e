from backend.app.core.auth.jwt_auth import create_access_token, decode_user_id, extract_token
from backend.app.core.auth.local_auth import hash_password, verify_password

from conftest import auth_headers, register_user


def test_register_sets_cookie_and_returns_user(client):
    response = client.post(
        "/api/auth/register",
        json={"email": "Ada@Example.com", "fullName": {"firstName": "Ada", "lastName": "L"}, "password": "password123"},
    )

    assert response.status_code == 201
    body = response.json()
    assert body["message"] == "User registered successfully"
    assert body["user"]["email"] == "ada@example.com"
    assert body["user"]["fullName"] == {"firstName": "Ada", "lastName": "L"}
    assert body["user"]["_id"]
    assert response.cookies.get("token")


def test_register_duplicate_email_conflicts(client):
    register_user(client, "dup@example.com")

    response = client.post(
        "/api/auth/register",
        json={"email": "dup@example.com", "fullName": {"firstName": "A", "lastName": "B"}, "password": "password123"},
    )

    assert response.status_code == 409


def test_register_rejects_short_password(client):
    response = client.post(
        "/api/auth/register",
        json={"email": "x@example.com", "fullName": {"firstName": "A", "lastName": "B"}, "password": "short"},
    )

    assert response.status_code == 400


def test_login_and_logout(client):
    register_user(client, "login@example.com", password="correct-horse")

    bad = client.post("/api/auth/login", json={"email": "login@example.com", "password": "wrong-horse"})
    assert bad.status_code == 401

    good = client.post("/api/auth/login", json={"email": "login@example.com", "password": "correct-horse"})
    assert good.status_code == 200
    assert good.json()["user"]["email"] == "login@example.com"
    assert client.get("/api/chat").status_code == 200

    client.post("/api/auth/logout")
    assert client.get("/api/chat").status_code == 401


def test_bearer_token_authenticates(client):
    token = register_user(client, "bearer@example.com")

    assert client.get("/api/chat", headers=auth_headers(token)).status_code == 200
    assert client.get("/api/chat", headers=auth_headers("not-a-token")).status_code == 401


def test_token_round_trip(settings):
    token = create_access_token({"sub": "user-42"}, settings)

    assert decode_user_id(token, settings) == "user-42"
    assert decode_user_id(token + "x", settings) is None


def test_extract_token_precedence():
    cookies = {"token": "from-cookie"}
    headers = {"authorization": "Bearer from-header"}
    query = {"token": "from-query"}

    assert extract_token(cookies, headers, query, "token") == "from-cookie"
    assert extract_token({}, headers, query, "token") == "from-header"
    assert extract_token({}, {}, query, "token") == "from-query"
    assert extract_token({}, {}, {}, "token") is None


def test_password_hashing():
    stored = hash_password("s3cret-pass")

    assert verify_password("s3cret-pass", stored)
    assert not verify_password("other-pass", stored)
    assert not verify_password("s3cret-pass", "garbage")
