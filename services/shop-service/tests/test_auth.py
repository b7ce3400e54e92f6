import json
from urllib.parse import parse_qs, urlparse

import httpx

from conftest import make_user
from models import User
from security import decode_access_token


def register(client, email="new@example.com", password="secret123"):
    return client.post("/api/auth/register", json={
        "email": email,
        "password": password,
        "fullName": "Tran Thi B",
    })


def tokeninfo(claims, status_code=200):
    return lambda request: httpx.Response(status_code, json=claims)


GOOGLE_CLAIMS = {
    "aud": "test-google-client",
    "iss": "accounts.google.com",
    "sub": "google-123",
    "email": "Google.User@example.com",
    "name": "Le Van C",
    "picture": "https://lh3.example.com/c.jpg",
}


def test_register_returns_tokens(client):
    response = register(client, email="New@Example.com")

    assert response.status_code == 201
    body = response.json()
    assert body["user"]["email"] == "new@example.com"
    assert body["user"]["role"] == "customer"
    assert decode_access_token(body["accessToken"])["id"] == body["user"]["id"]


def test_register_duplicate_email(client):
    register(client)
    response = register(client, email="NEW@example.com")

    assert response.status_code == 400
    assert response.json()["detail"] == "Email already registered"


def test_register_validation(client):
    assert register(client, email="not-an-email").status_code == 400
    assert register(client, password="123").status_code == 400


def test_login(client, db):
    make_user(db, email="buyer@example.com", password="secret123")

    ok = client.post("/api/auth/login", json={"email": "Buyer@example.com", "password": "secret123"})
    wrong = client.post("/api/auth/login", json={"email": "buyer@example.com", "password": "nope"})
    unknown = client.post("/api/auth/login", json={"email": "ghost@example.com", "password": "secret123"})

    assert ok.status_code == 200
    assert ok.json()["user"]["email"] == "buyer@example.com"
    assert wrong.status_code == 401
    assert wrong.json()["detail"] == "Invalid credentials"
    assert unknown.status_code == 401


def test_refresh(client):
    tokens = register(client).json()

    response = client.post("/api/auth/refresh", json={"refreshToken": tokens["refreshToken"]})

    assert response.status_code == 200
    assert decode_access_token(response.json()["accessToken"])["id"] == tokens["user"]["id"]
    assert client.post("/api/auth/refresh", json={}).status_code == 400
    assert client.post("/api/auth/refresh", json={"refreshToken": "garbage"}).status_code == 401
    # Access tokens are not accepted as refresh tokens
    assert client.post("/api/auth/refresh", json={"refreshToken": tokens["accessToken"]}).status_code == 401


def test_google_mobile_creates_user(client, db, upstream):
    upstream.on("oauth2.googleapis.com", tokeninfo(GOOGLE_CLAIMS))

    response = client.post("/api/auth/google-mobile", json={"idToken": "device-token"})

    assert response.status_code == 200
    user = db.query(User).filter(User.google_id == "google-123").one()
    assert user.email == "google.user@example.com"
    assert user.full_name == "Le Van C"
    assert response.json()["user"]["id"] == user.id
    assert upstream.requests[0].url.params["id_token"] == "device-token"


def test_google_mobile_links_existing_account(client, db, upstream):
    existing = make_user(db, email="google.user@example.com")
    upstream.on("oauth2.googleapis.com", tokeninfo(GOOGLE_CLAIMS))

    response = client.post("/api/auth/google-mobile", json={"idToken": "device-token"})

    assert response.json()["user"]["id"] == existing.id
    db.expire_all()
    assert db.query(User).count() == 1
    assert db.query(User).one().google_id == "google-123"


def test_google_mobile_rejects_foreign_audience(client, db, upstream):
    upstream.on("oauth2.googleapis.com", tokeninfo({**GOOGLE_CLAIMS, "aud": "someone-else"}))

    response = client.post("/api/auth/google-mobile", json={"idToken": "device-token"})

    assert response.status_code == 401
    assert db.query(User).count() == 0


def test_google_mobile_rejected_or_unreachable(client, upstream):
    upstream.on("oauth2.googleapis.com", tokeninfo({"error": "invalid_token"}, status_code=400))
    assert client.post("/api/auth/google-mobile", json={"idToken": "bad"}).status_code == 401

    upstream.on("oauth2.googleapis.com", tokeninfo({}, status_code=503))
    assert client.post("/api/auth/google-mobile", json={"idToken": "bad"}).status_code == 502


def test_google_redirect(client):
    response = client.get("/api/auth/google", follow_redirects=False)

    location = urlparse(response.headers["location"])
    assert response.status_code == 307
    assert location.netloc == "accounts.google.com"
    assert parse_qs(location.query)["client_id"] == ["test-google-client"]


def test_google_callback_deep_link(client, db, upstream):
    def google(request):
        if request.url.host == "oauth2.googleapis.com":
            return httpx.Response(200, json={"access_token": "google-access"})
        assert request.headers["authorization"] == "Bearer google-access"
        return httpx.Response(200, json={"sub": "google-456", "email": "web@example.com", "name": "Web User"})

    upstream.on("oauth2.googleapis.com", google)
    upstream.on("openidconnect.googleapis.com", google)

    response = client.get("/api/auth/google/callback", params={"code": "abc"}, follow_redirects=False)

    location = urlparse(response.headers["location"])
    params = parse_qs(location.query)
    assert location.scheme == "mechanicalshop"
    assert json.loads(params["user"][0])["email"] == "web@example.com"
    assert decode_access_token(params["accessToken"][0])["email"] == "web@example.com"
    assert db.query(User).filter(User.google_id == "google-456").count() == 1


def test_google_callback_requires_code(client):
    assert client.get("/api/auth/google/callback", follow_redirects=False).status_code == 400
