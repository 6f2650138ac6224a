from datetime import timedelta

from jose import jwt

import config
from conftest import ADMIN_EMAIL, bearer
from schemas import User
from security import create_access_token


def test_signup_returns_token_and_public_user(client, db):
    res = client.post("/auth/signup", json={"email": "new@example.com", "password": "pw", "fullname": "New"})
    assert res.status_code == 200
    body = res.json()
    assert body["token"]
    user = body["user"]
    assert user["email"] == "new@example.com"
    assert user["role"] == "USER"
    assert user["fullname"] == "New"
    assert user["avatar"] == config.DEFAULT_AVATAR
    assert user["banner"] == config.DEFAULT_AVATAR
    assert "password_hash" not in user
    assert "password" not in user


def test_signup_creates_empty_basket(alice, db):
    assert db.get_basket(alice["user"]["id"]) == []


def test_signup_defaults_fullname(signup):
    body = signup("nameless@example.com")
    assert body["user"]["fullname"] == "User"


def test_signup_twice_conflicts(client, alice):
    res = client.post("/auth/signup", json={"email": "alice@example.com", "password": "other"})
    assert res.status_code == 409
    assert res.json() == {"message": "Email already in use"}


def test_signup_requires_email_and_password(client):
    res = client.post("/auth/signup", json={"password": "pw"})
    assert res.status_code == 400
    assert "message" in res.json()

    res = client.post("/auth/signup", json={"email": "x@example.com", "password": ""})
    assert res.status_code == 400


def test_admin_email_gets_admin_role(admin):
    assert admin["user"]["role"] == "ADMIN"
    assert admin["user"]["email"] == ADMIN_EMAIL


def test_admin_emails_match_regardless_of_domain_case(monkeypatch, signup):
    monkeypatch.setattr(config, "ADMIN_EMAILS", {"Boss@Example.COM"})
    assert signup("Boss@Example.COM")["user"]["role"] == "ADMIN"
    assert config.role_for_email("boss@example.com") == "USER"


def test_token_claims(alice):
    claims = jwt.decode(alice["token"], config.JWT_SECRET, algorithms=[config.ALGORITHM])
    assert claims["sub"] == alice["user"]["id"]
    assert claims["email"] == "alice@example.com"
    assert claims["role"] == "USER"
    assert "exp" in claims


def test_signin(client, alice):
    res = client.post("/auth/signin", json={"email": "alice@example.com", "password": "secret123"})
    assert res.status_code == 200
    assert res.json()["user"]["id"] == alice["user"]["id"]


def test_signin_failures_are_generic(client, alice):
    wrong_password = client.post("/auth/signin", json={"email": "alice@example.com", "password": "nope"})
    unknown_email = client.post("/auth/signin", json={"email": "ghost@example.com", "password": "nope"})
    assert wrong_password.status_code == unknown_email.status_code == 400
    assert wrong_password.json() == unknown_email.json() == {"message": "Invalid email or password"}


def test_signin_with_malformed_email_is_generic(client, alice):
    for payload in ({"email": "not-an-email", "password": "nope"}, {"email": "", "password": ""}, {}):
        res = client.post("/auth/signin", json=payload)
        assert res.status_code == 400
        assert res.json() == {"message": "Invalid email or password"}


def test_signin_ignores_domain_case(client, alice):
    res = client.post("/auth/signin", json={"email": "alice@EXAMPLE.com", "password": "secret123"})
    assert res.status_code == 200
    assert res.json()["user"]["id"] == alice["user"]["id"]


def test_me(client, alice):
    res = client.get("/auth/me", headers=bearer(alice["token"]))
    assert res.status_code == 200
    assert res.json()["user"]["email"] == "alice@example.com"


def test_me_without_token(client):
    res = client.get("/auth/me")
    assert res.status_code == 401
    assert res.json() == {"message": "Unauthorized"}


def test_me_with_bad_token(client):
    res = client.get("/auth/me", headers=bearer("not-a-token"))
    assert res.status_code == 401


def test_me_with_expired_token(client, alice):
    user = User.model_validate(alice["user"])
    token = create_access_token(user, expires_delta=timedelta(minutes=-1))
    res = client.get("/auth/me", headers=bearer(token))
    assert res.status_code == 401


class ExplodingDatabase:
    def __getattr__(self, name):
        raise AssertionError(f"persistence touched: {name}")


def test_protected_routes_reject_before_persistence(app, client):
    app.state.db = ExplodingDatabase()
    calls = [
        ("get", "/auth/me", None),
        ("get", "/users/1", None),
        ("put", "/users/1", {}),
        ("put", "/users/1/basket", {"basket": []}),
        ("post", "/products", {"name": "X"}),
        ("put", "/products/1", {"name": "X"}),
        ("delete", "/products/1", None),
        ("post", "/orders", {}),
        ("get", "/orders", None),
    ]
    for method, path, body in calls:
        kwargs = {"json": body} if body is not None else {}
        res = getattr(client, method)(path, **kwargs)
        assert res.status_code == 401, (method, path)
