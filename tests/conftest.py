import os

os.environ.setdefault("BCRYPT_ROUNDS", "4")

import mongomock
import pytest
from fastapi.testclient import TestClient

import config
from database import Database
from main import create_app
from storage import LocalStorage

ADMIN_EMAIL = "admin@example.com"


@pytest.fixture(autouse=True)
def admin_emails(monkeypatch):
    monkeypatch.setattr(config, "ADMIN_EMAILS", {ADMIN_EMAIL})


@pytest.fixture
def db(tmp_path):
    database = Database(f"sqlite:///{tmp_path / 'test.sqlite'}")
    database.create_all()
    database.seed_products()
    yield database
    database.dispose()


@pytest.fixture
def app(db):
    return create_app(db)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def signup(client):
    def _signup(email, password="secret123", fullname=None):
        res = client.post("/auth/signup", json={"email": email, "password": password, "fullname": fullname})
        assert res.status_code == 200, res.text
        return res.json()
    return _signup


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def alice(signup):
    return signup("alice@example.com", fullname="Alice")


@pytest.fixture
def bob(signup):
    return signup("bob@example.com", fullname="Bob")


@pytest.fixture
def admin(signup):
    return signup(ADMIN_EMAIL, fullname="Admin")


@pytest.fixture
def storage():
    return LocalStorage()


@pytest.fixture
def mongo_db():
    return mongomock.MongoClient()["shop_test"]
