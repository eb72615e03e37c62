import mongomock
import pytest
from fastapi.testclient import TestClient

import main
from config import Settings, get_settings
from database import ensure_indexes, get_db

TEST_SECRET = "test-secret-key-for-auth-0123456789abcdef"


@pytest.fixture
def db():
    client = mongomock.MongoClient()
    database = client["handyman_test"]
    ensure_indexes(database)
    yield database
    client.close()


@pytest.fixture
def settings():
    return Settings(
        database_url="mongodb://localhost:27017",
        database_name="handyman_test",
        jwt_secret=TEST_SECRET,
        token_expire_seconds=3600,
    )


@pytest.fixture
def client(db, settings):
    main.app.dependency_overrides[get_db] = lambda: db
    main.app.dependency_overrides[get_settings] = lambda: settings
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


def register(client, username, password="password123", email=None):
    return client.post("/api/register", json={
        "username": username,
        "password": password,
        "email": email or f"{username}@example.com",
    })


def login(client, username, password="password123"):
    return client.post("/api/login", json={"username": username, "password": password})


def auth_header(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def super_admin(client):
    """First registered user; returns (user_id, token)."""
    assert register(client, "boss").status_code == 201
    res = login(client, "boss")
    assert res.status_code == 200
    body = res.json()
    return body["user"]["id"], body["token"]


@pytest.fixture
def make_admin(client, super_admin):
    """Register and approve a user, returning (user_id, token)."""
    _, boss_token = super_admin

    def _make(username):
        assert register(client, username).status_code == 201
        pending = client.get("/api/admin/users/pending", headers=auth_header(boss_token)).json()
        user_id = next(u["_id"] for u in pending if u["username"] == username)
        res = client.put(f"/api/admin/users/{user_id}/approve", headers=auth_header(boss_token))
        assert res.status_code == 200
        return user_id, login(client, username).json()["token"]

    return _make


@pytest.fixture
def token(super_admin):
    return super_admin[1]
