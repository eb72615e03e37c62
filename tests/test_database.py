import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from pymongo.errors import ConnectionFailure, OperationFailure

import main
from config import Settings, get_settings
from database import Database, get_db, parse_object_id, serialize_doc


def test_parse_object_id():
    oid = ObjectId()
    assert parse_object_id(str(oid)) == oid
    assert parse_object_id(f"  {oid} ") == oid
    assert parse_object_id(oid) is oid
    for bad in ("not-an-id", "", "123", None, 42):
        assert parse_object_id(bad) is None


def test_serialize_doc_nested():
    a, b = ObjectId(), ObjectId()
    doc = {"_id": a, "projects": [{"_id": b, "materials": []}], "name": "x"}
    assert serialize_doc(doc) == {"_id": str(a), "projects": [{"_id": str(b), "materials": []}], "name": "x"}


def test_injected_client_is_used_without_connecting():
    client = mongomock.MongoClient()
    database = Database(None, "handyman_test", client=client)
    assert database.connected
    assert database.get().name == "handyman_test"


def test_missing_url_is_connection_failure():
    database = Database(None, "handyman")
    with pytest.raises(ConnectionFailure):
        database.get()
    assert not database.connected


def test_settings_require_secret_and_url():
    with pytest.raises(RuntimeError, match="JWT_SECRET"):
        Settings(database_url="mongodb://x", jwt_secret=None).check_required()
    with pytest.raises(RuntimeError, match="DATABASE_URL"):
        Settings(database_url=None, jwt_secret="s").check_required()
    Settings(database_url="mongodb://x", jwt_secret="s").check_required()


def test_unreachable_database_is_503(client):
    def down():
        raise ConnectionFailure("no servers")

    main.app.dependency_overrides[get_db] = down
    res = client.post("/api/login", json={"username": "a", "password": "b"})
    assert res.status_code == 503
    assert res.json() == {"msg": "Database connection error. Please try again."}


class BrokenDatabase:
    def __getitem__(self, name):
        raise OperationFailure("disk full")


def test_datastore_error_is_500_with_message(client):
    main.app.dependency_overrides[get_db] = BrokenDatabase
    res = client.post("/api/login", json={"username": "a", "password": "b"})
    assert res.status_code == 500
    assert res.json() == {"msg": "Server error", "error": "disk full"}


def test_unknown_route_uses_msg_body(client):
    res = client.get("/api/nothing-here")
    assert res.status_code == 404
    assert res.json() == {"msg": "Not Found"}


def test_root(client):
    assert client.get("/").json() == {"message": "Handyman Tracker API running"}


def test_unexpected_error_is_json_500(db, settings):
    main.app.dependency_overrides[get_db] = lambda: db
    main.app.dependency_overrides[get_settings] = lambda: settings
    try:
        client = TestClient(main.app, raise_server_exceptions=False)
        # bcrypt refuses NUL bytes in the secret.
        res = client.post("/api/register", json={
            "username": "nul", "password": "abc\x00def", "email": "nul@example.com",
        })
    finally:
        main.app.dependency_overrides.clear()
    assert res.status_code == 500
    assert res.headers["content-type"].startswith("application/json")
    body = res.json()
    assert body["msg"] == "Server error"
    assert body["error"]
    assert db["users"].count_documents({}) == 0
