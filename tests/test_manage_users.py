from scripts.manage_users import build_parser, run
from security import verify_password


def _run(db, *argv):
    return run(db, build_parser().parse_args(list(argv)))


def test_create_approved_super_admin(db, capsys):
    assert _run(db, "create", "owner", "owner@example.com", "hunter22") == 0
    user = db["users"].find_one({"username": "owner"})
    assert (user["role"], user["status"]) == ("super-admin", "approved")
    assert verify_password("hunter22", user["password"])
    assert "Created super-admin account" in capsys.readouterr().out


def test_create_admin_role(db):
    _run(db, "create", "helper", "helper@example.com", "hunter22", "--role", "admin")
    assert db["users"].find_one({"username": "helper"})["role"] == "admin"


def test_create_short_password(db):
    assert _run(db, "create", "owner", "owner@example.com", "123") == 1
    assert db["users"].count_documents({}) == 0


def test_reset_by_email(db):
    _run(db, "create", "owner", "owner@example.com", "hunter22")
    assert _run(db, "reset", "owner@example.com", "new-password") == 0
    user = db["users"].find_one({"username": "owner"})
    assert verify_password("new-password", user["password"])
    assert not verify_password("hunter22", user["password"])


def test_ensure_super_admin_only_once(db, capsys):
    assert _run(db, "ensure-super-admin", "--password", "admin12345") == 0
    assert _run(db, "ensure-super-admin") == 0
    assert db["users"].count_documents({"role": "super-admin"}) == 1
    assert "already exists" in capsys.readouterr().out


def test_list(db, capsys):
    _run(db, "create", "owner", "owner@example.com", "hunter22")
    assert _run(db, "list") == 0
    out = capsys.readouterr().out
    assert "owner" in out and "super-admin" in out


def test_registration_after_cli_super_admin_is_pending(client, db):
    _run(db, "create", "owner", "owner@example.com", "hunter22")
    res = client.post("/api/register", json={
        "username": "newbie", "password": "password123", "email": "newbie@example.com",
    })
    assert res.json()["status"] == "pending"
