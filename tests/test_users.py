import pytest
from bson import ObjectId

import users
from errors import InvalidRequest, NotFound


def test_only_one_bootstrap_claim_wins(db):
    a = db["users"].insert_one({"username": "a", "email": "a@x.io"}).inserted_id
    b = db["users"].insert_one({"username": "b", "email": "b@x.io"}).inserted_id
    assert users._claim_bootstrap(db, a) is True
    assert users._claim_bootstrap(db, b) is False
    assert db["bootstrap"].find_one({"_id": users.BOOTSTRAP_LOCK_ID})["userId"] == a


def test_stale_claim_is_taken_over_once(db):
    gone = ObjectId()
    db["bootstrap"].insert_one({"_id": users.BOOTSTRAP_LOCK_ID, "userId": gone})
    c = db["users"].insert_one({"username": "c", "email": "c@x.io"}).inserted_id
    d = db["users"].insert_one({"username": "d", "email": "d@x.io"}).inserted_id
    assert users._claim_bootstrap(db, c) is True
    assert users._claim_bootstrap(db, d) is False


def test_register_returns_final_state(db):
    first = users.register_user(db, username="first", email="first@x.io", password="secret1")
    second = users.register_user(db, username="second", email="second@x.io", password="secret1")
    assert (first["role"], first["status"]) == ("super-admin", "approved")
    assert (second["role"], second["status"]) == ("pending", "pending")


def test_create_account_rejects_unknown_role(db):
    with pytest.raises(InvalidRequest):
        users.create_account(db, username="x", email="x@x.io", password="secret1", role="pending")


def test_reset_password_unknown_user(db):
    with pytest.raises(NotFound):
        users.reset_password(db, "nobody", "secret1")


def test_delete_self_matches_any_spelling_of_own_id(db):
    me = str(ObjectId())
    for spelling in (me, f" {me} ", me.upper()):
        with pytest.raises(InvalidRequest, match="own account"):
            users.delete_user(db, spelling, actor_id=me)
