"""User accounts and the approval workflow.

Accounts move pending -> approved | rejected under admin action. The first
account registered while no super-admin exists becomes the super-admin; that
promotion is decided by claiming a single lock document, so two concurrent
first registrations cannot both win.
"""

import logging
from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from database import BOOTSTRAP, USERS, parse_object_id, utcnow
from errors import InvalidRequest, NotFound
from schemas import User
from security import hash_password

logger = logging.getLogger(__name__)

BOOTSTRAP_LOCK_ID = "super-admin"


def public_user(doc: Dict[str, Any]) -> Dict[str, Any]:
    d = dict(doc)
    d.pop("password", None)
    return d


def _user_oid(user_id: str):
    oid = parse_object_id(user_id)
    if oid is None:
        raise InvalidRequest("Invalid user ID format")
    return oid


def find_by_username(db, username: str) -> Optional[Dict[str, Any]]:
    return db[USERS].find_one({"username": username})


def find_by_login(db, login: str) -> Optional[Dict[str, Any]]:
    """Look a user up by username or email."""
    return db[USERS].find_one({"$or": [{"username": login}, {"email": login}]})


def super_admin_exists(db) -> bool:
    return db[USERS].find_one({"role": "super-admin"}, {"_id": 1}) is not None


def _insert_user(db, user: User) -> Dict[str, Any]:
    if db[USERS].find_one({"$or": [{"username": user.username}, {"email": user.email}]}):
        raise InvalidRequest("Username or email already exists")
    doc = user.to_mongo()
    try:
        doc["_id"] = db[USERS].insert_one(doc).inserted_id
    except DuplicateKeyError:
        # Lost a race against a concurrent registration with the same name.
        raise InvalidRequest("Username or email already exists")
    return doc


def _claim_bootstrap(db, user_id) -> bool:
    """Try to become the bootstrap super-admin. True for exactly one caller."""
    try:
        db[BOOTSTRAP].insert_one({"_id": BOOTSTRAP_LOCK_ID, "userId": user_id, "claimedAt": utcnow()})
        return True
    except DuplicateKeyError:
        pass

    lock = db[BOOTSTRAP].find_one({"_id": BOOTSTRAP_LOCK_ID})
    if lock is None:
        return False
    holder = lock.get("userId")
    if db[USERS].find_one({"_id": holder}, {"_id": 1}) is not None:
        return False

    # The previous holder's account is gone; take the lock over only if
    # nobody else has done so since we read it.
    taken = db[BOOTSTRAP].find_one_and_update(
        {"_id": BOOTSTRAP_LOCK_ID, "userId": holder},
        {"$set": {"userId": user_id, "claimedAt": utcnow()}},
    )
    return taken is not None


def register_user(db, *, username: str, email: str, password: str) -> Dict[str, Any]:
    """Create an account; returns the stored document with its final role/status."""
    bootstrap_open = not super_admin_exists(db)
    doc = _insert_user(
        db,
        User(username=username, email=email, password=hash_password(password)),
    )

    if bootstrap_open and _claim_bootstrap(db, doc["_id"]):
        db[USERS].update_one(
            {"_id": doc["_id"]},
            {"$set": {"role": "super-admin", "status": "approved"}},
        )
        doc["role"] = "super-admin"
        doc["status"] = "approved"
        logger.info("Bootstrapped first super-admin: %s", username)
    elif bootstrap_open:
        logger.warning("Super-admin bootstrap already claimed; %s registered as pending", username)
    return doc


def create_account(db, *, username: str, email: str, password: str, role: str) -> Dict[str, Any]:
    """Create an already-approved account (management scripts)."""
    if role not in ("admin", "super-admin"):
        raise InvalidRequest('Role must be "admin" or "super-admin"')
    return _insert_user(
        db,
        User(
            username=username,
            email=email,
            password=hash_password(password),
            role=role,
            status="approved",
        ),
    )


def reset_password(db, login: str, new_password: str) -> Dict[str, Any]:
    user = find_by_login(db, login)
    if user is None:
        raise NotFound("User not found")
    db[USERS].update_one({"_id": user["_id"]}, {"$set": {"password": hash_password(new_password)}})
    return user


def list_users(db) -> List[Dict[str, Any]]:
    users = list(db[USERS].find({}, {"password": 0}).sort("createdAt", -1))

    approver_ids = {u["approvedBy"] for u in users if u.get("approvedBy") is not None}
    approvers = {}
    if approver_ids:
        for a in db[USERS].find({"_id": {"$in": list(approver_ids)}}, {"username": 1}):
            approvers[a["_id"]] = {"_id": a["_id"], "username": a["username"]}
    for u in users:
        if u.get("approvedBy") is not None:
            u["approvedBy"] = approvers.get(u["approvedBy"])
    return users


def list_pending(db) -> List[Dict[str, Any]]:
    return list(db[USERS].find({"status": "pending"}, {"password": 0}).sort("createdAt", -1))


def approve_user(db, user_id: str, *, approver_id: str) -> Dict[str, Any]:
    oid = _user_oid(user_id)
    updated = db[USERS].find_one_and_update(
        {"_id": oid, "status": {"$ne": "approved"}},
        {"$set": {
            "status": "approved",
            "role": "admin",
            "approvedBy": parse_object_id(approver_id),
            "approvedAt": utcnow(),
        }},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        if db[USERS].find_one({"_id": oid}, {"_id": 1}) is None:
            raise NotFound("User not found")
        raise InvalidRequest("User is already approved")
    return updated


def reject_user(db, user_id: str) -> Dict[str, Any]:
    updated = db[USERS].find_one_and_update(
        {"_id": _user_oid(user_id)},
        {"$set": {"status": "rejected"}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise NotFound("User not found")
    return updated


def promote_user(db, user_id: str) -> Dict[str, Any]:
    oid = _user_oid(user_id)
    updated = db[USERS].find_one_and_update(
        {"_id": oid, "role": {"$ne": "super-admin"}},
        {"$set": {"role": "super-admin", "status": "approved"}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        if db[USERS].find_one({"_id": oid}, {"_id": 1}) is None:
            raise NotFound("User not found")
        raise InvalidRequest("User is already a super-admin")
    return updated


def delete_user(db, user_id: str, *, actor_id: str) -> Dict[str, Any]:
    oid = _user_oid(user_id)
    if oid == parse_object_id(actor_id):
        raise InvalidRequest("Cannot delete your own account")
    deleted = db[USERS].find_one_and_delete({"_id": oid})
    if deleted is None:
        raise NotFound("User not found")
    return deleted
