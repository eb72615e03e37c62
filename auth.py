"""Request authentication and role gates.

Protected routes depend on get_current_user, which resolves the bearer token
to a live, approved user. require_admin / require_super_admin layer role
checks on top of it. Every attempt is logged with the client IP and
endpoint; the IP is never used for access decisions.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import Depends, Header, HTTPException, Request

from config import Settings, get_settings
from database import USERS, get_db, parse_object_id
from security import decode_access_token

logger = logging.getLogger(__name__)

ADMIN_ROLES = ("admin", "super-admin")
_IPV4_MAPPED_PREFIX = "::ffff:"


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    # ASGI exposes a single peer address; proxy-header middleware may
    # already have rewritten it.
    if request.client is not None and request.client.host:
        host = request.client.host
        if host.startswith(_IPV4_MAPPED_PREFIX):
            host = host[len(_IPV4_MAPPED_PREFIX):]
        return host
    return "Unknown"


def extract_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    token = authorization
    if token.startswith("Bearer "):
        token = token[len("Bearer "):]
    return token.strip() or None


def get_current_user(
    request: Request,
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
    db=Depends(get_db),
) -> Dict[str, Any]:
    ip = client_ip(request)
    endpoint = request.url.path

    token = extract_token(authorization)
    if token is None:
        logger.info("AUTH FAILED - No token provided - IP: %s - Endpoint: %s", ip, endpoint)
        raise HTTPException(status_code=401, detail="No token")

    check = decode_access_token(token, settings.jwt_secret)
    if not check.ok:
        logger.info(
            "AUTH FAILED - Invalid token (%s: %s) - IP: %s - Endpoint: %s",
            check.failure, check.detail, ip, endpoint,
        )
        raise HTTPException(status_code=401, detail="Invalid token")

    oid = parse_object_id(check.user_id)
    user = db[USERS].find_one({"_id": oid}) if oid is not None else None
    if user is None:
        logger.info("AUTH FAILED - User not found - IP: %s - Endpoint: %s", ip, endpoint)
        raise HTTPException(status_code=401, detail="User not found")

    if user.get("status") != "approved":
        logger.info(
            "AUTH FAILED - User not approved (status: %s) - IP: %s - Endpoint: %s",
            user.get("status"), ip, endpoint,
        )
        raise HTTPException(
            status_code=403,
            detail={"msg": "Your account is pending admin approval", "status": user.get("status")},
        )

    logger.info(
        "AUTH SUCCESS - User: %s (%s) - IP: %s - Endpoint: %s",
        user["username"], user.get("role"), ip, endpoint,
    )
    return {"id": str(user["_id"]), "role": user.get("role"), "username": user["username"]}


def require_admin(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    if user.get("role") not in ADMIN_ROLES:
        raise HTTPException(status_code=403, detail="Access denied. Admin privileges required.")
    return user


def require_super_admin(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    if user.get("role") != "super-admin":
        raise HTTPException(status_code=403, detail="Access denied. Super admin privileges required.")
    return user
