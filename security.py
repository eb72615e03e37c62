"""Password hashing and access tokens.

Passwords are bcrypt hashes at a fixed cost of 10. Tokens are HS256 JWTs
carrying the user id; decode_access_token returns a TokenCheck naming why a
token was refused rather than raising.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Literal, Optional

import jwt
from passlib.context import CryptContext

JWT_ALG = "HS256"
BCRYPT_ROUNDS = 10

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=BCRYPT_ROUNDS)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    if password is None or not hashed:
        return False
    try:
        return pwd_context.verify(password, hashed)
    except (ValueError, TypeError):
        # Unrecognised or corrupt hash.
        return False


def create_access_token(user_id: str, secret: str, expires_seconds: int = 3600) -> str:
    if not secret:
        raise ValueError("jwt_secret_blank")
    now = datetime.now(timezone.utc).replace(microsecond=0)
    payload = {
        "id": str(user_id),
        "iat": now,
        "exp": now + timedelta(seconds=expires_seconds),
    }
    return jwt.encode(payload, secret, algorithm=JWT_ALG)


TokenFailure = Literal["expired", "bad_signature", "malformed"]


@dataclass(frozen=True)
class TokenCheck:
    """Outcome of verifying a bearer token.

    Exactly one of user_id / failure is set. The failure reason is for
    server logs only; callers answer every failure the same way.
    """

    user_id: Optional[str] = None
    failure: Optional[TokenFailure] = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.user_id is not None


def decode_access_token(token: str, secret: str) -> TokenCheck:
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[JWT_ALG],
            options={"require": ["exp", "iat", "id"]},
        )
    except jwt.ExpiredSignatureError as exc:
        return TokenCheck(failure="expired", detail=str(exc))
    except jwt.InvalidSignatureError as exc:
        return TokenCheck(failure="bad_signature", detail=str(exc))
    except jwt.InvalidTokenError as exc:
        return TokenCheck(failure="malformed", detail=str(exc))

    user_id = payload.get("id")
    if not isinstance(user_id, str) or not user_id:
        return TokenCheck(failure="malformed", detail="id claim missing")
    return TokenCheck(user_id=user_id)
