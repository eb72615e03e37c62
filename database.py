"""
Database Helper Functions

MongoDB connection holder and document helpers shared by the API handlers.
The connection is created lazily on first use and cached on the Database
object, which the app keeps on app.state and hands out via get_db().
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Request
from pymongo import ASCENDING, MongoClient
from pymongo.errors import ConnectionFailure

logger = logging.getLogger(__name__)

USERS = "users"
CUSTOMERS = "customers"
BOOTSTRAP = "bootstrap"


class Database:
    """Lazily connected, process-wide Mongo handle.

    The first caller opens the client and pings the server; callers arriving
    while that is in progress wait on the same lock and reuse the result.
    A failed attempt leaves nothing cached so the next request retries.
    """

    def __init__(
        self,
        url: Optional[str],
        name: str,
        *,
        timeout_ms: int = 30000,
        client: Optional[MongoClient] = None,
    ):
        self.url = url
        self.name = name
        self.timeout_ms = timeout_ms
        self._client = client
        self._db = client[name] if client is not None else None
        self._lock = threading.Lock()

    @property
    def connected(self) -> bool:
        return self._db is not None

    def get(self):
        if self._db is not None:
            return self._db
        with self._lock:
            if self._db is None:
                self._db = self._connect()
        return self._db

    def _connect(self):
        if not self.url:
            raise ConnectionFailure("DATABASE_URL is not defined in environment variables.")
        logger.info("Establishing new MongoDB connection...")
        client = MongoClient(
            self.url,
            serverSelectionTimeoutMS=self.timeout_ms,
            socketTimeoutMS=45000,
            maxPoolSize=10,
            minPoolSize=2,
        )
        try:
            client.admin.command("ping")
        except Exception:
            client.close()
            raise
        self._client = client
        db = client[self.name]
        ensure_indexes(db)
        logger.info("MongoDB connected successfully")
        return db

    def close(self) -> None:
        with self._lock:
            if self._client is not None:
                self._client.close()
            self._client = None
            self._db = None


def get_db(request: Request):
    return request.app.state.database.get()


def ensure_indexes(db) -> None:
    db[USERS].create_index([("username", ASCENDING)], unique=True)
    db[USERS].create_index([("email", ASCENDING)], unique=True)
    db[USERS].create_index([("role", ASCENDING), ("createdAt", ASCENDING)])
    db[CUSTOMERS].create_index([("email", ASCENDING)])


# Utility

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_object_id(value: Any) -> Optional[ObjectId]:
    """Return an ObjectId for a well-formed id, None otherwise."""
    if isinstance(value, ObjectId):
        return value
    if not isinstance(value, str):
        return None
    try:
        return ObjectId(value.strip())
    except (InvalidId, TypeError):
        return None


def serialize_doc(doc: Any) -> Any:
    """Convert ObjectIds (at any depth) to strings for JSON responses."""
    if isinstance(doc, ObjectId):
        return str(doc)
    if isinstance(doc, dict):
        return {k: serialize_doc(v) for k, v in doc.items()}
    if isinstance(doc, list):
        return [serialize_doc(v) for v in doc]
    return doc
