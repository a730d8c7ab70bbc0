"""
MongoDB access for the ReGive API.

The connection is configured from DATABASE_URL / DATABASE_NAME. When either is
missing, `db` stays None and every request that needs storage fails with a
StorageError instead of crashing at import.
"""
import logging
import os
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

from bson import ObjectId
from bson.errors import InvalidId
from dotenv import load_dotenv
from pymongo import ASCENDING, MongoClient
from pymongo.errors import PyMongoError

from errors import NotFoundError, StorageError

load_dotenv()

logger = logging.getLogger(__name__)

# Collection names (lowercased schema class names)
COLLECTION_DONATIONS = "donation"
COLLECTION_COLLECTED = "collecteddonation"
COLLECTION_BENEFICIARIES = "beneficiaryrecord"
COLLECTION_EVENTS = "event"
COLLECTION_REGISTRATIONS = "registration"
COLLECTION_JOIN_REQUESTS = "jointeamrequest"
COLLECTION_USERS = "user"
COLLECTION_AUDIT = "auditlog"

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

_client = None
db = None

if DATABASE_URL and DATABASE_NAME:
    try:
        _client = MongoClient(DATABASE_URL)
        db = _client[DATABASE_NAME]
    except PyMongoError as e:
        logger.error("Could not configure MongoDB client: %s", e)
        db = None


def _now():
    return datetime.now(timezone.utc)


@contextmanager
def storage_errors(action: str):
    """Translate pymongo failures inside the block into StorageError."""
    try:
        yield
    except PyMongoError as e:
        logger.error("Database error while trying to %s: %s", action, e)
        raise StorageError(f"Database error while trying to {action}", details={"reason": str(e)[:200]})


def get_db():
    """FastAPI dependency returning the configured database."""
    if db is None:
        raise StorageError("Database not available")
    return db


def parse_object_id(value: str, entity: str = "Record") -> ObjectId:
    """Parse a path/body id. Malformed ids cannot reference anything, so they are NotFound."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise NotFoundError(f"{entity} not found", details={"id": str(value)})


def create_document(database, collection_name: str, data) -> str:
    """Insert a pydantic model or dict, stamping created_at/updated_at. Returns the new id."""
    if hasattr(data, "model_dump"):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    data_dict.setdefault("created_at", _now())
    data_dict["updated_at"] = _now()
    with storage_errors(f"insert into {collection_name}"):
        result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(database, collection_name: str, filter_dict: Optional[dict] = None,
                  sort: Optional[list] = None, limit: Optional[int] = None) -> list:
    with storage_errors(f"read {collection_name}"):
        cursor = database[collection_name].find(filter_dict or {})
        if sort:
            cursor = cursor.sort(sort)
        if limit:
            cursor = cursor.limit(limit)
        return list(cursor)


def ensure_indexes(database):
    with storage_errors("create indexes"):
        database[COLLECTION_USERS].create_index([("firebase_uid", ASCENDING)], unique=True)
        database[COLLECTION_REGISTRATIONS].create_index([("event_id", ASCENDING)])
        database[COLLECTION_DONATIONS].create_index([("donor_email", ASCENDING)])
