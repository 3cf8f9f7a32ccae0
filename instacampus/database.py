"""
MongoDB access for InstaCampus.

Each Pydantic model in ``schemas`` maps to a collection named after the
lowercase class name. Documents carry ``createdAt``/``updatedAt`` stamps.
"""

import logging
from datetime import datetime
from typing import Any, Iterable, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from . import config
from .errors import NotFoundError

logger = logging.getLogger(__name__)

_client: Optional[MongoClient] = None


def get_client() -> MongoClient:
    global _client
    if _client is None:
        logger.info("Connecting to MongoDB database %s", config.DATABASE_NAME)
        _client = MongoClient(config.DATABASE_URL)
    return _client


def get_db() -> Database:
    return get_client()[config.DATABASE_NAME]


def init_indexes(db: Database):
    db["user"].create_index("email", unique=True)
    db["product"].create_index("vendorId")
    db["inventory"].create_index("productId", unique=True)
    db["cart"].create_index([("userId", ASCENDING), ("category", ASCENDING)], unique=True)
    db["order"].create_index("userId")
    db["order"].create_index("items.productId")
    db["vendorcode"].create_index("code", unique=True)
    # expired codes are removed by the server
    db["vendorcode"].create_index("expiresAt", expireAfterSeconds=0)


def create_document(db: Database, collection_name: str, data: BaseModel | dict) -> dict:
    """Insert ``data`` into ``collection_name`` and return the stored document."""
    doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    now = datetime.utcnow()
    doc["createdAt"] = now
    doc["updatedAt"] = now
    doc["_id"] = db[collection_name].insert_one(doc).inserted_id
    return doc


def get_documents(
    db: Database,
    collection_name: str,
    filter_dict: Optional[dict] = None,
    limit: Optional[int] = None,
    sort: Optional[list] = None,
) -> list[dict]:
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def lookup(
    db: Database,
    collection_name: str,
    ids: Iterable[ObjectId],
    projection: Optional[dict] = None,
) -> dict[ObjectId, dict]:
    """Fetch many documents at once, keyed by ``_id``."""
    unique_ids = list({i for i in ids if i is not None})
    if not unique_ids:
        return {}
    cursor = db[collection_name].find({"_id": {"$in": unique_ids}}, projection)
    return {doc["_id"]: doc for doc in cursor}


def parse_object_id(value: Any, what: str = "Document") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise NotFoundError(f"{what} not found")


def serialize(value: Any) -> Any:
    """Make a document JSON friendly: ObjectIds become strings."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {key: serialize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize(item) for item in value]
    return value
