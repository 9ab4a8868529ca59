"""
MongoDB access for the storefront.

Collections mirror the storefront tables: products, categories, profiles,
addresses, cart_items, orders, order_items. Credentials live in ``users``.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

import config
from errors import UpstreamError

log = logging.getLogger(__name__)

db: Optional[Database] = None
readonly_db: Optional[Database] = None

if config.DATABASE_URL and config.DATABASE_NAME:
    _client = MongoClient(config.DATABASE_URL)
    db = _client[config.DATABASE_NAME]
    if config.DATABASE_READONLY_URL:
        readonly_db = MongoClient(config.DATABASE_READONLY_URL)[config.DATABASE_NAME]
    else:
        readonly_db = db


def get_db() -> Database:
    """Privileged connection, used for every write and all owner-scoped reads."""
    if db is None:
        raise UpstreamError("Database not available")
    return db


def get_public_db() -> Database:
    """Restricted connection for the public catalog."""
    if readonly_db is None:
        raise UpstreamError("Database not available")
    return readonly_db


def now() -> datetime:
    return datetime.now(timezone.utc)


def parse_object_id(value: Any) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def to_str_id(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return doc
    d = doc.copy()
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d


def find_by_id(database: Database, collection: str, doc_id: Any, **filters) -> Optional[dict]:
    oid = parse_object_id(doc_id)
    if oid is None:
        return None
    return database[collection].find_one({"_id": oid, **filters})


def create_document(database: Database, collection: str, data: Union[BaseModel, Dict[str, Any]]) -> dict:
    doc = data.model_dump(mode="json") if isinstance(data, BaseModel) else dict(data)
    doc.setdefault("created_at", now())
    doc.setdefault("updated_at", doc["created_at"])
    res = database[collection].insert_one(doc)
    doc["_id"] = res.inserted_id
    return doc


def get_documents(database: Database, collection: str, filter_dict: Optional[dict] = None,
                  sort: Optional[list] = None, skip: int = 0, limit: int = 0) -> List[dict]:
    cursor = database[collection].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if skip:
        cursor = cursor.skip(skip)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def collection_exists(database: Database, collection: str) -> bool:
    return collection in database.list_collection_names()


def ensure_indexes(database: Database) -> None:
    database["users"].create_index([("email", ASCENDING)], unique=True)
    database["products"].create_index([("slug", ASCENDING)])
    database["cart_items"].create_index([("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
    database["orders"].create_index([("order_number", ASCENDING)], unique=True)
    database["orders"].create_index([("user_id", ASCENDING), ("payment_intent_id", ASCENDING)])
    database["order_items"].create_index([("order_id", ASCENDING)])
    database["addresses"].create_index([("user_id", ASCENDING)])
    log.info("Indexes ensured on %s", database.name)
