"""
MongoDB access helpers.

The client is created once from DATABASE_URL / DATABASE_NAME. Route handlers
receive the database through the get_db dependency so tests can swap in an
in-memory one.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson.errors import InvalidId
from bson.objectid import ObjectId
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.database import Database

from config import DATABASE_NAME, DATABASE_URL
from errors import ValidationError

logger = logging.getLogger(__name__)

_client = None
db = None

if DATABASE_URL and DATABASE_NAME:
    _client = MongoClient(DATABASE_URL)
    db = _client[DATABASE_NAME]


def get_db() -> Database:
    if db is None:
        raise HTTPException(status_code=500, detail="Database not available")
    return db


def utcnow() -> datetime:
    # Mongo hands back naive UTC datetimes; keep ours the same so comparisons work.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def epoch_millis(moment: Optional[datetime] = None) -> int:
    moment = moment or utcnow()
    return int(moment.replace(tzinfo=timezone.utc).timestamp() * 1000)


def to_storage(value):
    """Convert aware datetimes (also inside dicts and lists) to naive UTC."""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if isinstance(value, dict):
        return {k: to_storage(v) for k, v in value.items()}
    if isinstance(value, list):
        return [to_storage(v) for v in value]
    return value


def oid(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise ValidationError("Invalid id")


def serialize(doc):
    if not doc:
        return None
    doc["id"] = str(doc.pop("_id"))
    return doc


def create_document(database: Database, collection_name: str, data: Union[BaseModel, dict]) -> str:
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    data_dict = to_storage(data_dict)
    now = utcnow()
    data_dict["created_at"] = now
    data_dict["updated_at"] = now
    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(database: Database, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                  sort: Optional[List] = None, limit: Optional[int] = None) -> List[dict]:
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def update_document(database: Database, collection_name: str, doc_id: ObjectId, changes: Dict[str, Any],
                    unset: Optional[List[str]] = None) -> Optional[dict]:
    """Apply a $set (and optional $unset) to one document and return it after the update."""
    update: Dict[str, Any] = {"$set": dict(to_storage(changes), updated_at=utcnow())}
    if unset:
        update["$unset"] = {field: "" for field in unset}
    return database[collection_name].find_one_and_update(
        {"_id": doc_id}, update, return_document=ReturnDocument.AFTER
    )


def next_sequence(database: Database, name: str) -> int:
    counter = database["counter"].find_one_and_update(
        {"_id": name},
        {"$inc": {"value": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return counter["value"]


def ensure_indexes(database: Database) -> None:
    database["order"].create_index("order_number", unique=True)
    database["order"].create_index("payment_id")
    database["order"].create_index([("customer_id", ASCENDING), ("created_at", DESCENDING)])
    database["product"].create_index([("seller_id", ASCENDING), ("category", ASCENDING)])
    database["sellerpromotion"].create_index("seller_id")
    database["promotion"].create_index("code", unique=True)
    database["taxrule"].create_index([("country", ASCENDING), ("region", ASCENDING), ("is_active", ASCENDING)])
    database["currency"].create_index("code", unique=True)
    logger.info("MongoDB indexes ensured")
