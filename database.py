"""
MongoDB access shared by every service module.

One client is created at import time and reused across requests. Collection
names are the lowercase of the schema class name (Product -> "product").
"""
import logging
import math
from datetime import datetime, timezone
from typing import Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient

from errors import ValidationFailed
from settings import DATABASE_NAME, DATABASE_URL

logger = logging.getLogger(__name__)

client = MongoClient(DATABASE_URL)
db = client[DATABASE_NAME]


def now() -> datetime:
    return datetime.now(timezone.utc)


def to_obj_id(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise ValidationFailed(f"Invalid id: {id_str}")


def serialize_doc(doc):
    """Make a stored document JSON-friendly: `_id` becomes `id`, ObjectIds and
    datetimes are turned into strings all the way down."""
    if doc is None:
        return doc
    if isinstance(doc, list):
        return [serialize_doc(d) for d in doc]
    if isinstance(doc, ObjectId):
        return str(doc)
    if isinstance(doc, datetime):
        return doc.isoformat()
    if not isinstance(doc, dict):
        return doc
    out = {}
    for k, v in doc.items():
        if k == "_id":
            out["id"] = str(v)
        else:
            out[k] = serialize_doc(v)
    return out


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    if isinstance(data, BaseModel):
        data = data.model_dump()
    else:
        data = dict(data)
    stamp = now()
    data.setdefault("created_at", stamp)
    data["updated_at"] = stamp
    inserted_id = db[collection_name].insert_one(data).inserted_id
    logger.debug("Inserted %s into %s", inserted_id, collection_name)
    return str(inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None):
    cursor = db[collection_name].find(filter_dict or {}).sort("created_at", DESCENDING)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def paginate(collection_name: str, filter_dict: dict, page: int, limit: int, sort=None):
    """Return (documents, pagination) for a 1-based page."""
    page = max(page, 1)
    limit = max(limit, 1)
    total = db[collection_name].count_documents(filter_dict)
    cursor = (
        db[collection_name]
        .find(filter_dict)
        .sort(sort or [("created_at", DESCENDING)])
        .skip((page - 1) * limit)
        .limit(limit)
    )
    pagination = {"page": page, "limit": limit, "total": total, "pages": math.ceil(total / limit)}
    return list(cursor), pagination


def ensure_indexes():
    db["user"].create_index([("email", ASCENDING)], unique=True)
    db["product"].create_index([("category", ASCENDING)])
    db["product"].create_index([("created_by", ASCENDING)])
    db["order"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    db["order"].create_index([("order_status", ASCENDING)])
    db["store"].create_index([("owner_id", ASCENDING)], unique=True)
    db["store"].create_index([("slug", ASCENDING)], unique=True)
    db["withdrawal"].create_index([("seller_id", ASCENDING), ("created_at", DESCENDING)])
    db["role"].create_index([("name", ASCENDING)], unique=True)
    db["admin_preferences"].create_index([("admin_id", ASCENDING)], unique=True)
