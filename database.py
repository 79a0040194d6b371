"""
MongoDB access for the BagPackStories API.

A single client is opened at import time and shared through the module-level
``db`` handle. Collections are named after the lowercase schema class.
"""
import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

from bson import ObjectId
from fastapi import HTTPException
from pydantic import BaseModel
from pydantic.alias_generators import to_camel
from pymongo import ASCENDING, DESCENDING, MongoClient

import config

logger = logging.getLogger(__name__)

client = None
db = None

if config.DATABASE_URL and config.DATABASE_NAME:
    client = MongoClient(config.DATABASE_URL)
    db = client[config.DATABASE_NAME]
else:
    logger.warning("MONGODB_URI/DATABASE_URL not set, database unavailable")


def require_db():
    """Router dependency: fail fast when no database is configured."""
    if db is None:
        raise HTTPException(status_code=500, detail="Database not available")


def now_utc() -> datetime:
    # naive UTC, matching what pymongo hands back on reads
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_object_id(value: str) -> ObjectId:
    """Raises bson.errors.InvalidId for malformed ids (rendered as 404)."""
    return value if isinstance(value, ObjectId) else ObjectId(str(value))


def is_object_id(value: Any) -> bool:
    return ObjectId.is_valid(str(value)) if value is not None else False


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a document stamped with created_at/updated_at; returns its id."""
    if db is None:
        raise HTTPException(status_code=500, detail="Database not available")
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    ts = now_utc()
    data_dict.setdefault("created_at", ts)
    data_dict["updated_at"] = ts
    result = db[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: dict = None, limit: int = None) -> List[dict]:
    if db is None:
        raise HTTPException(status_code=500, detail="Database not available")
    cursor = db[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


# -------------------------------------------------------------------
# Serialization
# -------------------------------------------------------------------
def _camel(key: str) -> str:
    return to_camel(key) if "_" in key.strip("_") else key


def serialize_doc(value: Any) -> Any:
    """Mongo document -> JSON-ready dict: `_id` becomes `id`, keys go camelCase."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, list):
        return [serialize_doc(v) for v in value]
    if isinstance(value, dict):
        out: Dict[str, Any] = {}
        for k, v in value.items():
            if k == "_id":
                out["id"] = str(v)
                continue
            out[_camel(k)] = serialize_doc(v)
        return out
    return value


def serialize_many(docs) -> List[dict]:
    return [serialize_doc(d) for d in docs]


# -------------------------------------------------------------------
# Pagination / sorting
# -------------------------------------------------------------------
def pagination_meta(page: int, limit: int, total: int) -> Dict[str, Any]:
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        "currentPage": page,
        "totalPages": total_pages,
        "total": total,
        "limit": limit,
        "hasNextPage": page < total_pages,
        "hasPrevPage": page > 1,
    }


def parse_sort(sort: Optional[str], allowed: Dict[str, str], default: Tuple[str, int]) -> Tuple[str, int]:
    """'-createdAt' -> ('created_at', -1). Unknown fields fall back to the default."""
    if not sort:
        return default
    direction = DESCENDING if sort.startswith("-") else ASCENDING
    field = allowed.get(sort.lstrip("-+"))
    if not field:
        return default
    return field, direction


def paginate(collection_name: str, filter_dict: dict, page: int, limit: int,
             sort: Union[Tuple[str, int], List[Tuple[str, int]]] = ("created_at", DESCENDING),
             projection: dict = None):
    total = db[collection_name].count_documents(filter_dict)
    cursor = (
        db[collection_name]
        .find(filter_dict, projection)
        .sort(sort if isinstance(sort, list) else [sort])
        .skip((page - 1) * limit)
        .limit(limit)
    )
    return list(cursor), pagination_meta(page, limit, total)


# -------------------------------------------------------------------
# Indexes
# -------------------------------------------------------------------
def ensure_indexes():
    if db is None:
        return
    db["user"].create_index("email", unique=True)
    db["newsletter"].create_index("email", unique=True)
    for name in ("post", "destination", "guide", "category", "resource"):
        db[name].create_index("slug", unique=True)
    db["post"].create_index([("status", ASCENDING), ("published_at", DESCENDING)])
    db["emailtemplate"].create_index("key", unique=True)
    db["sitesettings"].create_index("singleton", unique=True)
    db["comment"].create_index(
        [("resource_type", ASCENDING), ("resource_id", ASCENDING), ("status", ASCENDING)]
    )
    db["comment"].create_index("parent_id")
    db["photo"].create_index([("status", ASCENDING), ("is_public", ASCENDING)])
    db["resource"].create_index([("category", ASCENDING), ("type", ASCENDING)])
    logger.info("MongoDB indexes ensured on %s", db.name)
