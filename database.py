"""
MongoDB connection and document helpers

`db` is None when DATABASE_URL / DATABASE_NAME are not configured; callers
turn that into StoreUnavailable.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

import config
from errors import StoreUnavailable

logger = logging.getLogger(__name__)

BUDGET_COLLECTION = "budget"
EXPENSE_COLLECTION = "expense"

_client: Optional[MongoClient] = None
db: Optional[Database] = None

if config.DATABASE_URL and config.DATABASE_NAME:
    _client = MongoClient(config.DATABASE_URL, tz_aware=True)
    db = _client[config.DATABASE_NAME]


def get_db() -> Database:
    if db is None:
        raise StoreUnavailable("Database not available. Check DATABASE_URL and DATABASE_NAME.")
    return db


def create_document(collection_name: str, data: Union[BaseModel, dict], database: Optional[Database] = None) -> str:
    """Insert a document stamped with created_at/updated_at and return its id."""
    database = database if database is not None else get_db()
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = data.copy()

    now = datetime.now(timezone.utc)
    data_dict["created_at"] = now
    data_dict["updated_at"] = now

    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def serialize_doc(doc: Optional[Dict[str, Any]]):
    """Replace the bson _id with a string id."""
    if not doc:
        return doc
    if doc.get("_id") is not None:
        doc["id"] = str(doc.pop("_id"))
    return doc


def to_object_id(value: str) -> ObjectId:
    return ObjectId(value)


def ensure_indexes(database: Optional[Database] = None):
    """One budget per (user, month); expenses are always read by user and date."""
    database = database if database is not None else get_db()
    database[BUDGET_COLLECTION].create_index(
        [("user_id", ASCENDING), ("month", ASCENDING)],
        unique=True,
        name="ux_budget_user_month",
    )
    database[EXPENSE_COLLECTION].create_index(
        [("user_id", ASCENDING), ("date", DESCENDING)],
        name="ix_expense_user_date",
    )
    logger.info("Indexes ensured on %s", database.name)
