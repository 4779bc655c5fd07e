"""
MongoDB handles for the document conversation backend.
"""

from functools import lru_cache
from typing import Any

from pymongo import ASCENDING, DESCENDING, MongoClient

from backend.app.core.config import Settings, get_settings


@lru_cache(maxsize=1)
def get_mongo_client() -> MongoClient:
    return MongoClient(get_settings().mongo_uri, serverSelectionTimeoutMS=5000, tz_aware=True)


def ensure_conversation_indexes(db: Any):
    # History reads are per chat by time; chat listings are per owner by activity.
    db["messages"].create_index([("chat", ASCENDING), ("createdAt", DESCENDING)])
    db["chats"].create_index([("user", ASCENDING), ("lastActivity", DESCENDING)])


def open_conversation_db(settings: Settings | None = None) -> Any:
    settings = settings or get_settings()
    db = get_mongo_client()[settings.mongo_db_name]
    ensure_conversation_indexes(db)
    return db
