"""
Database connection

Connects to MongoDB using the DATABASE_URL / DATABASE_NAME environment
variables. When either is missing `db` is None and the API runs without a
store (see the /test endpoint).

Collections:
- "projects"
- "time_entries"
"""

import os
from datetime import datetime, timezone
from typing import Optional

from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from logger import log

PROJECTS = "projects"
TIME_ENTRIES = "time_entries"

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")


def connect(url: Optional[str] = DATABASE_URL, name: Optional[str] = DATABASE_NAME) -> Optional[Database]:
    if not url or not name:
        log.warning("DATABASE_URL or DATABASE_NAME not set, running without a database")
        return None
    client = MongoClient(url, tz_aware=True, tzinfo=timezone.utc)
    database = client[name]
    log.info(f"Connected to MongoDB database '{name}'")
    return database


def ensure_indexes(database: Database) -> None:
    """Indexes backing the two ordered reads and the project reference check."""
    database[PROJECTS].create_index([("name", ASCENDING)])
    database[TIME_ENTRIES].create_index([("start_time", DESCENDING)])
    database[TIME_ENTRIES].create_index([("project_id", ASCENDING)])


def store_timestamp(value: datetime) -> datetime:
    """BSON keeps millisecond precision in naive UTC; store exactly that."""
    value = value.astimezone(timezone.utc)
    return value.replace(tzinfo=None, microsecond=(value.microsecond // 1000) * 1000)


def load_timestamp(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


db = connect()
