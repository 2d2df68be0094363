# MongoDB connection, indexes and the thread pool every driver call runs on

import asyncio
import functools
import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

from pymongo import MongoClient, ASCENDING, DESCENDING, GEOSPHERE

from complaint_portal.config import MONGODB_URL, MONGODB_DB
from complaint_portal.errors import ValidationFailed

logger = logging.getLogger(__name__)

db_client = None
db = None
executor = ThreadPoolExecutor(max_workers=10)


async def run_db(fn, *args, **kwargs):
    """Run a blocking pymongo call on the executor."""
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(executor, functools.partial(fn, *args, **kwargs))


def create_indexes(database):
    database.users.create_index([("email", ASCENDING)], unique=True)
    database.users.create_index("role")
    database.departments.create_index([("name", ASCENDING)], unique=True)
    database.departments.create_index("category")
    database.complaints.create_index([("location", GEOSPHERE)])
    for field in ("user_id", "status", "category", "priority",
                  "assigned_department", "assigned_staff"):
        database.complaints.create_index(field)
    database.complaints.create_index([("created_at", DESCENDING)])
    database.notifications.create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    database.chats.create_index([("complaint_id", ASCENDING), ("created_at", ASCENDING)])


async def startup_db():
    global db_client, db
    db_client = MongoClient(MONGODB_URL, tz_aware=True)
    db = db_client[MONGODB_DB]
    await run_db(create_indexes, db)
    logger.info("Database initialized (%s)", MONGODB_DB)


def close_db():
    global db_client, db
    if db_client:
        db_client.close()
    db_client = None
    db = None


async def get_db():
    return db


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def new_id() -> str:
    return str(uuid.uuid4())

def now_utc() -> datetime:
    return datetime.now(timezone.utc)

def validate_uuid(value: str, param_name: str = "id") -> str:
    """Validate that a string is a valid UUID format."""
    if not isinstance(value, str):
        raise ValidationFailed("Invalid parameter type")
    try:
        uuid.UUID(value)
    except (ValueError, AttributeError):
        raise ValidationFailed(f"Invalid {param_name} format")
    return value
