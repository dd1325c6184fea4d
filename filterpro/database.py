# filterpro/database.py
from typing import List, Dict, Any, Optional
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from filterpro.config import (
    MONGO_URI,
    MONGO_DB_NAME,
    FILTERS_COLLECTION,
    DATASOURCES_COLLECTION,
    OPTION_RECORDS_COLLECTION,
    SYNC_HISTORY_COLLECTION,
)
from filterpro.logging_setup import logger

class Database:
    client: Optional[AsyncIOMotorClient] = None

db = Database()

async def connect_to_mongo():
    """Establishes the connection to the MongoDB database."""
    logger.info("Connecting to MongoDB...")
    db.client = AsyncIOMotorClient(MONGO_URI)
    logger.info("MongoDB connection established.")

async def close_mongo_connection():
    """Closes the connection to the MongoDB database."""
    if db.client is None:
        return
    logger.info("Closing MongoDB connection...")
    db.client.close()
    db.client = None
    logger.info("MongoDB connection closed.")

def get_database() -> AsyncIOMotorDatabase:
    """Returns the database client instance."""
    if db.client is None:
        raise RuntimeError("Database is not connected. Call connect_to_mongo() first.")
    return db.client[MONGO_DB_NAME]

async def ensure_indexes(database: AsyncIOMotorDatabase) -> None:
    """
    Creates the unique keys and lookup indexes the core relies on.
    Safe to call on every startup.
    """
    await database[FILTERS_COLLECTION].create_index(
        [("projectKey", ASCENDING), ("slug", ASCENDING)], unique=True
    )
    await database[DATASOURCES_COLLECTION].create_index(
        [("projectKey", ASCENDING), ("id", ASCENDING)], unique=True
    )
    await database[OPTION_RECORDS_COLLECTION].create_index(
        [("datasourceId", ASCENDING), ("externalCode", ASCENDING)], unique=True
    )
    await database[OPTION_RECORDS_COLLECTION].create_index(
        [("datasourceId", ASCENDING), ("enabled", ASCENDING)]
    )
    await database[SYNC_HISTORY_COLLECTION].create_index(
        [("datasourceId", ASCENDING), ("startedAt", DESCENDING)]
    )
    logger.info("MongoDB indexes ensured.")

def stringify_ids(docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Converts ObjectId values under '_id' to strings so documents are JSON-serialisable."""
    for doc in docs:
        if "_id" in doc:
            doc["_id"] = str(doc["_id"])
    return docs
