# filterpro/services/fetchers/mongodb.py
from typing import Any, Callable, Dict, List

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import PyMongoError

from filterpro.errors import ExternalFetchError
from filterpro.logging_setup import logger
from filterpro.models import MongoConfig


def _normalize(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {k: _normalize(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_normalize(v) for v in value]
    return value


async def fetch_rows(
    config: MongoConfig,
    client_factory: Callable[[str], Any] = AsyncIOMotorClient,
) -> List[Dict[str, Any]]:
    """
    Runs find(query, projection) against an external MongoDB collection.
    The client is always closed, whether the read succeeds or not.
    """
    client = None
    try:
        client = client_factory(config.connection_string)
        cursor = client[config.database][config.collection].find(config.query, config.projection)
        docs = await cursor.to_list(length=None)
    except PyMongoError as e:
        raise ExternalFetchError(
            f"Could not read from MongoDB {config.database}.{config.collection}: {e}"
        ) from e
    finally:
        if client is not None:
            client.close()

    logger.info(f"Fetched {len(docs)} documents from MongoDB {config.database}.{config.collection}")
    return [_normalize(doc) for doc in docs]
