"""
defrakit - MongoDB Client Factory
==================================
Creates the async ``motor`` client the relay hands to its command
dispatcher.  The client is owned by whoever creates it (the FastAPI
lifespan) and is safe for concurrent use, so no extra locking is needed.
"""

from __future__ import annotations

import motor.motor_asyncio

from defrakit.config.settings import settings
from defrakit.src.utils.logger import get_logger

logger = get_logger(__name__)


def create_mongo_client(uri: str | None = None, max_pool_size: int | None = None) -> motor.motor_asyncio.AsyncIOMotorClient:
    """Return a new async MongoDB client (connections are opened lazily)."""
    client = motor.motor_asyncio.AsyncIOMotorClient(uri or settings.MONGO_URI.get_secret_value(), maxPoolSize=max_pool_size or settings.MONGO_MAX_POOL_SIZE)
    logger.info("MongoDB async client created (maxPoolSize=%d).", max_pool_size or settings.MONGO_MAX_POOL_SIZE)
    return client
