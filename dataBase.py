import logging
import motor.motor_asyncio
from config import Settings, settings as default_settings
from stores import MemoryStore, MongoStore, Store

logger = logging.getLogger(__name__)


def create_store(settings: Settings = default_settings) -> Store:
    """Build the store selected by STORAGE_BACKEND."""
    if settings.storage_backend == "memory":
        logger.info("Using in-memory store")
        return MemoryStore()
    if settings.storage_backend != "mongo":
        raise ValueError(f"Unknown STORAGE_BACKEND {settings.storage_backend!r}")

    client = motor.motor_asyncio.AsyncIOMotorClient(settings.mongo_url)
    logger.info("Using MongoDB database %s", settings.mongo_db_name)
    return MongoStore(client, settings.mongo_db_name)
