# cartsync/db/mongo.py
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
import logging

from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError
from cartsync.core.config import get_settings
import certifi

logger = logging.getLogger(__name__)

_client: AsyncIOMotorClient | None = None
_db: AsyncIOMotorDatabase | None = None


def get_client() -> AsyncIOMotorClient:
    assert _client is not None, "Mongo client not initialized"
    return _client


def get_db() -> AsyncIOMotorDatabase:
    assert _db is not None, "Mongo DB not initialized"
    return _db


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    """
    Indexes backing the catalog lookups, purchase-pair mining and settings reads.
    create_index is idempotent, safe to run on every boot.
    """
    await db["products"].create_index([("product_id", ASCENDING)], unique=True)
    await db["products"].create_index([("available", ASCENDING), ("price", ASCENDING)])
    await db["events"].create_index([("event_type", ASCENDING), ("product_id", ASCENDING)])
    await db["events"].create_index([("event_type", ASCENDING), ("timestamp", DESCENDING)])
    await db["settings"].create_index([("shop", ASCENDING)], unique=True)


async def connect() -> None:
    """
    Create the Motor client with an explicit CA bundle for Atlas URIs.
    A failed ping does not stop the app: the client stays lazy and the
    catalog reads surface CatalogError until the network is back.
    """
    global _client, _db
    settings = get_settings()
    srv = settings.MONGO_URI.startswith("mongodb+srv")

    _client = AsyncIOMotorClient(
        settings.MONGO_URI,
        tls=srv,
        tlsCAFile=certifi.where() if srv else None,
        uuidRepresentation="standard",
        serverSelectionTimeoutMS=6000,
        connectTimeoutMS=6000,
    )
    _db = _client[settings.MONGO_DB]
    try:
        await _client.admin.command("ping")
        await ensure_indexes(_db)
        logger.info("mongo connected db=%s", settings.MONGO_DB)
    except PyMongoError as e:
        logger.warning("mongo ping at startup failed, continuing lazily: %s", e)


async def disconnect() -> None:
    global _client, _db
    if _client:
        _client.close()
    _client = None
    _db = None
