# cartsync/core/lifespan.py
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from cartsync.db import mongo, redis as r
from cartsync.core.config import get_settings
from cartsync.api.deps import get_registry

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()

    # --- Startup ---
    # Catalog, purchase events and merchant settings all live in Mongo
    if settings.MONGO_URI:
        await mongo.connect()
    else:
        logger.warning("MONGO_URI not set, catalog and settings lookups will fail until it is")

    # Optional: search cache + gift decline memory
    redis_up = await r.connect()
    logger.info(
        "%s started env=%s storefront=%s redis=%s",
        settings.APP_NAME, settings.APP_ENV, settings.STOREFRONT_URL, "on" if redis_up else "off",
    )

    yield

    # --- Shutdown ---
    # Engines first: they flush pending analytics and close their storefront clients
    registry = get_registry()
    logger.info("closing engines sessions=%s", len(registry))
    await registry.close()
    await r.disconnect()
    if settings.MONGO_URI:
        await mongo.disconnect()
