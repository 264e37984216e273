# cartsync/domain/repositories/settings_repo.py
import logging
from typing import Any, Dict, Mapping, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from cartsync.domain.models.settings import EngineConfig, config_from_raw

logger = logging.getLogger(__name__)


class MongoSettingsProvider:
    """Merchant settings document per shop, in the 'settings' collection."""

    def __init__(self, db: AsyncIOMotorDatabase, shop: str, collection_name: str = "settings"):
        self.col = db[collection_name]
        self.shop = shop

    async def get_raw(self) -> Dict[str, Any]:
        doc = await self.col.find_one({"shop": self.shop}, {"_id": 0})
        if not doc:
            logger.info("settings not found shop=%s, using defaults", self.shop)
            return {}
        return doc

    async def get_config(self) -> EngineConfig:
        return config_from_raw(await self.get_raw())


class StaticSettingsProvider:
    def __init__(self, raw: Optional[Mapping[str, Any]] = None):
        self.raw = dict(raw or {})

    async def get_config(self) -> EngineConfig:
        return config_from_raw(self.raw)
