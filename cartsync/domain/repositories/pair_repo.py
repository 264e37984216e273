# cartsync/domain/repositories/pair_repo.py
from __future__ import annotations
import logging
import time
from typing import Any, Dict, List, Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError
from redis.asyncio import Redis

from cartsync.domain.errors import CatalogError
from cartsync.utils.cache import cache_get, cache_key, cache_set

logger = logging.getLogger(__name__)


class PurchasePairRepo:
    """
    Frequently-bought-together pairs mined from purchase events.
    Orders are keyed by metadata.order_id, falling back to session_id.
    confidence(anchor -> other) = orders containing both / orders containing anchor.
    """

    def __init__(self, db: AsyncIOMotorDatabase, redis: Optional[Redis] = None, *, ttl: int = 3600):
        self.db = db
        self.redis = redis
        self.ttl = ttl

    def _pipeline(self, product_id: str, limit: int) -> List[Dict[str, Any]]:
        return [
            {"$match": {"event_type": "purchase"}},
            {"$addFields": {"ok": {"$ifNull": ["$metadata.order_id", "$session_id"]}}},
            {"$group": {"_id": "$ok", "prods": {"$addToSet": "$product_id"}}},
            {"$match": {"$expr": {"$in": [product_id, "$prods"]}}},
            {"$facet": {
                "anchor": [{"$count": "orders"}],
                "pairs": [
                    {"$project": {"_id": 0, "co": {"$setDifference": ["$prods", [product_id]]}}},
                    {"$unwind": "$co"},
                    {"$group": {"_id": "$co", "co_count": {"$sum": 1}}},
                    {"$sort": {"co_count": -1, "_id": 1}},
                    {"$limit": limit},
                ],
            }},
        ]

    async def get_pairs(self, product_id: str, limit: int) -> List[Tuple[str, float]]:
        pid = str(product_id)
        key = cache_key("pairs", {"pid": pid, "limit": limit})
        if (cached := await cache_get(self.redis, key)) is not None:
            return [(str(p), float(c)) for p, c in cached]

        t0 = time.perf_counter()
        try:
            docs = await self.db["events"].aggregate(self._pipeline(pid, limit)).to_list(length=None)
        except PyMongoError as e:
            raise CatalogError(f"pair mining failed product_id={pid}: {e}") from e
        pairs: List[Tuple[str, float]] = []
        if docs:
            facet = docs[0]
            anchor_orders = (facet.get("anchor") or [{}])[0].get("orders", 0)
            if anchor_orders:
                pairs = [
                    (str(d["_id"]), round(d["co_count"] / anchor_orders, 4))
                    for d in facet.get("pairs", []) if d.get("_id")
                ]
        logger.info("pairs mined product_id=%s n=%s db_time=%.3fs", pid, len(pairs), time.perf_counter() - t0)
        await cache_set(self.redis, key, pairs, ex=self.ttl)
        return pairs
