# cartsync/domain/repositories/product_repo.py

from __future__ import annotations
import logging
import re
import time
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import DESCENDING
from pymongo.errors import PyMongoError
from redis.asyncio import Redis

from cartsync.domain.errors import CatalogError
from cartsync.domain.models.product import CatalogProduct
from cartsync.utils.cache import cache_get, cache_key, cache_set

logger = logging.getLogger(__name__)

SEARCH_FIELDS = ("title", "product_type", "tags", "vendor")
PROJECTION = {"_id": 0}


class ProductRepo:
    """
    Catalog backed by the 'products' collection (prices stored in minor units).
    Keyword searches and the popularity list are cached in Redis when a client is given.
    """

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        redis: Optional[Redis] = None,
        *,
        search_ttl: int = 600,
        popular_ttl: int = 300,
        collection_name: str = "products",
    ):
        self.db = db
        self.col = db[collection_name]
        self.redis = redis
        self.search_ttl = search_ttl
        self.popular_ttl = popular_ttl

    @staticmethod
    def _to_products(docs: List[Dict[str, Any]]) -> List[CatalogProduct]:
        return [CatalogProduct.from_doc(d) for d in docs if d.get("product_id")]

    async def search_by_keyword(self, keyword: str, limit: int) -> List[CatalogProduct]:
        kw = (keyword or "").strip()
        if not kw:
            return []
        key = cache_key("search", {"kw": kw.lower(), "limit": limit})
        if (cached := await cache_get(self.redis, key)) is not None:
            logger.debug("catalog search cache hit kw=%s", kw)
            return self._to_products(cached)

        rx = {"$regex": re.escape(kw), "$options": "i"}
        query = {"available": {"$ne": False}, "$or": [{f: rx} for f in SEARCH_FIELDS]}
        t0 = time.perf_counter()
        try:
            docs = await self.col.find(query, PROJECTION).limit(int(limit)).to_list(length=None)
        except PyMongoError as e:
            raise CatalogError(f"keyword search failed kw={kw}: {e}") from e
        logger.info("catalog search kw=%s items=%s db_time=%.3fs", kw, len(docs), time.perf_counter() - t0)
        await cache_set(self.redis, key, docs, ex=self.search_ttl)
        return self._to_products(docs)

    async def get_by_id(self, product_id: str) -> Optional[CatalogProduct]:
        try:
            doc = await self.col.find_one({"product_id": str(product_id)}, PROJECTION)
        except PyMongoError as e:
            raise CatalogError(f"product lookup failed product_id={product_id}: {e}") from e
        return CatalogProduct.from_doc(doc) if doc else None

    async def _best_seller_ids(self, limit: int) -> List[str]:
        pipeline: List[Dict[str, Any]] = [
            {"$match": {"event_type": "purchase"}},
            {"$addFields": {"q": {"$ifNull": ["$metadata.quantity", 1]}}},
            {"$group": {"_id": "$product_id", "units": {"$sum": "$q"}, "orders": {"$sum": 1}}},
            {"$sort": {"units": -1, "orders": -1}},
            {"$limit": limit},
        ]
        docs = await self.db["events"].aggregate(pipeline).to_list(length=None)
        return [str(d["_id"]) for d in docs if d.get("_id")]

    async def get_popular(self, limit: int) -> List[CatalogProduct]:
        """Best sellers by purchased units; newest available products when there are no sales yet."""
        key = cache_key("popular", {"limit": limit})
        if (cached := await cache_get(self.redis, key)) is not None:
            return self._to_products(cached)

        t0 = time.perf_counter()
        try:
            ids = await self._best_seller_ids(limit * 2)
            docs: List[Dict[str, Any]] = []
            if ids:
                found = await self.col.find(
                    {"product_id": {"$in": ids}, "available": {"$ne": False}}, PROJECTION
                ).to_list(length=None)
                by_id = {d["product_id"]: d for d in found}
                docs = [by_id[i] for i in ids if i in by_id][:limit]
            if not docs:
                docs = await self.col.find({"available": {"$ne": False}}, PROJECTION) \
                    .sort("_id", DESCENDING).limit(int(limit)).to_list(length=None)
                logger.info("catalog popular fallback to newest items=%s", len(docs))
        except PyMongoError as e:
            raise CatalogError(f"popular lookup failed: {e}") from e

        logger.info("catalog popular items=%s db_time=%.3fs", len(docs), time.perf_counter() - t0)
        await cache_set(self.redis, key, docs, ex=self.popular_ttl)
        return self._to_products(docs)

    async def get_by_price_range(self, min_cents: int, max_cents: int, limit: int) -> List[CatalogProduct]:
        query = {"available": {"$ne": False}, "price": {"$gte": int(min_cents), "$lte": int(max_cents)}}
        try:
            docs = await self.col.find(query, PROJECTION).limit(int(limit)).to_list(length=None)
        except PyMongoError as e:
            raise CatalogError(f"price range lookup failed: {e}") from e
        logger.debug("catalog price range min=%s max=%s items=%s", min_cents, max_cents, len(docs))
        return self._to_products(docs)
