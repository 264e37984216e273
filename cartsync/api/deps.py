# cartsync/api/deps.py
from __future__ import annotations
import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

import httpx
from fastapi import Depends, Header, HTTPException

from cartsync.core.config import get_settings
from cartsync.db.mongo import get_db
from cartsync.db.redis import get_redis
from cartsync.domain.repositories.analytics_repo import MongoAnalyticsSink
from cartsync.domain.repositories.claim_state_repo import ClaimStateRepo
from cartsync.domain.repositories.http_cart_service import HttpCartService
from cartsync.domain.repositories.pair_repo import PurchasePairRepo
from cartsync.domain.repositories.product_repo import ProductRepo
from cartsync.domain.repositories.settings_repo import MongoSettingsProvider
from cartsync.domain.services.engine import CartEngine

logger = logging.getLogger(__name__)

# (session_id, cart_token, shop) -> started engine plus the resources to release with it
EngineFactory = Callable[[str, Optional[str], str], Awaitable[Tuple[CartEngine, Optional[httpx.AsyncClient]]]]


async def build_engine(session_id: str, cart_token: Optional[str], shop: str) -> Tuple[CartEngine, httpx.AsyncClient]:
    settings = get_settings()
    db = get_db()
    redis = get_redis()
    client = httpx.AsyncClient(
        base_url=settings.STOREFRONT_URL,
        cookies={"cart": cart_token} if cart_token else None,
        timeout=settings.storefront_timeout_s,
    )
    engine = CartEngine(
        cart_service=HttpCartService(client, timeout=settings.storefront_timeout_s),
        catalog=ProductRepo(db, redis, search_ttl=settings.search_cache_ttl, popular_ttl=settings.popular_cache_ttl),
        settings_provider=MongoSettingsProvider(db, shop),
        analytics=MongoAnalyticsSink(db, session_id=session_id, shop=shop),
        claim_store=ClaimStateRepo(redis, session_id, ttl=settings.session_ttl),
        pair_source=PurchasePairRepo(db, redis),
        debounce_s=settings.debounce_s,
        prefetch_ttl_s=settings.prefetch_ttl_s,
    )
    return engine, client


class EngineRegistry:
    """
    One started CartEngine per storefront session, evicted after `ttl` seconds idle.

    The registry lock only guards the dicts; engines are built and started
    outside it so one slow session never holds up another. Concurrent first
    requests for the same session wait on a single build.
    """

    def __init__(self, factory: EngineFactory = build_engine, ttl: int = 12 * 3600):
        self.factory = factory
        self.ttl = ttl
        self._engines: Dict[str, Tuple[CartEngine, Optional[httpx.AsyncClient], float]] = {}
        self._building: Dict[str, asyncio.Future] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._engines)

    @staticmethod
    async def _release(entry: Tuple[CartEngine, Optional[httpx.AsyncClient], float]) -> None:
        engine, client, _ = entry
        await engine.close()
        if client is not None:
            await client.aclose()

    def _pop_idle(self) -> List[Tuple[CartEngine, Optional[httpx.AsyncClient], float]]:
        now = time.monotonic()
        idle = [s for s, (_, _, used) in self._engines.items() if now - used > self.ttl]
        for sid in idle:
            logger.info("engine evicted session=%s", sid)
        return [self._engines.pop(sid) for sid in idle]

    async def get(self, session_id: str, cart_token: Optional[str], shop: str) -> CartEngine:
        async with self._lock:
            idle = self._pop_idle()
            entry = self._engines.get(session_id)
            if entry is not None:
                engine, client, _ = entry
                self._engines[session_id] = (engine, client, time.monotonic())
            building = self._building.get(session_id)
            owner = entry is None and building is None
            if owner:
                building = asyncio.get_running_loop().create_future()
                self._building[session_id] = building
        for e in idle:
            await self._release(e)
        if entry is not None:
            return entry[0]
        if not owner:
            # None when the owning build failed; try again as a fresh request
            engine = await asyncio.shield(building)
            return engine if engine is not None else await self.get(session_id, cart_token, shop)

        engine, client = None, None
        try:
            t0 = time.perf_counter()
            engine, client = await self.factory(session_id, cart_token, shop)
            try:
                await engine.start()
            except BaseException:
                if client is not None:
                    await client.aclose()
                raise
            logger.info("engine created session=%s shop=%s time=%.3fs", session_id, shop, time.perf_counter() - t0)
            async with self._lock:
                self._engines[session_id] = (engine, client, time.monotonic())
            return engine
        finally:
            async with self._lock:
                self._building.pop(session_id, None)
            if not building.done():
                building.set_result(engine if session_id in self._engines else None)

    async def drop(self, session_id: str) -> None:
        async with self._lock:
            entry = self._engines.pop(session_id, None)
        if entry is not None:
            await self._release(entry)

    async def close(self) -> None:
        async with self._lock:
            entries = list(self._engines.values())
            self._engines.clear()
        for entry in entries:
            await self._release(entry)


_registry: EngineRegistry | None = None


def get_registry() -> EngineRegistry:
    global _registry
    if _registry is None:
        _registry = EngineRegistry(ttl=get_settings().session_ttl)
    return _registry


async def get_engine(
    x_session_id: str | None = Header(default=None),
    x_cart_token: str | None = Header(default=None),
    x_shop: str | None = Header(default=None),
    registry: EngineRegistry = Depends(get_registry),
) -> CartEngine:
    """Engine for the calling storefront session (X-Session-Id header)."""
    if not x_session_id:
        raise HTTPException(status_code=400, detail="X-Session-Id header is required")
    return await registry.get(x_session_id, x_cart_token, x_shop or get_settings().DEFAULT_SHOP)
