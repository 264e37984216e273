# cartsync/api/v1/routers/recommendations.py
from fastapi import APIRouter, Depends
import logging
import time

from cartsync.api.deps import get_engine
from cartsync.api.v1.schemas.cart import RecommendationOut, RecommendationsOut
from cartsync.domain.services.engine import EVENT_VIEW, CartEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/recommendations", tags=["recommendations"])


def _out(engine: CartEngine) -> dict:
    decimals = engine.config.currency_decimals
    items = [RecommendationOut.from_candidate(c, decimals) for c in engine.get_visible_recommendations()]
    return RecommendationsOut(items=items, count=len(items)).model_dump()


@router.get("")
async def visible_recommendations(engine: CartEngine = Depends(get_engine)):
    """Current visible slice of the session's master list; records one impression per product."""
    start_time = time.perf_counter()
    res = _out(engine)
    for item in res["items"]:
        engine.track(EVENT_VIEW, product_id=item["product_id"], reason=item["reason"])
    logger.info("Response: recommendations count=%s elapsed_time=%.4fs", res["count"], time.perf_counter() - start_time)
    return res


@router.post("/refresh")
async def refresh_recommendations(engine: CartEngine = Depends(get_engine)):
    """Reload merchant settings and rebuild the master list."""
    await engine.refresh_settings()
    return _out(engine)
