# cartsync/api/v1/routers/events.py
from fastapi import APIRouter, Depends

from cartsync.api.deps import get_engine
from cartsync.api.v1.schemas.cart import EventIn
from cartsync.domain.services.engine import CartEngine

router = APIRouter(prefix="/events", tags=["events"])


@router.post("", status_code=202)
async def track_event(body: EventIn, engine: CartEngine = Depends(get_engine)):
    """Storefront-side impressions and clicks; accepted even if the sink is down."""
    engine.track(body.event_type, {**body.metadata, "product_id": body.product_id})
    return {"accepted": True}
