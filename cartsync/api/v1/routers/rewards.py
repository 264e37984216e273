# cartsync/api/v1/routers/rewards.py
from fastapi import APIRouter, Depends
import logging

from cartsync.api.deps import get_engine
from cartsync.api.errors import unwrap
from cartsync.api.v1.schemas.cart import RewardStateOut
from cartsync.domain.services.engine import CartEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/rewards", tags=["rewards"])


@router.get("")
async def reward_state(engine: CartEngine = Depends(get_engine)):
    state = await engine.get_reward_state()
    return RewardStateOut.from_state(state, engine.config.currency_decimals).model_dump()


@router.post("/{threshold_id}/claim")
async def claim_gift(threshold_id: str, engine: CartEngine = Depends(get_engine)):
    logger.info("Request: claim_gift threshold_id=%s", threshold_id)
    state = unwrap(await engine.claim_gift(threshold_id))
    return RewardStateOut.from_state(state, engine.config.currency_decimals).model_dump()


@router.post("/{threshold_id}/decline")
async def decline_gift(threshold_id: str, engine: CartEngine = Depends(get_engine)):
    logger.info("Request: decline_gift threshold_id=%s", threshold_id)
    state = unwrap(await engine.decline_gift(threshold_id))
    return RewardStateOut.from_state(state, engine.config.currency_decimals).model_dump()
