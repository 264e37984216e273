# cartsync/api/v1/routers/cart.py
from fastapi import APIRouter, Depends
import logging

from cartsync.api.deps import get_engine
from cartsync.api.errors import unwrap
from cartsync.api.v1.schemas.cart import AddToCartIn, CartOut, ChangeQuantityIn
from cartsync.domain.services.engine import CartEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cart", tags=["cart"])


def _out(engine: CartEngine, snapshot) -> dict:
    return CartOut.from_snapshot(snapshot, engine.config.currency_decimals).model_dump()


@router.get("")
async def get_cart(engine: CartEngine = Depends(get_engine)):
    return _out(engine, engine.get_cart_snapshot())


@router.post("/refresh")
async def refresh_cart(engine: CartEngine = Depends(get_engine)):
    return _out(engine, unwrap(await engine.refresh_cart()))


@router.post("/items")
async def add_to_cart(body: AddToCartIn, engine: CartEngine = Depends(get_engine)):
    logger.info(
        "Request: add_to_cart variant_id=%s qty=%s provenance=%s product_id=%s",
        body.variant_id, body.quantity, body.provenance.value, body.product_id,
    )
    result = await engine.add_to_cart(
        body.variant_id,
        body.quantity,
        provenance=body.provenance,
        product_id=body.product_id,
        properties=body.properties,
    )
    return _out(engine, unwrap(result))


@router.post("/lines/{line_ref}")
async def change_quantity(line_ref: str, body: ChangeQuantityIn, engine: CartEngine = Depends(get_engine)):
    logger.info("Request: change_quantity line=%s qty=%s", line_ref, body.quantity)
    return _out(engine, unwrap(await engine.change_quantity(line_ref, body.quantity)))


@router.post("/consolidate")
async def consolidate(engine: CartEngine = Depends(get_engine)):
    return _out(engine, unwrap(await engine.consolidate_duplicates()))
