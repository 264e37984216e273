# api/v1/schemas/cart.py
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from cartsync.domain.models.cart import CartSnapshot, LineItem, ProvenanceTag
from cartsync.domain.models.product import RecommendationCandidate
from cartsync.domain.models.rewards import RewardState
from cartsync.domain.services.money import format_from_cents


class LineItemOut(BaseModel):
    key: str
    variant_id: str
    product_id: str
    title: str
    quantity: int
    price: int
    line_price: int
    is_gift: bool
    provenance: Dict[str, int]
    properties: Dict[str, str]

    @classmethod
    def from_line(cls, line: LineItem) -> "LineItemOut":
        prov = line.provenance
        return cls(
            key=line.key,
            variant_id=line.variant_id,
            product_id=line.product_id,
            title=line.title,
            quantity=line.quantity,
            price=line.price,
            line_price=line.line_price,
            is_gift=line.is_gift,
            provenance={"manual": prov.manual, "recommended": prov.recommended, "bundle": prov.bundle},
            properties=line.extra_properties(),
        )


class CartOut(BaseModel):
    token: str
    currency: str
    total_price: int
    total_formatted: str
    item_count: int
    items: List[LineItemOut]

    @classmethod
    def from_snapshot(cls, snapshot: CartSnapshot, currency_decimals: int = 2) -> "CartOut":
        return cls(
            token=snapshot.token,
            currency=snapshot.currency,
            total_price=snapshot.total_price,
            total_formatted=format_from_cents(snapshot.total_price, currency_decimals),
            item_count=snapshot.item_count,
            items=[LineItemOut.from_line(i) for i in snapshot.items],
        )


class AddToCartIn(BaseModel):
    variant_id: str
    quantity: int = Field(1, ge=1, le=999)
    provenance: ProvenanceTag = ProvenanceTag.MANUAL
    product_id: Optional[str] = None
    properties: Dict[str, str] = Field(default_factory=dict)


class ChangeQuantityIn(BaseModel):
    quantity: int


class RecommendationOut(BaseModel):
    product_id: str
    variant_id: str
    title: str
    handle: str
    price: int
    price_formatted: str
    image: Optional[str] = None
    score: float
    reason: str

    @classmethod
    def from_candidate(cls, c: RecommendationCandidate, currency_decimals: int = 2) -> "RecommendationOut":
        return cls(
            product_id=c.product_id,
            variant_id=c.variant_id,
            title=c.title,
            handle=c.handle,
            price=c.price,
            price_formatted=format_from_cents(c.price, currency_decimals),
            image=c.image,
            score=c.score,
            reason=c.reason.value,
        )


class RecommendationsOut(BaseModel):
    items: List[RecommendationOut]
    count: int


class RewardStateOut(BaseModel):
    total_cents: int
    statuses: Dict[str, str]
    next_threshold_id: Optional[str] = None
    remaining_cents: int
    remaining_formatted: str
    progress: float
    gifts: Dict[str, str]
    declined: List[str]
    awaiting_answer: List[str]

    @classmethod
    def from_state(cls, state: RewardState, currency_decimals: int = 2) -> "RewardStateOut":
        ev = state.evaluation
        return cls(
            total_cents=ev.total_cents,
            statuses={k: v.value for k, v in ev.statuses.items()},
            next_threshold_id=ev.next.id if ev.next else None,
            remaining_cents=ev.remaining_cents,
            remaining_formatted=format_from_cents(ev.remaining_cents, currency_decimals),
            progress=round(ev.progress, 4),
            gifts={k: v.value for k, v in state.gifts.items()},
            declined=list(state.declined),
            awaiting_answer=list(state.awaiting_answer),
        )


class EventIn(BaseModel):
    event_type: str = Field(pattern=r"^(view|click)$")
    product_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
