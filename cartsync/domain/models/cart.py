from __future__ import annotations
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
import logging

from pydantic import BaseModel, Field

from cartsync.domain.services.money import normalize_to_cents

logger = logging.getLogger(__name__)

# Line item property keys, as written to the storefront cart
PROP_MANUAL_QTY = "_source_manual_qty"
PROP_REC_QTY = "_source_rec_qty"
PROP_BUNDLE_QTY = "_source_bundle_qty"
PROP_IS_GIFT = "_is_gift"
PROP_GIFT_THRESHOLD_ID = "_gift_threshold_id"
PROP_GIFT_TITLE = "_gift_title"

PROVENANCE_KEYS = (PROP_MANUAL_QTY, PROP_REC_QTY, PROP_BUNDLE_QTY)


class ProvenanceTag(str, Enum):
    MANUAL = "manual"
    RECOMMENDED = "recommended"
    BUNDLE = "bundle"


def _qty(raw: Any) -> int:
    try:
        return max(0, int(str(raw).strip()))
    except (TypeError, ValueError):
        return 0


class Provenance(BaseModel):
    """Per-source quantity counters for one cart line."""
    manual: int = Field(default=0, ge=0)
    recommended: int = Field(default=0, ge=0)
    bundle: int = Field(default=0, ge=0)

    model_config = {"frozen": True}

    @property
    def total(self) -> int:
        return self.manual + self.recommended + self.bundle

    def add(self, tag: ProvenanceTag, qty: int) -> "Provenance":
        field = {
            ProvenanceTag.MANUAL: "manual",
            ProvenanceTag.RECOMMENDED: "recommended",
            ProvenanceTag.BUNDLE: "bundle",
        }[ProvenanceTag(tag)]
        return self.model_copy(update={field: getattr(self, field) + max(0, qty)})

    def merge(self, other: "Provenance") -> "Provenance":
        return Provenance(
            manual=self.manual + other.manual,
            recommended=self.recommended + other.recommended,
            bundle=self.bundle + other.bundle,
        )

    def reconcile(self, quantity: int) -> "Provenance":
        """
        Fit the counters to a line quantity changed behind our back.
        Surplus is manual; a deficit is taken from manual, then recommended, then bundle.
        """
        quantity = max(0, quantity)
        diff = quantity - self.total
        if diff == 0:
            return self
        if diff > 0:
            return self.model_copy(update={"manual": self.manual + diff})
        excess = -diff
        counts = {"manual": self.manual, "recommended": self.recommended, "bundle": self.bundle}
        for field in ("manual", "recommended", "bundle"):
            take = min(counts[field], excess)
            counts[field] -= take
            excess -= take
        return Provenance(**counts)

    def to_properties(self) -> Dict[str, str]:
        # zero buckets are omitted, like the storefront widget writes them
        props: Dict[str, str] = {}
        if self.manual:
            props[PROP_MANUAL_QTY] = str(self.manual)
        if self.recommended:
            props[PROP_REC_QTY] = str(self.recommended)
        if self.bundle:
            props[PROP_BUNDLE_QTY] = str(self.bundle)
        return props

    @classmethod
    def of(cls, tag: ProvenanceTag, qty: int) -> "Provenance":
        return cls().add(tag, qty)


class LineItem(BaseModel):
    key: str
    variant_id: str
    product_id: str = ""
    title: str = ""
    product_type: str = ""
    handle: str = ""
    quantity: int = Field(default=0, ge=0)
    price: int = 0  # unit price, minor units
    properties: Dict[str, str] = Field(default_factory=dict)

    model_config = {"frozen": True}

    @property
    def is_gift(self) -> bool:
        return str(self.properties.get(PROP_IS_GIFT, "")).lower() == "true"

    @property
    def has_provenance(self) -> bool:
        return any(k in self.properties for k in PROVENANCE_KEYS)

    @property
    def provenance(self) -> Provenance:
        """Tracked counters fitted to the quantity; untracked lines are fully manual."""
        if not self.has_provenance:
            return Provenance(manual=self.quantity)
        tracked = Provenance(
            manual=_qty(self.properties.get(PROP_MANUAL_QTY)),
            recommended=_qty(self.properties.get(PROP_REC_QTY)),
            bundle=_qty(self.properties.get(PROP_BUNDLE_QTY)),
        )
        if tracked.total == 0:
            return Provenance(manual=self.quantity)
        return tracked.reconcile(self.quantity)

    @property
    def line_price(self) -> int:
        return self.price * self.quantity

    @property
    def search_text(self) -> str:
        return f"{self.title} {self.product_type}".strip().lower()

    def extra_properties(self) -> Dict[str, str]:
        """Properties other than the provenance counters."""
        return {k: v for k, v in self.properties.items() if k not in PROVENANCE_KEYS}

    @classmethod
    def from_remote(cls, raw: Dict[str, Any]) -> Optional["LineItem"]:
        variant_id = raw.get("variant_id") or raw.get("id")
        if not variant_id:
            return None
        props = raw.get("properties") or {}
        if not isinstance(props, dict):
            props = {}
        return cls(
            key=str(raw.get("key") or variant_id),
            variant_id=str(variant_id),
            product_id=str(raw.get("product_id") or ""),
            title=str(raw.get("product_title") or raw.get("title") or ""),
            product_type=str(raw.get("product_type") or ""),
            handle=str(raw.get("handle") or ""),
            quantity=_qty(raw.get("quantity")),
            price=normalize_to_cents(raw.get("price", 0)),
            # drop null properties; the cart API echoes them back as None
            properties={str(k): str(v) for k, v in props.items() if v is not None},
        )


class CartSnapshot(BaseModel):
    """The authoritative cart at one point in time. Replaced, never patched."""
    token: str = ""
    items: Tuple[LineItem, ...] = ()
    total_price: int = 0
    currency: str = "USD"
    attributes: Dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}

    @property
    def item_count(self) -> int:
        return sum(i.quantity for i in self.items)

    @property
    def is_empty(self) -> bool:
        return not self.items

    def product_ids(self) -> frozenset:
        return frozenset(i.product_id for i in self.items if i.product_id)

    def lines_for_variant(self, variant_id: str, *, gift: Optional[bool] = False) -> List[LineItem]:
        """Lines for a variant; gift=None matches both gift and non-gift lines."""
        return [
            i for i in self.items
            if i.variant_id == str(variant_id) and (gift is None or i.is_gift == gift)
        ]

    def gift_lines(self, product_id: Optional[str] = None) -> List[LineItem]:
        return [i for i in self.items if i.is_gift and (product_id is None or i.product_id == str(product_id))]

    def gift_lines_for(self, threshold_id: str, product_id: Optional[str]) -> List[LineItem]:
        """Gift lines added for one threshold; lines without a threshold marker match on product."""
        out = []
        for i in self.gift_lines():
            marker = i.properties.get(PROP_GIFT_THRESHOLD_ID)
            if marker:
                if marker == threshold_id:
                    out.append(i)
            elif product_id is not None and i.product_id == str(product_id):
                out.append(i)
        return out

    @classmethod
    def empty(cls, currency: str = "USD") -> "CartSnapshot":
        return cls(currency=currency)

    @classmethod
    def from_remote(cls, raw: Dict[str, Any]) -> "CartSnapshot":
        items: List[LineItem] = []
        for entry in raw.get("items") or []:
            if not isinstance(entry, dict):
                continue
            line = LineItem.from_remote(entry)
            if line is None:
                logger.warning("cart line without variant id dropped key=%s", entry.get("key"))
                continue
            items.append(line)
        total = raw.get("total_price")
        return cls(
            token=str(raw.get("token") or ""),
            items=tuple(items),
            total_price=normalize_to_cents(total) if total is not None else sum(i.line_price for i in items),
            currency=str(raw.get("currency") or "USD"),
            attributes=dict(raw.get("attributes") or {}),
        )


class AddItemRequest(BaseModel):
    variant_id: str
    quantity: int = 1
    provenance: ProvenanceTag = ProvenanceTag.MANUAL
    properties: Dict[str, str] = Field(default_factory=dict)


class AddLine(BaseModel):
    """One entry of a remote add call."""
    variant_id: str
    quantity: int
    properties: Dict[str, str] = Field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"id": self.variant_id, "quantity": self.quantity}
        if self.properties:
            payload["properties"] = dict(self.properties)
        return payload
