from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from cartsync.domain.services.money import normalize_to_cents


class RecoReason(str, Enum):
    MANUAL_SELECTION = "manual-selection"
    AI_COMPLEMENT = "ai-complement"
    CATEGORY = "category-match"
    FREQUENTLY_BOUGHT = "frequently-bought"
    PRICE_INTELLIGENCE = "price-intelligence"
    SEASONAL = "seasonal"
    POPULARITY_FALLBACK = "popularity-fallback"


class ProductVariant(BaseModel):
    variant_id: str
    title: str = ""
    price: int = 0  # minor units
    available: bool = True

    model_config = {"frozen": True}  # immuable = safe


class CatalogProduct(BaseModel):
    """A product as the catalog returns it, before any scoring."""
    product_id: str
    title: str = ""
    handle: str = ""
    product_type: str = ""
    vendor: str = ""
    tags: List[str] = []
    price: int = 0  # minor units
    image_url: Optional[str] = None
    variants: List[ProductVariant] = []
    available: bool = True

    model_config = {"frozen": True}  # immuable = safe

    @property
    def available_variants(self) -> List[ProductVariant]:
        return [v for v in self.variants if v.available]

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "CatalogProduct":
        """Build from a `products` document; prices may be stored in any shape."""
        variants = []
        for v in doc.get("variants") or []:
            vid = v.get("variant_id") or v.get("id")
            if not vid:
                continue
            variants.append(ProductVariant(
                variant_id=str(vid),
                title=str(v.get("title") or ""),
                price=normalize_to_cents(v.get("price", doc.get("price", 0))),
                available=bool(v.get("available", True)),
            ))
        return cls(
            product_id=str(doc.get("product_id")),
            title=str(doc.get("title") or doc.get("name") or ""),
            handle=str(doc.get("handle") or ""),
            product_type=str(doc.get("product_type") or ""),
            vendor=str(doc.get("vendor") or doc.get("brand") or ""),
            tags=[str(t) for t in doc.get("tags") or []],
            price=normalize_to_cents(doc.get("price", 0)),
            image_url=doc.get("image_url"),
            variants=variants,
            available=bool(doc.get("available", True)),
        )


class RecommendationCandidate(BaseModel):
    product_id: str
    variant_id: str
    title: str = ""
    handle: str = ""
    price: int = 0  # minor units
    image: Optional[str] = None
    variants: List[ProductVariant] = []
    score: float = Field(ge=0)
    reason: RecoReason

    model_config = {"frozen": True}  # re-scoring means rebuilding the master list

    @classmethod
    def from_product(cls, product: CatalogProduct, *, score: float, reason: RecoReason) -> Optional["RecommendationCandidate"]:
        """None when the product has nothing purchasable (no available variant)."""
        if not product.product_id or not product.available:
            return None
        available = product.available_variants
        if not available:
            return None
        first = available[0]
        return cls(
            product_id=product.product_id,
            variant_id=first.variant_id,
            title=product.title,
            handle=product.handle,
            price=first.price or product.price,
            image=product.image_url,
            variants=available,
            score=score,
            reason=reason,
        )
