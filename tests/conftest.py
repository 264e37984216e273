"""
Shared fixtures: an in-memory storefront cart, catalog and pair source that
behave like the real adapters, plus engine builders.
"""
import asyncio
from datetime import date
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest

from cartsync.domain.errors import CartServiceError, CatalogError, RemoteRejectionError
from cartsync.domain.models.cart import AddLine, CartSnapshot
from cartsync.domain.models.product import CatalogProduct, ProductVariant
from cartsync.domain.repositories.claim_state_repo import ClaimStateRepo
from cartsync.domain.repositories.settings_repo import StaticSettingsProvider
from cartsync.domain.services.engine import CartEngine


# ============================================================================
# Fakes
# ============================================================================

class FakeCartService:
    """
    Storefront cart in memory. Adding a variant with identical properties to
    an existing line bumps that line, like the real cart does; anything else
    creates a new line.
    """

    def __init__(self, variants: Dict[str, Tuple[str, str, str, int]]):
        # variant_id -> (product_id, title, product_type, unit price in cents)
        self.variants = variants
        self.lines: List[Dict[str, Any]] = []
        self.calls: List[Tuple] = []
        self.rejected_variants: set = set()
        self.fail_reads = 0
        self.fail_adds = 0
        self.change_gate: Optional[asyncio.Event] = None
        self._seq = 0

    # -- helpers for tests ---------------------------------------------------

    def seed(self, variant_id: str, quantity: int, properties: Optional[Dict[str, str]] = None) -> str:
        """Put a line straight into the cart (no merging), returns its key."""
        self._seq += 1
        key = f"{variant_id}:{self._seq}"
        self.lines.append({"key": key, "variant_id": variant_id, "quantity": quantity, "properties": dict(properties or {})})
        return key

    @property
    def writes(self) -> List[Tuple]:
        return [c for c in self.calls if c[0] in ("change", "add")]

    def raw(self) -> Dict[str, Any]:
        items = []
        for line in self.lines:
            pid, title, ptype, price = self.variants[line["variant_id"]]
            items.append({
                "key": line["key"],
                "id": line["variant_id"],
                "variant_id": line["variant_id"],
                "product_id": pid,
                "product_title": title,
                "product_type": ptype,
                "quantity": line["quantity"],
                "price": price,
                "properties": dict(line["properties"]),
            })
        total = sum(i["price"] * i["quantity"] for i in items)
        return {"token": "tok-1", "items": items, "total_price": total, "currency": "USD"}

    # -- CartService ---------------------------------------------------------

    async def get_cart(self) -> CartSnapshot:
        self.calls.append(("get",))
        if self.fail_reads:
            self.fail_reads -= 1
            raise CartServiceError("cart read failed")
        return CartSnapshot.from_remote(self.raw())

    async def change_line_quantity(self, line_ref: str, quantity: int) -> CartSnapshot:
        self.calls.append(("change", line_ref, quantity))
        if self.change_gate is not None:
            await self.change_gate.wait()
        line = next((l for l in self.lines if l["key"] == line_ref), None)
        if line is None:
            raise RemoteRejectionError(f"no line {line_ref}", status_code=422)
        if quantity <= 0:
            self.lines.remove(line)
        else:
            line["quantity"] = quantity
        return CartSnapshot.from_remote(self.raw())

    async def add_lines(self, lines: Sequence[AddLine]) -> CartSnapshot:
        self.calls.append(("add", [l.to_payload() for l in lines]))
        if self.fail_adds:
            self.fail_adds -= 1
            raise CartServiceError("add failed")
        for l in lines:
            if l.variant_id in self.rejected_variants:
                raise RemoteRejectionError("Sold out", status_code=422, variant_id=l.variant_id)
            if l.variant_id not in self.variants:
                raise RemoteRejectionError("Cannot find variant", status_code=404, variant_id=l.variant_id)
            same = next(
                (x for x in self.lines if x["variant_id"] == l.variant_id and x["properties"] == dict(l.properties)),
                None,
            )
            if same is not None:
                same["quantity"] += l.quantity
            else:
                self.seed(l.variant_id, l.quantity, l.properties)
        return CartSnapshot.from_remote(self.raw())


class FakeCatalog:
    def __init__(self, products: Sequence[CatalogProduct] = (), popular: Sequence[str] = ()):
        self.products: Dict[str, CatalogProduct] = {p.product_id: p for p in products}
        self.popular_ids: List[str] = list(popular)
        self.calls: List[Tuple] = []
        self.failing: set = set()

    def _check(self, name: str) -> None:
        if name in self.failing:
            raise CatalogError(f"{name} unavailable")

    async def search_by_keyword(self, keyword: str, limit: int) -> List[CatalogProduct]:
        self.calls.append(("search", keyword))
        self._check("search_by_keyword")
        kw = keyword.lower()
        hits = [
            p for p in self.products.values()
            if kw in p.title.lower() or kw in p.product_type.lower() or any(kw in t.lower() for t in p.tags)
        ]
        return hits[:limit]

    async def get_by_id(self, product_id: str) -> Optional[CatalogProduct]:
        self.calls.append(("get_by_id", product_id))
        self._check("get_by_id")
        return self.products.get(product_id)

    async def get_popular(self, limit: int) -> List[CatalogProduct]:
        self.calls.append(("popular", limit))
        self._check("get_popular")
        return [self.products[i] for i in self.popular_ids if i in self.products][:limit]

    async def get_by_price_range(self, min_cents: int, max_cents: int, limit: int) -> List[CatalogProduct]:
        self.calls.append(("price_range", min_cents, max_cents))
        self._check("get_by_price_range")
        return [p for p in self.products.values() if min_cents <= p.price <= max_cents][:limit]


class FakePairSource:
    def __init__(self, pairs: Optional[Dict[str, List[Tuple[str, float]]]] = None):
        self.pairs = pairs or {}

    async def get_pairs(self, product_id: str, limit: int) -> List[Tuple[str, float]]:
        return self.pairs.get(product_id, [])[:limit]


class RecordingSink:
    def __init__(self, fail: bool = False):
        self.events: List[Tuple[str, Dict[str, Any]]] = []
        self.fail = fail

    async def emit(self, event_type: str, payload: Dict[str, Any]) -> None:
        if self.fail:
            raise ConnectionError("analytics down")
        self.events.append((event_type, payload))


# ============================================================================
# Fixtures: Test Data Factories
# ============================================================================

def _make_product(product_id: str, title: str, price: int, *, product_type: str = "", tags=(), available: bool = True, variant_id: Optional[str] = None) -> CatalogProduct:
    return CatalogProduct(
        product_id=product_id,
        title=title,
        handle=title.lower().replace(" ", "-"),
        product_type=product_type,
        tags=list(tags),
        price=price,
        variants=[ProductVariant(variant_id=variant_id or f"v-{product_id}", price=price, available=available)],
        available=available,
    )


@pytest.fixture
def make_product():
    return _make_product


@pytest.fixture
def variants() -> Dict[str, Tuple[str, str, str, int]]:
    return {
        "v-shoe": ("p-shoe", "Trail Running Shoes", "Shoes", 8000),
        "v-sock": ("p-sock", "Merino Socks", "Socks", 1200),
        "v-mug": ("p-mug", "Stoneware Mug", "Kitchen", 1500),
        "v-belt": ("p-belt", "Leather Belt", "Accessories", 4000),
        "v-tote": ("p-tote", "Canvas Tote", "Accessories", 2500),
        "v-lamp": ("p-lamp", "Desk Lamp", "Home", 9000),
    }


@pytest.fixture
def cart_service(variants) -> FakeCartService:
    return FakeCartService(variants)


@pytest.fixture
def catalog(make_product) -> FakeCatalog:
    products = [
        make_product("p-sock", "Merino Socks", 1200, product_type="Socks", variant_id="v-sock"),
        make_product("p-insole", "Gel Insoles", 1800, product_type="Shoe care", tags=["insoles"]),
        make_product("p-mug", "Stoneware Mug", 1500, product_type="Kitchen", tags=["mug"], variant_id="v-mug"),
        make_product("p-belt", "Leather Belt", 4000, product_type="Accessories", variant_id="v-belt"),
        make_product("p-tote", "Canvas Tote", 2500, product_type="Accessories", tags=["gift"], variant_id="v-tote"),
        make_product("p-lamp", "Desk Lamp", 9000, product_type="Home", variant_id="v-lamp"),
        make_product("p-card", "Greeting Card", 300, product_type="Stationery", tags=["gift"]),
        make_product("p-soldout", "Wool Socks", 1400, product_type="Socks", available=False),
    ]
    return FakeCatalog(products, popular=["p-lamp", "p-belt", "p-mug", "p-card", "p-tote"])


@pytest.fixture
def pair_source() -> FakePairSource:
    return FakePairSource()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def claim_store() -> ClaimStateRepo:
    return ClaimStateRepo(None, "session-1")


@pytest.fixture
def raw_settings() -> Dict[str, Any]:
    return {
        "maxRecommendations": 3,
        "enableFreeShipping": True,
        "freeShippingThreshold": 100,
        "enableGiftGating": True,
        "giftThresholds": '[{"threshold": 150, "productId": "p-tote", "productTitle": "Canvas Tote"}]',
    }


@pytest.fixture
def engine_factory(cart_service, catalog, pair_source, sink, claim_store):
    """Build a not-yet-started CartEngine around the shared fakes."""

    def _build(raw: Optional[Dict[str, Any]] = None, *, prompter=None, debounce_s: float = 0.0, today: date = date(2024, 3, 15)) -> CartEngine:
        return CartEngine(
            cart_service=cart_service,
            catalog=catalog,
            settings_provider=StaticSettingsProvider(raw or {}),
            analytics=sink,
            claim_store=claim_store,
            pair_source=pair_source,
            prompter=prompter,
            debounce_s=debounce_s,
            today=lambda: today,
        )
    return _build
