"""
Collaborators the engine consumes. Concrete adapters live in
cartsync.domain.repositories; tests pass in-memory fakes.
"""
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from cartsync.domain.models.cart import AddLine, CartSnapshot
from cartsync.domain.models.product import CatalogProduct
from cartsync.domain.models.settings import EngineConfig


class CartService(Protocol):
    async def get_cart(self) -> CartSnapshot: ...

    async def change_line_quantity(self, line_ref: str, quantity: int) -> CartSnapshot: ...

    async def add_lines(self, lines: Sequence[AddLine]) -> CartSnapshot: ...


class CatalogService(Protocol):
    async def search_by_keyword(self, keyword: str, limit: int) -> List[CatalogProduct]: ...

    async def get_by_id(self, product_id: str) -> Optional[CatalogProduct]: ...

    async def get_popular(self, limit: int) -> List[CatalogProduct]: ...

    async def get_by_price_range(self, min_cents: int, max_cents: int, limit: int) -> List[CatalogProduct]: ...


class PairSource(Protocol):
    async def get_pairs(self, product_id: str, limit: int) -> List[Tuple[str, float]]:
        """(paired product id, confidence in [0, 1]) ordered by confidence."""
        ...


class SettingsProvider(Protocol):
    async def get_config(self) -> EngineConfig: ...


class AnalyticsSink(Protocol):
    async def emit(self, event_type: str, payload: Dict[str, Any]) -> None: ...


class ClaimStore(Protocol):
    async def is_declined(self, threshold_id: str) -> bool: ...

    async def set_declined(self, threshold_id: str) -> None: ...

    async def clear(self, threshold_id: str) -> None: ...
