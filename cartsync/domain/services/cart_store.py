# cartsync/domain/services/cart_store.py
from __future__ import annotations
import logging
import time
from collections import OrderedDict
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from cartsync.domain.errors import (
    CartBusyError,
    CartInconsistencyError,
    CartServiceError,
    CartSyncError,
    RemoteRejectionError,
)
from cartsync.domain.models.cart import (
    PROP_GIFT_THRESHOLD_ID,
    PROP_GIFT_TITLE,
    PROP_IS_GIFT,
    AddItemRequest,
    AddLine,
    CartSnapshot,
    LineItem,
    Provenance,
)
from cartsync.domain.models.rewards import RewardThreshold
from cartsync.domain.ports import CartService
from cartsync.utils.locks import SingleFlight
from cartsync.utils.result import Err, Ok, Result

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[CartSnapshot], None]


def merge_lines(lines: Sequence[LineItem], extra: Optional[Provenance] = None, extra_props: Optional[Dict[str, str]] = None) -> Tuple[Provenance, Dict[str, str]]:
    """
    Provenance and properties of one consolidated line.
    Untracked quantities count as manual; non-provenance properties are
    unioned with later lines (and extra_props) winning.
    """
    prov = Provenance()
    props: Dict[str, str] = {}
    for line in lines:
        prov = prov.merge(line.provenance)
        props.update(line.extra_properties())
    if extra is not None:
        prov = prov.merge(extra)
    if extra_props:
        props.update({k: v for k, v in extra_props.items() if v is not None})
    return prov, props


class CartStateStore:
    """
    Single owner of the active CartSnapshot.

    Every successful read replaces the snapshot wholesale and notifies
    subscribers; failed reads leave the previous snapshot in place.
    """

    def __init__(self, service: CartService, *, prefetch_ttl_s: float = 5.0, clock: Callable[[], float] = time.monotonic):
        self.service = service
        self.prefetch_ttl_s = prefetch_ttl_s
        self._clock = clock
        self._snapshot: Optional[CartSnapshot] = None
        self._prefetched: Optional[Tuple[CartSnapshot, float]] = None
        self._change_flight = SingleFlight("change_quantity")
        self._listeners: List[SnapshotListener] = []

    # ---- reads ----------------------------------------------------------

    @property
    def snapshot(self) -> CartSnapshot:
        return self._snapshot if self._snapshot is not None else CartSnapshot.empty()

    @property
    def has_snapshot(self) -> bool:
        return self._snapshot is not None

    @property
    def change_in_flight(self) -> bool:
        return self._change_flight.busy

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)
        return _unsubscribe

    def offer_prefetch(self, snapshot: CartSnapshot) -> None:
        """Hand over a cart read made elsewhere (e.g. on page load); consumed at most once."""
        self._prefetched = (snapshot, self._clock())

    def _take_prefetch(self) -> Optional[CartSnapshot]:
        if self._prefetched is None:
            return None
        snapshot, at = self._prefetched
        self._prefetched = None
        if self._clock() - at > self.prefetch_ttl_s:
            logger.debug("cart prefetch expired age=%.2fs", self._clock() - at)
            return None
        return snapshot

    def _apply(self, snapshot: CartSnapshot) -> CartSnapshot:
        self._snapshot = snapshot
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("cart snapshot listener failed")
        return snapshot

    async def refresh(self, force_fresh: bool = False) -> Result[CartSnapshot]:
        if not force_fresh:
            prefetched = self._take_prefetch()
            if prefetched is not None:
                logger.debug("cart refresh served from prefetch items=%s", len(prefetched.items))
                return Ok(self._apply(prefetched))
        else:
            self._prefetched = None

        t0 = time.perf_counter()
        try:
            snapshot = await self.service.get_cart()
        except CartSyncError as e:
            logger.warning("cart refresh failed, keeping last snapshot err=%s", e)
            return Err(e)
        logger.info(
            "cart refresh ok items=%s total=%s time=%.3fs",
            len(snapshot.items), snapshot.total_price, time.perf_counter() - t0,
        )
        return Ok(self._apply(snapshot))

    async def boot(self) -> CartSnapshot:
        """Initial load; an empty cart is the last resort when nothing was ever read."""
        result = await self.refresh()
        if isinstance(result, Ok):
            return result.value
        if self._snapshot is None:
            logger.warning("cart boot failed, starting from an empty cart err=%s", result.error)
            return self._apply(CartSnapshot.empty())
        return self._snapshot

    # ---- writes ---------------------------------------------------------

    async def change_quantity(self, line_ref: str, new_quantity: int) -> Result[CartSnapshot]:
        if not self._change_flight.acquire():
            logger.info("cart change dropped, another change in flight line=%s", line_ref)
            return Err(CartBusyError("a quantity change is already in progress"))
        try:
            qty = max(0, int(new_quantity))
            try:
                await self.service.change_line_quantity(line_ref, qty)
            except CartSyncError as e:
                logger.warning("cart change failed line=%s qty=%s err=%s", line_ref, qty, e)
                return Err(e)
            logger.info("cart change ok line=%s qty=%s", line_ref, qty)
            return await self.refresh(force_fresh=True)
        finally:
            self._change_flight.release()

    async def _remove(self, lines: Iterable[LineItem]) -> None:
        for line in lines:
            await self.service.change_line_quantity(line.key, 0)

    async def _replace(self, variant_id: str, old: Sequence[LineItem], line: AddLine) -> None:
        """Sequential remove-then-add; a failure after removal leaves the variant under-counted."""
        await self._remove(old)
        try:
            await self.service.add_lines([line])
        except CartSyncError as e:
            if old:
                logger.error(
                    "cart consolidation interrupted after removal variant=%s qty=%s err=%s",
                    variant_id, line.quantity, e,
                )
                raise CartInconsistencyError(
                    f"variant {variant_id} removed but not re-added: {e}", variant_id=variant_id,
                ) from e
            raise

    async def add_items(self, items: Sequence[AddItemRequest]) -> Result[CartSnapshot]:
        """
        Add quantities while keeping one line per variant.

        Existing lines for a variant are merged with the new quantity under its
        provenance bucket, removed, and re-added as a single line.
        """
        t0 = time.perf_counter()
        added = 0
        for item in items:
            variant_id = str(item.variant_id or "").strip()
            if not variant_id or item.quantity <= 0:
                logger.warning("cart add skipped invalid item variant=%r qty=%s", item.variant_id, item.quantity)
                continue
            try:
                current = await self.service.get_cart()
                existing = current.lines_for_variant(variant_id, gift=False)
                incoming = Provenance.of(item.provenance, item.quantity)
                if existing:
                    prov, props = merge_lines(existing, incoming, item.properties)
                    line = AddLine(variant_id=variant_id, quantity=prov.total, properties={**props, **prov.to_properties()})
                    logger.info(
                        "cart add merge variant=%s old_lines=%s qty=%s manual=%s rec=%s bundle=%s",
                        variant_id, len(existing), prov.total, prov.manual, prov.recommended, prov.bundle,
                    )
                    await self._replace(variant_id, existing, line)
                else:
                    props = {k: v for k, v in item.properties.items() if v is not None}
                    line = AddLine(variant_id=variant_id, quantity=item.quantity, properties={**props, **incoming.to_properties()})
                    await self.service.add_lines([line])
                added += 1
            except RemoteRejectionError as e:
                if e.variant_id is None:
                    e.variant_id = variant_id
                logger.warning("cart add rejected variant=%s err=%s", variant_id, e)
                await self.refresh(force_fresh=True)
                return Err(e)
            except CartSyncError as e:
                logger.warning("cart add failed variant=%s err=%s", variant_id, e)
                await self.refresh(force_fresh=True)
                return Err(e)

        result = await self.refresh(force_fresh=True)
        logger.info("cart add done items=%s time=%.3fs", added, time.perf_counter() - t0)
        return result

    async def consolidate_duplicates(self) -> Result[CartSnapshot]:
        """Merge lines sharing a variant (gift and non-gift kept apart). Idempotent."""
        snapshot = self.snapshot
        groups: "OrderedDict[Tuple[str, bool], List[LineItem]]" = OrderedDict()
        for line in snapshot.items:
            groups.setdefault((line.variant_id, line.is_gift), []).append(line)
        dupes = {k: v for k, v in groups.items() if len(v) > 1}
        if not dupes:
            return Ok(snapshot)

        for (variant_id, _gift), lines in dupes.items():
            prov, props = merge_lines(lines)
            line = AddLine(variant_id=variant_id, quantity=prov.total, properties={**props, **prov.to_properties()})
            logger.info("cart consolidate variant=%s lines=%s qty=%s", variant_id, len(lines), prov.total)
            try:
                await self._replace(variant_id, lines, line)
            except CartSyncError as e:
                await self.refresh(force_fresh=True)
                return Err(e)
        return await self.refresh(force_fresh=True)

    async def remove_lines(self, line_refs: Sequence[str]) -> Result[CartSnapshot]:
        for ref in line_refs:
            try:
                await self.service.change_line_quantity(ref, 0)
            except CartSyncError as e:
                logger.warning("cart remove failed line=%s err=%s", ref, e)
                await self.refresh(force_fresh=True)
                return Err(e)
        return await self.refresh(force_fresh=True)

    async def add_gift_line(self, threshold: RewardThreshold) -> Result[CartSnapshot]:
        variant_id = threshold.variant_id
        if not variant_id:
            return Err(CartServiceError(f"gift threshold {threshold.id} has no variant to add"))
        line = AddLine(
            variant_id=variant_id,
            quantity=1,
            properties={
                PROP_IS_GIFT: "true",
                PROP_GIFT_THRESHOLD_ID: threshold.id,
                PROP_GIFT_TITLE: threshold.title or "Free gift",
            },
        )
        try:
            await self.service.add_lines([line])
        except CartSyncError as e:
            logger.warning("cart gift add failed threshold=%s err=%s", threshold.id, e)
            return Err(e)
        return await self.refresh(force_fresh=True)
