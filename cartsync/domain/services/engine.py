# cartsync/domain/services/engine.py
import asyncio
import logging
import time
from datetime import date
from typing import Any, Callable, Dict, List, Mapping, Optional, Set

from cartsync.domain.errors import RemoteRejectionError
from cartsync.domain.models.cart import AddItemRequest, CartSnapshot, ProvenanceTag
from cartsync.domain.models.product import RecommendationCandidate
from cartsync.domain.models.rewards import RewardState
from cartsync.domain.models.settings import EngineConfig
from cartsync.domain.ports import AnalyticsSink, CartService, CatalogService, ClaimStore, PairSource, SettingsProvider
from cartsync.domain.services.cart_store import CartStateStore
from cartsync.domain.services.recommendation_svc import RecommendationEngine
from cartsync.domain.services.reward_controller import Prompter, RewardController
from cartsync.domain.services.thresholds import evaluate_snapshot
from cartsync.domain.services.visibility import derive_visible, rerank_for_gap
from cartsync.utils.debounce import Debouncer
from cartsync.utils.result import Err, Ok, Result

logger = logging.getLogger(__name__)

VisibleListener = Callable[[List[RecommendationCandidate]], None]

EVENT_VIEW = "view"
EVENT_ADD_TO_CART = "add_to_cart"
EVENT_GIFT_CLAIMED = "gift_claimed"
EVENT_GIFT_DECLINED = "gift_declined"


class CartEngine:
    """
    One engine per storefront session.

    The master list is built at start() and on refresh_settings() only; every
    cart change just re-derives the visible slice from it.
    """

    def __init__(
        self,
        cart_service: CartService,
        catalog: CatalogService,
        settings_provider: SettingsProvider,
        analytics: Optional[AnalyticsSink],
        claim_store: ClaimStore,
        pair_source: Optional[PairSource] = None,
        prompter: Optional[Prompter] = None,
        *,
        debounce_s: float = 0.05,
        prefetch_ttl_s: float = 5.0,
        today: Callable[[], date] = date.today,
    ):
        self.settings_provider = settings_provider
        self.analytics = analytics
        self.store = CartStateStore(cart_service, prefetch_ttl_s=prefetch_ttl_s)
        self.recommender = RecommendationEngine(catalog, pair_source, today=today)
        self.rewards = RewardController(self.store, claim_store, prompter, catalog)
        self.config = EngineConfig()
        self._master: List[RecommendationCandidate] = []
        self._visible: List[RecommendationCandidate] = []
        self._rejected: Set[str] = set()
        self._listeners: List[VisibleListener] = []
        self._tasks: Set[asyncio.Task] = set()
        self._debouncer = Debouncer(debounce_s, self._publish_visible)
        self._unsubscribe_store = self.store.subscribe(lambda _snapshot: self._debouncer.trigger())
        self._started = False

    # ---- lifecycle ------------------------------------------------------

    async def _load_config(self) -> None:
        try:
            self.config = await self.settings_provider.get_config()
        except Exception as e:
            logger.warning("engine settings load failed, keeping current config err=%s", e)

    async def _rebuild_master(self) -> None:
        if not self.config.enable_recommendations:
            self._master = []
            return
        self._master = await self.recommender.build_master_list(
            self.store.snapshot,
            self.config.rule_set,
            min_count=self.config.min_master_size,
            excluded_product_ids=frozenset(self._rejected),
        )

    async def start(self) -> None:
        t0 = time.perf_counter()
        await self._load_config()
        snapshot = await self.store.boot()
        await self._rebuild_master()
        await self.rewards.on_cart_changed(snapshot, self.config)
        self._debouncer.cancel()
        self._publish_visible()
        self._started = True
        logger.info(
            "engine started cart_lines=%s master=%s thresholds=%s time=%.3fs",
            len(snapshot.items), len(self._master), len(self.config.thresholds), time.perf_counter() - t0,
        )

    async def refresh_settings(self) -> None:
        await self._load_config()
        await self._rebuild_master()
        await self.rewards.on_cart_changed(self.store.snapshot, self.config)
        self._publish_visible()

    async def close(self) -> None:
        self._debouncer.cancel()
        self._unsubscribe_store()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    @property
    def started(self) -> bool:
        return self._started

    # ---- reads ----------------------------------------------------------

    def _compute_visible(self) -> List[RecommendationCandidate]:
        config = self.config
        if not config.enable_recommendations:
            return []
        snapshot = self.store.snapshot
        evaluation = None
        if config.thresholds and (config.hide_recommendations_after_threshold or config.gap_reranking):
            evaluation = evaluate_snapshot(snapshot, config.thresholds)
        if evaluation is not None and config.hide_recommendations_after_threshold and evaluation.all_achieved:
            return []
        visible = derive_visible(self._master, snapshot, config.max_recommendations, self._rejected)
        if evaluation is not None and config.gap_reranking and evaluation.next is not None:
            visible = rerank_for_gap(visible, evaluation.remaining_cents)
        return visible

    def _publish_visible(self) -> None:
        self._visible = self._compute_visible()
        for listener in list(self._listeners):
            try:
                listener(list(self._visible))
            except Exception:
                logger.exception("visible recommendations listener failed")

    def get_visible_recommendations(self) -> List[RecommendationCandidate]:
        return self._compute_visible()

    def get_master_list(self) -> List[RecommendationCandidate]:
        return list(self._master)

    def get_cart_snapshot(self) -> CartSnapshot:
        return self.store.snapshot

    async def get_reward_state(self) -> RewardState:
        if self.rewards.state is not None:
            return self.rewards.state
        return await self.rewards.on_cart_changed(self.store.snapshot, self.config)

    def subscribe(self, listener: VisibleListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)
        return _unsubscribe

    # ---- writes ---------------------------------------------------------

    async def _after_mutation(self, result: Result[CartSnapshot]) -> None:
        # failed writes still refresh the snapshot, so rewards follow it either way
        snapshot = result.value if isinstance(result, Ok) else self.store.snapshot
        await self.rewards.on_cart_changed(snapshot, self.config)

    async def add_to_cart(
        self,
        variant_id: str,
        quantity: int = 1,
        provenance: ProvenanceTag = ProvenanceTag.MANUAL,
        product_id: Optional[str] = None,
        properties: Optional[Dict[str, str]] = None,
    ) -> Result[CartSnapshot]:
        request = AddItemRequest(
            variant_id=str(variant_id or ""),
            quantity=quantity,
            provenance=provenance,
            properties=properties or {},
        )
        result = await self.store.add_items([request])
        if isinstance(result, Err):
            if isinstance(result.error, RemoteRejectionError) and provenance == ProvenanceTag.RECOMMENDED and product_id:
                self._rejected.add(str(product_id))
                logger.info("reco product excluded after remote rejection product_id=%s", product_id)
                self._debouncer.trigger()
            await self._after_mutation(result)
            return result

        await self._after_mutation(result)
        if provenance != ProvenanceTag.MANUAL and product_id:
            self.track(EVENT_ADD_TO_CART, product_id=str(product_id), variant_id=str(variant_id), quantity=quantity, source=provenance.value)
        return result

    async def change_quantity(self, line_ref: str, quantity: int) -> Result[CartSnapshot]:
        result = await self.store.change_quantity(line_ref, quantity)
        await self._after_mutation(result)
        return result

    async def consolidate_duplicates(self) -> Result[CartSnapshot]:
        result = await self.store.consolidate_duplicates()
        await self._after_mutation(result)
        return result

    async def refresh_cart(self) -> Result[CartSnapshot]:
        result = await self.store.refresh(force_fresh=True)
        await self._after_mutation(result)
        return result

    async def claim_gift(self, threshold_id: str) -> Result[RewardState]:
        result = await self.rewards.claim_gift(threshold_id, self.config)
        if isinstance(result, Ok):
            self.track(EVENT_GIFT_CLAIMED, threshold_id=threshold_id)
        return result

    async def decline_gift(self, threshold_id: str) -> Result[RewardState]:
        result = await self.rewards.decline_gift(threshold_id, self.config)
        if isinstance(result, Ok):
            self.track(EVENT_GIFT_DECLINED, threshold_id=threshold_id)
        return result

    # ---- analytics ------------------------------------------------------

    def track(self, event_type: str, payload: Optional[Mapping[str, Any]] = None, **fields: Any) -> None:
        """
        Fire-and-forget; analytics never blocks nor fails a cart operation.
        `payload` carries client-supplied data, `fields` override it.
        """
        if self.analytics is None:
            return
        payload = {**(payload or {}), **fields}
        task = asyncio.create_task(self._emit(event_type, payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _emit(self, event_type: str, payload: Dict[str, Any]) -> None:
        try:
            await self.analytics.emit(event_type, payload)
        except Exception as e:
            logger.debug("analytics emit failed event=%s err=%s", event_type, e)
