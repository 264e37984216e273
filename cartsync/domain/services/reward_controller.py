# cartsync/domain/services/reward_controller.py
import logging
from typing import Callable, Dict, List, Optional, Set

from cartsync.domain.errors import RewardNotAvailableError
from cartsync.domain.models.cart import CartSnapshot
from cartsync.domain.models.rewards import (
    GiftState,
    RewardState,
    RewardThreshold,
    ThresholdEvaluation,
    ThresholdStatus,
)
from cartsync.domain.models.settings import EngineConfig
from cartsync.domain.ports import CatalogService, ClaimStore
from cartsync.domain.services.cart_store import CartStateStore
from cartsync.domain.services.thresholds import evaluate_snapshot
from cartsync.utils.result import Err, Ok, Result

logger = logging.getLogger(__name__)

Prompter = Callable[[RewardThreshold], None]

_GIFT_STATE = {
    ThresholdStatus.LOCKED: GiftState.LOCKED,
    ThresholdStatus.READY_TO_CLAIM: GiftState.READY_TO_CLAIM,
    ThresholdStatus.ACHIEVED: GiftState.CLAIMED,
}


class RewardController:
    """
    Drives each gift threshold through Locked -> ReadyToClaim -> Claimed.

    Runs after every cart change. Gift lines whose threshold fell back to
    Locked are removed; a ready gift is prompted once per ready episode.
    """

    def __init__(
        self,
        store: CartStateStore,
        claim_store: ClaimStore,
        prompter: Optional[Prompter] = None,
        catalog: Optional[CatalogService] = None,
    ):
        self.store = store
        self.claim_store = claim_store
        self.prompter = prompter
        self.catalog = catalog
        self._prompted: Set[str] = set()
        self._state: Optional[RewardState] = None

    @property
    def state(self) -> Optional[RewardState]:
        return self._state

    async def on_cart_changed(self, snapshot: CartSnapshot, config: EngineConfig) -> RewardState:
        evaluation = evaluate_snapshot(snapshot, config.thresholds)

        # Locked gifts must not keep their lines
        stale: List[str] = []
        for t in config.gift_thresholds:
            if evaluation.statuses.get(t.id) != ThresholdStatus.LOCKED:
                continue
            stale.extend(line.key for line in snapshot.gift_lines_for(t.id, t.product_id))
            self._prompted.discard(t.id)
            await self.claim_store.clear(t.id)
        if stale:
            logger.info("reward gift lines removed, threshold fell back to locked lines=%s", len(stale))
            result = await self.store.remove_lines(stale)
            if isinstance(result, Ok):
                snapshot = result.value
                evaluation = evaluate_snapshot(snapshot, config.thresholds)
            else:
                logger.warning("reward gift line removal failed err=%s", result.error)

        for t in config.gift_thresholds:
            status = evaluation.statuses.get(t.id)
            if status == ThresholdStatus.ACHIEVED:
                self._prompted.discard(t.id)
                await self.claim_store.clear(t.id)
            elif status == ThresholdStatus.READY_TO_CLAIM:
                if t.id in self._prompted or await self.claim_store.is_declined(t.id):
                    continue
                self._prompted.add(t.id)
                logger.info("reward gift ready threshold=%s total=%s", t.id, evaluation.total_cents)
                if self.prompter is not None:
                    try:
                        self.prompter(t)
                    except Exception:
                        logger.exception("reward prompter failed threshold=%s", t.id)

        self._state = await self._build_state(evaluation, config)
        return self._state

    async def _build_state(self, evaluation: ThresholdEvaluation, config: EngineConfig) -> RewardState:
        gifts: Dict[str, GiftState] = {}
        declined: List[str] = []
        awaiting: List[str] = []
        for t in config.gift_thresholds:
            gift_state = _GIFT_STATE[evaluation.statuses.get(t.id, ThresholdStatus.LOCKED)]
            gifts[t.id] = gift_state
            if gift_state != GiftState.READY_TO_CLAIM:
                continue
            if await self.claim_store.is_declined(t.id):
                declined.append(t.id)
            elif t.id in self._prompted:
                awaiting.append(t.id)
        return RewardState(evaluation=evaluation, gifts=gifts, declined=declined, awaiting_answer=awaiting)

    async def _resolve_variant(self, threshold: RewardThreshold) -> RewardThreshold:
        if threshold.variant_id or self.catalog is None:
            return threshold
        try:
            product = await self.catalog.get_by_id(threshold.product_id)
        except Exception as e:
            logger.warning("reward gift lookup failed product_id=%s err=%s", threshold.product_id, e)
            return threshold
        if product is None or not product.available_variants:
            return threshold
        return threshold.model_copy(update={"variant_id": product.available_variants[0].variant_id})

    async def claim_gift(self, threshold_id: str, config: EngineConfig) -> Result[RewardState]:
        threshold = config.threshold_by_id(threshold_id)
        if threshold is None or not threshold.is_gift:
            return Err(RewardNotAvailableError(f"unknown gift threshold {threshold_id}"))

        evaluation = evaluate_snapshot(self.store.snapshot, config.thresholds)
        status = evaluation.statuses.get(threshold.id)
        if status == ThresholdStatus.ACHIEVED:
            # already claimed
            return Ok(await self.on_cart_changed(self.store.snapshot, config))
        if status != ThresholdStatus.READY_TO_CLAIM:
            return Err(RewardNotAvailableError(
                f"gift threshold {threshold_id} not met, {evaluation.remaining_cents} cents remaining"
            ))

        await self.claim_store.clear(threshold.id)
        result = await self.store.add_gift_line(await self._resolve_variant(threshold))
        if isinstance(result, Err):
            return result
        logger.info("reward gift claimed threshold=%s", threshold.id)
        return Ok(await self.on_cart_changed(result.value, config))

    async def decline_gift(self, threshold_id: str, config: EngineConfig) -> Result[RewardState]:
        threshold = config.threshold_by_id(threshold_id)
        if threshold is None or not threshold.is_gift:
            return Err(RewardNotAvailableError(f"unknown gift threshold {threshold_id}"))
        await self.claim_store.set_declined(threshold.id)
        self._prompted.discard(threshold.id)
        logger.info("reward gift declined threshold=%s", threshold.id)
        return Ok(await self.on_cart_changed(self.store.snapshot, config))
