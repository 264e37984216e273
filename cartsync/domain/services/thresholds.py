from typing import AbstractSet, Dict, Iterable, Optional, Sequence, Set

from cartsync.domain.models.cart import CartSnapshot
from cartsync.domain.models.rewards import RewardThreshold, ThresholdEvaluation, ThresholdStatus


def qualifying_total(snapshot: CartSnapshot) -> int:
    """Cart total without gift lines, so a claimed gift cannot hold its own threshold open."""
    gifts = sum(line.line_price for line in snapshot.items if line.is_gift)
    return max(0, snapshot.total_price - gifts)


def claimed_gift_product_ids(snapshot: CartSnapshot) -> Set[str]:
    return {line.product_id for line in snapshot.items if line.is_gift and line.product_id}


def evaluate(
    total_cents: int,
    thresholds: Sequence[RewardThreshold],
    claimed_gift_product_ids: AbstractSet[str],
) -> ThresholdEvaluation:
    """
    Pure reward progress for a cart total.

    Thresholds must already be sorted ascending (done once at config load).
    A gift threshold is achieved only when met AND its product is claimed;
    met but unclaimed is ready-to-claim. `next` is the first threshold not
    achieved, and `remaining_cents` what is still missing to meet it.
    """
    total = max(0, int(total_cents))
    unlocked: Set[str] = set()
    ready: Set[str] = set()
    statuses: Dict[str, ThresholdStatus] = {}
    next_threshold: Optional[RewardThreshold] = None

    for t in thresholds:
        met = total >= t.amount_cents
        if not met:
            status = ThresholdStatus.LOCKED
        elif t.is_gift and t.product_id not in claimed_gift_product_ids:
            status = ThresholdStatus.READY_TO_CLAIM
            ready.add(t.id)
        else:
            status = ThresholdStatus.ACHIEVED
            unlocked.add(t.id)
        statuses[t.id] = status
        if next_threshold is None and status != ThresholdStatus.ACHIEVED:
            next_threshold = t

    if next_threshold is None:
        remaining = 0
        progress = 1.0
    else:
        remaining = max(0, next_threshold.amount_cents - total)
        progress = min(1.0, total / next_threshold.amount_cents)

    return ThresholdEvaluation(
        total_cents=total,
        unlocked=frozenset(unlocked),
        ready_to_claim=frozenset(ready),
        statuses=statuses,
        next=next_threshold,
        remaining_cents=remaining,
        progress=progress,
    )


def evaluate_snapshot(snapshot: CartSnapshot, thresholds: Iterable[RewardThreshold]) -> ThresholdEvaluation:
    return evaluate(qualifying_total(snapshot), list(thresholds), claimed_gift_product_ids(snapshot))
