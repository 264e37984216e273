from typing import AbstractSet, List, Sequence

from cartsync.domain.models.cart import CartSnapshot
from cartsync.domain.models.product import RecommendationCandidate
from cartsync.domain.services.constants import PRICE_GAP_HI, PRICE_GAP_LO


def derive_visible(
    master: Sequence[RecommendationCandidate],
    cart: CartSnapshot,
    max_count: int,
    excluded_product_ids: AbstractSet[str] = frozenset(),
) -> List[RecommendationCandidate]:
    """
    Walk the locked master list in order and keep what is not in the cart.

    Nothing is re-scored here: a product leaving the cart reappears at its
    master-list position, and one entering it simply drops out.
    """
    if max_count <= 0:
        return []
    in_cart = cart.product_ids()
    visible: List[RecommendationCandidate] = []
    for candidate in master:
        if candidate.product_id in in_cart or candidate.product_id in excluded_product_ids:
            continue
        visible.append(candidate)
        if len(visible) >= max_count:
            break
    return visible


def rerank_for_gap(
    visible: Sequence[RecommendationCandidate],
    gap_cents: int,
    low: float = PRICE_GAP_LO,
    high: float = PRICE_GAP_HI,
) -> List[RecommendationCandidate]:
    """
    Put candidates priced near the remaining-to-next-reward gap first.

    In-band candidates (low*gap <= price <= high*gap) are ordered by distance
    to the gap, ties by their visible position; the rest keep their order.
    Returns a new list, the master order is untouched.
    """
    if gap_cents <= 0:
        return list(visible)
    lo, hi = gap_cents * low, gap_cents * high
    in_band = [(abs(c.price - gap_cents), i, c) for i, c in enumerate(visible) if lo <= c.price <= hi]
    in_band.sort(key=lambda t: (t[0], t[1]))
    front = [c for _, _, c in in_band]
    front_ids = {id(c) for c in front}
    return front + [c for c in visible if id(c) not in front_ids]
