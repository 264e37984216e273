# cartsync/domain/services/recommendation_svc.py
import asyncio
import logging
import time
from datetime import date
from typing import AbstractSet, Callable, Dict, List, Optional, Sequence, Tuple

from cartsync.domain.models.cart import CartSnapshot
from cartsync.domain.models.product import CatalogProduct, RecoReason, RecommendationCandidate
from cartsync.domain.models.settings import RecommendationRuleSet
from cartsync.domain.ports import CatalogService, PairSource
from cartsync.domain.services.constants import (
    MAX_CATEGORY_TYPES,
    MAX_COMPLEMENT_KEYWORDS,
    MIN_MASTER_SIZE,
    MIN_PAIR_CONFIDENCE,
    PRICE_BAND_TIERS,
    SCORE_CATEGORY,
    SCORE_MANUAL,
    SCORE_POPULAR,
    SCORE_PRICE_BAND,
    SCORE_SEASONAL,
    SEASONAL_KEYWORDS,
    STRATEGY_FETCH_LIMIT,
)

logger = logging.getLogger(__name__)


def _score_all(products: Sequence[CatalogProduct], score: float, reason: RecoReason) -> List[RecommendationCandidate]:
    out = []
    for p in products:
        cand = RecommendationCandidate.from_product(p, score=score, reason=reason)
        if cand is None:
            logger.debug("reco product dropped (no purchasable variant) product_id=%s", p.product_id)
            continue
        out.append(cand)
    return out


def dedupe_first_seen(candidates: Sequence[RecommendationCandidate]) -> List[RecommendationCandidate]:
    """Keep the first instance per product id; input order is strategy priority."""
    seen = set()
    out = []
    for c in candidates:
        if c.product_id in seen:
            continue
        seen.add(c.product_id)
        out.append(c)
    return out


def price_band(cart: CartSnapshot) -> Tuple[int, int]:
    """Target price window from cart value tiers and the average line price."""
    if not cart.items:
        return 0, 0
    avg = sum(i.price for i in cart.items) / len(cart.items)
    for floor, lo, hi in PRICE_BAND_TIERS:
        if cart.total_price > floor:
            return int(avg * lo), int(avg * hi)
    _, lo, hi = PRICE_BAND_TIERS[-1]
    return int(avg * lo), int(avg * hi)


def complement_keywords(cart: CartSnapshot, rule_set: RecommendationRuleSet) -> List[Tuple[str, float, RecoReason]]:
    """
    (keyword, confidence, reason) for every rule matching a cart line, best
    confidence per keyword, highest first, capped at MAX_COMPLEMENT_KEYWORDS.
    """
    best: Dict[str, Tuple[float, RecoReason]] = {}
    order: List[str] = []
    rules = rule_set.active_rules()
    overrides = set(id(r) for r in rule_set.overrides)
    for line in cart.items:
        if line.is_gift:
            continue
        text = line.search_text
        if not text:
            continue
        for rule in rules:
            if not rule.matches(text):
                continue
            reason = RecoReason.MANUAL_SELECTION if id(rule) in overrides else RecoReason.AI_COMPLEMENT
            for kw in rule.keywords:
                if kw not in best:
                    order.append(kw)
                    best[kw] = (rule.confidence, reason)
                elif rule.confidence > best[kw][0]:
                    best[kw] = (rule.confidence, reason)
    ranked = sorted(order, key=lambda k: -best[k][0])  # stable: ties keep discovery order
    return [(k, best[k][0], best[k][1]) for k in ranked[:MAX_COMPLEMENT_KEYWORDS]]


def cart_product_types(cart: CartSnapshot, limit: int = MAX_CATEGORY_TYPES) -> List[str]:
    """Distinct product types of the non-gift lines, in cart order."""
    types: List[str] = []
    for line in cart.items:
        ptype = line.product_type.strip()
        if line.is_gift or not ptype or ptype.lower() in (t.lower() for t in types):
            continue
        types.append(ptype)
    return types[:limit]


class RecommendationEngine:
    """
    Builds the scored, deduplicated master candidate list.

    The list is meant to be built once per session (and after a settings
    refresh); cart changes only go through visibility.derive_visible.
    """

    def __init__(
        self,
        catalog: CatalogService,
        pair_source: Optional[PairSource] = None,
        *,
        fetch_limit: int = STRATEGY_FETCH_LIMIT,
        today: Callable[[], date] = date.today,
    ):
        self.catalog = catalog
        self.pair_source = pair_source
        self.fetch_limit = fetch_limit
        self._today = today

    async def build_master_list(
        self,
        cart: CartSnapshot,
        rule_set: RecommendationRuleSet,
        *,
        min_count: int = MIN_MASTER_SIZE,
        excluded_product_ids: AbstractSet[str] = frozenset(),
    ) -> List[RecommendationCandidate]:
        t0 = time.perf_counter()

        # 1) Manual list is exclusive
        if rule_set.manual_product_ids:
            master = await self._manual(rule_set.manual_product_ids, excluded_product_ids)
            logger.info("reco master built strategy=manual items=%s time=%.3fs", len(master), time.perf_counter() - t0)
            return master

        # 2) Empty cart: bestsellers only
        if cart.is_empty:
            master = await self._popular(max(min_count, self.fetch_limit), excluded_product_ids)
            logger.info("reco master built strategy=popular items=%s time=%.3fs", len(master), time.perf_counter() - t0)
            return master

        # 3) Heuristics, concatenated in priority order
        results = await asyncio.gather(
            self._complements(cart, rule_set),
            self._category(cart),
            self._frequently_bought(cart),
            self._price_band(cart),
            self._seasonal(),
            return_exceptions=True,
        )
        names = ("complement", "category", "frequently_bought", "price_band", "seasonal")
        combined: List[RecommendationCandidate] = []
        for name, res in zip(names, results):
            if isinstance(res, BaseException):
                logger.warning("reco strategy failed name=%s err=%s", name, res)
                continue
            logger.debug("reco strategy name=%s items=%s", name, len(res))
            combined.extend(res)

        master = dedupe_first_seen([c for c in combined if c.product_id not in excluded_product_ids])

        # 4) Top up with popularity fallback
        if len(master) < min_count:
            popular = await self._popular(min_count + len(master), excluded_product_ids)
            master = dedupe_first_seen(master + popular)
            logger.info("reco topped up with popular items=%s", len(master))

        master.sort(key=lambda c: -c.score)  # stable: first-seen order kept on ties
        logger.info(
            "reco master built strategy=heuristics cart_lines=%s items=%s time=%.3fs",
            len(cart.items), len(master), time.perf_counter() - t0,
        )
        return master

    # ---- strategies -----------------------------------------------------

    async def _manual(self, product_ids: Sequence[str], excluded: AbstractSet[str]) -> List[RecommendationCandidate]:
        out: List[RecommendationCandidate] = []
        for pid in product_ids:
            if pid in excluded:
                continue
            try:
                product = await self.catalog.get_by_id(pid)
            except Exception as e:
                logger.warning("reco manual lookup failed product_id=%s err=%s", pid, e)
                continue
            if product is None:
                logger.info("reco manual product not found product_id=%s", pid)
                continue
            out.extend(_score_all([product], SCORE_MANUAL, RecoReason.MANUAL_SELECTION))
        return dedupe_first_seen(out)

    async def _popular(self, limit: int, excluded: AbstractSet[str]) -> List[RecommendationCandidate]:
        try:
            products = await self.catalog.get_popular(limit)
        except Exception as e:
            logger.warning("reco popular fallback failed err=%s", e)
            return []
        cands = _score_all(products, SCORE_POPULAR, RecoReason.POPULARITY_FALLBACK)
        return [c for c in cands if c.product_id not in excluded]

    async def _complements(self, cart: CartSnapshot, rule_set: RecommendationRuleSet) -> List[RecommendationCandidate]:
        out: List[RecommendationCandidate] = []
        for keyword, confidence, reason in complement_keywords(cart, rule_set):
            try:
                products = await self.catalog.search_by_keyword(keyword, self.fetch_limit)
            except Exception as e:
                logger.warning("reco complement search failed keyword=%s err=%s", keyword, e)
                continue
            out.extend(_score_all(products, confidence, reason))
        return out

    async def _category(self, cart: CartSnapshot) -> List[RecommendationCandidate]:
        out: List[RecommendationCandidate] = []
        for ptype in cart_product_types(cart):
            try:
                products = await self.catalog.search_by_keyword(ptype, self.fetch_limit)
            except Exception as e:
                logger.warning("reco category search failed type=%s err=%s", ptype, e)
                continue
            out.extend(_score_all(products, SCORE_CATEGORY, RecoReason.CATEGORY))
        return out

    async def _frequently_bought(self, cart: CartSnapshot) -> List[RecommendationCandidate]:
        if self.pair_source is None:
            return []
        out: List[RecommendationCandidate] = []
        for anchor in sorted(cart.product_ids()):
            pairs = await self.pair_source.get_pairs(anchor, self.fetch_limit)
            for pid, confidence in pairs:
                if confidence < MIN_PAIR_CONFIDENCE:
                    continue
                product = await self.catalog.get_by_id(pid)
                if product is None:
                    continue
                out.extend(_score_all([product], min(1.0, float(confidence)), RecoReason.FREQUENTLY_BOUGHT))
        return out

    async def _price_band(self, cart: CartSnapshot) -> List[RecommendationCandidate]:
        lo, hi = price_band(cart)
        if hi <= 0:
            return []
        products = await self.catalog.get_by_price_range(lo, hi, self.fetch_limit)
        return _score_all(products, SCORE_PRICE_BAND, RecoReason.PRICE_INTELLIGENCE)

    async def _seasonal(self) -> List[RecommendationCandidate]:
        out: List[RecommendationCandidate] = []
        for keyword in SEASONAL_KEYWORDS.get(self._today().month, []):
            products = await self.catalog.search_by_keyword(keyword, self.fetch_limit)
            out.extend(_score_all(products, SCORE_SEASONAL, RecoReason.SEASONAL))
        return out
