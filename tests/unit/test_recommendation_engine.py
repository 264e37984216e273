from datetime import date

import pytest

from cartsync.domain.models.cart import CartSnapshot, LineItem
from cartsync.domain.models.product import RecoReason
from cartsync.domain.models.settings import ComplementRule, RecommendationRuleSet, config_from_raw
from cartsync.domain.services.recommendation_svc import (
    RecommendationEngine,
    cart_product_types,
    complement_keywords,
    dedupe_first_seen,
    price_band,
)

MARCH = date(2024, 3, 15)
DECEMBER = date(2024, 12, 5)


def _cart(*lines):
    items = tuple(
        LineItem(key=f"k{i}", variant_id=f"v{i}", product_id=pid, title=title, product_type=ptype, quantity=1, price=price)
        for i, (pid, title, ptype, price) in enumerate(lines)
    )
    return CartSnapshot(items=items, total_price=sum(i.price for i in items))


SHOE_CART = _cart(("p-shoe", "Trail Running Shoes", "Shoes", 8000))
DEFAULT_RULES = config_from_raw({}).rule_set


def _ids(cands):
    return [c.product_id for c in cands]


@pytest.mark.asyncio
async def test_manual_list_is_exclusive_and_ordered(catalog):
    engine = RecommendationEngine(catalog, today=lambda: MARCH)
    rules = RecommendationRuleSet(manual_product_ids=("p-belt", "missing", "p-soldout", "p-mug"))
    master = await engine.build_master_list(SHOE_CART, rules)
    assert _ids(master) == ["p-belt", "p-mug"]
    assert all(c.score == 0.95 and c.reason == RecoReason.MANUAL_SELECTION for c in master)
    assert not any(call[0] in ("search", "popular", "price_range") for call in catalog.calls)


@pytest.mark.asyncio
async def test_empty_cart_uses_popularity(catalog):
    engine = RecommendationEngine(catalog, today=lambda: MARCH)
    master = await engine.build_master_list(CartSnapshot(), DEFAULT_RULES, min_count=3)
    assert _ids(master)[:3] == ["p-lamp", "p-belt", "p-mug"]
    assert all(c.reason == RecoReason.POPULARITY_FALLBACK and c.score == 0.2 for c in master)


@pytest.mark.asyncio
async def test_shoe_cart_gets_socks_from_complements(catalog):
    engine = RecommendationEngine(catalog, today=lambda: MARCH)
    master = await engine.build_master_list(SHOE_CART, DEFAULT_RULES, min_count=1)
    assert master[0].product_id == "p-sock"
    assert master[0].reason == RecoReason.AI_COMPLEMENT
    assert master[0].score == pytest.approx(0.85)
    # sold out products never make it
    assert "p-soldout" not in _ids(master)


@pytest.mark.asyncio
async def test_master_is_deduped_and_sorted(catalog, pair_source):
    pair_source.pairs = {"p-shoe": [("p-sock", 0.6), ("p-belt", 0.5), ("p-card", 0.1)]}
    engine = RecommendationEngine(catalog, pair_source, today=lambda: MARCH)
    master = await engine.build_master_list(SHOE_CART, DEFAULT_RULES, min_count=8)
    ids = _ids(master)
    assert len(ids) == len(set(ids))
    scores = [c.score for c in master]
    assert scores == sorted(scores, reverse=True)
    # socks first seen via complements (0.85) wins over the pair score
    sock = next(c for c in master if c.product_id == "p-sock")
    assert sock.reason == RecoReason.AI_COMPLEMENT
    belt = next(c for c in master if c.product_id == "p-belt")
    assert belt.reason == RecoReason.FREQUENTLY_BOUGHT and belt.score == pytest.approx(0.5)
    # confidence below the floor is not a pair recommendation
    card = next((c for c in master if c.product_id == "p-card"), None)
    assert card is None or card.reason != RecoReason.FREQUENTLY_BOUGHT


@pytest.mark.asyncio
async def test_failing_strategy_contributes_nothing(catalog):
    catalog.failing.add("get_by_price_range")
    engine = RecommendationEngine(catalog, today=lambda: MARCH)
    master = await engine.build_master_list(SHOE_CART, DEFAULT_RULES, min_count=1)
    assert "p-sock" in _ids(master)
    assert not any(c.reason == RecoReason.PRICE_INTELLIGENCE for c in master)


@pytest.mark.asyncio
async def test_tops_up_with_popular(catalog):
    engine = RecommendationEngine(catalog, today=lambda: MARCH)
    cart = _cart(("p-x", "Plain Widget", "Misc", 100000))
    master = await engine.build_master_list(cart, DEFAULT_RULES, min_count=4)
    assert len(master) >= 4
    assert any(c.reason == RecoReason.POPULARITY_FALLBACK for c in master)


@pytest.mark.asyncio
async def test_excluded_ids_never_appear(catalog):
    engine = RecommendationEngine(catalog, today=lambda: MARCH)
    master = await engine.build_master_list(SHOE_CART, DEFAULT_RULES, excluded_product_ids={"p-sock", "p-lamp"})
    assert "p-sock" not in _ids(master) and "p-lamp" not in _ids(master)


@pytest.mark.asyncio
async def test_seasonal_keywords_follow_month(catalog):
    engine = RecommendationEngine(catalog, today=lambda: DECEMBER)
    cart = _cart(("p-x", "Plain Widget", "Misc", 100000))
    master = await engine.build_master_list(cart, DEFAULT_RULES, min_count=1)
    seasonal = [c.product_id for c in master if c.reason == RecoReason.SEASONAL]
    assert set(seasonal) == {"p-tote", "p-card"}


def test_override_rules_win_and_are_capped():
    override = ComplementRule(pattern="shoe", keywords=("shoe polish",), confidence=0.95)
    rules = RecommendationRuleSet(patterns=DEFAULT_RULES.patterns, overrides=(override,))
    kws = complement_keywords(SHOE_CART, rules)
    assert kws[0] == ("shoe polish", 0.95, RecoReason.MANUAL_SELECTION)
    assert ("socks", pytest.approx(0.85), RecoReason.AI_COMPLEMENT) in kws
    assert len(kws) <= 6


def test_manual_complement_mode_uses_overrides_only():
    override = ComplementRule(pattern="lamp", keywords=("bulb",))
    rules = RecommendationRuleSet(patterns=DEFAULT_RULES.patterns, overrides=(override,), complement_mode="manual")
    assert complement_keywords(SHOE_CART, rules) == []


def test_price_band_tiers():
    assert price_band(CartSnapshot()) == (0, 0)
    assert price_band(_cart(("a", "A", "", 5000))) == (500, 2000)
    assert price_band(_cart(("a", "A", "", 10000))) == (2000, 6000)
    assert price_band(_cart(("a", "A", "", 10000), ("b", "B", "", 10000))) == (3000, 8000)


def test_dedupe_keeps_first(catalog, make_product):
    from cartsync.domain.models.product import RecommendationCandidate

    p = make_product("x", "X", 100)
    a = RecommendationCandidate.from_product(p, score=0.3, reason=RecoReason.SEASONAL)
    b = RecommendationCandidate.from_product(p, score=0.9, reason=RecoReason.MANUAL_SELECTION)
    assert dedupe_first_seen([a, b]) == [a]


@pytest.mark.asyncio
async def test_category_match_uses_cart_product_types(catalog):
    engine = RecommendationEngine(catalog, today=lambda: MARCH)
    cart = _cart(("p-belt", "Leather Belt", "Accessories", 4000))
    master = await engine.build_master_list(cart, DEFAULT_RULES, min_count=1)
    tote = next(c for c in master if c.product_id == "p-tote")
    assert tote.reason == RecoReason.CATEGORY
    assert tote.score == pytest.approx(0.6)


@pytest.mark.asyncio
async def test_category_match_searches_first_two_types(catalog):
    engine = RecommendationEngine(catalog, today=lambda: MARCH)
    cart = _cart(
        ("p-belt", "Leather Belt", "Accessories", 4000),
        ("p-mug", "Stoneware Mug", "Kitchen", 1500),
        ("p-lamp", "Desk Lamp", "Home", 9000),
    )
    await engine.build_master_list(cart, DEFAULT_RULES, min_count=1)
    searches = [c[1] for c in catalog.calls if c[0] == "search"]
    assert "Accessories" in searches and "Kitchen" in searches
    assert "Home" not in searches


def test_cart_product_types_skip_gifts_and_repeats():
    items = (
        LineItem(key="a", variant_id="v1", product_id="p1", product_type="Socks", quantity=1, price=100),
        LineItem(key="b", variant_id="v2", product_id="p2", product_type="socks", quantity=1, price=100),
        LineItem(key="g", variant_id="v3", product_id="p3", product_type="Bags", quantity=1, price=100, properties={"_is_gift": "true"}),
        LineItem(key="c", variant_id="v4", product_id="p4", product_type="", quantity=1, price=100),
        LineItem(key="d", variant_id="v5", product_id="p5", product_type="Kitchen", quantity=1, price=100),
    )
    assert cart_product_types(CartSnapshot(items=items)) == ["Socks", "Kitchen"]
