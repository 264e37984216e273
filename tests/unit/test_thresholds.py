import pytest

from cartsync.domain.models.cart import CartSnapshot, LineItem
from cartsync.domain.models.rewards import RewardKind, RewardThreshold, ThresholdStatus
from cartsync.domain.services.thresholds import evaluate, evaluate_snapshot, qualifying_total

SHIPPING = RewardThreshold(amount_cents=10000, kind=RewardKind.FREE_SHIPPING)
GIFT_A = RewardThreshold(amount_cents=15000, kind=RewardKind.GIFT, product_id="gift-a", variant_id="vg-a")
THRESHOLDS = [SHIPPING, GIFT_A]


def test_empty_cart_next_is_shipping():
    ev = evaluate(0, THRESHOLDS, set())
    assert ev.next == SHIPPING
    assert ev.remaining_cents == 10000
    assert ev.progress == 0.0
    assert ev.unlocked == frozenset()


def test_evaluate_is_pure():
    claimed = {"gift-a"}
    thresholds = list(THRESHOLDS)
    first = evaluate(16000, thresholds, claimed)
    second = evaluate(16000, thresholds, claimed)
    assert first == second
    assert thresholds == THRESHOLDS and claimed == {"gift-a"}


def test_below_every_threshold():
    ev = evaluate(6000, THRESHOLDS, set())
    assert ev.unlocked == frozenset()
    assert ev.ready_to_claim == frozenset()
    assert ev.next == SHIPPING
    assert ev.remaining_cents == 4000
    assert ev.progress == pytest.approx(0.6)
    assert ev.statuses[GIFT_A.id] == ThresholdStatus.LOCKED


def test_shipping_met_gift_still_locked():
    ev = evaluate(12000, THRESHOLDS, set())
    assert ev.unlocked == frozenset({SHIPPING.id})
    assert ev.statuses[GIFT_A.id] == ThresholdStatus.LOCKED
    assert ev.next == GIFT_A
    assert ev.remaining_cents == 3000


def test_gift_met_but_unclaimed_is_ready():
    ev = evaluate(16000, THRESHOLDS, set())
    assert ev.ready_to_claim == frozenset({GIFT_A.id})
    assert GIFT_A.id not in ev.unlocked
    # a ready gift is still the next reward, with nothing left to spend
    assert ev.next == GIFT_A
    assert ev.remaining_cents == 0
    assert ev.progress == 1.0


def test_claimed_gift_is_achieved():
    ev = evaluate(16000, THRESHOLDS, {"gift-a"})
    assert ev.unlocked == frozenset({SHIPPING.id, GIFT_A.id})
    assert ev.next is None
    assert ev.all_achieved
    assert ev.remaining_cents == 0


def test_exact_threshold_is_met():
    ev = evaluate(10000, [SHIPPING], set())
    assert ev.statuses[SHIPPING.id] == ThresholdStatus.ACHIEVED
    assert ev.next is None


def test_no_thresholds():
    ev = evaluate(500, [], set())
    assert ev.next is None and ev.remaining_cents == 0 and ev.statuses == {}


def test_unlocked_is_monotonic_in_total():
    previous = frozenset()
    for total in range(0, 20001, 500):
        ev = evaluate(total, THRESHOLDS, {"gift-a"})
        assert previous <= ev.unlocked
        previous = ev.unlocked


def test_gift_threshold_requires_product():
    with pytest.raises(ValueError):
        RewardThreshold(amount_cents=100, kind=RewardKind.GIFT)


def test_gift_lines_do_not_count_toward_total():
    snap = CartSnapshot(
        items=(
            LineItem(key="a", variant_id="v1", product_id="p1", quantity=1, price=14000),
            LineItem(key="g", variant_id="vg-a", product_id="gift-a", quantity=1, price=2500, properties={"_is_gift": "true"}),
        ),
        total_price=16500,
    )
    assert qualifying_total(snap) == 14000
    ev = evaluate_snapshot(snap, THRESHOLDS)
    assert ev.statuses[GIFT_A.id] == ThresholdStatus.LOCKED
