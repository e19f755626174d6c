"""Tests for the cart diff engine."""

import itertools
import json
import math

import pytest
from pydantic import ValidationError

from cartmerge.cart.diff import (
    attention_reasons,
    availability_percentage,
    compute_diff,
    describe_diff,
    has_changes,
    is_unavailable,
    items_needing_substitution,
    normalize_name,
    requires_user_attention,
    round_cents,
)
from cartmerge.models.cart import CartDiff, CartItem, ItemAvailability, ProductInfo
from cartmerge.models.orders import OrderItem
from tests.conftest import HOUSEHOLD_DIR


def _orig(pid, name, qty=1, price=1.0, **kw):
    return OrderItem(product_id=pid, name=name, quantity=qty, unit_price=price, **kw)


def _cart(pid, name, qty=1, price=1.0, availability=ItemAvailability.available, **kw):
    return CartItem(product_id=pid, name=name, quantity=qty, unit_price=price, availability=availability, **kw)


def _household():
    with open(HOUSEHOLD_DIR / "order_details.json") as f:
        details = json.load(f)
    with open(HOUSEHOLD_DIR / "cart.json") as f:
        cart = json.load(f)
    original = [
        OrderItem.model_validate(item)
        for order_id in ("ord-1001", "ord-1002", "ord-1003")
        for item in details[order_id]["items"]
    ]
    return original, [CartItem.model_validate(i) for i in cart["items"]]


class TestComputeDiff:
    def test_empty_inputs(self):
        diff = compute_diff([], [])
        assert diff == CartDiff()
        assert diff.summary.price_difference == 0.0
        assert not has_changes(diff)

    def test_identical(self):
        diff = compute_diff([_orig("a", "Apple", 2, 1.5)], [_cart("a", "Apple", 2, 1.5)])
        assert not has_changes(diff)
        assert diff.summary.original_total == 3.0
        assert diff.summary.cart_total == 3.0

    def test_removed_item(self):
        diff = compute_diff(
            [_orig("a", "A", 1, 2.00), _orig("b", "B", 1, 3.00)],
            [_cart("a", "A", 1, 2.00)],
        )
        assert [i.product_id for i in diff.removed] == ["b"]
        removed = diff.removed[0]
        assert removed.availability == ItemAvailability.unknown
        assert removed.from_original_order is True
        assert removed.original_quantity == 1
        assert diff.summary.removed_count == 1
        assert diff.summary.price_difference == -3.00

    def test_added_and_removed(self):
        diff = compute_diff([_orig("a", "A", 1, 2.00)], [_cart("x", "X", 1, 1.00)])
        assert [i.product_id for i in diff.added] == ["x"]
        assert [i.product_id for i in diff.removed] == ["a"]
        assert diff.added[0].from_original_order is False
        assert diff.summary.price_difference == -1.00

    def test_quantity_and_price_change(self):
        diff = compute_diff([_orig("a", "A", 2, 1.00)], [_cart("a", "A", 3, 1.20)])
        [qty] = diff.quantity_changed
        assert (qty.original_quantity, qty.new_quantity) == (2, 3)
        assert qty.item.from_original_order is True
        assert qty.item.original_quantity == 2
        [price] = diff.price_changed
        assert (price.original_price, price.new_price) == (1.00, 1.20)
        assert diff.summary.price_difference == 1.60

    def test_price_within_tolerance_is_unchanged(self):
        diff = compute_diff([_orig("a", "A", 1, 1.0)], [_cart("a", "A", 1, 1.0005)])
        assert diff.price_changed == []

    def test_custom_tolerance(self):
        diff = compute_diff([_orig("a", "A", 1, 1.00)], [_cart("a", "A", 1, 1.04)], price_tolerance=0.05)
        assert diff.price_changed == []

    @pytest.mark.parametrize("availability", [
        ItemAvailability.out_of_stock, ItemAvailability.low_stock, ItemAvailability.unknown,
    ])
    def test_unavailable_matched_item(self, availability):
        diff = compute_diff([_orig("a", "A")], [_cart("a", "A", availability=availability)])
        assert [i.product_id for i in diff.now_unavailable] == ["a"]
        assert diff.summary.unavailable_count == 1

    def test_zero_quantity_counts_as_unavailable(self):
        diff = compute_diff([_orig("a", "A")], [_cart("a", "A", qty=0)])
        assert [i.product_id for i in diff.now_unavailable] == ["a"]

    def test_added_unavailable_item_is_not_flagged(self):
        diff = compute_diff([], [_cart("x", "X", availability=ItemAvailability.out_of_stock)])
        assert diff.now_unavailable == []
        assert diff.summary.added_count == 1

    def test_name_fallback_when_id_missing(self):
        diff = compute_diff(
            [_orig(None, "Leite  Mimosa 1L", 1, 0.89)],
            [_cart("p-milk", "leite mimosa 1l", 1, 0.89)],
        )
        assert diff.added == [] and diff.removed == []

    def test_no_name_match_when_both_have_ids(self):
        diff = compute_diff([_orig("a", "Milk")], [_cart("b", "Milk")])
        assert diff.summary.added_count == 1
        assert diff.summary.removed_count == 1

    def test_duplicate_lines_fold(self):
        diff = compute_diff(
            [_orig("a", "A", 1, 1.0), _orig("a", "A", 2, 1.0)],
            [_cart("a", "A", 3, 1.0)],
        )
        assert not has_changes(diff)
        assert diff.summary.original_total == 3.0

    def test_line_total_used_for_original(self):
        diff = compute_diff([_orig("a", "A", 3, 1.0, line_total=2.50)], [_cart("a", "A", 3, 1.0)])
        assert diff.summary.original_total == 2.50
        assert diff.summary.price_difference == 0.50

    def test_permutation_invariant(self):
        original = [
            _orig("a", "A", 1, 1.10), _orig("b", "B", 2, 0.35), _orig(None, "C", 1, 4.00),
            _orig("a", "A", 1, 1.10),
        ]
        cart = [
            _cart("a", "A", 1, 1.15), _cart("c", "c", 1, 4.00),
            _cart("z", "Z", 1, 0.10), _cart("b", "B", 2, 0.35, ItemAvailability.out_of_stock),
        ]
        expected = compute_diff(original, cart)
        for o in itertools.permutations(original):
            for c in itertools.permutations(cart):
                assert compute_diff(list(o), list(c)) == expected

    def test_counts_match_lists(self):
        original, cart = _household()
        diff = compute_diff(original, cart)
        s = diff.summary
        assert s.added_count == len(diff.added)
        assert s.removed_count == len(diff.removed)
        assert s.quantity_changed_count == len(diff.quantity_changed)
        assert s.price_changed_count == len(diff.price_changed)
        assert s.unavailable_count == len(diff.now_unavailable)

    def test_household(self):
        original, cart = _household()
        diff = compute_diff(original, cart)

        assert [i.product_id for i in diff.added] == ["p-bag"]
        assert [i.product_id for i in diff.removed] == ["p-yogurt"]
        [milk] = diff.quantity_changed
        assert (milk.item.product_id, milk.original_quantity, milk.new_quantity) == ("p-milk", 18, 6)
        [bread] = diff.price_changed
        assert (bread.original_price, bread.new_price) == (1.99, 2.19)
        assert [i.product_id for i in diff.now_unavailable] == ["p-eggs", "p-pasta"]
        assert diff.summary.original_total == 29.75
        assert diff.summary.cart_total == 17.88
        assert diff.summary.price_difference == -11.87


class TestExtremePrices:
    @pytest.mark.parametrize("price", [1e-9, 123456789012.345, 1e15, 1e27, 1e308])
    def test_never_raises(self, price):
        diff = compute_diff(
            [_orig("p", "X", price=price), _orig("q", "Y", price=price)],
            [_cart("p", "X", qty=2, price=price / 2), _cart("r", "Z", price=price)],
        )
        assert diff.summary.removed_count == 1
        assert diff.summary.added_count == 1
        assert diff.summary.quantity_changed_count == 1

    def test_huge_total_kept(self):
        diff = compute_diff([], [_cart("p", "x", price=1e27)])
        assert diff.summary.cart_total == 1e27
        assert diff.summary.price_difference == 1e27

    def test_overflowing_total(self):
        diff = compute_diff([], [_cart("p", "x", price=1e308), _cart("q", "y", price=1e308)])
        assert diff.summary.cart_total == math.inf
        assert diff.summary.price_difference == math.inf

    def test_overflow_on_both_sides(self):
        diff = compute_diff([_orig("p", "x", qty=2, price=1e308)], [_cart("p", "x", qty=2, price=1e308)])
        assert diff.summary.original_total == math.inf
        assert math.isnan(diff.summary.price_difference)
        assert not diff.price_changed and not diff.quantity_changed

    def test_folded_unit_price_stays_finite(self):
        diff = compute_diff([_orig("p", "x", qty=2, price=1e308), _orig("p", "x", qty=1, price=1e308)], [])
        [removed] = diff.removed
        assert removed.quantity == 3
        assert removed.unit_price == 1e308

    def test_round_cents_passes_through_unroundable(self):
        assert round_cents(math.inf) == math.inf
        assert round_cents(-math.inf) == -math.inf
        assert math.isnan(round_cents(math.nan))
        assert round_cents(1e27) == 1e27
        assert round_cents(123456789012.345) == 123456789012.35

    @pytest.mark.parametrize("value", [math.inf, -math.inf, math.nan])
    def test_non_finite_prices_rejected(self, value):
        with pytest.raises(ValidationError):
            CartItem(name="x", unit_price=value)
        with pytest.raises(ValidationError):
            OrderItem(name="x", unit_price=value)
        with pytest.raises(ValidationError):
            OrderItem(name="x", line_total=value)
        with pytest.raises(ValidationError):
            ProductInfo(product_id="p", name="x", price=value)


class TestHelpers:
    def test_normalize_name(self):
        assert normalize_name("  Café  DELTA\t250g ") == "café delta 250g"

    def test_round_cents(self):
        assert round_cents(0.125) == 0.13
        assert round_cents(-0.0) == 0.0
        assert round_cents(29.749999999) == 29.75

    def test_is_unavailable(self):
        assert not is_unavailable(_cart("a", "A"))
        assert is_unavailable(_cart("a", "A", availability=ItemAvailability.low_stock))

    def test_attention_reasons(self):
        diff = compute_diff([_orig("a", "A", 1, 1.0), _orig("b", "B")], [_cart("a", "A", 1, 8.0)])
        assert attention_reasons(diff) == ["1 item(s) missing from cart", "cart total up 6.00"]
        assert requires_user_attention(diff)
        assert not requires_user_attention(compute_diff([], []))

    def test_price_increase_at_threshold_is_fine(self):
        diff = compute_diff([_orig("a", "A", 1, 1.0)], [_cart("a", "A", 1, 6.0)])
        assert not requires_user_attention(diff)
        assert requires_user_attention(diff, price_threshold=4.0)

    def test_items_needing_substitution(self):
        original, cart = _household()
        diff = compute_diff(original, cart)
        assert [i.product_id for i in items_needing_substitution(diff)] == ["p-eggs", "p-pasta"]

    def test_availability_percentage(self):
        original, cart = _household()
        diff = compute_diff(original, cart)
        # 7 distinct lines: 2 unavailable, 1 missing.
        assert availability_percentage(original, diff) == 57
        assert availability_percentage([], compute_diff([], [])) == 100

    def test_describe_diff(self):
        assert describe_diff(compute_diff([], [])) == "No changes detected"
        diff = compute_diff([_orig("a", "A", 1, 2.00)], [_cart("x", "X", 1, 1.00)])
        assert describe_diff(diff) == "1 item(s) added, 1 item(s) removed (-1.00 total)"
