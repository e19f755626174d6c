"""Cart diff: compare the original order lines with the live cart.

``compute_diff`` is pure and total: it never raises on well-typed input and
its result does not depend on the order of either input list. Lines are
matched by product id; when either side lacks an id, by normalized name.
Duplicate lines on either side are folded into one before comparison.
"""

from __future__ import annotations

import math
import unicodedata
from decimal import ROUND_HALF_UP, Decimal

from cartmerge.models.cart import (
    CartDiff,
    CartItem,
    DiffSummary,
    ItemAvailability,
    PriceChange,
    QuantityChange,
)
from cartmerge.models.orders import OrderItem

PRICE_TOLERANCE = 0.001
PRICE_ALERT_THRESHOLD = 5.0

# Doubles at or above this magnitude have no cent resolution left.
_CENT_PRECISION_LIMIT = 1e15

_AVAILABILITY_RANK = {
    ItemAvailability.available: 0,
    ItemAvailability.low_stock: 1,
    ItemAvailability.unknown: 2,
    ItemAvailability.out_of_stock: 3,
}


def normalize_name(name: str) -> str:
    """Casefold and collapse whitespace so cosmetic differences still match."""
    return " ".join(unicodedata.normalize("NFKC", name).casefold().split())


def round_cents(value: float) -> float:
    if not math.isfinite(value) or abs(value) >= _CENT_PRECISION_LIMIT:
        return value + 0.0
    cents = Decimal(repr(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return float(cents) + 0.0


def _total(values) -> float:
    """Exact float sum; overflow gives inf and mixed infinities give nan instead of raising."""
    values = list(values)
    try:
        return math.fsum(values)
    except (OverflowError, ValueError):
        return sum(values, 0.0)


def _mean_price(group: list[OrderItem] | list[CartItem], quantity: int) -> float:
    """Quantity-weighted unit price of a folded group, or its first price when that is not finite."""
    first = group[0].unit_price
    if len(group) == 1 or quantity <= 0:
        return first
    mean = _total(i.unit_price * i.quantity for i in group) / quantity
    return mean if math.isfinite(mean) else first


def is_unavailable(item: CartItem) -> bool:
    return item.availability != ItemAvailability.available or item.quantity == 0


class _Line:
    """One folded line: every input line sharing a match key."""

    __slots__ = ("product_id", "name", "quantity", "total", "unit_price", "template")

    def __init__(self, product_id: str | None, name: str, quantity: int, total: float,
                 unit_price: float, template: OrderItem | CartItem):
        self.product_id = product_id
        self.name = name
        self.quantity = quantity
        self.total = total
        self.unit_price = unit_price
        self.template = template

    @property
    def name_key(self) -> str:
        return normalize_name(self.name)

    @property
    def sort_key(self) -> tuple[str, str]:
        return (self.product_id or "", self.name_key)


def _line_key(product_id: str | None, name: str) -> str:
    return f"id:{product_id}" if product_id else f"name:{normalize_name(name)}"


def _fold_original(lines: list[OrderItem]) -> list[_Line]:
    groups: dict[str, list[OrderItem]] = {}
    ordered = sorted(lines, key=lambda i: (
        _line_key(i.product_id, i.name), i.name, i.unit_price, i.quantity, i.effective_total,
    ))
    for line in ordered:
        groups.setdefault(_line_key(line.product_id, line.name), []).append(line)

    folded = []
    for group in groups.values():
        quantity = sum(i.quantity for i in group)
        total = _total(i.effective_total for i in group)
        unit_price = _mean_price(group, quantity)
        first = group[0]
        folded.append(_Line(first.product_id, first.name, quantity, total, unit_price, first))
    return folded


def _fold_cart(items: list[CartItem]) -> list[_Line]:
    groups: dict[str, list[CartItem]] = {}
    ordered = sorted(items, key=lambda i: (
        _line_key(i.product_id, i.name), i.name, i.unit_price, i.quantity,
        _AVAILABILITY_RANK[i.availability], i.brand or "", i.category or "",
    ))
    for item in ordered:
        groups.setdefault(_line_key(item.product_id, item.name), []).append(item)

    folded = []
    for group in groups.values():
        quantity = sum(i.quantity for i in group)
        total = _total(i.unit_price * i.quantity for i in group)
        unit_price = _mean_price(group, quantity)
        worst = max(group, key=lambda i: _AVAILABILITY_RANK[i.availability])
        template = group[0].model_copy(update={
            "quantity": quantity,
            "unit_price": unit_price,
            "availability": worst.availability,
        })
        folded.append(_Line(template.product_id, template.name, quantity, total,
                            unit_price, template))
    return folded


def _pair(original: list[_Line], live: list[_Line]) -> tuple[
    list[tuple[_Line, _Line]], list[_Line], list[_Line]
]:
    """Match original lines to live lines. Returns (pairs, unmatched_original, unmatched_live)."""
    by_id = {line.product_id: line for line in live if line.product_id}
    pairs: list[tuple[_Line, _Line]] = []
    used: set[int] = set()
    pending: list[_Line] = []

    for line in sorted(original, key=lambda l: l.sort_key):
        match = by_id.get(line.product_id) if line.product_id else None
        if match is not None:
            pairs.append((line, match))
            used.add(id(match))
        else:
            pending.append(line)

    # Name fallback only when one side has no product id.
    remaining_live = [l for l in sorted(live, key=lambda l: l.sort_key) if id(l) not in used]
    unmatched_original = []
    for line in pending:
        match = None
        for candidate in remaining_live:
            if id(candidate) in used:
                continue
            if line.product_id and candidate.product_id:
                continue
            if candidate.name_key == line.name_key:
                match = candidate
                break
        if match is None:
            unmatched_original.append(line)
        else:
            pairs.append((line, match))
            used.add(id(match))

    unmatched_live = [l for l in remaining_live if id(l) not in used]
    return pairs, unmatched_original, unmatched_live


def _removed_item(line: _Line) -> CartItem:
    template = line.template
    return CartItem(
        product_id=line.product_id,
        name=line.name,
        quantity=line.quantity,
        unit_price=line.unit_price,
        availability=ItemAvailability.unknown,
        brand=template.brand,
        category=template.category,
        from_original_order=True,
        original_quantity=line.quantity,
    )


def compute_diff(
    original_lines: list[OrderItem],
    live_cart: list[CartItem],
    *,
    price_tolerance: float = PRICE_TOLERANCE,
) -> CartDiff:
    """Classify every line as added, removed, changed or unavailable.

    ``price_difference`` is live total minus original total, rounded to cents.
    The original total uses each line's billed total; the live total uses
    unit price times quantity.
    """
    original = _fold_original(original_lines)
    live = _fold_cart(live_cart)
    pairs, unmatched_original, unmatched_live = _pair(original, live)

    added = [line.template for line in sorted(unmatched_live, key=lambda l: l.sort_key)]
    removed = [_removed_item(line) for line in sorted(unmatched_original, key=lambda l: l.sort_key)]
    quantity_changed: list[QuantityChange] = []
    price_changed: list[PriceChange] = []
    now_unavailable: list[CartItem] = []

    for orig, cur in sorted(pairs, key=lambda p: p[0].sort_key):
        item = cur.template.model_copy(update={
            "from_original_order": True,
            "original_quantity": orig.quantity,
        })
        if is_unavailable(item):
            now_unavailable.append(item)
        if orig.quantity != cur.quantity:
            quantity_changed.append(QuantityChange(
                item=item, original_quantity=orig.quantity, new_quantity=cur.quantity,
            ))
        if abs(orig.unit_price - cur.unit_price) > price_tolerance:
            price_changed.append(PriceChange(
                item=item,
                original_price=round_cents(orig.unit_price),
                new_price=round_cents(cur.unit_price),
            ))

    original_total = _total(line.total for line in original)
    cart_total = _total(line.total for line in live)

    return CartDiff(
        added=added,
        removed=removed,
        quantity_changed=quantity_changed,
        price_changed=price_changed,
        now_unavailable=now_unavailable,
        summary=DiffSummary(
            added_count=len(added),
            removed_count=len(removed),
            quantity_changed_count=len(quantity_changed),
            price_changed_count=len(price_changed),
            unavailable_count=len(now_unavailable),
            original_total=round_cents(original_total),
            cart_total=round_cents(cart_total),
            price_difference=round_cents(cart_total - original_total),
        ),
    )


def has_changes(diff: CartDiff) -> bool:
    s = diff.summary
    return any((
        s.added_count, s.removed_count, s.quantity_changed_count,
        s.price_changed_count, s.unavailable_count,
    ))


def attention_reasons(diff: CartDiff, price_threshold: float = PRICE_ALERT_THRESHOLD) -> list[str]:
    """Reasons the reviewer should look closely at this cart (empty if none)."""
    reasons = []
    if diff.summary.unavailable_count:
        reasons.append(f"{diff.summary.unavailable_count} item(s) unavailable")
    if diff.summary.removed_count:
        reasons.append(f"{diff.summary.removed_count} item(s) missing from cart")
    if diff.summary.price_difference > price_threshold:
        reasons.append(f"cart total up {diff.summary.price_difference:.2f}")
    return reasons


def requires_user_attention(diff: CartDiff, price_threshold: float = PRICE_ALERT_THRESHOLD) -> bool:
    return bool(attention_reasons(diff, price_threshold))


def items_needing_substitution(diff: CartDiff) -> list[CartItem]:
    """Original items that are in the cart but cannot be bought as-is."""
    return [item for item in diff.now_unavailable if item.from_original_order]


def availability_percentage(original_lines: list[OrderItem], diff: CartDiff) -> int:
    """Share of original lines that made it into the cart in a buyable state."""
    if not original_lines:
        return 100
    total = len(_fold_original(original_lines))
    unavailable = len(items_needing_substitution(diff))
    available = max(0, total - unavailable - diff.summary.removed_count)
    return int(Decimal(available * 100) / Decimal(total) + Decimal("0.5"))


def describe_diff(diff: CartDiff) -> str:
    """One-line human summary, e.g. ``1 item(s) added, 2 unavailable (+3.10 total)``."""
    s = diff.summary
    parts = []
    if s.added_count:
        parts.append(f"{s.added_count} item(s) added")
    if s.removed_count:
        parts.append(f"{s.removed_count} item(s) removed")
    if s.quantity_changed_count:
        parts.append(f"{s.quantity_changed_count} quantity change(s)")
    if s.price_changed_count:
        parts.append(f"{s.price_changed_count} price change(s)")
    if s.unavailable_count:
        parts.append(f"{s.unavailable_count} unavailable")
    if not parts:
        return "No changes detected"
    price = f" ({s.price_difference:+.2f} total)" if s.price_difference else ""
    return ", ".join(parts) + price
