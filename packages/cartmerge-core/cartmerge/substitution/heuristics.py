"""Substitute scoring and price/value checks for unavailable cart items."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from cartmerge.cart.diff import normalize_name
from cartmerge.models.cart import (
    CartItem,
    ItemAvailability,
    ProductInfo,
    SubstituteScore,
    SubstitutionProposal,
)

STORE_BRANDS = (
    "auchan",
    "polegar",
    "mmm!",
    "rik & rok",
    "cultivar",
    "actuel",
    "qilive",
    "in'extenso",
    "cosmia",
)

DEFAULT_MAX_PRICE_INCREASE = 20.0
DEFAULT_STORE_BRAND_BONUS = 5.0

PRICE_WEIGHT = 0.35
BRAND_WEIGHT = 0.25
CATEGORY_WEIGHT = 0.25
RATING_WEIGHT = 0.15

BUYABLE = (ItemAvailability.available, ItemAvailability.low_stock)


class ValueRating(str, Enum):
    excellent = "excellent"
    good = "good"
    acceptable = "acceptable"
    poor = "poor"


@dataclass(frozen=True)
class ValueComparison:
    price_delta: float
    price_change_percent: float
    store_brand_switch: bool
    store_brand_departure: bool
    exceeds_tolerance: bool
    rating: ValueRating


def is_store_brand(brand: str | None, product: ProductInfo | None = None) -> bool:
    if product is not None and product.store_brand:
        return True
    if not brand:
        return False
    normalized = brand.casefold().strip()
    return any(sb in normalized for sb in STORE_BRANDS)


def search_query(item: CartItem) -> str:
    """Query used to look up replacements: brand then name."""
    if item.brand and normalize_name(item.brand) not in normalize_name(item.name):
        return f"{item.brand} {item.name}"
    return item.name


def compare_values(
    original: CartItem,
    candidate: ProductInfo,
    max_increase_percent: float = DEFAULT_MAX_PRICE_INCREASE,
) -> ValueComparison:
    delta = candidate.price - original.unit_price
    change = (delta / original.unit_price) * 100 if original.unit_price > 0 else 0.0
    switch = not is_store_brand(original.brand) and is_store_brand(candidate.brand, candidate)
    departure = is_store_brand(original.brand) and not is_store_brand(candidate.brand, candidate)

    if change <= 0:
        rating = ValueRating.excellent
    elif switch and change <= DEFAULT_STORE_BRAND_BONUS:
        rating = ValueRating.excellent
    elif change <= 10:
        rating = ValueRating.good
    elif change <= max_increase_percent:
        rating = ValueRating.acceptable
    else:
        rating = ValueRating.poor

    return ValueComparison(
        price_delta=delta,
        price_change_percent=change,
        store_brand_switch=switch,
        store_brand_departure=departure,
        exceeds_tolerance=change > max_increase_percent,
        rating=rating,
    )


def meets_value_criteria(
    comparison: ValueComparison,
    max_increase_percent: float = DEFAULT_MAX_PRICE_INCREASE,
    store_brand_bonus_percent: float = DEFAULT_STORE_BRAND_BONUS,
) -> bool:
    """Cheaper always passes; store-brand switches get extra headroom."""
    if comparison.price_change_percent <= 0:
        return True
    if comparison.store_brand_switch:
        return comparison.price_change_percent <= max_increase_percent + store_brand_bonus_percent
    return comparison.price_change_percent <= max_increase_percent


def score_substitute(original: CartItem, candidate: ProductInfo) -> tuple[float, SubstituteScore, str]:
    """Weighted similarity in 0..1 with its breakdown and a short reason."""
    if original.unit_price > 0:
        price = max(0.0, 1 - abs(candidate.price - original.unit_price) / original.unit_price)
    else:
        price = 0.5
    same_brand = bool(original.brand and candidate.brand
                      and normalize_name(original.brand) == normalize_name(candidate.brand))
    brand = 1.0 if same_brand else 0.5
    same_category = bool(original.category and candidate.category
                         and normalize_name(original.category) == normalize_name(candidate.category))
    category = 1.0 if same_category else 0.6
    rating = candidate.rating / 5 if candidate.rating is not None else 0.5

    breakdown = SubstituteScore(price=price, brand=brand, category=category, rating=rating)
    total = (price * PRICE_WEIGHT + brand * BRAND_WEIGHT
             + category * CATEGORY_WEIGHT + rating * RATING_WEIGHT)

    reasons = []
    if same_brand:
        reasons.append("Same brand")
    if price >= 0.9:
        reasons.append("Similar price")
    if candidate.rating is not None and candidate.rating >= 4:
        reasons.append(f"{candidate.rating:g} stars")
    return round(total, 4), breakdown, ", ".join(reasons) or "Best available match"


def rank_substitutes(
    original: CartItem,
    candidates: list[ProductInfo],
    max_increase_percent: float = DEFAULT_MAX_PRICE_INCREASE,
    store_brand_bonus_percent: float = DEFAULT_STORE_BRAND_BONUS,
) -> list[SubstitutionProposal]:
    """Score buyable candidates that pass the value check, best first."""
    proposals = []
    for candidate in candidates:
        if candidate.availability not in BUYABLE:
            continue
        if original.product_id and candidate.product_id == original.product_id:
            continue
        comparison = compare_values(original, candidate, max_increase_percent)
        if not meets_value_criteria(comparison, max_increase_percent, store_brand_bonus_percent):
            continue
        score, breakdown, reason = score_substitute(original, candidate)
        proposals.append(SubstitutionProposal(
            original_item=original,
            substitute=candidate,
            score=score,
            score_breakdown=breakdown,
            reason=reason,
            price_delta_percent=round(comparison.price_change_percent, 2),
        ))
    proposals.sort(key=lambda p: (-p.score, p.substitute.price, p.substitute.product_id))
    return proposals
