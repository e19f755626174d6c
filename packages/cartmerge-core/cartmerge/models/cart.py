"""Cart models: live cart items, the cart diff and substitution proposals."""

from __future__ import annotations

from enum import Enum

from pydantic import Field

from cartmerge.models.base import CamelModel


class ItemAvailability(str, Enum):
    available = "available"
    low_stock = "low-stock"
    out_of_stock = "out-of-stock"
    unknown = "unknown"


class CartItem(CamelModel):
    """An item in the live cart (or a removed original line, see CartDiff)."""
    product_id: str | None = None
    name: str
    quantity: int = Field(1, ge=0)
    unit_price: float = Field(0.0, allow_inf_nan=False)
    availability: ItemAvailability = ItemAvailability.available
    brand: str | None = None
    category: str | None = None
    from_original_order: bool = False
    original_quantity: int | None = None


class ProductInfo(CamelModel):
    """A product search result used as a substitution candidate."""
    product_id: str
    name: str
    price: float = Field(allow_inf_nan=False)
    availability: ItemAvailability = ItemAvailability.available
    brand: str | None = None
    category: str | None = None
    rating: float | None = None
    store_brand: bool = False


class QuantityChange(CamelModel):
    item: CartItem
    original_quantity: int
    new_quantity: int


class PriceChange(CamelModel):
    item: CartItem
    original_price: float
    new_price: float


class DiffSummary(CamelModel):
    added_count: int = 0
    removed_count: int = 0
    quantity_changed_count: int = 0
    price_changed_count: int = 0
    unavailable_count: int = 0
    original_total: float = 0.0
    cart_total: float = 0.0
    price_difference: float = 0.0


class CartDiff(CamelModel):
    added: list[CartItem] = Field(default_factory=list)
    removed: list[CartItem] = Field(default_factory=list)
    quantity_changed: list[QuantityChange] = Field(default_factory=list)
    price_changed: list[PriceChange] = Field(default_factory=list)
    now_unavailable: list[CartItem] = Field(default_factory=list)
    summary: DiffSummary = Field(default_factory=DiffSummary)


class SubstituteScore(CamelModel):
    price: float = 0.0
    brand: float = 0.0
    category: float = 0.0
    rating: float = 0.0


class SubstitutionProposal(CamelModel):
    original_item: CartItem
    substitute: ProductInfo
    score: float
    score_breakdown: SubstituteScore = Field(default_factory=SubstituteScore)
    reason: str = ""
    price_delta_percent: float = 0.0
