"""Order models: summaries from order history and their item lines."""

from __future__ import annotations

from datetime import date as Date
from enum import Enum

from pydantic import Field

from cartmerge.models.base import CamelModel


class ReorderMode(str, Enum):
    replace = "replace"
    merge = "merge"


class OrderSummary(CamelModel):
    """One past order as listed in the order history."""
    order_id: str
    date: Date
    item_count: int = 0
    total: float = 0.0
    detail_url: str | None = None
    status: str | None = None


class OrderItem(CamelModel):
    """A line of a past order."""
    product_id: str | None = None
    name: str
    quantity: int = Field(1, ge=0)
    unit_price: float = Field(0.0, allow_inf_nan=False)
    line_total: float | None = Field(
        None, allow_inf_nan=False, description="Line total as billed; unit_price * quantity when absent"
    )
    brand: str | None = None
    category: str | None = None

    @property
    def effective_total(self) -> float:
        if self.line_total is not None:
            return self.line_total
        return self.unit_price * self.quantity


class OrderDetail(CamelModel):
    order_id: str
    items: list[OrderItem] = Field(default_factory=list)


class ReorderResult(CamelModel):
    """What the site reported after pressing the reorder button."""
    success: bool = True
    button_clicked: bool = True
    items_added: int | None = None
    message: str | None = None
