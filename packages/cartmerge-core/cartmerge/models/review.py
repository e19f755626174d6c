"""Review pack: the artifact handed to the human at the review gate."""

from __future__ import annotations

from datetime import datetime

from pydantic import Field

from cartmerge.models.base import CamelModel
from cartmerge.models.cart import CartDiff, CartItem, SubstitutionProposal
from cartmerge.models.orders import OrderSummary
from cartmerge.models.slots import SlotRecommendation


class RunStats(CamelModel):
    total_items: int = 0
    unavailable_items: int = 0
    substitutes_proposed: int = 0
    slots_found: int = 0
    execution_time_seconds: float = 0.0


class ConfidenceMetrics(CamelModel):
    """How much the reconstructed cart can be trusted as-is."""
    availability_percent: int = 100
    substitution_coverage: float = 1.0
    slot_available: bool = False
    requires_attention: bool = False
    attention_reasons: list[str] = Field(default_factory=list)
    overall: float = 0.0


class ReviewPack(CamelModel):
    run_id: str
    original_orders: list[OrderSummary] = Field(default_factory=list)
    cart_items: list[CartItem] = Field(default_factory=list)
    cart_diff: CartDiff = Field(default_factory=CartDiff)
    substitutions: list[SubstitutionProposal] = Field(default_factory=list)
    slot_recommendation: SlotRecommendation | None = None
    stats: RunStats = Field(default_factory=RunStats)
    confidence: ConfidenceMetrics = Field(default_factory=ConfidenceMetrics)
    generated_at: datetime
