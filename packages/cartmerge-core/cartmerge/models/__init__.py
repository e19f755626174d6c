from cartmerge.models.state import (
    PHASE_ORDER, ErrorCode, RunError, RunPhase, RunProgress, RunState, RunStatus,
)
from cartmerge.models.actions import (
    ApproveCart, CancelRun, ErrorOccurred, PauseRun, PhaseComplete, ProgressUpdate,
    RecoveryComplete, ResumeRun, RunAction, StartRun, StepUpdate,
)
from cartmerge.models.orders import OrderDetail, OrderItem, OrderSummary, ReorderMode
from cartmerge.models.cart import CartDiff, CartItem, ItemAvailability, ProductInfo, SubstitutionProposal
from cartmerge.models.slots import DeliverySlot, ScoredSlot, SlotPreferences, SlotRecommendation
from cartmerge.models.review import ConfidenceMetrics, ReviewPack, RunStats

__all__ = [
    "PHASE_ORDER", "ErrorCode", "RunError", "RunPhase", "RunProgress", "RunState", "RunStatus",
    "ApproveCart", "CancelRun", "ErrorOccurred", "PauseRun", "PhaseComplete", "ProgressUpdate",
    "RecoveryComplete", "ResumeRun", "RunAction", "StartRun", "StepUpdate",
    "OrderDetail", "OrderItem", "OrderSummary", "ReorderMode",
    "CartDiff", "CartItem", "ItemAvailability", "ProductInfo", "SubstitutionProposal",
    "DeliverySlot", "ScoredSlot", "SlotPreferences", "SlotRecommendation",
    "ConfidenceMetrics", "ReviewPack", "RunStats",
]
