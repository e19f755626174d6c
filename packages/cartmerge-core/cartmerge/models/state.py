"""Run state models: status, phase, step tags, errors and progress."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import Field

from cartmerge.models.base import CamelModel


class RunStatus(str, Enum):
    """Closed set of run statuses. There is no checkout or payment status."""
    idle = "idle"
    running = "running"
    paused = "paused"
    review = "review"
    complete = "complete"


class RunPhase(str, Enum):
    initializing = "initializing"
    cart = "cart"
    substitution = "substitution"
    slots = "slots"
    finalizing = "finalizing"


PHASE_ORDER: tuple[RunPhase, ...] = (
    RunPhase.initializing,
    RunPhase.cart,
    RunPhase.substitution,
    RunPhase.slots,
    RunPhase.finalizing,
)


class InitializingStep(str, Enum):
    checking_tab = "checking-tab"
    checking_login = "checking-login"


class CartStep(str, Enum):
    loading_orders = "loading-orders"
    selecting_order = "selecting-order"
    reordering = "reordering"
    scanning_cart = "scanning-cart"
    comparing = "comparing"


class SubstitutionStep(str, Enum):
    identifying = "identifying"
    searching = "searching"
    scoring = "scoring"
    proposing = "proposing"


class SlotsStep(str, Enum):
    navigating = "navigating"
    extracting = "extracting"
    scoring = "scoring"


class FinalizingStep(str, Enum):
    assembling = "assembling"
    persisting = "persisting"


class ErrorCode(str, Enum):
    network = "network"
    timeout = "timeout"
    selector = "selector"
    auth = "auth"
    unknown = "unknown"

    @property
    def recoverable(self) -> bool:
        return self in (ErrorCode.network, ErrorCode.timeout)


class RunError(CamelModel):
    """An error recorded on the run. Only reachable through ERROR_OCCURRED."""
    code: ErrorCode
    message: str
    recoverable: bool
    phase: RunPhase | None = None
    timestamp: datetime | None = None
    retry_count: int = 0


class RunProgress(CamelModel):
    orders_loaded: int = 0
    orders_total: int = 0
    items_processed: int = 0
    items_total: int = 0
    unavailable_items: int = 0
    substitutes_proposed: int = 0
    slots_found: int = 0


class RunState(CamelModel):
    """Persisted snapshot of a run.

    ``step`` is a free-form sub-phase tag (see the *Step enums); the reducer
    does not validate it against the phase.
    """
    run_id: str | None = None
    status: RunStatus = RunStatus.idle
    phase: RunPhase | None = None
    step: str | None = None
    progress: RunProgress = Field(default_factory=RunProgress)
    error: RunError | None = None
    error_count: int = 0
    tab_id: int | None = None
    recovery_needed: bool = False
    started_at: datetime | None = None
    updated_at: datetime | None = None


DEFAULT_RUN_STATE = RunState()
