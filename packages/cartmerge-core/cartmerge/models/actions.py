"""Run actions: the closed set of inputs accepted by the reducer."""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import Field, TypeAdapter

from cartmerge.models.base import CamelModel
from cartmerge.models.state import RunError, RunPhase
from cartmerge.utils.hashing import generate_run_id


class StartRun(CamelModel):
    type: Literal["START_RUN"] = "START_RUN"
    run_id: str = Field(default_factory=generate_run_id)
    tab_id: int
    order_id: str | None = None


class PauseRun(CamelModel):
    type: Literal["PAUSE_RUN"] = "PAUSE_RUN"


class ResumeRun(CamelModel):
    type: Literal["RESUME_RUN"] = "RESUME_RUN"


class CancelRun(CamelModel):
    type: Literal["CANCEL_RUN"] = "CANCEL_RUN"


class ApproveCart(CamelModel):
    type: Literal["APPROVE_CART"] = "APPROVE_CART"


class ResetRun(CamelModel):
    """Clear a finished run so the next one can start."""
    type: Literal["RESET_RUN"] = "RESET_RUN"


class ErrorOccurred(CamelModel):
    type: Literal["ERROR_OCCURRED"] = "ERROR_OCCURRED"
    error: RunError


class PhaseComplete(CamelModel):
    type: Literal["PHASE_COMPLETE"] = "PHASE_COMPLETE"
    phase: RunPhase


class StepUpdate(CamelModel):
    type: Literal["STEP_UPDATE"] = "STEP_UPDATE"
    step: str | None = None


class ProgressUpdate(CamelModel):
    """Partial progress; fields left as None keep their current value."""
    type: Literal["PROGRESS_UPDATE"] = "PROGRESS_UPDATE"
    orders_loaded: int | None = None
    orders_total: int | None = None
    items_processed: int | None = None
    items_total: int | None = None
    unavailable_items: int | None = None
    substitutes_proposed: int | None = None
    slots_found: int | None = None

    def changes(self) -> dict[str, int]:
        return self.model_dump(exclude={"type"}, exclude_none=True)


class RecoveryComplete(CamelModel):
    type: Literal["RECOVERY_COMPLETE"] = "RECOVERY_COMPLETE"


RunAction = Annotated[
    Union[
        StartRun,
        PauseRun,
        ResumeRun,
        CancelRun,
        ApproveCart,
        ResetRun,
        ErrorOccurred,
        PhaseComplete,
        StepUpdate,
        ProgressUpdate,
        RecoveryComplete,
    ],
    Field(discriminator="type"),
]

ACTION_TYPES: tuple[type[CamelModel], ...] = (
    StartRun,
    PauseRun,
    ResumeRun,
    CancelRun,
    ApproveCart,
    ResetRun,
    ErrorOccurred,
    PhaseComplete,
    StepUpdate,
    ProgressUpdate,
    RecoveryComplete,
)

_action_adapter: TypeAdapter = TypeAdapter(RunAction)


def parse_action(data: dict) -> RunAction:
    """Parse a serialized action (``{"type": "START_RUN", ...}``)."""
    return _action_adapter.validate_python(data)
