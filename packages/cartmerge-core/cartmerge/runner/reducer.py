"""Run reducer: the only way a RunState changes.

``reduce(state, action)`` is pure: same inputs, same output, no I/O. An
action that is not valid for the current status returns the *same* state
object, which callers use to detect rejection (``new is state``).

Status graph::

    idle --START_RUN--> running
    running --PAUSE_RUN/ERROR_OCCURRED--> paused
    paused  --RESUME_RUN [can_retry]--> running
    running --PHASE_COMPLETE(finalizing)--> review
    review  --APPROVE_CART--> complete
    complete --RESET_RUN--> idle
    running/paused/review --CANCEL_RUN--> idle
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import assert_never

from cartmerge.models.actions import (
    ApproveCart,
    CancelRun,
    ErrorOccurred,
    PauseRun,
    PhaseComplete,
    ProgressUpdate,
    RecoveryComplete,
    ResetRun,
    ResumeRun,
    RunAction,
    StartRun,
    StepUpdate,
)
from cartmerge.models.state import (
    DEFAULT_RUN_STATE,
    PHASE_ORDER,
    CartStep,
    RunPhase,
    RunProgress,
    RunState,
    RunStatus,
    SlotsStep,
    SubstitutionStep,
)

MAX_CONSECUTIVE_ERRORS = 3

VALID_TRANSITIONS: dict[RunStatus, frozenset[RunStatus]] = {
    RunStatus.idle: frozenset({RunStatus.running}),
    RunStatus.running: frozenset({RunStatus.paused, RunStatus.review, RunStatus.idle}),
    RunStatus.paused: frozenset({RunStatus.running, RunStatus.idle}),
    RunStatus.review: frozenset({RunStatus.complete, RunStatus.idle}),
    RunStatus.complete: frozenset({RunStatus.idle}),
}

_CANCELLABLE = (RunStatus.running, RunStatus.paused, RunStatus.review)

_INITIAL_STEPS: dict[RunPhase, str | None] = {
    RunPhase.initializing: None,
    RunPhase.cart: CartStep.loading_orders.value,
    RunPhase.substitution: SubstitutionStep.identifying.value,
    RunPhase.slots: SlotsStep.navigating.value,
    RunPhase.finalizing: None,
}


# --- Guards ---

def can_retry(state: RunState, max_errors: int = MAX_CONSECUTIVE_ERRORS) -> bool:
    """True while the error count is under the limit and the recorded error is recoverable."""
    return (
        state.error_count < max_errors
        and state.error is not None
        and state.error.recoverable
    )


def pack_ready(state: RunState) -> bool:
    return state.phase == RunPhase.finalizing and state.step is None


def valid_transition(from_status: RunStatus, to_status: RunStatus) -> bool:
    return to_status in VALID_TRANSITIONS[from_status]


def next_phase(phase: RunPhase) -> RunPhase | None:
    i = PHASE_ORDER.index(phase)
    return PHASE_ORDER[i + 1] if i + 1 < len(PHASE_ORDER) else None


def initial_step_for_phase(phase: RunPhase) -> str | None:
    return _INITIAL_STEPS[phase]


# --- Reducer ---

def reduce(state: RunState, action: RunAction, now: datetime | None = None) -> RunState:
    """Return the next state, or *state* itself when the action is rejected."""
    ts = now or datetime.now(timezone.utc)

    match action:
        case StartRun():
            if state.status != RunStatus.idle:
                return state
            return RunState(
                run_id=action.run_id,
                status=RunStatus.running,
                phase=RunPhase.initializing,
                step=None,
                progress=RunProgress(),
                error=None,
                error_count=0,
                tab_id=action.tab_id,
                recovery_needed=False,
                started_at=ts,
                updated_at=ts,
            )

        case PauseRun():
            if state.status != RunStatus.running:
                return state
            return _update(state, ts, status=RunStatus.paused)

        case ResumeRun():
            if state.status != RunStatus.paused:
                return state
            if state.error is not None and not can_retry(state):
                return state
            return _update(state, ts, status=RunStatus.running, error=None, recovery_needed=False)

        case CancelRun():
            if state.status not in _CANCELLABLE:
                return state
            return DEFAULT_RUN_STATE.model_copy(update={"updated_at": ts})

        case ApproveCart():
            if state.status != RunStatus.review:
                return state
            return _update(state, ts, status=RunStatus.complete)

        case ResetRun():
            if state.status != RunStatus.complete:
                return state
            return DEFAULT_RUN_STATE.model_copy(update={"updated_at": ts})

        case ErrorOccurred():
            if state.status != RunStatus.running:
                return state
            error = action.error.model_copy(update={"retry_count": state.error_count})
            return _update(
                state, ts,
                status=RunStatus.paused,
                error=error,
                error_count=state.error_count + 1,
            )

        case PhaseComplete():
            if state.status != RunStatus.running or state.phase != action.phase:
                return state
            following = next_phase(action.phase)
            if following is None:
                return _update(state, ts, status=RunStatus.review, step=None, error_count=0)
            return _update(
                state, ts,
                phase=following,
                step=initial_step_for_phase(following),
                error_count=0,
            )

        case StepUpdate():
            if state.status != RunStatus.running:
                return state
            return _update(state, ts, step=action.step)

        case ProgressUpdate():
            if state.status != RunStatus.running:
                return state
            progress = state.progress.model_copy(update=action.changes())
            return _update(state, ts, progress=progress)

        case RecoveryComplete():
            return _update(state, ts, recovery_needed=False)

        case _:
            assert_never(action)


def _update(state: RunState, ts: datetime, **changes) -> RunState:
    return state.model_copy(update={**changes, "updated_at": ts})


def target_status(state: RunState, action: RunAction) -> RunStatus | None:
    """Status the action would lead to, or None when it would be rejected."""
    result = reduce(state, action, now=state.updated_at)
    if result is state:
        return None
    return result.status


def is_action_valid(state: RunState, action: RunAction) -> bool:
    return reduce(state, action, now=state.updated_at) is not state
