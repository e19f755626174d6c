"""State machine: wraps the reducer with persistence, an audit log and subscribers."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from loguru import logger

from cartmerge.models.actions import RunAction
from cartmerge.models.state import DEFAULT_RUN_STATE, RunPhase, RunState, RunStatus
from cartmerge.runner.reducer import reduce, valid_transition
from cartmerge.runner.state_store import InMemoryStateStore, StateStore

MAX_LOG_ENTRIES = 100

Listener = Callable[[RunState, RunAction], None]


@dataclass(frozen=True)
class TransitionLogEntry:
    timestamp: datetime
    action: str
    from_status: RunStatus
    to_status: RunStatus
    from_phase: RunPhase | None
    to_phase: RunPhase | None


class StateMachine:
    """Holds the current RunState and applies actions to it.

    Each accepted action is persisted before ``dispatch`` returns, so the
    caller may start the side effect that follows knowing the state is on
    disk. Rejected actions change nothing and are not persisted.
    """

    def __init__(self, store: StateStore | None = None, state: RunState | None = None) -> None:
        self._store = store if store is not None else InMemoryStateStore()
        self._state = state or DEFAULT_RUN_STATE
        self._listeners: list[Listener] = []
        self._log: deque[TransitionLogEntry] = deque(maxlen=MAX_LOG_ENTRIES)

    @classmethod
    def restore(cls, store: StateStore) -> StateMachine:
        """Build a machine from the persisted state (see ``reload``)."""
        machine = cls(store)
        machine.reload()
        return machine

    def reload(self) -> RunState:
        """Replace the in-memory state with the persisted one.

        A run persisted as ``running`` was interrupted mid-phase, so it comes
        back flagged with ``recovery_needed``. Listeners are not notified.
        """
        try:
            state = self._store.load_state()
        except Exception:
            logger.exception("Could not load persisted run state; starting idle")
            state = None
        if state is None:
            state = DEFAULT_RUN_STATE
        elif state.status == RunStatus.running and not state.recovery_needed:
            logger.warning(f"Run {state.run_id} was interrupted in phase {_phase(state)}")
            state = state.model_copy(update={"recovery_needed": True})
        self._state = state
        return state

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def store(self) -> StateStore:
        return self._store

    @property
    def current_phase(self) -> RunPhase | None:
        return self._state.phase

    @property
    def transition_log(self) -> list[TransitionLogEntry]:
        return list(self._log)

    def can_transition(self, to_status: RunStatus) -> bool:
        return valid_transition(self._state.status, to_status)

    def dispatch(self, action: RunAction) -> RunState:
        previous = self._state
        new_state = reduce(previous, action)
        if new_state is previous:
            logger.debug(f"Ignored {action.type} in status {previous.status.value}")
            return previous

        self._state = new_state
        self._log.append(TransitionLogEntry(
            timestamp=new_state.updated_at or datetime.now(timezone.utc),
            action=action.type,
            from_status=previous.status,
            to_status=new_state.status,
            from_phase=previous.phase,
            to_phase=new_state.phase,
        ))
        if previous.status != new_state.status or previous.phase != new_state.phase:
            logger.info(
                f"{action.type}: {previous.status.value}/{_phase(previous)} -> "
                f"{new_state.status.value}/{_phase(new_state)}"
            )
        else:
            logger.debug(f"{action.type} step={new_state.step}")

        self._persist(new_state)
        self._notify(new_state, action)
        return new_state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener*; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _persist(self, state: RunState) -> None:
        try:
            self._store.save_state(state)
        except Exception:
            logger.exception(f"Failed to persist run state for run {state.run_id}")

    def _notify(self, state: RunState, action: RunAction) -> None:
        for listener in list(self._listeners):
            try:
                listener(state, action)
            except Exception:
                logger.exception(f"State listener failed on {action.type}")


def _phase(state: RunState) -> str:
    return state.phase.value if state.phase else "-"
