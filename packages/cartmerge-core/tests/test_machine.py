"""Tests for the state machine wrapper: persistence, audit log, listeners, restore."""

from cartmerge.models.actions import (
    ApproveCart,
    ErrorOccurred,
    PauseRun,
    PhaseComplete,
    StartRun,
    StepUpdate,
)
from cartmerge.models.state import ErrorCode, RunError, RunPhase, RunState, RunStatus
from cartmerge.runner.machine import MAX_LOG_ENTRIES, StateMachine
from cartmerge.runner.state_store import InMemoryStateStore


class BrokenStore(InMemoryStateStore):
    def save_state(self, state):
        raise OSError("disk full")

    def load_state(self):
        raise OSError("unreadable")


class TestDispatch:
    def test_accepted_action_is_persisted(self):
        store = InMemoryStateStore()
        machine = StateMachine(store)

        state = machine.dispatch(StartRun(run_id="r1", tab_id=4))

        assert state.status == RunStatus.running
        assert machine.state is state
        assert store.save_count == 1
        assert store.load_state() == state

    def test_rejected_action_is_not_persisted(self):
        store = InMemoryStateStore()
        machine = StateMachine(store)
        before = machine.state

        assert machine.dispatch(ApproveCart()) is before
        assert store.save_count == 0
        assert machine.transition_log == []

    def test_transition_log(self):
        machine = StateMachine()
        machine.dispatch(StartRun(run_id="r1", tab_id=1))
        machine.dispatch(PhaseComplete(phase=RunPhase.initializing))
        machine.dispatch(PauseRun())

        log = machine.transition_log
        assert [e.action for e in log] == ["START_RUN", "PHASE_COMPLETE", "PAUSE_RUN"]
        assert log[0].from_status == RunStatus.idle
        assert log[0].to_status == RunStatus.running
        assert log[1].from_phase == RunPhase.initializing
        assert log[1].to_phase == RunPhase.cart
        assert log[2].to_status == RunStatus.paused

    def test_transition_log_is_bounded(self):
        machine = StateMachine()
        machine.dispatch(StartRun(run_id="r1", tab_id=1))
        for i in range(MAX_LOG_ENTRIES + 20):
            machine.dispatch(StepUpdate(step=f"s{i}"))
        log = machine.transition_log
        assert len(log) == MAX_LOG_ENTRIES
        assert log[-1].action == "STEP_UPDATE"

    def test_can_transition_and_phase(self):
        machine = StateMachine()
        assert machine.can_transition(RunStatus.running)
        assert not machine.can_transition(RunStatus.complete)
        assert machine.current_phase is None
        machine.dispatch(StartRun(run_id="r1", tab_id=1))
        assert machine.current_phase == RunPhase.initializing
        assert machine.can_transition(RunStatus.review)

    def test_persist_failure_does_not_raise(self):
        machine = StateMachine(BrokenStore())
        state = machine.dispatch(StartRun(run_id="r1", tab_id=1))
        assert state.status == RunStatus.running
        assert machine.state is state


class TestListeners:
    def test_listener_receives_state_and_action(self):
        machine = StateMachine()
        seen = []
        machine.subscribe(lambda state, action: seen.append((state.status, action.type)))

        machine.dispatch(StartRun(run_id="r1", tab_id=1))
        machine.dispatch(ApproveCart())  # rejected, no notification

        assert seen == [(RunStatus.running, "START_RUN")]

    def test_unsubscribe(self):
        machine = StateMachine()
        seen = []
        unsubscribe = machine.subscribe(lambda state, action: seen.append(action.type))
        machine.dispatch(StartRun(run_id="r1", tab_id=1))
        unsubscribe()
        unsubscribe()
        machine.dispatch(PauseRun())
        assert seen == ["START_RUN"]

    def test_failing_listener_does_not_break_dispatch(self):
        machine = StateMachine()
        seen = []

        def bad(state, action):
            raise RuntimeError("listener bug")

        machine.subscribe(bad)
        machine.subscribe(lambda state, action: seen.append(action.type))

        state = machine.dispatch(StartRun(run_id="r1", tab_id=1))
        assert state.status == RunStatus.running
        assert seen == ["START_RUN"]


class TestRestore:
    def test_restore_empty_store(self):
        machine = StateMachine.restore(InMemoryStateStore())
        assert machine.state.status == RunStatus.idle

    def test_running_state_flags_recovery(self):
        store = InMemoryStateStore()
        first = StateMachine(store)
        first.dispatch(StartRun(run_id="r1", tab_id=1))
        first.dispatch(PhaseComplete(phase=RunPhase.initializing))

        restored = StateMachine.restore(store)

        assert restored.state.status == RunStatus.running
        assert restored.state.phase == RunPhase.cart
        assert restored.state.recovery_needed is True

    def test_paused_state_is_not_flagged(self):
        store = InMemoryStateStore()
        first = StateMachine(store)
        first.dispatch(StartRun(run_id="r1", tab_id=1))
        first.dispatch(ErrorOccurred(error=RunError(
            code=ErrorCode.network, message="offline", recoverable=True,
        )))

        restored = StateMachine.restore(store)

        assert restored.state.status == RunStatus.paused
        assert restored.state.recovery_needed is False
        assert restored.state.error.message == "offline"
        assert restored.state.error_count == 1

    def test_unreadable_store_starts_idle(self):
        machine = StateMachine.restore(BrokenStore())
        assert machine.state.status == RunStatus.idle

    def test_reload_replaces_state(self):
        store = InMemoryStateStore()
        store.save_state(RunState(run_id="r9", status=RunStatus.review, phase=RunPhase.finalizing))
        machine = StateMachine(store)
        assert machine.state.status == RunStatus.idle

        state = machine.reload()

        assert state.run_id == "r9"
        assert machine.state.status == RunStatus.review
