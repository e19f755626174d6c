"""Run orchestrator: sequence the phases of a reorder run.

The orchestrator never mutates RunState directly: every change goes through
``StateMachine.dispatch``, which persists before returning. Side effects
(navigation, extraction, reorder clicks) happen only after the state that
announces them is on disk.

Each run loop holds a token ``(run_id, generation)``. Pausing, cancelling
or starting over bumps the generation; a loop that wakes up from a port
call with a stale token drops the result and exits without dispatching.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, NamedTuple

from loguru import logger

from cartmerge.cart.diff import (
    attention_reasons,
    availability_percentage,
    compute_diff,
    describe_diff,
    items_needing_substitution,
)
from cartmerge.config import OrchestratorConfig
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
    StartRun,
    StepUpdate,
)
from cartmerge.models.cart import CartDiff, CartItem, SubstitutionProposal
from cartmerge.models.orders import OrderItem, OrderSummary, ReorderMode
from cartmerge.models.review import ConfidenceMetrics, ReviewPack, RunStats
from cartmerge.models.slots import DeliverySlot, SlotRecommendation
from cartmerge.models.state import (
    CartStep,
    FinalizingStep,
    InitializingStep,
    RunPhase,
    RunState,
    RunStatus,
    SlotsStep,
    SubstitutionStep,
)
from cartmerge.runner.errors import (
    AuthError,
    CartRunError,
    PortTimeoutError,
    classify_exception,
)
from cartmerge.runner.machine import StateMachine
from cartmerge.runner.messaging import ExtractionClient, LoginStatus, MessagingPort
from cartmerge.runner.ports import SubstitutionAdvisor, TabsPort
from cartmerge.runner.reducer import pack_ready
from cartmerge.slots.scoring import recommend_slots, score_slots
from cartmerge.substitution.advisor import HeuristicSubstitutionAdvisor


@dataclass
class RunContext:
    """Working data of the active run. Never persisted; rebuilt on demand."""
    tab_id: int
    target_order_id: str | None = None
    login: LoginStatus | None = None
    orders: list[OrderSummary] = field(default_factory=list)
    original_lines: list[OrderItem] = field(default_factory=list)
    cart_items: list[CartItem] = field(default_factory=list)
    cart_diff: CartDiff | None = None
    unavailable_items: list[CartItem] = field(default_factory=list)
    substitutions: list[SubstitutionProposal] = field(default_factory=list)
    delivery_slots: list[DeliverySlot] = field(default_factory=list)
    slot_recommendation: SlotRecommendation | None = None


class _LoopToken(NamedTuple):
    run_id: str | None
    generation: int


class _RunSuperseded(Exception):
    """Internal: the loop's run was paused, cancelled or replaced while it waited."""


class RunOrchestrator:
    """Drive a run through its phases using the extraction and tab ports."""

    def __init__(
        self,
        machine: StateMachine,
        messaging: MessagingPort,
        tabs: TabsPort,
        config: OrchestratorConfig | None = None,
        advisor: SubstitutionAdvisor | None = None,
    ) -> None:
        self._machine = machine
        self._config = config or OrchestratorConfig()
        self._client = ExtractionClient(messaging, self._config.operation_timeout)
        self._tabs = tabs
        self._advisor = advisor if advisor is not None else HeuristicSubstitutionAdvisor(
            self._client,
            self._config.thresholds,
            self._config.max_substitute_candidates,
        )
        self._context: RunContext | None = None
        self._generation = 0

    @property
    def state(self) -> RunState:
        return self._machine.state

    @property
    def context(self) -> RunContext | None:
        return self._context

    # --- Public API ---

    async def start_run(self, tab_id: int, order_id: str | None = None) -> RunState:
        """Start a run and drive it until it pauses, fails or reaches review.

        Rejected (state returned unchanged) when a run is already active.
        """
        previous = self._machine.state
        state = self._machine.dispatch(StartRun(tab_id=tab_id, order_id=order_id))
        if state is previous:
            logger.warning(f"Cannot start a run while status is {previous.status.value}")
            return state

        self._clear_review_pack()
        self._context = RunContext(tab_id=tab_id, target_order_id=order_id)
        logger.info(f"Run {state.run_id} started on tab {tab_id}")
        await self._run_loop(self._next_token())
        return self._machine.state

    async def resume_run(self) -> RunState:
        previous = self._machine.state
        state = self._machine.dispatch(ResumeRun())
        if state is previous:
            logger.warning(
                f"Cannot resume: status={previous.status.value} errorCount={previous.error_count}"
            )
            return state
        self._ensure_context(state)
        await self._run_loop(self._next_token())
        return self._machine.state

    def pause_run(self) -> RunState:
        state = self._machine.dispatch(PauseRun())
        self._generation += 1
        return state

    def cancel_run(self) -> RunState:
        previous = self._machine.state
        state = self._machine.dispatch(CancelRun())
        if state is not previous:
            self._generation += 1
            self._context = None
            self._clear_review_pack()
            logger.info(f"Run {previous.run_id} cancelled")
        return state

    def approve_cart(self) -> RunState:
        """Record the user's approval of the review pack. Nothing is purchased."""
        previous = self._machine.state
        state = self._machine.dispatch(ApproveCart())
        if state is not previous:
            self._context = None
        return state

    def reset_run(self) -> RunState:
        """Clear a completed run and its review pack so a new run can start."""
        previous = self._machine.state
        state = self._machine.dispatch(ResetRun())
        if state is not previous:
            self._clear_review_pack()
            logger.info(f"Run {previous.run_id} reset")
        return state

    async def recover(self) -> RunState:
        """Reload persisted state at process start and continue an interrupted run.

        The interrupted phase is re-entered from its start; phases are
        idempotent (the first reorder replaces the cart).
        """
        state = self._machine.reload()
        if state.recovery_needed:
            state = self._machine.dispatch(RecoveryComplete())
        if state.status != RunStatus.running:
            return state
        logger.info(f"Recovering run {state.run_id} in phase {state.phase.value}")
        self._ensure_context(state)
        await self._run_loop(self._next_token())
        return self._machine.state

    def get_review_pack(self) -> ReviewPack | None:
        if self._machine.state.status not in (RunStatus.review, RunStatus.complete):
            return None
        return self._machine.store.load_review_pack()

    # --- Run loop ---

    def _next_token(self) -> _LoopToken:
        self._generation += 1
        return _LoopToken(self._machine.state.run_id, self._generation)

    def _is_current(self, token: _LoopToken) -> bool:
        state = self._machine.state
        return (
            token.generation == self._generation
            and state.run_id == token.run_id
            and state.status == RunStatus.running
        )

    def _ensure_current(self, token: _LoopToken) -> None:
        if not self._is_current(token):
            raise _RunSuperseded()

    def _ensure_context(self, state: RunState) -> None:
        if self._context is None:
            self._context = RunContext(tab_id=state.tab_id)

    async def _run_loop(self, token: _LoopToken) -> None:
        while self._is_current(token):
            phase = self._machine.state.phase
            try:
                await asyncio.wait_for(
                    self._execute_phase(phase, token), timeout=self._config.phase_timeout
                )
            except _RunSuperseded:
                logger.info(f"Discarding results of superseded {phase.value} phase")
                return
            except asyncio.TimeoutError:
                if not self._is_current(token):
                    return
                self._fail(phase, PortTimeoutError(
                    f"Phase {phase.value} exceeded {self._config.phase_timeout:g}s"
                ))
                return
            except Exception as exc:
                if not self._is_current(token):
                    logger.info(f"Dropping error from superseded run: {exc}")
                    return
                self._fail(phase, exc)
                return

            if not self._is_current(token):
                return
            state = self._machine.dispatch(PhaseComplete(phase=phase))
            if state.status == RunStatus.review:
                logger.info(f"Run {state.run_id} ready for review")
                return

    def _fail(self, phase: RunPhase, exc: BaseException) -> None:
        state = self._machine.state
        error = classify_exception(exc, phase, retry_count=state.error_count)
        if error.recoverable:
            logger.warning(f"{error.code.value} error in {phase.value}: {error.message}")
        else:
            logger.error(f"{error.code.value} error in {phase.value}: {error.message}")
        self._machine.dispatch(ErrorOccurred(error=error))

    async def _execute_phase(self, phase: RunPhase, token: _LoopToken) -> None:
        logger.info(f"Phase {phase.value} started")
        match phase:
            case RunPhase.initializing:
                await self._initializing(token)
            case RunPhase.cart:
                await self._cart(token)
            case RunPhase.substitution:
                await self._substitution(token)
            case RunPhase.slots:
                await self._slots(token)
            case RunPhase.finalizing:
                await self._finalizing(token)

    # --- Helpers ---

    async def _await(self, token: _LoopToken, awaitable: Awaitable[Any]) -> Any:
        result = await awaitable
        self._ensure_current(token)
        return result

    async def _tab_call(self, token: _LoopToken, awaitable: Awaitable[Any], what: str) -> Any:
        try:
            result = await asyncio.wait_for(awaitable, timeout=self._config.operation_timeout)
        except asyncio.TimeoutError:
            raise PortTimeoutError(
                f"{what} timed out after {self._config.operation_timeout:g}s"
            ) from None
        self._ensure_current(token)
        return result

    async def _open(self, token: _LoopToken, url: str) -> None:
        tab_id = self._context.tab_id
        await self._tab_call(token, self._tabs.navigate(tab_id, url), f"navigate to {url}")
        await self._tab_call(
            token,
            self._tabs.wait_for_load(tab_id, self._config.operation_timeout),
            f"load of {url}",
        )
        if self._config.settle_delay:
            await asyncio.sleep(self._config.settle_delay)
            self._ensure_current(token)

    def _step(self, token: _LoopToken, step: Any) -> None:
        self._ensure_current(token)
        self._machine.dispatch(StepUpdate(step=step.value if step is not None else None))

    def _progress(self, token: _LoopToken, **counters: int) -> None:
        self._ensure_current(token)
        self._machine.dispatch(ProgressUpdate(**counters))

    def _clear_review_pack(self) -> None:
        try:
            self._machine.store.clear_review_pack()
        except Exception:
            logger.exception("Failed to clear previous review pack")

    # --- Phases ---

    async def _initializing(self, token: _LoopToken) -> None:
        ctx = self._context
        site = self._config.site

        self._step(token, InitializingStep.checking_tab)
        tab = await self._tab_call(token, self._tabs.get(ctx.tab_id), f"lookup of tab {ctx.tab_id}")
        if tab is None:
            raise CartRunError(f"Tab {ctx.tab_id} is not open")
        if not tab.url or site.host not in tab.url:
            logger.info(f"Tab {ctx.tab_id} is on {tab.url!r}; opening {site.base_url}")
            await self._open(token, site.base_url)
        elif tab.loading:
            await self._tab_call(
                token,
                self._tabs.wait_for_load(ctx.tab_id, self._config.operation_timeout),
                f"load of tab {ctx.tab_id}",
            )

        self._step(token, InitializingStep.checking_login)
        login = await self._await(token, self._client.check_login(ctx.tab_id))
        if not login.is_logged_in:
            raise AuthError("Not logged in to the store; log in and start a new run")
        ctx.login = login
        self._step(token, None)

    async def _load_orders(self, token: _LoopToken) -> list[OrderSummary]:
        """Fetch history and pick the orders to merge, oldest first."""
        ctx = self._context
        site = self._config.site

        self._step(token, CartStep.loading_orders)
        await self._open(token, site.url(site.order_history_path))
        history = await self._await(
            token, self._client.extract_history(ctx.tab_id, self._config.history_limit)
        )
        if not history:
            raise CartRunError("Order history is empty; nothing to reorder")

        self._step(token, CartStep.selecting_order)
        if ctx.target_order_id:
            selected = [o for o in history if o.order_id == ctx.target_order_id]
            if not selected:
                raise CartRunError(f"Order {ctx.target_order_id} is not in the order history")
        else:
            newest = sorted(history, key=lambda o: (o.date, o.order_id), reverse=True)
            selected = newest[: self._config.order_limit]
        selected.sort(key=lambda o: (o.date, o.order_id))

        ctx.orders = selected
        self._progress(token, orders_total=len(selected), orders_loaded=0)
        return selected

    async def _order_lines(self, token: _LoopToken, order: OrderSummary) -> list[OrderItem] | None:
        """Open the order's detail page and read its lines; None when it has no page."""
        if not order.detail_url:
            logger.warning(f"Order {order.order_id} has no detail page; skipping it")
            return None
        await self._open(token, self._config.site.url(order.detail_url))
        detail = await self._await(
            token, self._client.extract_detail(self._context.tab_id, order.order_id)
        )
        return detail.items

    async def _scan_and_compare(self, token: _LoopToken) -> None:
        ctx = self._context
        site = self._config.site

        self._step(token, CartStep.scanning_cart)
        await self._open(token, site.url(site.cart_path))
        ctx.cart_items = await self._await(token, self._client.scan_cart(ctx.tab_id, True))

        self._step(token, CartStep.comparing)
        ctx.cart_diff = compute_diff(
            ctx.original_lines,
            ctx.cart_items,
            price_tolerance=self._config.thresholds.price_tolerance,
        )
        ctx.unavailable_items = items_needing_substitution(ctx.cart_diff)
        logger.info(f"Cart diff: {describe_diff(ctx.cart_diff)}")
        self._progress(
            token,
            items_processed=len(ctx.cart_items),
            unavailable_items=len(ctx.unavailable_items),
        )

    async def _cart(self, token: _LoopToken) -> None:
        ctx = self._context
        orders = await self._load_orders(token)
        ctx.original_lines = []

        issued = 0
        for i, order in enumerate(orders):
            lines = await self._order_lines(token, order)
            if lines is None:
                continue
            ctx.original_lines.extend(lines)

            self._step(token, CartStep.reordering)
            mode = ReorderMode.replace if issued == 0 else ReorderMode.merge
            result = await self._await(token, self._client.reorder(ctx.tab_id, order.order_id, mode))
            issued += 1
            if not result.success or not result.button_clicked:
                logger.warning(
                    f"Reorder of {order.order_id} ({mode.value}) did not go through: "
                    f"{result.message or 'button not clicked'}"
                )
            else:
                logger.info(f"Reordered {order.order_id} ({mode.value})")

            self._step(token, CartStep.reordering)
            self._progress(
                token, orders_loaded=i + 1, items_total=len(ctx.original_lines)
            )

        await self._scan_and_compare(token)

    async def _rebuild_cart_data(self, token: _LoopToken) -> None:
        """Re-read orders and cart after a restart, without reordering again."""
        ctx = self._context
        logger.info("Rebuilding cart data lost in restart")
        orders = await self._load_orders(token)
        ctx.original_lines = []
        for i, order in enumerate(orders):
            lines = await self._order_lines(token, order)
            if lines is not None:
                ctx.original_lines.extend(lines)
            self._progress(token, orders_loaded=i + 1, items_total=len(ctx.original_lines))
        await self._scan_and_compare(token)

    async def _substitution(self, token: _LoopToken) -> None:
        ctx = self._context
        if ctx.cart_diff is None:
            await self._rebuild_cart_data(token)

        self._step(token, SubstitutionStep.identifying)
        ctx.substitutions = []
        if not ctx.unavailable_items:
            logger.info("All items available; no substitutes needed")
            return
        if not self._advisor.is_available():
            logger.warning(
                f"Substitution advisor unavailable; {len(ctx.unavailable_items)} item(s) left as-is"
            )
            return

        for item in ctx.unavailable_items:
            self._step(token, SubstitutionStep.searching)
            try:
                proposal = await self._advisor.propose(ctx.tab_id, item)
            except Exception as exc:
                self._ensure_current(token)
                logger.warning(f"Substitute search for {item.name!r} failed: {exc}")
                continue
            self._ensure_current(token)

            self._step(token, SubstitutionStep.scoring)
            if proposal is None:
                continue
            self._step(token, SubstitutionStep.proposing)
            ctx.substitutions.append(proposal)
            self._progress(token, substitutes_proposed=len(ctx.substitutions))

    async def _slots(self, token: _LoopToken) -> None:
        ctx = self._context
        site = self._config.site

        self._step(token, SlotsStep.navigating)
        await self._open(token, site.url(site.delivery_slots_path))

        self._step(token, SlotsStep.extracting)
        ctx.delivery_slots = await self._await(token, self._client.extract_slots(ctx.tab_id))

        self._step(token, SlotsStep.scoring)
        scored = score_slots(ctx.delivery_slots, self._config.slot_preferences)
        ctx.slot_recommendation = recommend_slots(scored)
        self._progress(token, slots_found=len(ctx.delivery_slots))
        if not ctx.slot_recommendation.recommended:
            logger.warning("No available delivery slots")

    async def _finalizing(self, token: _LoopToken) -> None:
        ctx = self._context
        if ctx.cart_diff is None:
            await self._rebuild_cart_data(token)
        if ctx.slot_recommendation is None:
            await self._slots(token)

        self._step(token, FinalizingStep.assembling)
        pack = self._build_review_pack()

        self._step(token, FinalizingStep.persisting)
        self._machine.store.save_review_pack(pack)

        self._step(token, None)
        if not pack_ready(self._machine.state):
            raise CartRunError("Review pack persisted but run is not in a finalizable state")

    def _build_review_pack(self) -> ReviewPack:
        ctx = self._context
        state = self._machine.state
        diff = ctx.cart_diff or CartDiff()
        thresholds = self._config.thresholds
        now = datetime.now(timezone.utc)

        needing = len(ctx.unavailable_items)
        coverage = len(ctx.substitutions) / needing if needing else 1.0
        availability = availability_percentage(ctx.original_lines, diff)
        recommendation = ctx.slot_recommendation
        slot_available = bool(recommendation and recommendation.recommended)

        reasons = attention_reasons(diff, thresholds.price_alert_threshold)
        if not slot_available:
            reasons.append("no delivery slot available")
        if needing and coverage < 1.0:
            reasons.append(f"{needing - len(ctx.substitutions)} item(s) without a substitute")

        overall = (availability / 100 + coverage + (1.0 if slot_available else 0.0)) / 3
        elapsed = (now - state.started_at).total_seconds() if state.started_at else 0.0

        return ReviewPack(
            run_id=state.run_id,
            original_orders=ctx.orders,
            cart_items=ctx.cart_items,
            cart_diff=diff,
            substitutions=ctx.substitutions,
            slot_recommendation=recommendation,
            stats=RunStats(
                total_items=len(ctx.cart_items),
                unavailable_items=needing,
                substitutes_proposed=len(ctx.substitutions),
                slots_found=len(ctx.delivery_slots),
                execution_time_seconds=round(max(0.0, elapsed), 3),
            ),
            confidence=ConfidenceMetrics(
                availability_percent=availability,
                substitution_coverage=round(coverage, 2),
                slot_available=slot_available,
                requires_attention=bool(reasons),
                attention_reasons=reasons,
                overall=round(overall, 2),
            ),
            generated_at=now,
        )
