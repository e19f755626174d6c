"""CLI: drive reorder runs, inspect state and review packs."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import typer

app = typer.Typer(name="cartmerge", help="Grocery reorder run CLI")

_STATE_DIR_HELP = "State directory (default: $CARTMERGE_STATE_DIR or ~/.cartmerge/state)"


@app.callback()
def main(
    log_level: str = typer.Option(None, "--log-level", help="Log level (default: $CARTMERGE_LOG_LEVEL or INFO)"),
) -> None:
    """Configure logging for every command."""
    from cartmerge.config import get_log_file, get_log_level
    from cartmerge.utils.log import configure_logging

    configure_logging((log_level or get_log_level()).upper(), get_log_file())


@app.command()
def run(
    fixtures: Path = typer.Option(..., "--fixtures", "-f", help="Fixture directory standing in for the store"),
    state_dir: Path = typer.Option(None, "--state-dir", help=_STATE_DIR_HELP),
    config_file: Path = typer.Option(None, "--config", "-c", help="Orchestrator YAML config"),
    tab_id: int = typer.Option(None, "--tab-id", help="Tab to run in (default: the fixture's tab)"),
    order_id: str = typer.Option(None, "--order-id", help="Reorder only this order"),
    json_output: bool = typer.Option(False, "--json", help="Output raw JSON state"),
) -> None:
    """Start a run and drive it to the review gate."""
    site, orchestrator = _build(fixtures, state_dir, config_file)
    state = asyncio.run(orchestrator.start_run(tab_id if tab_id is not None else site.tab.id, order_id))
    _output_state(state, json_output)


@app.command()
def resume(
    fixtures: Path = typer.Option(..., "--fixtures", "-f", help="Fixture directory standing in for the store"),
    state_dir: Path = typer.Option(None, "--state-dir", help=_STATE_DIR_HELP),
    config_file: Path = typer.Option(None, "--config", "-c", help="Orchestrator YAML config"),
    json_output: bool = typer.Option(False, "--json", help="Output raw JSON state"),
) -> None:
    """Resume a paused run (allowed while the error is retryable)."""
    _, orchestrator = _build(fixtures, state_dir, config_file)
    state = asyncio.run(orchestrator.resume_run())
    _output_state(state, json_output)


@app.command()
def recover(
    fixtures: Path = typer.Option(..., "--fixtures", "-f", help="Fixture directory standing in for the store"),
    state_dir: Path = typer.Option(None, "--state-dir", help=_STATE_DIR_HELP),
    config_file: Path = typer.Option(None, "--config", "-c", help="Orchestrator YAML config"),
    json_output: bool = typer.Option(False, "--json", help="Output raw JSON state"),
) -> None:
    """Continue a run that was interrupted while running."""
    _, orchestrator = _build(fixtures, state_dir, config_file)
    state = asyncio.run(orchestrator.recover())
    _output_state(state, json_output)


@app.command()
def status(
    state_dir: Path = typer.Option(None, "--state-dir", help=_STATE_DIR_HELP),
    json_output: bool = typer.Option(False, "--json", help="Output raw JSON state"),
) -> None:
    """Show the persisted run state."""
    machine = _machine(state_dir)
    _output_state(machine.state, json_output, exit_on_error=False)


@app.command()
def cancel(
    state_dir: Path = typer.Option(None, "--state-dir", help=_STATE_DIR_HELP),
) -> None:
    """Cancel the active run and discard its review pack."""
    from cartmerge.models.actions import CancelRun

    machine = _machine(state_dir)
    previous = machine.state
    state = machine.dispatch(CancelRun())
    if state is previous:
        typer.echo(f"Nothing to cancel (status: {previous.status.value})", err=True)
        raise typer.Exit(1)
    machine.store.clear_review_pack()
    typer.echo(f"Run {previous.run_id} cancelled")


@app.command()
def approve(
    state_dir: Path = typer.Option(None, "--state-dir", help=_STATE_DIR_HELP),
) -> None:
    """Approve the reviewed cart. The order itself is placed by hand."""
    from cartmerge.models.actions import ApproveCart

    machine = _machine(state_dir)
    previous = machine.state
    state = machine.dispatch(ApproveCart())
    if state is previous:
        typer.echo(f"Nothing to approve (status: {previous.status.value})", err=True)
        raise typer.Exit(1)
    typer.echo(f"Run {state.run_id} approved; complete the purchase on the store website")


@app.command()
def reset(
    state_dir: Path = typer.Option(None, "--state-dir", help=_STATE_DIR_HELP),
) -> None:
    """Clear an approved run so the next one can start."""
    from cartmerge.models.actions import ResetRun

    machine = _machine(state_dir)
    previous = machine.state
    state = machine.dispatch(ResetRun())
    if state is previous:
        typer.echo(f"Nothing to reset (status: {previous.status.value})", err=True)
        raise typer.Exit(1)
    machine.store.clear_review_pack()
    typer.echo(f"Run {previous.run_id} reset")


@app.command()
def review(
    state_dir: Path = typer.Option(None, "--state-dir", help=_STATE_DIR_HELP),
    json_output: bool = typer.Option(False, "--json", help="Output raw JSON review pack"),
) -> None:
    """Show the review pack of the last finished run."""
    from cartmerge.report import render_review

    machine = _machine(state_dir)
    pack = machine.store.load_review_pack()
    if pack is None:
        typer.echo(f"No review pack (status: {machine.state.status.value})", err=True)
        raise typer.Exit(1)
    if json_output:
        typer.echo(json.dumps(pack.to_json_dict(), indent=2))
    else:
        typer.echo(render_review(pack))


@app.command()
def diff(
    original_file: Path = typer.Argument(..., help="JSON with the original order lines ({'items': [...]})"),
    cart_file: Path = typer.Argument(..., help="JSON with the live cart ({'items': [...]})"),
    json_output: bool = typer.Option(False, "--json", help="Output raw JSON diff"),
) -> None:
    """Compare order lines with a cart snapshot."""
    from pydantic import TypeAdapter

    from cartmerge.cart.diff import compute_diff, describe_diff
    from cartmerge.models.cart import CartItem
    from cartmerge.models.orders import OrderItem

    try:
        original = TypeAdapter(list[OrderItem]).validate_python(_read_items(original_file))
        cart = TypeAdapter(list[CartItem]).validate_python(_read_items(cart_file))
    except Exception as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(1)

    result = compute_diff(original, cart)
    if json_output:
        typer.echo(json.dumps(result.to_json_dict(), indent=2))
    else:
        typer.echo(describe_diff(result))
        typer.echo(f"Price difference: {result.summary.price_difference:+.2f}")


@app.command()
def slots(
    slots_file: Path = typer.Argument(..., help="JSON with delivery slots ({'slots': [...]})"),
    prefs_file: Path = typer.Option(None, "--prefs", "-p", help="YAML slot preferences"),
    json_output: bool = typer.Option(False, "--json", help="Output raw JSON recommendation"),
) -> None:
    """Score delivery slots and show the recommendation."""
    from pydantic import TypeAdapter

    from cartmerge.models.slots import DeliverySlot, SlotPreferences
    from cartmerge.slots.scoring import recommend_slots, score_slots
    from cartmerge.utils.yaml_io import load_yaml

    try:
        with open(slots_file) as f:
            raw = json.load(f)
        parsed = TypeAdapter(list[DeliverySlot]).validate_python(raw.get("slots", []))
        prefs = SlotPreferences.model_validate(load_yaml(prefs_file)) if prefs_file else SlotPreferences()
    except Exception as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(1)

    recommendation = recommend_slots(score_slots(parsed, prefs))
    if json_output:
        typer.echo(json.dumps(recommendation.to_json_dict(), indent=2))
        return
    for slot in recommendation.all_slots:
        marker = "*" if slot in recommendation.recommended else " "
        typer.echo(
            f"{marker} {slot.date} {slot.time_start}-{slot.time_end}  "
            f"fee {slot.fee:.2f}  score {slot.score:3d}  {slot.reason}"
        )


def _machine(state_dir: Path | None):
    from cartmerge.config import get_state_dir
    from cartmerge.runner.machine import StateMachine
    from cartmerge.runner.state_store import FileStateStore

    return StateMachine.restore(FileStateStore(state_dir or get_state_dir()))


def _build(fixtures: Path, state_dir: Path | None, config_file: Path | None):
    """Wire a fixture-backed orchestrator over the persisted state."""
    from cartmerge.adapters.fixtures import load_fixture_ports
    from cartmerge.config import load_config
    from cartmerge.runner.orchestrator import RunOrchestrator

    try:
        config = load_config(config_file)
        site, router, tabs = load_fixture_ports(fixtures)
    except Exception as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(1)
    orchestrator = RunOrchestrator(_machine(state_dir), router, tabs, config)
    return site, orchestrator


def _read_items(path: Path) -> list:
    with open(path) as f:
        data = json.load(f)
    return data["items"] if isinstance(data, dict) else data


def _output_state(state, json_output: bool, exit_on_error: bool = True) -> None:
    """Print the run state; exit 1 when the run stopped on an error."""
    if json_output:
        typer.echo(json.dumps(state.to_json_dict(), indent=2))
    else:
        phase = state.phase.value if state.phase else "-"
        typer.echo(f"Run: {state.run_id or '-'}")
        typer.echo(f"Status: {state.status.value}  Phase: {phase}  Step: {state.step or '-'}")
        p = state.progress
        typer.echo(
            f"Orders {p.orders_loaded}/{p.orders_total}  Items {p.items_processed}  "
            f"Unavailable {p.unavailable_items}  Substitutes {p.substitutes_proposed}  "
            f"Slots {p.slots_found}"
        )
        if state.error:
            retry = "retryable" if state.error.recoverable else "not retryable"
            typer.echo(f"Error [{state.error.code.value}, {retry}]: {state.error.message}", err=True)
    if exit_on_error and state.error is not None:
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
