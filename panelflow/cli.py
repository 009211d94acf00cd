"""Command line interface for operating panel workflows."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import typer

from panelflow import WorkflowError, WorkflowService
from panelflow.config import PanelflowConfig, load_config
from panelflow.models import HistoryEntry, InspectionOutcome, WorkflowRecord
from panelflow.stations import list_stations

T = TypeVar("T")

app = typer.Typer(help="CLI for solar panel station workflows")

# Command groups
panel_app = typer.Typer(help="Commands for individual panel workflows")

app.add_typer(panel_app, name="panel")


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(
        None, "--config", help="Path to a panelflow YAML configuration file"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Panelflow CLI entry point."""
    settings = load_config(config)
    level = logging.DEBUG if verbose else settings.log_level.upper()
    logging.basicConfig(
        level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    ctx.obj = settings


def _config(ctx: typer.Context) -> PanelflowConfig:
    return ctx.obj if isinstance(ctx.obj, PanelflowConfig) else load_config()


def _run(
    ctx: typer.Context, operation: Callable[[WorkflowService], Awaitable[T]]
) -> T:
    """Restore a service from the repository and run ``operation`` on it."""
    service = WorkflowService.from_config(_config(ctx))

    async def _go() -> T:
        await service.restore()
        return await operation(service)

    try:
        return asyncio.run(_go())
    except WorkflowError as exc:
        typer.secho(f"Error: {exc}", fg=typer.colors.RED)
        if exc.details:
            typer.secho(json.dumps(exc.details, default=str), fg=typer.colors.RED)
        raise typer.Exit(code=1)


def _parse_value(raw: str) -> Any:
    text = raw.strip()
    if text.lower() in ("true", "false"):
        return text.lower() == "true"
    if text.startswith("{"):
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise typer.BadParameter(f"Invalid JSON reading: {text}") from exc
    try:
        return float(text)
    except ValueError:
        return text


def _parse_criteria(values: List[str]) -> Dict[str, Any]:
    """Turn ``name=value`` pairs into a criteria mapping."""
    criteria: Dict[str, Any] = {}
    for item in values:
        name, sep, value = item.partition("=")
        if not sep or not name.strip():
            raise typer.BadParameter(f"Expected name=value, got: {item}")
        criteria[name.strip()] = _parse_value(value)
    return criteria


def _echo_record(record: WorkflowRecord) -> None:
    typer.echo(f"Panel {record.panel_id}: {record.current_state.value} ({record.status.value})")
    typer.echo(f"Barcode: {record.barcode}  Line: {record.line_number}")
    typer.echo(f"Progress: {record.workflow_progress}%")
    if record.next_state:
        typer.echo(f"Next state: {record.next_state.value}")
    if record.quality_score is not None:
        typer.echo(f"Quality score: {record.quality_score}")
    if record.final_quality_score is not None:
        typer.echo(f"Final quality score: {record.final_quality_score}")
    if record.rework_count:
        typer.echo(f"Rework count: {record.rework_count}")


def _echo_outcome(outcome: InspectionOutcome) -> None:
    color = (
        typer.colors.GREEN if outcome.result.value == "PASS" else typer.colors.YELLOW
    )
    typer.secho(f"{outcome.result.value}: {outcome.message}", fg=color)
    if outcome.next_state:
        typer.echo(f"State: {outcome.next_state.value}")
    typer.echo(f"Quality score: {outcome.quality_score}")
    typer.echo(f"Progress: {outcome.workflow_progress}%")
    for reason in outcome.failure_reasons:
        typer.echo(f"- {reason.criterion}: {reason.reason}")
    for action in outcome.required_actions:
        typer.echo(f"* {action}")
    for action in outcome.next_actions:
        typer.echo(f"> {action}")


def _echo_history(entry: HistoryEntry) -> None:
    from_state = entry.from_state.value if entry.from_state else "-"
    to_state = entry.to_state.value if entry.to_state else "-"
    typer.echo(
        f"{entry.timestamp.isoformat()}\t{entry.action.value}\t{from_state} -> {to_state}"
    )


@panel_app.command("init")
def panel_init(
    ctx: typer.Context,
    panel_id: str,
    barcode: str,
    line: int = typer.Option(..., "--line", "-l", help="Production line number"),
) -> None:
    """
    Start the workflow of a freshly scanned panel.

    Example:
        panelflow panel init P1 CRS24F1236 --line 1
    """
    record = _run(ctx, lambda s: s.initialize_workflow(panel_id, barcode, line))
    typer.echo(f"Initialized workflow for {record.panel_id}")
    _echo_record(record)


@panel_app.command("transition")
def panel_transition(
    ctx: typer.Context,
    panel_id: str,
    state: str,
    station: Optional[str] = typer.Option(None, "--station", help="Station performing the move"),
    operator: Optional[str] = typer.Option(None, "--operator", help="Operator identifier"),
) -> None:
    """Move a panel to STATE if the transition table allows it."""
    context = {"station_id": station, "operator_id": operator}
    record = _run(ctx, lambda s: s.transition_workflow(panel_id, state, context))
    _echo_record(record)


@panel_app.command("inspect")
def panel_inspect(
    ctx: typer.Context,
    panel_id: str,
    station: str,
    result: str = typer.Option(..., "--result", "-r", help="PASS or FAIL"),
    criterion: List[str] = typer.Option(
        [], "--criterion", "-c", help="Criterion reading as name=value (repeatable)"
    ),
    notes: Optional[str] = typer.Option(None, "--notes", help="Inspection notes"),
    operator: Optional[str] = typer.Option(None, "--operator", help="Operator identifier"),
) -> None:
    """
    Record an inspection at STATION.

    Boolean criteria take true/false or PASS/FAIL. Measurements can be given
    as JSON, e.g. powerOutput='{"measured": 398, "nominal": 400}'.

    Example:
        panelflow panel inspect P1 STATION_1 --result PASS \\
            -c cellAlignment=true -c electricalConnection=true -c visualInspection=true
    """
    data = {
        "result": result,
        "criteria": _parse_criteria(criterion),
        "notes": notes,
        "operator_id": operator,
    }
    outcome = _run(ctx, lambda s: s.process_inspection(panel_id, station, data))
    _echo_outcome(outcome)


@panel_app.command("complete")
def panel_complete(
    ctx: typer.Context,
    panel_id: str,
    quality_score: Optional[float] = typer.Option(None, "--quality-score", help="Final quality score"),
    operator: Optional[str] = typer.Option(None, "--operator", help="Operator identifier"),
    notes: Optional[str] = typer.Option(None, "--notes"),
) -> None:
    """Complete a panel waiting at final inspection."""
    data = {"quality_score": quality_score, "operator_id": operator, "notes": notes}
    record = _run(ctx, lambda s: s.complete_workflow(panel_id, data))
    typer.echo(f"Completed workflow for {record.panel_id}")
    _echo_record(record)


@panel_app.command("rework")
def panel_rework(
    ctx: typer.Context,
    panel_id: str,
    station: str,
    reason: Optional[str] = typer.Option(None, "--reason", help="Why the panel is reworked"),
    notes: Optional[str] = typer.Option(None, "--notes"),
    operator: Optional[str] = typer.Option(None, "--operator", help="Operator identifier"),
) -> None:
    """Send a panel back to the workflow step of STATION."""
    data = {"reason": reason, "notes": notes, "operator_id": operator}
    record = _run(ctx, lambda s: s.reset_workflow_for_rework(panel_id, station, data))
    typer.echo(f"Panel {record.panel_id} sent back to {record.current_state.value}")
    _echo_record(record)


@panel_app.command("show")
def panel_show(ctx: typer.Context, panel_id: str) -> None:
    """Show the current workflow record of a panel."""

    async def _show(service: WorkflowService) -> WorkflowRecord:
        return service.get_workflow_state(panel_id)

    _echo_record(_run(ctx, _show))


@panel_app.command("history")
def panel_history(ctx: typer.Context, panel_id: str) -> None:
    """List the audit history of a panel, oldest first."""

    async def _history(service: WorkflowService) -> List[HistoryEntry]:
        return service.engine.get_workflow_history(panel_id)

    for entry in _run(ctx, _history):
        _echo_history(entry)


@panel_app.command("list")
def panel_list(
    ctx: typer.Context,
    status: Optional[str] = typer.Option(None, "--status", help="ACTIVE, COMPLETED or FAILED"),
    station: Optional[str] = typer.Option(None, "--station", help="Only panels waiting at this station"),
) -> None:
    """List panel workflows with their current state."""

    async def _list(service: WorkflowService) -> List[WorkflowRecord]:
        if station:
            records = service.engine.get_workflows_by_station(station)
            if status:
                wanted = {r.panel_id for r in service.engine.get_workflows_by_status(status)}
                records = [r for r in records if r.panel_id in wanted]
            return records
        if status:
            return service.engine.get_workflows_by_status(status)
        return service.engine.snapshot().records

    records = _run(ctx, _list)
    if not records:
        typer.echo("No workflows found")
        return
    for record in sorted(records, key=lambda r: r.panel_id):
        typer.echo(
            f"{record.panel_id}\t{record.current_state.value}\t"
            f"{record.status.value}\t{record.workflow_progress}%"
        )


@app.command("stations")
def stations() -> None:
    """List stations with their workflow step and required criteria."""
    for config in list_stations():
        typer.echo(
            f"{config.station_id.value}\t{config.name}\t{config.workflow_step.value}"
            f" -> {config.next_step.value}"
        )
        typer.echo(f"  required: {', '.join(config.criteria.required)}")
        if config.criteria.optional:
            typer.echo(f"  optional: {', '.join(config.criteria.optional)}")


@app.command("stats")
def stats(ctx: typer.Context) -> None:
    """Show workflow counts by state and status."""

    async def _stats(service: WorkflowService) -> Dict[str, Any]:
        return service.get_workflow_statistics()

    result = _run(ctx, _stats)
    typer.echo(f"Total: {result['total']}")
    for status, count in result["by_status"].items():
        typer.echo(f"{status}\t{count}")
    for state, count in result["by_state"].items():
        if count:
            typer.echo(f"  {state}\t{count}")


if __name__ == "__main__":
    app()
