"""Typer-powered command line interface for ``endpointctl``.

Commands scan the local Windows endpoint, score its health, plan and apply
remediations, and manage the persisted cooldown, history and rollback state.
Every command runs inside a structured operation scope so the operations log
records what was done and why it ended the way it did.
"""
from __future__ import annotations

import json
import signal
import sys
import textwrap
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .cancellation import CancellationToken
from .config import AppConfig, ConfigError, load_config
from .diagnostics import (
    PhaseStatus,
    ProbeContext,
    ScanOptions,
    ScanResult,
    format_mb,
    run_scan,
    serialize_scan,
    to_payload,
)
from .exit_codes import ExitCode
from .history import BeforeAfterSnapshot, MetricDelta, ScanHistory, ScanSnapshot, compare
from .logging import OperationScope, StructuredLogger
from .providers import RegistryProvider, ShellRunner, SystemQueries, WindowsServices
from .remediation import (
    COOLDOWN_CATEGORIES,
    ActionResult,
    ActionStatus,
    CooldownStore,
    OptimizationAction,
    RemediationHost,
    VerificationOutcome,
    build_plan,
    dispatch,
    verify,
)
from .rollback import RollbackJournal
from .scoring import score, score_breakdown
from .state import StateRegistry, StateRegistryError

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to endpointctl's YAML config file.",
)

JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit machine-readable JSON instead of tables.",
)

THROUGHPUT_OPTION = typer.Option(
    False,
    "--with-throughput",
    help="Also measure download throughput (opt-in, adds up to 45 seconds).",
)

NO_HISTORY_OPTION = typer.Option(
    False,
    "--no-history",
    help="Do not record this scan in the history file.",
)

SELECT_OPTION = typer.Option(
    None,
    "--select",
    metavar="KEY",
    help="Action key to apply (repeatable). Defaults to the auto-selected actions.",
)

ALL_OPTION = typer.Option(
    False,
    "--all",
    help="Apply every executable action in the plan.",
)

YES_OPTION = typer.Option(
    False,
    "--yes",
    "-y",
    help="Do not ask for confirmation.",
)

DRY_RUN_OPTION = typer.Option(
    False,
    "--dry-run",
    help="Show what would be applied without changing anything.",
)

HISTORY_LIMIT_OPTION = typer.Option(
    10,
    "--limit",
    min=1,
    help="Number of snapshots to show.",
)

_STATUS_STYLE = {
    ActionStatus.SUCCESS: "[green]Success[/green]",
    ActionStatus.PARTIAL_SUCCESS: "[yellow]PartialSuccess[/yellow]",
    ActionStatus.NO_CHANGE: "[cyan]NoChange[/cyan]",
    ActionStatus.FAILED: "[red]Failed[/red]",
    ActionStatus.SKIPPED: "[dim]Skipped[/dim]",
}

_DIRECTION_STYLE = {1: "[green]▲ improved[/green]", 0: "unchanged", -1: "[red]▼ degraded[/red]"}


app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Windows endpoint diagnostics, health scoring and remediation.

        Run `scan` for a read-only health report, `plan` to see the proposed
        remediations, and `fix` to apply them with verification.
        """
    ).strip(),
)


class UnsupportedPlatformError(RuntimeError):
    """Raised when endpointctl runs somewhere other than Windows."""


@dataclass(slots=True)
class Providers:
    """Live platform providers for one invocation."""

    system: SystemQueries
    runner: ShellRunner
    services: WindowsServices
    registry: RegistryProvider


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    state: StateRegistry
    logger: StructuredLogger
    cooldown: CooldownStore
    history: ScanHistory


def _build_providers(config: AppConfig) -> Providers:
    if sys.platform != "win32":
        raise UnsupportedPlatformError(
            f"endpointctl inspects Windows endpoints and cannot run on {sys.platform}."
        )
    runner = ShellRunner(cmd_bin=config.tools.cmd_bin, powershell_bin=config.tools.powershell_bin)
    services = WindowsServices(runner)
    registry = RegistryProvider()
    system = SystemQueries(runner, registry, services, query_timeout=config.scan.slow_timeout)
    return Providers(system=system, runner=runner, services=services, registry=registry)


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=ExitCode.VALIDATION) from exc
    state = StateRegistry(config.state_dir)
    runtime = RuntimeContext(
        config=config,
        state=state,
        logger=StructuredLogger(config.logs_dir),
        cooldown=CooldownStore(state, cooldown_days=config.remediation.cooldown_days),
        history=ScanHistory(state, limit=config.remediation.history_limit),
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


@app.callback(invoke_without_command=True)
def _root(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the endpointctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        runtime = _ensure_runtime(ctx, config_file)
        with runtime.logger.operation(
            "root --version",
            args={"version": True},
            target={"kind": "meta", "scope": "version"},
        ) as op:
            console.print(f"endpointctl {__version__}")
            op.success("Reported CLI version.", changed=0)
        raise typer.Exit(code=0)

    _ensure_runtime(ctx, config_file)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.VALIDATION,
    errors: Sequence[str] | None = None,
    context: Mapping[str, object] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{message}[/red]")
    op.error(message, errors=list(errors or [message]), rc=int(rc), context=context)
    raise typer.Exit(code=int(rc))


def _providers(runtime: RuntimeContext, op: OperationScope) -> Providers:
    try:
        return _build_providers(runtime.config)
    except UnsupportedPlatformError as exc:
        _command_error(op, str(exc), rc=ExitCode.ENVIRONMENT)


def _host(runtime: RuntimeContext, providers: Providers) -> RemediationHost:
    return RemediationHost(
        system=providers.system,
        runner=providers.runner,
        services=providers.services,
        registry=providers.registry,
        journal=RollbackJournal(providers.registry, runtime.state),
        delete_workers=runtime.config.remediation.delete_workers,
    )


@contextmanager
def _cancel_on_interrupt(token: CancellationToken) -> Iterator[None]:
    """Turn Ctrl+C into a cooperative cancellation request for the block."""

    def _handler(signum: int, frame: object) -> None:
        console.print("[yellow]Cancelling after the current step...[/yellow]")
        token.cancel()

    try:
        previous = signal.signal(signal.SIGINT, _handler)
    except ValueError:  # not the main thread
        yield
        return
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def _scan(
    runtime: RuntimeContext,
    providers: Providers,
    *,
    with_throughput: bool,
    quiet: bool,
    cancel: CancellationToken | None = None,
) -> ScanResult:
    context = ProbeContext(
        system=providers.system,
        config=runtime.config.scan,
        options=ScanOptions(include_throughput=with_throughput),
    )
    if quiet:
        return run_scan(context, cancel)
    with console.status("Scanning...") as status:
        return run_scan(
            context,
            cancel,
            on_phase=lambda outcome: status.update(f"Scanning... {outcome.probe_id} done"),
        )


def _record_snapshot(runtime: RuntimeContext, op: OperationScope, snapshot: ScanSnapshot) -> None:
    try:
        runtime.history.record(snapshot)
    except StateRegistryError as exc:
        _command_error(op, f"Failed to record scan history: {exc}", rc=ExitCode.ENVIRONMENT)


def _previous_snapshot(runtime: RuntimeContext, op: OperationScope) -> ScanSnapshot | None:
    try:
        return runtime.history.previous()
    except StateRegistryError as exc:
        _command_error(op, f"Failed to read scan history: {exc}", rc=ExitCode.ENVIRONMENT)


def _delta_payload(deltas: Sequence[MetricDelta]) -> list[dict[str, object]]:
    return [
        {
            "metric": delta.metric,
            "previous": delta.previous,
            "current": delta.current,
            "delta": delta.delta,
            "direction": delta.direction,
        }
        for delta in deltas
    ]


def _render_deltas(title: str, deltas: Sequence[MetricDelta], *, labels: tuple[str, str]) -> None:
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("Metric", style="bold")
    table.add_column(labels[0], justify="right")
    table.add_column(labels[1], justify="right")
    table.add_column("Change")
    for delta in deltas:
        table.add_row(
            delta.metric,
            f"{delta.previous:g}",
            f"{delta.current:g}",
            _DIRECTION_STYLE[delta.direction],
        )
    console.print(table)


def _score_style(value: int) -> str:
    if value >= 80:
        return f"[green]{value}[/green]"
    if value >= 60:
        return f"[yellow]{value}[/yellow]"
    return f"[red]{value}[/red]"


def _render_scan(result: ScanResult, health: int) -> None:
    console.print(
        f"Health score: {_score_style(health)}/100 "
        f"(user={result.scanned_user or 'unknown'}, {result.duration_seconds:g}s)"
    )
    if result.incomplete:
        console.print("[yellow]Scan was cancelled; results are incomplete.[/yellow]")

    issues = result.issues
    if issues:
        table = Table(title="Issues", show_header=True, header_style="bold magenta")
        table.add_column("Severity")
        table.add_column("Category", style="bold")
        table.add_column("Finding")
        table.add_column("Recommendation")
        for issue in issues:
            table.add_row(issue.severity.value, issue.category, issue.message, issue.recommendation)
        console.print(table)
    else:
        console.print("[green]No issues found.[/green]")

    deductions = score_breakdown(result)
    if deductions:
        table = Table(title="Score deductions", show_header=True, header_style="bold magenta")
        table.add_column("Rule", style="bold")
        table.add_column("Reason")
        table.add_column("Points", justify="right")
        for deduction in deductions:
            table.add_row(deduction.rule_id, deduction.description, f"-{deduction.points}")
        console.print(table)

    for phase in result.phases:
        if phase.status is PhaseStatus.INCONCLUSIVE:
            console.print(f"[yellow]Inconclusive:[/yellow] {phase.message}")
        elif phase.status is PhaseStatus.SKIPPED and phase.message != "opt-in required":
            console.print(f"[dim]Skipped {phase.probe_id}: {phase.message}[/dim]")


def _action_payload(action: OptimizationAction) -> dict[str, object]:
    return {
        "key": action.key,
        "title": action.title,
        "category": action.category,
        "description": action.description,
        "risk": action.risk.value,
        "auto_selected": action.auto_selected,
        "action_type": action.action_type.value,
        "impact": action.impact.value,
        "estimated_duration": action.estimated_duration,
        "estimated_free_mb": action.estimated_free_mb,
        "remediation_category": action.remediation_category,
        "trigger": action.trigger,
        "warning": action.warning,
    }


def _render_plan(actions: Sequence[OptimizationAction], *, title: str = "Remediation plan") -> None:
    if not actions:
        console.print("[green]No remediations needed.[/green]")
        return
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("Key", style="bold")
    table.add_column("Action")
    table.add_column("Risk")
    table.add_column("Auto")
    table.add_column("Duration")
    table.add_column("Reclaim", justify="right")
    table.add_column("Notes")
    for action in actions:
        notes = action.description
        if action.warning:
            notes = f"{notes}\n[red]Warning: {action.warning}[/red]"
        table.add_row(
            action.key,
            action.title,
            action.risk.value,
            "yes" if action.auto_selected else "no",
            action.estimated_duration or "-",
            format_mb(action.estimated_free_mb) if action.estimated_free_mb else "-",
            notes,
        )
    console.print(table)


def _render_results(
    results: Sequence[ActionResult],
    outcomes: Sequence[VerificationOutcome],
) -> None:
    verification = {outcome.key: outcome for outcome in outcomes}
    table = Table(title="Results", show_header=True, header_style="bold magenta")
    table.add_column("Key", style="bold")
    table.add_column("Status")
    table.add_column("Verification")
    table.add_column("Freed", justify="right")
    table.add_column("Detail")
    for result in results:
        outcome = verification.get(result.key)
        table.add_row(
            result.key,
            _STATUS_STYLE[result.status],
            outcome.status.value if outcome else "-",
            format_mb(result.freed_mb) if result.freed_mb else "-",
            result.error or result.detail,
        )
    console.print(table)


def _select_actions(
    plan: Sequence[OptimizationAction],
    select: Sequence[str],
    select_all: bool,
) -> tuple[list[OptimizationAction], list[str]]:
    """Return the chosen actions and any unknown keys from *select*."""
    if select:
        by_key = {action.key: action for action in plan}
        unknown = [key for key in select if key not in by_key]
        wanted = set(select)
        return [action for action in plan if action.key in wanted], unknown
    if select_all:
        return [action for action in plan if action.executable], []
    return [action for action in plan if action.auto_selected and action.executable], []


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def scan(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
    with_throughput: bool = THROUGHPUT_OPTION,
    no_history: bool = NO_HISTORY_OPTION,
) -> None:
    """Run a read-only diagnostic scan and report the health score."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "scan",
        args={"json": json_output, "with_throughput": with_throughput, "no_history": no_history},
        target={"kind": "endpoint", "scope": "diagnostics"},
    ) as op:
        providers = _providers(runtime, op)
        token = CancellationToken()
        with _cancel_on_interrupt(token):
            result = _scan(runtime, providers, with_throughput=with_throughput, quiet=json_output, cancel=token)
        health = score(result)
        op.add_step("scan", detail={"phases": len(result.phases), "incomplete": result.incomplete})

        snapshot = ScanSnapshot.from_scan(result, health)
        previous = None if no_history else _previous_snapshot(runtime, op)
        if not no_history:
            _record_snapshot(runtime, op, snapshot)
            op.add_step("history.record")

        deltas = compare(previous, snapshot) if previous is not None else []
        if json_output:
            payload = {
                "health_score": health,
                "deductions": [to_payload(item) for item in score_breakdown(result)],
                "scan": serialize_scan(result),
                "delta": _delta_payload(deltas),
            }
            console.print_json(data=payload)
        else:
            _render_scan(result, health)
            if deltas:
                _render_deltas("Since previous scan", deltas, labels=("Previous", "Current"))

        log_context = {
            "health_score": health,
            "issues": len(result.issues),
            "inconclusive": [phase.probe_id for phase in result.inconclusive_phases],
        }
        if result.incomplete or result.inconclusive_phases:
            op.warning(
                "Scan completed with gaps.",
                warnings=[phase.message for phase in result.inconclusive_phases] or ["cancelled"],
                context=log_context,
            )
            return
        op.success("Scan completed.", context=log_context)


@app.command()
def plan(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
    with_throughput: bool = THROUGHPUT_OPTION,
) -> None:
    """Scan the endpoint and print the proposed remediation plan."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "plan",
        args={"json": json_output, "with_throughput": with_throughput},
        target={"kind": "endpoint", "scope": "remediation"},
    ) as op:
        providers = _providers(runtime, op)
        result = _scan(runtime, providers, with_throughput=with_throughput, quiet=json_output)
        try:
            actions = build_plan(result, runtime.cooldown)
        except StateRegistryError as exc:
            _command_error(op, f"Failed to read cooldown records: {exc}", rc=ExitCode.ENVIRONMENT)

        if json_output:
            payload = {
                "health_score": score(result),
                "actions": [_action_payload(action) for action in actions],
            }
            console.print_json(data=payload)
        else:
            console.print(f"Health score: {_score_style(score(result))}/100")
            _render_plan(actions)
        op.success(
            "Remediation plan generated.",
            context={"actions": [action.key for action in actions]},
        )


@app.command()
def fix(
    ctx: typer.Context,
    select: list[str] | None = SELECT_OPTION,
    select_all: bool = ALL_OPTION,
    yes: bool = YES_OPTION,
    dry_run: bool = DRY_RUN_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Apply remediations, verify them and show a before/after comparison."""
    runtime = _get_runtime(ctx)
    selected_keys = list(select or [])
    with runtime.logger.operation(
        "fix",
        args={
            "select": selected_keys,
            "all": select_all,
            "yes": yes,
            "dry_run": dry_run,
            "json": json_output,
        },
        target={"kind": "endpoint", "scope": "remediation"},
    ) as op:
        if selected_keys and select_all:
            _command_error(op, "Cannot combine --select and --all.")

        providers = _providers(runtime, op)
        before_scan = _scan(runtime, providers, with_throughput=False, quiet=json_output)
        try:
            actions = build_plan(before_scan, runtime.cooldown)
        except StateRegistryError as exc:
            _command_error(op, f"Failed to read cooldown records: {exc}", rc=ExitCode.ENVIRONMENT)

        chosen, unknown = _select_actions(actions, selected_keys, select_all)
        if unknown:
            _command_error(
                op,
                f"Unknown action key(s): {', '.join(unknown)}",
                errors=unknown,
                context={"available": [action.key for action in actions]},
            )
        op.add_step("plan", detail={"planned": len(actions), "selected": [a.key for a in chosen]})

        if not chosen:
            console.print("[green]Nothing to fix.[/green]")
            op.success("No actions selected.", changed=0)
            return

        if dry_run:
            if json_output:
                console.print_json(data={"dry_run": True, "actions": [_action_payload(a) for a in chosen]})
            else:
                _render_plan(chosen, title="Would apply")
                console.print(f"[yellow]Dry run[/yellow]: {len(chosen)} action(s) would be applied.")
            op.success("Dry run complete.", changed=0, context={"actions": [a.key for a in chosen]})
            return

        if not json_output:
            _render_plan(chosen, title="Selected actions")
        if not yes and not typer.confirm(f"Apply {len(chosen)} action(s)?", default=False):
            console.print("Aborted.")
            op.warning("Remediation aborted by operator.", warnings=["aborted"], changed=0)
            return

        host = _host(runtime, providers)
        token = CancellationToken()

        def _progress(action: OptimizationAction, result: ActionResult) -> None:
            if not json_output:
                console.print(f"{_STATUS_STYLE[result.status]} {action.title}")

        with _cancel_on_interrupt(token):
            results = dispatch(chosen, host, token, runtime.cooldown, on_result=_progress)
        outcomes = verify(results, chosen, host)
        op.add_step(
            "dispatch",
            detail={result.key: result.status.value for result in results},
        )

        after_scan = _scan(runtime, providers, with_throughput=False, quiet=True)
        snapshot = BeforeAfterSnapshot(
            before=ScanSnapshot.from_scan(before_scan, score(before_scan)),
            after=ScanSnapshot.from_scan(after_scan, score(after_scan)),
        )
        _record_snapshot(runtime, op, snapshot.after)

        failed = [result for result in results if result.status is ActionStatus.FAILED]
        changed = sum(1 for result in results if result.succeeded)
        if json_output:
            payload = {
                "results": [to_payload(result) for result in results],
                "verification": [to_payload(outcome) for outcome in outcomes],
                "before_after": _delta_payload(snapshot.rows()),
            }
            console.print_json(data=payload)
        else:
            _render_results(results, outcomes)
            _render_deltas("Before / after", snapshot.rows(), labels=("Before", "After"))

        log_context = {
            "results": [to_payload(result) for result in results],
            "verification": [to_payload(outcome) for outcome in outcomes],
        }
        if failed:
            _command_error(
                op,
                f"{len(failed)} action(s) failed.",
                rc=ExitCode.PROVIDER,
                errors=[f"{result.key}: {result.error}" for result in failed],
                context=log_context,
            )
        op.success(f"Applied {changed} action(s).", changed=changed, context=log_context)


@app.command()
def history(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
    limit: int = HISTORY_LIMIT_OPTION,
) -> None:
    """List recorded scan snapshots and the change between the latest two."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "history",
        args={"json": json_output, "limit": limit},
        target={"kind": "state", "scope": "history"},
    ) as op:
        try:
            snapshots = runtime.history.snapshots()
        except StateRegistryError as exc:
            _command_error(op, f"Failed to read scan history: {exc}", rc=ExitCode.ENVIRONMENT)

        shown = snapshots[-limit:]
        deltas = compare(snapshots[-2], snapshots[-1]) if len(snapshots) >= 2 else []
        if json_output:
            payload = {
                "snapshots": [snapshot.to_dict() for snapshot in shown],
                "delta": _delta_payload(deltas),
            }
            console.print_json(data=payload)
            op.success("Rendered scan history as JSON.", changed=0)
            return

        if not shown:
            console.print("No scans recorded yet.")
            op.success("No scan history.", changed=0)
            return
        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Timestamp", style="bold")
        table.add_column("Score", justify="right")
        table.add_column("Disk free", justify="right")
        table.add_column("RAM %", justify="right")
        table.add_column("Critical", justify="right")
        table.add_column("Crashes", justify="right")
        table.add_column("Startup", justify="right")
        for snapshot in shown:
            table.add_row(
                snapshot.timestamp.astimezone().strftime("%Y-%m-%d %H:%M"),
                _score_style(snapshot.health_score),
                format_mb(snapshot.disk_free_mb),
                f"{snapshot.ram_percent:.0f}",
                str(snapshot.critical_issues),
                str(snapshot.crash_count),
                str(snapshot.startup_count),
            )
        console.print(table)
        if deltas:
            _render_deltas("Latest change", deltas, labels=("Previous", "Latest"))
        op.success("Rendered scan history.", changed=0)


@app.command()
def rollback(
    ctx: typer.Context,
    yes: bool = YES_OPTION,
) -> None:
    """Restore every registry value captured before a remediation changed it."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "rollback",
        args={"yes": yes},
        target={"kind": "state", "scope": "rollback"},
    ) as op:
        providers = _providers(runtime, op)
        journal = RollbackJournal(providers.registry, runtime.state)
        try:
            entries = journal.entries()
        except StateRegistryError as exc:
            _command_error(op, f"Failed to read rollback journal: {exc}", rc=ExitCode.ENVIRONMENT)
        if not entries:
            console.print("Nothing to roll back.")
            op.success("Rollback journal empty.", changed=0)
            return

        for entry in entries:
            suffix = f" [dim](by {entry.action_key})[/dim]" if entry.action_key else ""
            console.print(f"  {entry.location}{suffix}", soft_wrap=True)
        if not yes and not typer.confirm(f"Restore {len(entries)} registry value(s)?", default=False):
            console.print("Aborted.")
            op.warning("Rollback aborted by operator.", warnings=["aborted"], changed=0)
            return

        outcomes = journal.restore_all()
        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Value", style="bold")
        table.add_column("Result")
        for outcome in outcomes:
            label = "[green]restored[/green]" if outcome.ok else "[red]failed[/red]"
            table.add_row(outcome.entry.location, f"{label} {outcome.message}")
        console.print(table)

        failures = [outcome for outcome in outcomes if not outcome.ok]
        restored = len(outcomes) - len(failures)
        if failures:
            _command_error(
                op,
                f"{len(failures)} registry value(s) could not be restored.",
                rc=ExitCode.PROVIDER,
                errors=[f"{outcome.entry.location}: {outcome.message}" for outcome in failures],
            )
        op.success(f"Restored {restored} registry value(s).", changed=restored)


cooldown_app = typer.Typer(help="Inspect and reset remediation cooldowns.")
config_app = typer.Typer(help="Inspect the resolved configuration.")

app.add_typer(cooldown_app, name="cooldown")
app.add_typer(config_app, name="config")


@cooldown_app.command("show")
def cooldown_show(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """Show when each event-log category was last remediated."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "cooldown show",
        args={"json": json_output},
        target={"kind": "state", "scope": "cooldown"},
    ) as op:
        store = runtime.cooldown
        try:
            records = store.records()
        except StateRegistryError as exc:
            _command_error(op, f"Failed to read cooldown records: {exc}", rc=ExitCode.ENVIRONMENT)

        rows = [
            {
                "category": category,
                "last_remediated": records[category].isoformat() if category in records else None,
                "cooling_down": store.is_cooling_down(category),
            }
            for category in COOLDOWN_CATEGORIES
        ]
        if json_output:
            console.print_json(data={"cooldown_days": store.cooldown_days, "categories": rows})
            op.success("Rendered cooldown records as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Category", style="bold")
        table.add_column("Last remediated")
        table.add_column("Status")
        for row in rows:
            stamp = records.get(str(row["category"]))
            table.add_row(
                str(row["category"]),
                stamp.astimezone().strftime("%Y-%m-%d %H:%M") if stamp else "never",
                "[yellow]cooling down[/yellow]" if row["cooling_down"] else "[green]eligible[/green]",
            )
        console.print(table)
        op.success("Rendered cooldown records.", changed=0)


@cooldown_app.command("clear")
def cooldown_clear(
    ctx: typer.Context,
    category: str | None = typer.Argument(
        None,
        help=f"Category to reset ({', '.join(COOLDOWN_CATEGORIES)}); omit to reset all.",
    ),
) -> None:
    """Reset one cooldown record, or all of them."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "cooldown clear",
        args={"category": category},
        target={"kind": "state", "scope": "cooldown"},
    ) as op:
        if category is not None and category not in COOLDOWN_CATEGORIES:
            _command_error(
                op,
                f"Unknown cooldown category '{category}'. Expected one of: {', '.join(COOLDOWN_CATEGORIES)}",
            )
        try:
            removed = runtime.cooldown.clear(category)
        except StateRegistryError as exc:
            _command_error(op, f"Failed to update cooldown records: {exc}", rc=ExitCode.ENVIRONMENT)
        if removed:
            console.print(f"Cleared cooldown for: {', '.join(removed)}")
        else:
            console.print("No cooldown records to clear.")
        op.success("Cooldown records cleared.", changed=len(removed), context={"removed": removed})


@config_app.command("show")
def config_show(
    ctx: typer.Context,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit configuration as JSON instead of a table.",
    ),
) -> None:
    """Display the effective configuration after merges."""
    runtime = _get_runtime(ctx)
    data = runtime.config.to_dict()

    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config"},
    ) as op:
        if json_output:
            console.print_json(data=data)
            op.success("Rendered configuration as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key", style="bold")
        table.add_column("Value")

        for key, value in data.items():
            if isinstance(value, dict):
                rendered = json.dumps(value, indent=2, sort_keys=True)
            else:
                rendered = str(value)
            table.add_row(key, rendered)

        console.print(table)
        op.success("Rendered configuration table.", changed=0)


__all__ = ["app"]
