"""Pipeline CRM automation command-line interface implemented with Typer."""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import sys
import time
from datetime import date, datetime
from typing import Any, Callable

import click
import typer

from pipeline_crm.cli.runtime import Runtime
from pipeline_crm.config import load_settings
from pipeline_crm.errors import NotFoundError, PipelineError
from pipeline_crm.events.dispatch import DispatchOutcome, dispatch_triggers
from pipeline_crm.models import Base, to_dict
from pipeline_crm.scheduler.intervals import INTERVALS
from pipeline_crm.services.audit import AuditRecord, sanitize_argv, truncate
from pipeline_crm.tools.server import build_tool_server

logger = logging.getLogger(__name__)

ERROR_EXIT_CODE = 1
SKIP_AUDIT = frozenset({"audit"})

DEFAULT_AGENT_PROMPT = (
    "You are a CRM assistant with access to the user's pipeline. Read what you need "
    "with the available tools and use propose_action for any change; a human approves "
    "every mutation."
)


def _serialize(value: Any) -> Any:
    """Convert result objects to JSON-serializable structures."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Base):
        return to_dict(value)
    if dataclasses.is_dataclass(value):
        return _serialize(dataclasses.asdict(value))
    if isinstance(value, dict):
        return {str(key): _serialize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_serialize(item) for item in value]
    return str(value)


def _emit_json(value: Any) -> None:
    typer.echo(json.dumps(_serialize(value), indent=2))


def _emit_error(exc: Exception, as_json: bool) -> None:
    """Render mapped errors to stderr."""
    if as_json:
        typer.echo(json.dumps({"error": str(exc)}), err=True)
        return
    typer.echo(f"error: {exc}", err=True)


def _configure_logging(level_name: str, verbose: bool) -> None:
    """Send log records to stderr at the configured level."""
    level = logging.DEBUG if verbose else getattr(logging, level_name.upper(), logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
        force=True,
    )


def _command_argv(ctx: typer.Context) -> list[str]:
    """Rebuild the invoked command's arguments from its parsed parameters."""
    flags = {
        param.name: param.opts[0]
        for param in ctx.command.params
        if isinstance(param, click.Option)
    }
    argv: list[str] = []
    for name, value in ctx.params.items():
        if value is None or value is False:
            continue
        flag = flags.get(name) or "--" + name.replace("_", "-")
        if value is True:
            argv.append(flag)
        else:
            argv.extend([flag, str(value)])
    return argv


def _require_runtime(ctx: typer.Context) -> Runtime:
    """Return the runtime stored by the top-level callback."""
    runtime = ctx.obj
    if not isinstance(runtime, Runtime):
        raise RuntimeError("CLI runtime not initialized")
    return runtime


def _write_audit(runtime: Runtime, record: AuditRecord) -> None:
    """Best-effort audit write; the command outcome never depends on it."""
    try:
        runtime.audit.write(record)
    except Exception:
        logger.debug("Audit log unavailable for %s", record.command, exc_info=True)


def _run_command(ctx: typer.Context, invoke: Callable[[Runtime], None]) -> None:
    """Execute one command body, auditing it and mapping errors to exit codes."""
    runtime = _require_runtime(ctx)
    command = ctx.info_name or "unknown"
    started = time.monotonic()
    error: str | None = None
    try:
        invoke(runtime)
    except PipelineError as exc:
        error = str(exc)
        _emit_error(exc, runtime.as_json)
        raise typer.Exit(code=ERROR_EXIT_CODE) from exc
    except Exception as exc:
        error = str(exc) or exc.__class__.__name__
        raise
    finally:
        if command not in SKIP_AUDIT:
            _write_audit(
                runtime,
                AuditRecord(
                    actor="human",
                    command=command,
                    args=sanitize_argv(_command_argv(ctx)),
                    result="error" if error else "success",
                    error=truncate(error, 500) if error else None,
                    duration_ms=int((time.monotonic() - started) * 1000),
                ),
            )


def _echo_text(text: str) -> None:
    """Print streamed agent output."""
    typer.echo(text)


JSON_OPTION = typer.Option(False, "--json", help="Emit JSON output")


app = typer.Typer(no_args_is_help=True, help="Pipeline CRM automation")


@app.callback()
def main(
    ctx: typer.Context,
    db: str | None = typer.Option(None, "--db", help="Path to database file"),
    as_json: bool = typer.Option(False, "--json", help="Emit JSON output"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
) -> None:
    """Store global options and open the runtime for all commands."""
    runtime = ctx.obj if isinstance(ctx.obj, Runtime) else Runtime(load_settings())
    if db:
        runtime.settings.database.path = db
    runtime.as_json = runtime.as_json or as_json
    runtime.verbose = runtime.verbose or verbose
    _configure_logging(runtime.settings.log_level, runtime.verbose)
    ctx.obj = runtime
    ctx.call_on_close(runtime.close)


# Hooks


@app.command("hook:add")
def hook_add(
    ctx: typer.Context,
    event: str = typer.Argument(..., help="Event type, e.g. contact_stale or task_overdue"),
    agent: str = typer.Argument(..., help="Agent name to trigger"),
) -> None:
    """Add an event hook (trigger an agent when an event occurs)."""

    def invoke(runtime: Runtime) -> None:
        if agent not in runtime.catalog:
            typer.echo(f'Warning: agent "{agent}" is not defined yet', err=True)
        hook = runtime.events.add_hook(event, agent)
        if runtime.as_json:
            _emit_json(hook)
        else:
            typer.echo(f"Hook added: {hook.event_type} → {hook.agent_name}")

    _run_command(ctx, invoke)


@app.command("hook:list")
def hook_list(ctx: typer.Context) -> None:
    """List all event hooks."""

    def invoke(runtime: Runtime) -> None:
        hooks = runtime.events.list_hooks()
        if runtime.as_json:
            _emit_json(hooks)
            return
        if not hooks:
            typer.echo("No event hooks configured.")
            typer.echo('Use "pipeline hook:add <event> <agent>" to add one.')
            return
        for hook in hooks:
            status = "ON" if hook.enabled else "OFF"
            typer.echo(f"[{status}] {hook.event_type} → {hook.agent_name}")

    _run_command(ctx, invoke)


@app.command("hook:remove")
def hook_remove(
    ctx: typer.Context,
    event: str = typer.Argument(..., help="Event type"),
    agent: str = typer.Argument(..., help="Agent name"),
) -> None:
    """Remove an event hook."""

    def invoke(runtime: Runtime) -> None:
        runtime.events.remove_hook(event, agent)
        typer.echo(f"Hook removed: {event} → {agent}")

    _run_command(ctx, invoke)


@app.command("hook:emit")
def hook_emit(
    ctx: typer.Context,
    event: str = typer.Argument(..., help="Event type"),
    entity_type: str = typer.Argument(..., help="Entity type, e.g. contact"),
    entity_id: int = typer.Argument(..., help="Entity id"),
    payload: str = typer.Option("{}", help="JSON object payload"),
) -> None:
    """Emit an event manually."""

    def invoke(runtime: Runtime) -> None:
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise typer.BadParameter(f"payload is not valid JSON: {exc.msg}") from exc
        if not isinstance(data, dict):
            raise typer.BadParameter("payload must be a JSON object")
        emitted = runtime.events.emit(event, entity_type, entity_id, data)
        if runtime.as_json:
            _emit_json(emitted)
        else:
            typer.echo(f"Event emitted: #{emitted.id} {event} ({entity_type}:{entity_id})")

    _run_command(ctx, invoke)


def _print_dispatch(outcomes: list[DispatchOutcome]) -> None:
    for outcome in outcomes:
        if outcome.status == "done":
            typer.echo(f"  {outcome.agent_name}: done")
        elif outcome.status == "failed":
            typer.echo(f"  {outcome.agent_name}: failed: {outcome.detail}")
        else:
            typer.echo(f'Agent "{outcome.agent_name}" not found, skipping')


@app.command("hook:run")
def hook_run(
    ctx: typer.Context,
    scan: bool = typer.Option(
        True,
        "--scan/--no-scan",
        help="Scan for time-based events (stale contacts, overdue tasks) first",
    ),
    as_json: bool = JSON_OPTION,
) -> None:
    """Process pending events and trigger hooked agents."""

    def invoke(runtime: Runtime) -> None:
        runtime.as_json = runtime.as_json or as_json
        if scan:
            scanned = runtime.scanner.scan()
            if scanned and runtime.verbose:
                typer.echo(f"Scanned: {scanned} new time-based event(s)")

        results = runtime.processor.process()
        if runtime.as_json:
            _emit_json(results)
            return
        if not results:
            typer.echo("No events to process.")
            return

        for trigger in results:
            typer.echo(f"Triggering {trigger.agent_name} (event: {trigger.event_type})...")
        outcomes = asyncio.run(
            dispatch_triggers(
                results,
                runtime.catalog,
                runtime.runner,
                verbose=runtime.verbose,
                on_text=_echo_text if runtime.verbose else None,
            )
        )
        _print_dispatch(outcomes)

    _run_command(ctx, invoke)


# Schedules


@app.command("schedule:add")
def schedule_add(
    ctx: typer.Context,
    agent: str = typer.Argument(..., help="Agent name"),
    every: str = typer.Option(..., "--every", help=f"Interval: {', '.join(INTERVALS)}"),
) -> None:
    """Schedule an agent to run at a fixed interval."""

    def invoke(runtime: Runtime) -> None:
        schedule = runtime.schedules.add(agent, every)
        if runtime.as_json:
            _emit_json(schedule)
        else:
            typer.echo(f"Scheduled {schedule.agent_name} to run {schedule.interval}")

    _run_command(ctx, invoke)


@app.command("schedule:list")
def schedule_list(ctx: typer.Context) -> None:
    """List scheduled agents."""

    def invoke(runtime: Runtime) -> None:
        schedules = runtime.schedules.list()
        if runtime.as_json:
            _emit_json(schedules)
            return
        if not schedules:
            typer.echo("No schedules configured.")
            return
        for schedule in schedules:
            status = "ON" if schedule.enabled else "OFF"
            last = schedule.last_run_at.isoformat() if schedule.last_run_at else "never"
            typer.echo(f"[{status}] {schedule.agent_name} ({schedule.interval}), last run: {last}")

    _run_command(ctx, invoke)


@app.command("schedule:remove")
def schedule_remove(
    ctx: typer.Context,
    agent: str = typer.Argument(..., help="Agent name"),
) -> None:
    """Remove an agent's schedule."""

    def invoke(runtime: Runtime) -> None:
        runtime.schedules.remove(agent)
        typer.echo(f"Removed schedule for {agent}")

    _run_command(ctx, invoke)


@app.command("schedule:run")
def schedule_run(
    ctx: typer.Context,
    agent: str | None = typer.Option(
        None, "--agent", help="Force-run a specific agent regardless of schedule timing"
    ),
    hooks: bool = typer.Option(
        True, "--hooks/--no-hooks", help="Also process event hooks after running schedules"
    ),
    as_json: bool = JSON_OPTION,
) -> None:
    """Run all due scheduled agents (designed for crontab)."""

    def invoke(runtime: Runtime) -> None:
        runtime.as_json = runtime.as_json or as_json
        on_text = _echo_text if runtime.verbose and not runtime.as_json else None
        results = asyncio.run(
            runtime.schedule_runner.run_due(agent, verbose=runtime.verbose, on_text=on_text)
        )

        outcomes: list[DispatchOutcome] = []
        if hooks:
            runtime.scanner.scan()
            triggers = runtime.processor.process()
            if triggers:
                outcomes = asyncio.run(
                    dispatch_triggers(
                        triggers, runtime.catalog, runtime.runner, verbose=runtime.verbose
                    )
                )

        if runtime.as_json:
            _emit_json({"schedules": results, "hooks": outcomes})
            return
        if not results:
            typer.echo("No agents due to run.")
        for result in results:
            icon = "OK" if result.status == "completed" else "FAIL"
            typer.echo(f"[{icon}] {result.agent_name}: {result.actions_proposed} action(s) proposed")
            if result.status == "failed":
                typer.echo(f"  {result.output}")
        for outcome in outcomes:
            typer.echo(f"[HOOK] {outcome.event_type} → {outcome.agent_name} ({outcome.status})")

    _run_command(ctx, invoke)


@app.command("schedule:logs")
def schedule_logs(
    ctx: typer.Context,
    limit: int = typer.Option(20, min=1, help="Maximum number of log rows"),
) -> None:
    """Show recent scheduled runs."""

    def invoke(runtime: Runtime) -> None:
        logs = runtime.schedules.logs(limit)
        if runtime.as_json:
            _emit_json(logs)
            return
        if not logs:
            typer.echo("No schedule runs yet.")
            return
        for log in logs:
            typer.echo(
                f"#{log.id} {log.agent_name} [{log.status}] {log.started_at.isoformat()} "
                f"actions={log.actions_proposed}"
            )

    _run_command(ctx, invoke)


# Approvals


def _describe_action(action: Any) -> None:
    typer.echo(f"#{action.id} [{action.action_type}]")
    typer.echo(f"  Reasoning: {action.reasoning or '(none)'}")
    if action.payload:
        typer.echo(f"  Payload: {json.dumps(action.payload)}")


@app.command("approve")
def approve(
    ctx: typer.Context,
    list_only: bool = typer.Option(False, "--list", help="List pending actions without acting"),
    approve_everything: bool = typer.Option(False, "--all", help="Approve all pending actions"),
    reject: int | None = typer.Option(None, "--reject", help="Reject a specific action by id"),
    reason: str | None = typer.Option(None, "--reason", help="Feedback recorded with a rejection"),
) -> None:
    """Review and approve agent-proposed actions."""

    def invoke(runtime: Runtime) -> None:
        workflow = runtime.approvals
        if reject is not None:
            workflow.reject(reject, reason)
            typer.echo(f"Rejected action #{reject}")
            return

        pending = workflow.list_pending()
        if runtime.as_json and (list_only or not approve_everything):
            _emit_json(pending)
            return
        if not pending:
            typer.echo("No pending actions.")
            return
        if list_only:
            for action in pending:
                _describe_action(action)
                typer.echo("")
            return
        if approve_everything:
            results = workflow.approve_all()
            if runtime.as_json:
                _emit_json(results)
                return
            for result in results:
                typer.echo(f"Approved {result}")
            return

        if not sys.stdin.isatty():
            for action in pending:
                typer.echo(f"#{action.id} [{action.action_type}] {action.reasoning or '(no reasoning)'}")
            typer.echo("\nUse --all to approve all, or --reject <id> to reject.")
            return

        for action in pending:
            typer.echo("")
            _describe_action(action)
            choice = typer.prompt(
                "Action?",
                type=click.Choice(["approve", "reject", "skip"]),
                default="skip",
            )
            if choice == "approve":
                typer.echo(f"  Approved: {workflow.approve(action.id)}")
            elif choice == "reject":
                feedback = typer.prompt("Reason (optional)", default="", show_default=False)
                workflow.reject(action.id, feedback or None)
                typer.echo("  Rejected")

    _run_command(ctx, invoke)


# Memory and audit


@app.command("memory")
def memory(
    ctx: typer.Context,
    agent: str | None = typer.Option(None, "--agent", help="Filter by agent name"),
    contact: int | None = typer.Option(None, "--contact", help="Filter by contact id"),
    deal: int | None = typer.Option(None, "--deal", help="Filter by deal id"),
    outcome: str | None = typer.Option(None, "--outcome", help="pending, approved, or rejected"),
    limit: int = typer.Option(20, min=1, help="Max memories to show"),
) -> None:
    """Inspect agent memory (past proposals and outcomes)."""

    def invoke(runtime: Runtime) -> None:
        memories = runtime.memory.recall(
            agent_name=agent,
            contact_id=contact,
            deal_id=deal,
            outcome=outcome,
            limit=limit,
        )
        if runtime.as_json:
            _emit_json(memories)
            return
        if not memories:
            typer.echo("No agent memories found.")
            return
        icons = {"approved": "OK", "rejected": "NO"}
        for mem in memories:
            typer.echo(f"[{icons.get(mem.outcome, '..')}] #{mem.id} {mem.agent_name}: {mem.action_type}")
            if mem.reasoning:
                typer.echo(f"  Reasoning: {mem.reasoning}")
            if mem.human_feedback:
                typer.echo(f"  Feedback: {mem.human_feedback}")
            typer.echo(f"  {mem.created_at.isoformat()}")
            typer.echo("")

    _run_command(ctx, invoke)


@app.command("audit")
def audit(
    ctx: typer.Context,
    last: int = typer.Option(20, "--last", min=1, help="Number of entries to show"),
    actor: str | None = typer.Option(None, "--actor", help="Filter by actor"),
    command: str | None = typer.Option(None, "--command", help="Filter by command"),
) -> None:
    """Show the audit log of commands and agent tool calls."""

    def invoke(runtime: Runtime) -> None:
        entries = runtime.audit.entries(actor=actor, command=command, last=last)
        if runtime.as_json:
            _emit_json(entries)
            return
        if not entries:
            typer.echo("No audit entries.")
            return
        for entry in entries:
            line = (
                f"{entry.created_at.isoformat()} {entry.actor} {entry.command} "
                f"[{entry.result}] {entry.duration_ms}ms"
            )
            if entry.error:
                line = f"{line} error={entry.error}"
            typer.echo(line)

    _run_command(ctx, invoke)


# Agents


@app.command("agents")
def agents(ctx: typer.Context) -> None:
    """List built-in and custom agents."""

    def invoke(runtime: Runtime) -> None:
        definitions = runtime.catalog.list()
        if runtime.as_json:
            _emit_json(
                [
                    {"name": item.name, "description": item.description, "source": item.source}
                    for item in definitions
                ]
            )
            return
        for item in definitions:
            typer.echo(f"{item.name} ({item.source}): {item.description}")

    _run_command(ctx, invoke)


@app.command("agent")
def agent_command(
    ctx: typer.Context,
    prompt: str = typer.Argument(..., help="Instruction for the agent"),
    agent: str | None = typer.Option(None, "--agent", help="Run as a named agent"),
) -> None:
    """Run an agent once with a free-form prompt."""

    def invoke(runtime: Runtime) -> None:
        system_prompt = DEFAULT_AGENT_PROMPT
        if agent:
            definition = runtime.catalog.get(agent)
            if definition is None:
                raise NotFoundError("agent", agent, f'Agent not found: "{agent}"')
            system_prompt = definition.prompt
        run_id = asyncio.run(
            runtime.runner.run(
                prompt,
                system_prompt,
                agent_name=agent,
                verbose=runtime.verbose,
                on_text=_echo_text,
            )
        )
        pending = runtime.approvals.count_pending()
        if pending:
            typer.echo(f"\n{pending} action(s) pending. Run 'pipeline approve' to review.")
        logger.debug("Agent run %s finished", run_id)

    _run_command(ctx, invoke)


@app.command("mcp")
def mcp(
    ctx: typer.Context,
    agent_name: str | None = typer.Option(None, "--agent-name", help="Attribute proposals to an agent"),
    run_id: str | None = typer.Option(None, "--run-id", help="Attribute proposals to a run"),
) -> None:
    """Serve the CRM tools over stdio."""

    def invoke(runtime: Runtime) -> None:
        server = build_tool_server(runtime.tool_context(agent_name, run_id))
        server.run()

    _run_command(ctx, invoke)


@app.command("init")
def init(ctx: typer.Context) -> None:
    """Create or upgrade the database schema."""

    def invoke(runtime: Runtime) -> None:
        runtime.database.check_connection()
        typer.echo(f"Database ready: {runtime.settings.database.path}")

    _run_command(ctx, invoke)


if __name__ == "__main__":
    app()
