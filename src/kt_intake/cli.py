"""
KT Intake Command Line Interface

Main entry point for the kt-intake CLI. Every state-changing command restores
the stored snapshot, applies one operation through ``IntakeSession`` and
saves it back.
"""

import functools
import json
import logging
import os
import sys
from collections import Counter
from pathlib import Path
from typing import Any, Dict, Optional

import click
import yaml
from rich.console import Console
from rich.table import Table

from kt_intake import __version__
from kt_intake.actions import LocalActionStore
from kt_intake.config import ConfigLoader
from kt_intake.decision import compute_state, count_assumptions, format_action_count, status_label
from kt_intake.exceptions import KTIntakeError, SnapshotError, ValidationError, get_error_code
from kt_intake.hypothesis import decision_summary, hypothesis_sentence, summarize
from kt_intake.logging_config import ENV_VARS, setup_logging
from kt_intake.notify import ConsoleNotifier
from kt_intake.schema import CauseState, Snapshot
from kt_intake.session import IntakeSession
from kt_intake.storage import LocalStorage, SnapshotStorage
from kt_intake.transfer import export_snapshot_to_file, import_snapshot_from_file

console = Console()
logger = logging.getLogger(__name__)


class IntakeApp:
    """Config, store and notifier for one CLI invocation."""

    def __init__(self, home: Optional[Path] = None, verbose: bool = False):
        self.config = ConfigLoader(home)
        setup_logging(level=logging.DEBUG if verbose else None, log_file=self.config.log_path)
        self.local = LocalStorage(self.config.storage_path)
        self.snapshots = SnapshotStorage(self.local)
        self.actions = LocalActionStore(self.local)
        self.notifier = ConsoleNotifier(console, quiet=bool(self.config.get("notify.quiet")))

    def open_session(self) -> IntakeSession:
        snapshot = self.snapshots.restore() or Snapshot()
        session = IntakeSession.from_snapshot(snapshot, self.notifier)
        if not session.analysis_id:
            session.actions.analysis_id = str(self.config.get("actions.analysis_id") or "")
        session.refresh_action_counts(self.actions)
        return session

    def save(self, session: IntakeSession) -> Snapshot:
        return self.snapshots.save(session.collect(self.actions))


def handle_errors(command):
    """Print KT Intake errors with rich and exit with the mapped code."""

    @functools.wraps(command)
    def wrapper(*args, **kwargs):
        try:
            return command(*args, **kwargs)
        except KTIntakeError as e:
            console.print(f"[red]Error:[/red] {e}")
            sys.exit(get_error_code(e))

    return wrapper


def _app(ctx: click.Context) -> IntakeApp:
    return IntakeApp(ctx.obj.get("home"), ctx.obj.get("verbose", False))


def _require_cause(session: IntakeSession, cause_id: str):
    cause = session.board.get(cause_id)
    if cause is None:
        raise ValidationError(
            f"No cause with id {cause_id}",
            field="cause_id",
            remediation="Run 'kt-intake causes' to list cause ids",
        )
    return cause


@click.group()
@click.version_option(version=__version__, prog_name="kt-intake")
@click.option("--home", type=click.Path(file_okay=False), help="KT Intake home (default: $KT_INTAKE_HOME or ~/.kt-intake)")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
@click.pass_context
def main(ctx: click.Context, home: Optional[str], verbose: bool):
    """KT Intake: incident problem-analysis worksheet and cause board"""
    ctx.ensure_object(dict)
    ctx.obj["home"] = Path(home) if home else None
    ctx.obj["verbose"] = verbose


# =============================================================================
# SNAPSHOTS
# =============================================================================

@main.command()
@click.argument("input_path", metavar="INPUT", type=click.Path(dir_okay=False))
@click.option("--output", "-o", type=click.Path(dir_okay=False), help="Write the migrated snapshot here instead of stdout")
@handle_errors
def migrate(input_path: str, output: Optional[str]):
    """Migrate a snapshot file to the current schema version."""
    result = import_snapshot_from_file(input_path)
    if not result.success:
        raise SnapshotError(result.message, source=input_path, details=str(result.error) if result.error else None)

    serialized = json.dumps(result.snapshot.to_dict(), indent=2)
    if output:
        Path(output).write_text(serialized)
        console.print(f"[green]✓[/green] Migrated snapshot written to {output}")
    else:
        click.echo(serialized)


@main.command("import")
@click.argument("input_path", metavar="INPUT", type=click.Path(dir_okay=False))
@click.pass_context
@handle_errors
def import_snapshot(ctx: click.Context, input_path: str):
    """Replace the stored intake with an exported snapshot."""
    app = _app(ctx)
    result = import_snapshot_from_file(input_path)
    if not result.success:
        raise SnapshotError(result.message, source=input_path, details=str(result.error) if result.error else None)

    current_analysis_id = app.open_session().analysis_id
    imported = result.snapshot
    session = IntakeSession.from_snapshot(imported, app.notifier)
    session.actions.analysis_id = current_analysis_id
    has_actions = bool(imported.actions.analysis_id or imported.actions.items)
    session.adopt_actions(app.actions, imported.actions if has_actions else None)
    app.save(session)
    console.print(f"[green]✓[/green] {result.message}")


@main.command()
@click.option("--dir", "directory", type=click.Path(file_okay=False), default=".", help="Directory for the export file")
@click.pass_context
@handle_errors
def export(ctx: click.Context, directory: str):
    """Export the stored intake to a timestamped JSON file."""
    app = _app(ctx)
    session = app.open_session()
    result = export_snapshot_to_file(session.collect(app.actions), directory)
    if not result.success:
        console.print(f"[red]✗[/red] {result.message}")
        sys.exit(1)
    console.print(f"[green]✓[/green] {result.message}: {result.path}")


# =============================================================================
# CAUSES
# =============================================================================

def _cause_row(session: IntakeSession, cause) -> Dict[str, Any]:
    board = session.board
    return {
        "id": cause.id,
        "label": board.display_label(cause),
        "state": compute_state(cause).value,
        "status": status_label(cause),
        "decision": cause.decision,
        "likely": cause.id == board.likely_cause_id,
        "assumptions": count_assumptions(cause),
        "actions": board.action_count(cause.id),
        "hypothesis": hypothesis_sentence(cause),
        "decision_summary": decision_summary(cause),
    }


@main.command()
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.option("--summary", "summary_output", is_flag=True, help="Print a plain-text report for sharing")
@click.pass_context
@handle_errors
def causes(ctx: click.Context, json_output: bool, summary_output: bool):
    """List possible causes with their decision state."""
    session = _app(ctx).open_session()
    if summary_output:
        click.echo(session.board.summary_report())
        return

    rows = [_cause_row(session, cause) for cause in session.board.causes]

    if json_output:
        click.echo(json.dumps(rows, indent=2))
        return

    if not rows:
        console.print("[dim]No possible causes yet. Run 'kt-intake add' to start one.[/dim]")
        return

    table = Table(title="Possible Causes")
    table.add_column("", width=1)
    table.add_column("ID", style="dim")
    table.add_column("Cause", style="cyan")
    table.add_column("Status")
    table.add_column("Actions")
    for row in rows:
        table.add_row(
            "[yellow]★[/yellow]" if row["likely"] else "",
            row["id"],
            row["label"],
            row["status"],
            format_action_count(row["actions"]),
        )
    console.print(table)


@main.command()
@click.option("--suspect", default=None, help="What is suspected")
@click.option("--accusation", default=None, help="What it is accused of doing")
@click.option("--impact", default=None, help="What that leads to")
@click.pass_context
@handle_errors
def add(ctx: click.Context, suspect: Optional[str], accusation: Optional[str], impact: Optional[str]):
    """Add a possible cause."""
    app = _app(ctx)
    session = app.open_session()
    cause = session.board.add_cause()
    fields = {
        name: value
        for name, value in (("suspect", suspect), ("accusation", accusation), ("impact", impact))
        if value is not None
    }
    if fields:
        session.board.update_cause(cause.id, editing=False, **fields)
    app.save(session)
    console.print(f"[green]✓[/green] Added cause {cause.id}")
    if fields:
        console.print(f"  {hypothesis_sentence(cause)}")


@main.command()
@click.argument("cause_id")
@click.option("--suspect", default=None)
@click.option("--accusation", default=None)
@click.option("--impact", default=None)
@click.option("--decision", default=None, help="explains, conditional, does_not_explain (or blank to clear)")
@click.option("--explanation-is", default=None, help="How it explains the IS evidence")
@click.option("--explanation-is-not", default=None, help="How it explains the IS NOT evidence")
@click.option("--assumptions", default=None, help="What must hold for it to explain the evidence")
@click.option("--test-text", default=None, help="Next test to run")
@click.option("--test-owner", default=None, help="Who runs the next test")
@click.option("--test-eta", default=None, help="When the next test is due (ISO 8601)")
@click.option("--editing/--done", default=None, help="Mark the hypothesis as being edited or committed")
@click.pass_context
@handle_errors
def edit(ctx: click.Context, cause_id: str, test_text: Optional[str], test_owner: Optional[str],
         test_eta: Optional[str], **options: Any):
    """Edit a possible cause."""
    app = _app(ctx)
    session = app.open_session()
    _require_cause(session, cause_id)

    fields = {name: value for name, value in options.items() if value is not None}
    next_test = {
        key: value
        for key, value in (("text", test_text), ("owner", test_owner), ("eta", test_eta))
        if value is not None
    }
    if next_test:
        fields["next_test"] = next_test
    if not fields:
        console.print("[yellow]⚠[/yellow] Nothing to change")
        return

    cause = session.board.update_cause(cause_id, **fields)
    app.save(session)
    console.print(f"[green]✓[/green] {session.board.display_label(cause)}: {status_label(cause)}")


@main.command()
@click.argument("cause_id", required=False)
@click.option("--clear", is_flag=True, help="Clear the Likely Cause")
@click.pass_context
@handle_errors
def likely(ctx: click.Context, cause_id: Optional[str], clear: bool):
    """Designate (or clear) the Likely Cause."""
    if bool(cause_id) == clear:
        raise click.UsageError("Give a CAUSE_ID or --clear")

    app = _app(ctx)
    session = app.open_session()
    if clear:
        changed = session.board.set_likely_cause(None)
    else:
        cause = _require_cause(session, cause_id)
        changed = session.board.set_likely_cause(cause_id)
        if not changed and compute_state(cause) == CauseState.FAILED:
            console.print("[yellow]⚠[/yellow] A cause that does not explain the evidence cannot be the Likely Cause")
    if changed:
        app.save(session)
    else:
        console.print("[dim]Likely Cause unchanged[/dim]")


@main.command()
@click.argument("cause_id")
@click.pass_context
@handle_errors
def convert(ctx: click.Context, cause_id: str):
    """Turn a conditional cause's next test into an action."""
    app = _app(ctx)
    session = app.open_session()
    _require_cause(session, cause_id)
    result = session.bridge(app.actions).convert(cause_id)
    if not result.success:
        sys.exit(1)
    app.save(session)
    console.print(f"  {format_action_count(session.board.action_count(cause_id))}")


@main.command("summarize")
@click.option("--suspect", default="", help="What is suspected")
@click.option("--accusation", default="", help="What it is accused of doing")
@click.option("--impact", default="", help="What that leads to")
@click.option("--preview/--full", default=None, help="Clip long fragments (default: hypothesis.preview)")
@click.pass_context
@handle_errors
def summarize_command(ctx: click.Context, suspect: str, accusation: str, impact: str, preview: Optional[bool]):
    """Print the hypothesis sentence for a suspect and accusation."""
    if preview is None:
        preview = bool(ConfigLoader(ctx.obj.get("home")).get("hypothesis.preview"))
    click.echo(summarize({"suspect": suspect, "accusation": accusation, "impact": impact}, preview=preview))


@main.command()
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
@handle_errors
def status(ctx: click.Context, json_output: bool):
    """Show a summary of the stored intake."""
    app = _app(ctx)
    session = app.open_session()
    board = session.board
    states = Counter(compute_state(cause).value for cause in board.causes)
    likely_cause = board.likely_cause()

    summary = {
        "store": str(app.config.storage_path),
        "saved_at": session.saved_at,
        "analysis_id": session.analysis_id,
        "contain_status": session.ops.contain_status,
        "causes": len(board.causes),
        "states": dict(sorted(states.items())),
        "likely_cause": likely_cause.id if likely_cause else None,
        "evidence_pairs": len(board.evidence_eligible_rows()),
        "actions": len(app.actions.list_actions(session.analysis_id)) if session.analysis_id else 0,
    }

    if json_output:
        click.echo(json.dumps(summary, indent=2))
        return

    console.print("[bold blue]KT Intake Status[/bold blue]")
    console.print()
    console.print(f"  Store: {summary['store']}")
    console.print(f"  Last saved: {summary['saved_at'] or 'never'}")
    console.print(f"  Containment: {summary['contain_status'] or 'unknown'}")
    console.print(f"  Evidence pairs: {summary['evidence_pairs']}")
    console.print(f"  Possible causes: {summary['causes']}")
    for state, count in summary["states"].items():
        console.print(f"    {state}: {count}")
    label = board.display_label(likely_cause) if likely_cause else "none"
    console.print(f"  Likely Cause: {label}")
    console.print(f"  Actions: {summary['actions']}")


# =============================================================================
# CONFIG
# =============================================================================

@main.group("config")
def config_group():
    """Configuration management commands."""
    pass


@config_group.command()
@click.pass_context
@handle_errors
def show(ctx: click.Context):
    """Show current configuration."""
    loader = ConfigLoader(ctx.obj.get("home"))
    console.print("[bold blue]KT Intake Configuration[/bold blue]")
    console.print(f"[dim]{loader.config_path}[/dim]")
    console.print()
    for key, value in loader.as_dict().items():
        console.print(f"  {key}: {value if value not in (None, '') else '[dim](not set)[/dim]'}")
    console.print()
    console.print("[bold]Environment[/bold]")
    for name, doc in ENV_VARS.items():
        current = os.environ.get(name)
        shown = current if current else f"[dim](default: {doc['default']})[/dim]"
        console.print(f"  {name}: {shown}  [dim]{doc['description']}[/dim]")


@config_group.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_context
@handle_errors
def set_value(ctx: click.Context, key: str, value: str):
    """Set a configuration value.

    KEY format: section.key (e.g., storage.file, hypothesis.preview)
    """
    loader = ConfigLoader(ctx.obj.get("home"))
    old_value = loader.get(key, "(not set)")
    try:
        parsed = yaml.safe_load(value) if value else value
    except yaml.YAMLError:
        parsed = value
    loader.set(key, parsed)
    console.print(f"[green]✓[/green] {key}: {old_value} → {parsed}")


if __name__ == "__main__":
    main()
