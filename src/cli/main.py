"""
Typer CLI for logos-scheduler.

Commands:
    logos db init                   - Initialize database tables
    logos objects load FILE.json    - Load language objects from JSON
    logos answer LEARNER OBJECT RESPONSE
                                    - Score one response and show feedback
    logos queue LEARNER             - Show the review queue
    logos bottleneck LEARNER        - Show the bottleneck analysis
    logos stats LEARNER             - Show component error statistics

Usage:
    logos --help
    logos objects load data/objects.json
    logos answer learner-1 lex-receive "recieve" --latency-ms 3200
    logos queue learner-1 --limit 10
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Optional

import typer
from loguru import logger
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from config import get_settings
from src.core.exceptions import PersistenceError, SchedulerError
from src.core.models import LanguageObject, ResponsePayload, SessionMode, utc_now
from src.learning.mastery_state_machine import CueLevel

app = typer.Typer(
    name="logos",
    help="logos-scheduler CLI: mastery, decay, bottleneck and priority for language objects",
    no_args_is_help=True,
)
db_app = typer.Typer(help="Database management")
objects_app = typer.Typer(help="Language object reference data")
app.add_typer(db_app, name="db")
app.add_typer(objects_app, name="objects")

console = Console()

STAGE_STYLES = {0: "dim", 1: "red", 2: "yellow", 3: "cyan", 4: "green"}


def _service():
    from src.db.repository import SchedulerRepository
    from src.study.scoring_service import ScoringService

    return ScoringService(SchedulerRepository())


def _fail(error: Exception) -> None:
    rprint(f"[red]✗[/red] {error}")
    raise typer.Exit(1)


def _show_unsaved(object_id: str, evaluation) -> None:
    style = "green" if evaluation.correct else "red"
    lines = [f"[bold {style}]{evaluation.feedback}[/bold {style}]", f"Credit: {evaluation.credit:.2f}"]
    if evaluation.correction:
        lines.append(f"Expected: {evaluation.correction}")
    lines.append("[yellow]Not saved: progress was not recorded[/yellow]")
    console.print(Panel("\n".join(lines), title=object_id, border_style="yellow"))


# ========================================
# Database
# ========================================


@db_app.command("init")
def db_init() -> None:
    """
    Initialize database tables from SQLAlchemy models.

    Safe to run multiple times (idempotent).
    """
    from src.db.database import init_db

    try:
        init_db()
    except Exception as e:
        _fail(e)
    rprint("[green]✓[/green] Database initialized!")


# ========================================
# Language objects
# ========================================


@objects_app.command("load")
def objects_load(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON list of language objects"),
) -> None:
    """Load (or update) language objects from a JSON file."""
    from src.db.repository import SchedulerRepository

    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("objects", [])

    try:
        objects = [LanguageObject.from_dict(item) for item in data]
        count = SchedulerRepository().upsert_language_objects(objects)
    except (SchedulerError, KeyError, TypeError) as e:
        _fail(e)

    rprint(f"[green]✓[/green] Loaded {count} language objects from {path.name}")


# ========================================
# Responses
# ========================================


@app.command()
def answer(
    learner: str = typer.Argument(..., help="Learner id"),
    object_id: str = typer.Argument(..., help="Language object id"),
    response: str = typer.Argument(..., help="Learner response"),
    latency_ms: float = typer.Option(3000, "--latency-ms", "-l", help="Response latency in ms"),
    cue_level: int = typer.Option(0, "--cue-level", "-c", help="Scaffolding used (0-3)"),
    session: str = typer.Option("cli", "--session", "-s", help="Session id"),
    mode: str = typer.Option("training", "--mode", "-m", help="learning | training | evaluation"),
    scope: Optional[str] = typer.Option(None, "--scope", help="Goal scope"),
) -> None:
    """Score one response and show the resulting feedback."""
    try:
        payload = ResponsePayload(
            object_id=object_id,
            raw_response=response,
            response_latency_ms=latency_ms,
            cue_level_used=cue_level,
            session_id=session,
            session_mode=SessionMode.parse(mode),
        )
        feedback = _service().process_response(learner, payload, scope_id=scope)
    except PersistenceError as e:
        if e.evaluation is not None:
            _show_unsaved(object_id, e.evaluation)
        _fail(e)
    except SchedulerError as e:
        _fail(e)

    style = "green" if feedback.correct else "red"
    lines = [f"[bold {style}]{feedback.feedback_text}[/bold {style}]", f"Credit: {feedback.credit:.2f}"]
    if feedback.error_subtype:
        lines.append(f"Error type: {feedback.error_subtype}")
    if feedback.correction:
        lines.append(f"Expected: {feedback.correction}")
    if feedback.stage_changed:
        verb = "Promoted" if feedback.promoted else "Demoted"
        lines.append(f"{verb}: stage {feedback.previous_stage} -> {feedback.new_stage}")
    else:
        lines.append(f"Stage: {feedback.new_stage}")
    if feedback.next_review_at:
        lines.append(f"Next review: {feedback.next_review_at:%Y-%m-%d %H:%M} UTC")
    if feedback.recommended_cue_level is not None:
        lines.append(f"Suggested cues: {CueLevel(feedback.recommended_cue_level).name.lower()}")
    if feedback.next_queue_item:
        lines.append(f"Up next: {feedback.next_queue_item.object_id}")

    console.print(Panel("\n".join(lines), title=object_id, border_style=style))


# ========================================
# Queue
# ========================================


@app.command()
def queue(
    learner: str = typer.Argument(..., help="Learner id"),
    limit: int = typer.Option(20, "--limit", "-n", help="Number of items to show"),
    scope: Optional[str] = typer.Option(None, "--scope", help="Goal scope"),
    irt_top_k: Optional[int] = typer.Option(
        None, "--irt-top-k", help="Front-load the N items most informative at the learner's ability"
    ),
) -> None:
    """Show the learner's review queue."""
    from src.adaptive.priority_ranker import analyze_queue

    try:
        items = _service().review_queue(learner, utc_now(), scope_id=scope, irt_top_k=irt_top_k)
    except SchedulerError as e:
        _fail(e)

    table = Table(title=f"Review queue: {learner}")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Object")
    table.add_column("Comp")
    table.add_column("Stage", justify="center")
    table.add_column("S_eff", justify="right")
    table.add_column("Base", justify="right")
    table.add_column("g(m)", justify="right")
    table.add_column("Urgency", justify="right")
    table.add_column("Cues")
    table.add_column("Flags")

    for rank, item in enumerate(items[:limit], start=1):
        flags = []
        if item.is_new:
            flags.append("[green]new[/green]")
        elif item.is_due:
            flags.append("[yellow]due[/yellow]")
        if item.is_bottleneck:
            flags.append("[red]bottleneck[/red]")
        stage_style = STAGE_STYLES.get(item.stage, "white")
        table.add_row(
            str(rank),
            item.object_id,
            item.component.value,
            f"[{stage_style}]{item.stage}[/{stage_style}]",
            f"{item.effective_priority:.3f}",
            f"{item.base_value:.3f}",
            f"{item.mastery_adjustment:.2f}",
            f"{item.urgency:.2f}",
            CueLevel(item.recommended_cue_level).name.lower(),
            " ".join(flags),
        )

    console.print(table)

    summary = analyze_queue(items)
    console.print(
        f"[dim]{summary.total_items} items, {summary.due_items} due, {summary.new_items} new, "
        f"{summary.bottleneck_items} in bottleneck, avg priority {summary.average_priority:.3f}[/dim]"
    )


# ========================================
# Diagnostics
# ========================================


@app.command()
def bottleneck(
    learner: str = typer.Argument(..., help="Learner id"),
    scope: Optional[str] = typer.Option(None, "--scope", help="Goal scope"),
) -> None:
    """Show the learner's bottleneck analysis."""
    try:
        analysis = _service().recompute_bottleneck(learner, scope)
    except SchedulerError as e:
        _fail(e)

    primary = analysis.primary_bottleneck
    header = primary.display_name if primary else "None"
    console.print(
        Panel(
            f"[bold]Primary bottleneck:[/bold] {header}\n"
            f"[bold]Confidence:[/bold] {analysis.confidence:.0%}\n"
            f"[bold]Cascade:[/bold] {' -> '.join(c.value for c in analysis.cascade_chain) or '-'}\n\n"
            f"{analysis.recommendation}",
            title=f"Bottleneck: {learner}",
            border_style="red" if primary else "green",
        )
    )

    if not analysis.evidence:
        return

    table = Table()
    table.add_column("Component")
    table.add_column("Responses", justify="right")
    table.add_column("Error rate", justify="right")
    table.add_column("Recent", justify="right")
    table.add_column("Trend", justify="right")
    table.add_column("Patterns")

    for ev in analysis.evidence:
        table.add_row(
            ev.component.value,
            str(ev.total),
            f"{ev.error_rate:.0%}",
            f"{ev.recent_error_rate:.0%}",
            f"{ev.improvement:+.2f}",
            ", ".join(ev.to_dict()["error_patterns"]) or "-",
        )

    console.print(table)


@app.command()
def stats(
    learner: str = typer.Argument(..., help="Learner id"),
    scope: Optional[str] = typer.Option(None, "--scope", help="Goal scope"),
) -> None:
    """Show component error statistics and the remediation plan."""
    from src.adaptive.component_stats import remediation_plan

    try:
        service = _service()
        analysis = service.recompute_bottleneck(learner, scope)
        component_stats = service.repository.get_component_stats(learner, scope)
    except SchedulerError as e:
        _fail(e)

    table = Table(title=f"Component statistics: {learner}")
    table.add_column("Component")
    table.add_column("Responses", justify="right")
    table.add_column("Errors", justify="right")
    table.add_column("Recent", justify="right")
    table.add_column("Error rate", justify="right")
    table.add_column("Trend", justify="right")
    table.add_column("Bottleneck", justify="center")

    for stat in component_stats:
        table.add_row(
            stat.component.display_name,
            str(stat.total_responses),
            str(stat.total_errors),
            str(stat.recent_errors),
            f"{stat.error_rate:.0%}",
            f"{stat.trend:+.2f}",
            "[red]yes[/red]" if stat.is_bottleneck else "",
        )

    console.print(table)

    patterns = {ev.component: ev.error_patterns for ev in analysis.evidence}
    plan = remediation_plan(component_stats, patterns)
    if plan:
        console.print("\n[bold]Remediation plan[/bold]")
        for step in plan:
            color = {"high": "red", "medium": "yellow", "low": "dim"}[step.priority]
            console.print(f"  [{color}]{step.priority:<6}[/{color}] {step.component.value}: {step.recommendation}")
            console.print(f"         [dim]{', '.join(step.suggested_task_types)}[/dim]")


# ========================================
# Entry Point
# ========================================


def main() -> None:
    """CLI entry point."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=get_settings().log_level.upper(),
        format="<level>{message}</level>",
    )

    app()


if __name__ == "__main__":
    main()
