"""
Typer CLI for the frailearn progress engine.

Commands:
    frailearn db init                  - Initialize database tables
    frailearn sweep remedial           - One remedial sweep tick over active learners
    frailearn sweep retention          - Delete old addressed mistakes and surplus failed tests
    frailearn sweep watch              - Run the remedial sweep every few hours
    frailearn review deck LEARNER      - Show the learner's due flashcards
    frailearn progress show LEARNER    - Show streak and progress aggregates
    frailearn gate pending LEARNER     - List sealed sections awaiting their progress test

Usage:
    frailearn --help
    frailearn sweep remedial --learner 3f2a... --learner 9c1d...
    frailearn sweep watch --interval-hours 3
"""

from __future__ import annotations

import sys
import time
from pathlib import Path

import typer
from loguru import logger
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from config import get_settings

app = typer.Typer(
    help="frailearn: adaptive progress and review scheduling engine",
    no_args_is_help=True,
)

console = Console()


def configure_logging(level: str | None = None) -> None:
    """Install stderr and (optional) rotating file sinks."""
    settings = get_settings()
    logger.remove()
    logger.add(sys.stderr, level=level or settings.log_level)
    if settings.log_file:
        Path(settings.log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            settings.log_file,
            level="DEBUG",
            rotation="10 MB",
            retention="14 days",
        )


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level"),
) -> None:
    """Adaptive progress engine: gating, remediation, spaced repetition and streaks."""
    configure_logging("DEBUG" if verbose else None)


# ========================================
# Context Builder (Dependency Injection)
# ========================================


class CLIContext:
    """
    Dependency injection container for CLI commands.

    Lazily builds the synthesis client so read-only commands never open it.
    """

    def __init__(self):
        self.settings = get_settings()
        self._synthesizer = None

    @property
    def synthesizer(self):
        if self._synthesizer is None:
            from frailearn.synthesis.client import HttpContentSynthesizer

            self._synthesizer = HttpContentSynthesizer()
        return self._synthesizer

    def remedial_trigger(self):
        from frailearn.adaptive.remedial_trigger import RemedialTrigger

        return RemedialTrigger(self.synthesizer)

    def section_gate(self):
        from frailearn.adaptive.section_gate import SectionGate

        return SectionGate(self.synthesizer)

    def close(self) -> None:
        if self._synthesizer is not None:
            self._synthesizer.close()


# ========================================
# Database Commands
# ========================================

db_app = typer.Typer(help="Database management")
app.add_typer(db_app, name="db")


@db_app.command("init")
def db_init() -> None:
    """
    Initialize database tables from SQLAlchemy models.

    Safe to run multiple times (idempotent).
    """
    from frailearn.db.database import init_db

    logger.info("Initializing database tables...")
    init_db()
    rprint("[green]✓[/green] Database initialized!")


# ========================================
# Sweep Commands
# ========================================

sweep_app = typer.Typer(help="Periodic maintenance ticks")
app.add_typer(sweep_app, name="sweep")


def _remedial_tick(ctx: CLIContext, learner_ids: list[str] | None) -> int:
    from frailearn.adaptive.sweep import recently_active_learners, run_remedial_sweep

    targets = learner_ids or recently_active_learners()
    report = run_remedial_sweep(targets, ctx.remedial_trigger(), ctx.section_gate())

    table = Table(title="Remedial Sweep", show_header=True)
    table.add_column("Learner", style="cyan")
    table.add_column("Remedial", justify="right")
    table.add_column("Generated", justify="right")
    table.add_column("Status")
    for learner_id in targets:
        if learner_id in report.failures:
            status = f"[red]{report.failures[learner_id]}[/red]"
        else:
            status = "[green]ok[/green]"
        table.add_row(
            learner_id,
            str(len(report.remedial_chapter_ids.get(learner_id, []))),
            str(len(report.generated_chapter_ids.get(learner_id, []))),
            status,
        )
    console.print(table)
    return len(report.failures)


@sweep_app.command("remedial")
def sweep_remedial(
    learner: list[str] | None = typer.Option(
        None, "--learner", "-l", help="Learner id (repeatable); default: recently active learners"
    ),
) -> None:
    """Run one remedial sweep tick."""
    ctx = CLIContext()
    try:
        failures = _remedial_tick(ctx, learner)
    finally:
        ctx.close()
    if failures:
        raise typer.Exit(code=1)


@sweep_app.command("retention")
def sweep_retention() -> None:
    """Delete addressed mistakes past retention and surplus failed assessments."""
    from frailearn.adaptive.sweep import run_retention_sweep

    report = run_retention_sweep()
    rprint(
        f"[green]✓[/green] Deleted {report.mistakes_deleted} mistakes, "
        f"{report.assessments_deleted} assessments"
    )


@sweep_app.command("watch")
def sweep_watch(
    interval_hours: float | None = typer.Option(
        None, "--interval-hours", help="Hours between ticks (default from settings)"
    ),
    max_ticks: int = typer.Option(0, "--max-ticks", help="Stop after N ticks (0 = forever)"),
) -> None:
    """Run the remedial sweep periodically until interrupted."""
    interval = interval_hours or get_settings().sweep_interval_hours
    ctx = CLIContext()
    ticks = 0
    logger.info("Remedial sweep every {}h", interval)
    try:
        while True:
            try:
                _remedial_tick(ctx, None)
            except Exception:  # Keep watching; the next tick retries
                logger.exception("Remedial sweep tick failed")
            ticks += 1
            if max_ticks and ticks >= max_ticks:
                break
            time.sleep(interval * 3600)
    except KeyboardInterrupt:
        rprint("[yellow]Stopped[/yellow]")
    finally:
        ctx.close()


# ========================================
# Learner Views
# ========================================

review_app = typer.Typer(help="Flashcard review")
app.add_typer(review_app, name="review")

progress_app = typer.Typer(help="Learner progress")
app.add_typer(progress_app, name="progress")

gate_app = typer.Typer(help="Section gates")
app.add_typer(gate_app, name="gate")


@review_app.command("deck")
def review_deck(learner_id: str = typer.Argument(..., help="Learner id")) -> None:
    """Show flashcards due now."""
    from frailearn.db.database import session_scope
    from frailearn.review.scheduler import ReviewScheduler

    with session_scope() as session:
        cards = ReviewScheduler().due_deck(session, learner_id)

    if not cards:
        rprint("[green]Nothing due.[/green]")
        return

    table = Table(title=f"Due Flashcards ({len(cards)})", show_header=True)
    table.add_column("Front", style="cyan")
    table.add_column("Back")
    table.add_column("Interval", justify="right")
    table.add_column("Ease", justify="right")
    for card in cards:
        table.add_row(card.front_text, card.back_text, f"{card.interval}d", f"{card.ease_factor:.2f}")
    console.print(table)


@progress_app.command("show")
def progress_show(learner_id: str = typer.Argument(..., help="Learner id")) -> None:
    """Show streak and progress aggregates."""
    from frailearn.adaptive.progress import ProgressAggregator
    from frailearn.db.database import session_scope
    from frailearn.db.models import Learner, StreakState

    with session_scope() as session:
        learner = session.get(Learner, learner_id)
        if learner is None:
            rprint(f"[red]✗[/red] Learner not found: {learner_id}")
            raise typer.Exit(code=1)
        progress = ProgressAggregator().recompute(session, learner_id)
        streak = session.get(StreakState, learner_id)

        table = Table(title=f"{learner.name} ({learner.current_level})", show_header=True)
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="green")
        table.add_row("Current streak", str(streak.current_streak if streak else 0))
        table.add_row("Longest streak", str(streak.longest_streak if streak else 0))
        table.add_row("Lessons completed", str(progress.total_lessons_completed))
        table.add_row("Exercises attempted", str(progress.total_exercises_attempted))
        table.add_row("Accuracy", f"{progress.overall_accuracy:.1f}%")
        table.add_row("Tests taken", str(progress.total_tests_taken))
        table.add_row("Average test score", f"{progress.average_test_score:.0f}%")
        if progress.current_chapter:
            table.add_row(
                "Next lesson", f"Chapter {progress.current_chapter}, lesson {progress.current_lesson}"
            )

    console.print(table)


@gate_app.command("pending")
def gate_pending(learner_id: str = typer.Argument(..., help="Learner id")) -> None:
    """List sealed sections whose progress test has not been taken."""
    from frailearn.adaptive.section_gate import SectionGate
    from frailearn.db.database import session_scope

    with session_scope() as session:
        pending = SectionGate().pending_requirements(session, learner_id)

    if not pending:
        rprint("[green]No progress tests pending.[/green]")
        return

    table = Table(title="Pending Progress Tests", show_header=True)
    table.add_column("Level", style="cyan")
    table.add_column("Chapters")
    table.add_column("Message", style="dim")
    for requirement in pending:
        table.add_row(
            requirement.chapter_range.level, requirement.chapter_range.key, requirement.message
        )
    console.print(table)


@app.command("version")
def show_version() -> None:
    """Show version information."""
    from frailearn import __version__

    rprint(f"[bold]frailearn[/bold] v{__version__}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
