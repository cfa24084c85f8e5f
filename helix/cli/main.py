"""
Typer CLI for the helix session scheduler.

Commands:
    helix init-db                       - Create progress tables
    helix simulate COURSE               - Drive a session with synthetic latencies
    helix simulate demo --demo-seeds 12 - Same, against a generated course
    helix progress COURSE --learner ID  - Per-thread and per-state counts

Usage:
    helix --help
    helix simulate spa_for_eng --cycles 60 --spike-rate 0.1
    helix progress spa_for_eng --learner learner-1
"""

from __future__ import annotations

import random
from pathlib import Path
from typing import Annotated, Optional

import typer
from loguru import logger
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from config import get_settings
from helix.adaptive.baseline import LearnerBaseline
from helix.content.demo import build_demo_course
from helix.content.sources import JsonContentGraphSource, StaticContentGraphSource, build_course_graph
from helix.core.errors import HelixError
from helix.core.learning_config import ConfigResolver
from helix.core.logging import configure_logging
from helix.db.memory_store import InMemoryProgressStore
from helix.learning.spaced_repetition import SpacedRepetitionTracker
from helix.session.orchestrator import CourseComplete, SessionOrchestrator
from helix.session.pacing import CycleMode

app = typer.Typer(
    name="helix",
    help="Triple-helix session scheduler for spoken-language courses",
    rich_markup_mode="rich",
    no_args_is_help=True,
)
console = Console()


@app.callback()
def main_callback(
    log_level: Annotated[
        Optional[str], typer.Option("--log-level", help="Override LOG_LEVEL for this run")
    ] = None,
) -> None:
    """Configure logging before any command runs."""
    configure_logging(get_settings(), level=log_level)


# ========================================
# DATABASE COMMANDS
# ========================================


@app.command("init-db")
def init_db_command() -> None:
    """
    Create the progress tables if they don't exist.

    Safe to run multiple times (idempotent).
    """
    from helix.db.database import init_db

    init_db()
    rprint("[green]✓[/green] Database initialized!")


# ========================================
# SIMULATION
# ========================================


def _synthetic_latency(rng: random.Random, target_text: str, spike_rate: float) -> tuple[float, float]:
    """Latency and utterance duration for a simulated learner (~300 ms/char)."""
    per_char = max(50.0, rng.gauss(300.0, 40.0))
    if rng.random() < spike_rate:
        per_char *= 3.0
    length = max(len(target_text), 5)
    return per_char * length, 80.0 * length + rng.gauss(0.0, 50.0)


@app.command("simulate")
def simulate(
    course: Annotated[str, typer.Argument(help="Course code (<content-dir>/<course>.json)")],
    cycles: Annotated[int, typer.Option("--cycles", "-n", min=1, help="Cycles to run")] = 40,
    learner: Annotated[str, typer.Option("--learner", "-l", help="Learner id")] = "simulated",
    content_dir: Annotated[
        Optional[Path], typer.Option("--content-dir", help="Course directory (default CONTENT_DIR)")
    ] = None,
    demo_seeds: Annotated[
        int, typer.Option("--demo-seeds", min=0, help="Generate a demo course with N seeds instead")
    ] = 0,
    spike_rate: Annotated[
        float, typer.Option("--spike-rate", min=0.0, max=1.0, help="Chance of a slow response")
    ] = 0.1,
    seed: Annotated[int, typer.Option("--seed", help="Random seed for synthetic latencies")] = 7,
    persist: Annotated[
        bool, typer.Option("--persist/--ephemeral", help="Write progress to DATABASE_URL")
    ] = False,
) -> None:
    """
    Run a session against a course with synthetic response latencies.

    Prints one row per cycle and the session summary.
    """
    settings = get_settings()

    if demo_seeds:
        source = StaticContentGraphSource(build_course_graph(build_demo_course(course, demo_seeds)))
    else:
        source = JsonContentGraphSource(content_dir or settings.content_dir)

    if persist:
        from helix.db.database import init_db
        from helix.db.sql_store import SqlProgressStore

        init_db()
        store = SqlProgressStore()
    else:
        store = InMemoryProgressStore()

    try:
        orchestrator = SessionOrchestrator(
            source,
            store,
            ConfigResolver.from_settings(settings),
            retry_attempts=settings.persistence_retry_attempts,
            retry_backoff_ms=settings.persistence_retry_backoff_ms,
        )
        orchestrator.start_session(learner, course)
    except HelixError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    rng = random.Random(seed)
    table = Table(title=f"Session: {learner} / {course}")
    table.add_column("Cycle", justify="right")
    table.add_column("Thread", justify="center")
    table.add_column("LEGO")
    table.add_column("Phase")
    table.add_column("Mode")
    table.add_column("Phrase")
    table.add_column("Pause", justify="right")
    table.add_column("Result")

    for _ in range(cycles):
        payload = orchestrator.next_cycle(learner, course)
        if isinstance(payload, CourseComplete):
            console.print(f"[green]Course complete after {payload.cycles_completed} cycles[/green]")
            break

        if payload.mode == CycleMode.PRODUCTION:
            latency, duration = _synthetic_latency(rng, payload.target_text, spike_rate)
        else:
            latency, duration = None, None
        result = orchestrator.record_response(learner, course, latency, duration)

        outcome = result.response.value if result.triggered_spike else f"pos {result.fibonacci_position}"
        if result.is_retired:
            outcome = "retired"
        table.add_row(
            str(payload.cycle_number),
            str(payload.thread_id),
            payload.lego_id,
            payload.phase.value,
            payload.mode.value,
            payload.target_text[:32],
            f"{payload.pause_ms}ms" if payload.pause_ms else "-",
            f"[red]{outcome}[/red]" if result.triggered_spike else outcome,
        )

    summary = orchestrator.end_session(learner, course)
    console.print(table)
    avg = f"{summary.final_rolling_average:.0f} ms/char" if summary.final_rolling_average else "n/a"
    console.print(
        f"Items: [bold]{summary.items_practiced}[/bold]  "
        f"Spikes: [bold]{summary.spikes_detected}[/bold]  "
        f"Rolling average: {avg}"
    )
    for message in summary.content_errors:
        console.print(f"[yellow]Content:[/yellow] {message}")


# ========================================
# PROGRESS
# ========================================


def _baseline_line(baseline: LearnerBaseline) -> str:
    if not baseline.is_calibrated:
        return (
            f"Baseline: {baseline.status.value} ({len(baseline.pending_latencies)} samples), "
            f"default {baseline.latency_mean:.0f} +/- {baseline.latency_stddev:.0f} ms/char"
        )
    return (
        f"Baseline: {baseline.latency_mean:.0f} +/- {baseline.latency_stddev:.0f} ms/char "
        f"({baseline.sample_count} samples)"
    )


@app.command("progress")
def progress(
    course: Annotated[str, typer.Argument(help="Course code")],
    learner: Annotated[str, typer.Option("--learner", "-l", help="Learner id")],
) -> None:
    """Show a learner's helix state and LEGO counts from the progress database."""
    from helix.db.database import init_db
    from helix.db.sql_store import SqlProgressStore

    init_db()
    try:
        snapshot = SqlProgressStore().load_snapshot(learner, course)
    except HelixError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    if snapshot.helix is None:
        console.print(f"[yellow]No progress for {learner} in {course}[/yellow]")
        raise typer.Exit(code=0)

    tracker = SpacedRepetitionTracker()
    table = Table(title=f"{learner} / {course} - cycle {snapshot.helix.cycle_count}")
    table.add_column("Thread", justify="center")
    table.add_column("Seeds", justify="right")
    table.add_column("Cursor")
    table.add_column("Introducing", justify="right")
    table.add_column("Active", justify="right")
    table.add_column("Retired", justify="right")

    for thread in snapshot.helix.threads:
        items = [p for p in snapshot.progress.values() if p.thread_id == thread.thread_id]
        stats = tracker.summarize(items)
        marker = " *" if thread.thread_id == snapshot.helix.active_thread else ""
        table.add_row(
            f"{thread.thread_id}{marker}",
            str(len(thread.seed_queue)),
            thread.current_seed_id or "[dim]exhausted[/dim]",
            str(stats.introducing),
            str(stats.active),
            str(stats.retired),
        )

    console.print(table)
    total = tracker.summarize(list(snapshot.progress.values()))
    if total.by_position:
        spread = ", ".join(f"{pos}:{count}" for pos, count in sorted(total.by_position.items()))
        console.print(f"Active by Fibonacci position: {spread}")
    console.print(f"LEGOs seen: {len(snapshot.progress)} (retired {total.retired})")
    console.print(_baseline_line(snapshot.baseline))
    logger.debug(f"Progress report for {learner} in {course} at version {snapshot.version}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
