"""
Lingo: terminal front end for the pedagogy control loop.

Commands:
- lingo review    - Replay outcomes through the scheduler
- lingo level     - Calibrate the i+1 level for a learner state
- lingo health    - Topic health for a set of chunk statuses
- lingo simulate  - Run a simulated session on in-memory stores
"""
from __future__ import annotations

import asyncio
import random
import sys
from datetime import UTC, datetime, timedelta
from typing import Optional

import typer
from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from config import Settings, get_settings
from src.pedagogy.calibration import calibrate_difficulty, summarize_performance
from src.pedagogy.engine import PedagogyEngine
from src.pedagogy.errors import PedagogyError
from src.pedagogy.levels import coarse_to_fine
from src.pedagogy.memory_store import InMemoryChunkStore, InMemoryProfileStore
from src.pedagogy.models import (
    ActivityResult,
    ActivityType,
    ChunkStatus,
    ChunkType,
    LearnerProfile,
    LexicalChunk,
    SessionOptions,
    UserChunk,
)
from src.pedagogy.srs import (
    EncounterOutcome,
    apply_encounter,
    calculate_topic_health,
)

# =============================================================================
# CLI Setup
# =============================================================================

app = typer.Typer(
    name="lingo",
    help="Lingo: adaptive pedagogy control loop",
    no_args_is_help=True,
)
console = Console()

OUTCOME_CODES = {
    "c": EncounterOutcome(correct=True),
    "h": EncounterOutcome(correct=True, used_help=True),
    "w": EncounterOutcome(correct=False),
}
OUTCOME_LABELS = {"c": "[green]correct[/green]", "h": "[yellow]helped[/yellow]", "w": "[red]wrong[/red]"}

# Fixed start time so simulations are reproducible
SIMULATION_START = datetime(2024, 1, 1, 9, 0, tzinfo=UTC)


def configure_logging(settings: Settings, verbose: bool = False) -> None:
    """Route loguru output to stderr, plus a rotating file when configured."""
    logger.remove()
    logger.add(
        sys.stderr,
        level="DEBUG" if verbose else settings.log_level,
        format="<level>{message}</level>",
    )
    if settings.log_file:
        logger.add(settings.log_file, level="DEBUG", rotation="10 MB", retention=5)


def styled_status(status: ChunkStatus) -> str:
    return f"[{status.color}]{status.value}[/{status.color}]"


def demo_library() -> list[LexicalChunk]:
    """A small Spanish chunk library for simulations."""
    rows = [
        ("buenos-dias", "buenos días", "good morning", ChunkType.UTTERANCE, 1.0, "everyday-conversations", 1),
        ("que-tal", "¿qué tal?", "how's it going?", ChunkType.UTTERANCE, 1.0, "everyday-conversations", 2),
        ("por-favor", "por favor", "please", ChunkType.POLYWORD, 1.0, "everyday-conversations", 3),
        ("me-llamo", "me llamo ___", "my name is ___", ChunkType.FRAME, 1.5, "everyday-conversations", 4),
        ("mucho-gusto", "mucho gusto", "nice to meet you", ChunkType.UTTERANCE, 1.5, "everyday-conversations", 5),
        ("hasta-luego", "hasta luego", "see you later", ChunkType.POLYWORD, 1.5, "everyday-conversations", 6),
        ("tengo-que", "tengo que ___", "I have to ___", ChunkType.FRAME, 2.0, "everyday-conversations", 7),
        ("me-gustaria", "me gustaría ___", "I'd like ___", ChunkType.FRAME, 2.0, "everyday-conversations", 8),
        ("tomar-decision", "tomar una decisión", "make a decision", ChunkType.COLLOCATION, 2.0, "everyday-conversations", 9),
        ("sin-embargo", "sin embargo", "however", ChunkType.POLYWORD, 2.5, "everyday-conversations", 10),
        ("tener-en-cuenta", "tener en cuenta", "take into account", ChunkType.COLLOCATION, 2.5, "everyday-conversations", 11),
        ("la-cuenta", "la cuenta, por favor", "the check, please", ChunkType.UTTERANCE, 1.5, "food", 12),
        ("tengo-hambre", "tengo hambre", "I'm hungry", ChunkType.UTTERANCE, 1.0, "food", 13),
        ("para-llevar", "para llevar", "to go", ChunkType.POLYWORD, 2.0, "food", 14),
        ("donde-esta", "¿dónde está ___?", "where is ___?", ChunkType.FRAME, 1.5, "travel", 15),
        ("ida-y-vuelta", "ida y vuelta", "round trip", ChunkType.POLYWORD, 2.0, "travel", 16),
        ("hacer-la-maleta", "hacer la maleta", "pack a suitcase", ChunkType.COLLOCATION, 2.5, "travel", 17),
    ]
    return [
        LexicalChunk(
            id=chunk_id,
            text=text,
            translation=translation,
            chunk_type=chunk_type,
            difficulty=difficulty,
            topic_ids=[topic],
            frequency=frequency,
        )
        for chunk_id, text, translation, chunk_type, difficulty, topic, frequency in rows
    ]


# =============================================================================
# Commands
# =============================================================================


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
) -> None:
    """Lingo: adaptive pedagogy control loop."""
    configure_logging(get_settings(), verbose)


@app.command()
def review(
    outcomes: list[str] = typer.Argument(..., help="Outcomes in order: c (correct), h (helped), w (wrong)"),
    status: ChunkStatus = typer.Option(ChunkStatus.NEW, "--status", "-s", help="Starting status"),
    ease: float = typer.Option(2.5, "--ease", "-e", help="Starting ease factor"),
    interval: int = typer.Option(1, "--interval", "-i", min=1, help="Starting interval in days"),
    repetitions: int = typer.Option(0, "--reps", "-r", min=0, help="Starting repetitions"),
) -> None:
    """Replay a sequence of outcomes through the scheduler."""
    codes = [o.lower() for o in outcomes]
    unknown = [c for c in codes if c not in OUTCOME_CODES]
    if unknown:
        raise typer.BadParameter(f"Unknown outcome codes: {', '.join(unknown)} (use c, h or w)")

    settings = get_settings()
    config = settings.get_srs_config()
    now = SIMULATION_START
    record = UserChunk(
        id="cli",
        learner_id="cli",
        chunk_id="cli",
        status=status,
        ease_factor=ease,
        interval=interval,
        repetitions=repetitions,
    )

    table = Table(title="Scheduler Replay")
    table.add_column("#", justify="right")
    table.add_column("Outcome")
    table.add_column("Status")
    table.add_column("Interval", justify="right")
    table.add_column("Ease", justify="right")
    table.add_column("Reps", justify="right")
    table.add_column("Next review")

    try:
        for step, code in enumerate(codes, start=1):
            record, result = apply_encounter(record, OUTCOME_CODES[code], now=now, config=config)
            table.add_row(
                str(step),
                OUTCOME_LABELS[code],
                styled_status(result.status),
                f"{result.interval}d",
                f"{result.ease_factor:.2f}",
                str(result.repetitions),
                result.next_review_date.strftime("%Y-%m-%d"),
            )
            now = result.next_review_date
    except PedagogyError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    console.print(table)


@app.command()
def level(
    acquired: int = typer.Option(0, "--acquired", "-a", min=0, help="Chunks acquired"),
    confidence: float = typer.Option(0.5, "--confidence", "-c", min=0.0, max=1.0, help="Average confidence"),
    risk: float = typer.Option(0.0, "--risk", "-r", min=0.0, max=1.0, help="Filter risk score"),
    wrong_recent: int = typer.Option(0, "--wrong-recent", "-w", min=0, help="Wrong answers among the last five"),
) -> None:
    """Calibrate the i+1 level for a learner state."""
    settings = get_settings()
    config = settings.get_calibration_config()
    profile = LearnerProfile(
        learner_id="cli",
        chunks_acquired=acquired,
        average_confidence=confidence,
        filter_risk_score=risk,
    )
    recent = []
    if wrong_recent:
        window = config.drop_back_window
        wrong = min(wrong_recent, window)
        recent = [
            ActivityResult(
                id=f"recent-{i}",
                activity_type=ActivityType.MULTIPLE_CHOICE,
                chunk_ids=[],
                correct=i >= wrong,
                response_time_ms=5000,
            )
            for i in range(window)
        ]

    analysis = calibrate_difficulty(profile, recent, config)

    table = Table(show_header=False, box=None)
    table.add_column("Metric", style="dim")
    table.add_column("Value", style="bold")
    table.add_row("Chunk base level", f"{analysis.factors.chunk_base_level:.1f}")
    table.add_row("Confidence adjustment", f"{analysis.factors.confidence_adjustment:+.2f}")
    table.add_row("Filter risk adjustment", f"{analysis.factors.filter_risk_adjustment:+.2f}")
    table.add_row("Current level", f"{analysis.current_level:.2f} ({analysis.cefr_label})")
    table.add_row("Profile level (0-100)", str(coarse_to_fine(analysis.current_level)))
    table.add_row("Target level", f"{analysis.target_level:.2f}")
    table.add_row("Drop back", "[red]yes[/red]" if analysis.should_drop_back else "[green]no[/green]")
    if recent:
        table.add_row("Recent accuracy", f"{summarize_performance(recent).accuracy:.0%}")

    console.print("\n[bold cyan]i+1 Calibration[/bold cyan]")
    console.print(table)
    console.print(f"\n[dim]{analysis.reasoning}[/dim]")


@app.command()
def health(
    statuses: list[ChunkStatus] = typer.Argument(None, help="Chunk statuses (new, learning, acquired, fragile)"),
) -> None:
    """Topic health for a set of chunk statuses."""
    score = calculate_topic_health(statuses or [])
    color = "green" if score >= 70 else "yellow" if score >= 50 else "red"
    console.print(f"Topic health: [{color}]{score}[/{color}]")


@app.command()
def simulate(
    learner: str = typer.Option("demo-learner", "--learner", "-l", help="Learner ID"),
    topic: Optional[str] = typer.Option(None, "--topic", "-t", help="Session topic"),
    accuracy: float = typer.Option(0.75, "--accuracy", "-a", min=0.0, max=1.0, help="Chance of a clean answer"),
    duration: int = typer.Option(10, "--duration", "-d", min=1, help="Session length in minutes"),
    seed: int = typer.Option(7, "--seed", help="Random seed"),
    max_turns: int = typer.Option(20, "--max-turns", min=1, help="Hard stop on activities"),
) -> None:
    """Run a simulated session on in-memory stores."""
    try:
        asyncio.run(_simulate(learner, topic, accuracy, duration, seed, max_turns))
    except PedagogyError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)


async def _simulate(
    learner_id: str,
    topic: str | None,
    accuracy: float,
    duration: int,
    seed: int,
    max_turns: int,
) -> None:
    settings = get_settings()
    rng = random.Random(seed)
    chunks = InMemoryChunkStore(demo_library())
    engine = PedagogyEngine(
        InMemoryProfileStore(),
        chunks,
        config=settings.get_engine_config(),
        rng=random.Random(seed),
    )
    options = SessionOptions(topic=topic, duration_minutes=duration)

    now = SIMULATION_START
    plan = await engine.prepare_session(learner_id, options, now=now)
    console.print(Panel(
        f"Topic: [bold]{plan.topic}[/bold]\n"
        f"New chunks: {', '.join(c.text for c in plan.target_chunks) or '-'}\n"
        f"Review chunks: {', '.join(c.text for c in plan.review_chunks) or '-'}\n"
        f"Target level: {plan.difficulty:.1f}\n\n"
        f"[dim]{plan.reasoning}[/dim]",
        title="Session Plan",
        border_style="cyan",
    ))

    table = Table(title="Activities")
    table.add_column("#", justify="right")
    table.add_column("Activity")
    table.add_column("Chunks")
    table.add_column("Result")
    table.add_column("Filter", justify="right")
    table.add_column("Level", justify="right")
    table.add_column("Adaptation")

    context = engine.create_session_context(plan, now=now)
    end_reason = "Turn limit reached."
    for turn in range(1, max_turns + 1):
        recommendation = engine.get_next_activity(context, plan)
        if not recommendation.chunks:
            end_reason = recommendation.reason
            break

        # a third of the misses are rescued by a hint
        roll = rng.random()
        helped_band = accuracy + (1 - accuracy) / 3
        correct = roll < helped_band
        used_help = accuracy <= roll < helped_band
        now = now + timedelta(seconds=90)
        activity = ActivityResult(
            id=f"{plan.session_id}-{turn}",
            activity_type=recommendation.activity_type,
            chunk_ids=[c.id for c in recommendation.chunks],
            correct=correct,
            response_time_ms=rng.randint(2000, 12000),
            used_help=used_help,
            is_review=recommendation.is_review,
            timestamp=now,
        )
        report = await engine.report_activity_completion(learner_id, activity, context, now=now)
        context = report.context

        code = "w" if not correct else "h" if used_help else "c"
        table.add_row(
            str(turn),
            recommendation.activity_type.value,
            ", ".join(activity.chunk_ids),
            OUTCOME_LABELS[code],
            f"{report.filter_score:.2f}",
            f"{context.current_target_level:.1f}",
            report.adaptation.type.value if not report.adaptation.is_none else "",
        )

        decision = engine.should_end_session(context, options)
        if decision.should_end:
            end_reason = decision.reason
            context = decision.context
            break

    console.print(table)
    console.print(f"\n[bold]{end_reason}[/bold]")

    summary = await engine.generate_session_summary(context, plan, now=now)
    tips = "\n".join(f"- {tip}" for tip in summary.tips)
    console.print(Panel(
        f"Activities: {summary.activities_completed}\n"
        f"Accuracy: {summary.accuracy * 100:.0f}%\n"
        f"New chunks: {summary.new_chunks_learned}  Reviewed: {summary.chunks_reviewed}\n"
        f"Reward points: {summary.reward_points}\n"
        f"Confidence change: {summary.confidence_change:+.2f}\n"
        f"Filter risk: {summary.filter_risk_score:.2f}\n\n"
        f"{tips}",
        title="Session Summary",
        border_style="green",
    ))


def run() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    run()
