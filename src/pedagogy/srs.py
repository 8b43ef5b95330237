"""
SM-2 Spaced Repetition Scheduler for lexical chunks.

Implements:
- next_review: pure SM-2 variant step for one encounter
- apply_encounter: scheduling step plus encounter counters and confidence
- calculate_topic_health: status-weighted health of a set of chunks
- SRSService: store-backed encounter recording, batch recording, due and
  fragile queries, and decay of overdue acquired chunks

Outcome rules:
  incorrect          -> EF - 0.3, interval 1, ACQUIRED becomes FRAGILE
  correct with help  -> EF - 0.1, interval x 1.2, NEW advances to LEARNING only
  correct, no help   -> EF + 0.1, intervals 1, 3, then interval x EF;
                        FRAGILE recovers to ACQUIRED, NEW moves to LEARNING,
                        LEARNING graduates after 3 clean repetitions with
                        EF >= 2.0
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Protocol

from loguru import logger

from .errors import CollaboratorError, InvalidInputError, PedagogyError
from .models import ChunkStatus, UserChunk, utc_now
from .stores import ChunkStore

# =============================================================================
# Configuration
# =============================================================================


@dataclass
class SRSConfig:
    """Tunable constants for the scheduler."""

    initial_ease_factor: float = 2.5
    min_ease_factor: float = 1.3
    max_ease_factor: float = 3.0
    max_interval_days: int = 180
    first_interval: int = 1  # Days after first clean answer
    second_interval: int = 3  # Days after second clean answer
    wrong_penalty: float = 0.3
    help_penalty: float = 0.1
    correct_bonus: float = 0.1
    help_interval_multiplier: float = 1.2
    acquired_min_repetitions: int = 3
    acquired_min_ease_factor: float = 2.0
    decay_scan_limit: int = 100


TOPIC_HEALTH_WEIGHTS: dict[ChunkStatus, int] = {
    ChunkStatus.ACQUIRED: 100,
    ChunkStatus.LEARNING: 70,
    ChunkStatus.FRAGILE: 30,
    ChunkStatus.NEW: 50,
}
NEUTRAL_HEALTH = 50

# Star ratings reported by games: 3 = clean, 2 = helped, 1 = wrong
STAR_RATINGS = (1, 2, 3)


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive values."""
    return int(value + 0.5)


# =============================================================================
# Pure scheduling
# =============================================================================


class SchedulableItem(Protocol):
    status: ChunkStatus
    ease_factor: float
    interval: int
    repetitions: int


@dataclass(frozen=True)
class EncounterOutcome:
    """What happened when the learner met a chunk."""

    correct: bool
    used_help: bool = False
    response_time_ms: int = 5000

    @classmethod
    def from_star_rating(cls, stars: int) -> EncounterOutcome:
        """
        Map a 1-3 star game rating onto an outcome.

        Args:
            stars: 3 = correct without help, 2 = correct with help, 1 = wrong

        Returns:
            EncounterOutcome for the rating
        """
        if stars not in STAR_RATINGS:
            raise InvalidInputError(f"star rating must be 1, 2 or 3, got {stars}")
        return cls(correct=stars >= 2, used_help=stars == 2)


@dataclass(frozen=True)
class ReviewOutcome:
    """New scheduling state after one encounter."""

    status: ChunkStatus
    interval: int
    ease_factor: float
    repetitions: int
    next_review_date: datetime


def _validate_item(item: SchedulableItem) -> None:
    if item.interval < 1:
        raise InvalidInputError(f"interval must be at least 1 day, got {item.interval}")
    if item.repetitions < 0:
        raise InvalidInputError(f"repetitions must be non-negative, got {item.repetitions}")
    if item.ease_factor <= 0:
        raise InvalidInputError(f"ease_factor must be positive, got {item.ease_factor}")


def next_review(
    item: SchedulableItem,
    outcome: EncounterOutcome,
    now: datetime | None = None,
    config: SRSConfig | None = None,
) -> ReviewOutcome:
    """
    Compute the next scheduling state for one encounter.

    Args:
        item: Current status, ease factor, interval and repetitions
        outcome: Encounter outcome
        now: Reference time for the due date (defaults to current UTC time)
        config: Scheduler constants

    Returns:
        ReviewOutcome with status, interval, ease factor, repetitions and due date
    """
    config = config or SRSConfig()
    now = now or utc_now()
    _validate_item(item)

    def clamp_ef(value: float) -> float:
        return max(config.min_ease_factor, min(config.max_ease_factor, value))

    if not outcome.correct:
        status = ChunkStatus.FRAGILE if item.status == ChunkStatus.ACQUIRED else item.status
        interval = config.first_interval
        ease_factor = clamp_ef(item.ease_factor - config.wrong_penalty)
        repetitions = 0

    elif outcome.used_help:
        status = ChunkStatus.LEARNING if item.status == ChunkStatus.NEW else item.status
        interval = max(1, round_half_up(item.interval * config.help_interval_multiplier))
        interval = min(config.max_interval_days, interval)
        ease_factor = clamp_ef(item.ease_factor - config.help_penalty)
        repetitions = item.repetitions

    else:
        repetitions = item.repetitions + 1
        ease_factor = clamp_ef(item.ease_factor + config.correct_bonus)

        if repetitions == 1:
            interval = config.first_interval
        elif repetitions == 2:
            interval = config.second_interval
        else:
            interval = round_half_up(item.interval * ease_factor)
        interval = max(1, min(config.max_interval_days, interval))

        if item.status == ChunkStatus.FRAGILE:
            status = ChunkStatus.ACQUIRED
        elif item.status == ChunkStatus.NEW:
            # NEW always passes through LEARNING
            status = ChunkStatus.LEARNING
        elif (
            repetitions >= config.acquired_min_repetitions
            and ease_factor >= config.acquired_min_ease_factor
        ):
            status = ChunkStatus.ACQUIRED
        else:
            status = ChunkStatus.LEARNING

    return ReviewOutcome(
        status=status,
        interval=interval,
        ease_factor=ease_factor,
        repetitions=repetitions,
        next_review_date=now + timedelta(days=interval),
    )


def chunk_confidence(correct_first_try: int, total_encounters: int, help_used_count: int) -> float:
    """Per-chunk confidence: clean answer rate minus a capped help penalty."""
    if min(correct_first_try, total_encounters, help_used_count) < 0:
        raise InvalidInputError("encounter counts must be non-negative")
    if correct_first_try > total_encounters:
        raise InvalidInputError("correct_first_try cannot exceed total_encounters")
    if total_encounters == 0:
        return 0.5

    correct_rate = correct_first_try / total_encounters
    help_penalty = min(0.2, help_used_count * 0.05)
    return max(0.0, min(1.0, correct_rate - help_penalty))


def apply_encounter(
    record: UserChunk,
    outcome: EncounterOutcome,
    now: datetime | None = None,
    config: SRSConfig | None = None,
) -> tuple[UserChunk, ReviewOutcome]:
    """
    Apply one encounter to an acquisition record.

    Returns:
        Tuple of (updated record copy, scheduling outcome)
    """
    now = now or utc_now()
    review = next_review(record, outcome, now=now, config=config)

    correct_first_try = record.correct_first_try + (
        1 if outcome.correct and not outcome.used_help else 0
    )
    wrong_attempts = record.wrong_attempts + (0 if outcome.correct else 1)
    help_used_count = record.help_used_count + (1 if outcome.used_help else 0)
    total_encounters = record.total_encounters + 1

    updated = replace(
        record,
        status=review.status,
        ease_factor=review.ease_factor,
        interval=review.interval,
        repetitions=review.repetitions,
        next_review_date=review.next_review_date,
        total_encounters=total_encounters,
        correct_first_try=correct_first_try,
        wrong_attempts=wrong_attempts,
        help_used_count=help_used_count,
        confidence_score=chunk_confidence(correct_first_try, total_encounters, help_used_count),
        last_encountered_at=now,
    )
    return updated, review


def calculate_topic_health(items: Iterable[ChunkStatus | UserChunk]) -> int:
    """
    Average status weight over a set of chunks, rounded to an integer.

    An empty set is neutral (50): no data means no signal.
    """
    weights = [
        TOPIC_HEALTH_WEIGHTS[item.status if isinstance(item, UserChunk) else ChunkStatus(item)]
        for item in items
    ]
    if not weights:
        return NEUTRAL_HEALTH
    return round_half_up(sum(weights) / len(weights))


# =============================================================================
# Store-backed service
# =============================================================================


@dataclass
class EncounterResult:
    record: UserChunk
    previous_status: ChunkStatus
    new_interval: int

    @property
    def status_changed(self) -> bool:
        return self.record.status != self.previous_status


@dataclass
class BatchResult:
    """Outcome of recording one outcome against several chunks."""

    updated: int = 0
    failed: int = 0
    graduated: list[str] = field(default_factory=list)
    became_fragile: list[str] = field(default_factory=list)
    failed_ids: list[str] = field(default_factory=list)


_RECORD_FIELDS = (
    "status",
    "ease_factor",
    "interval",
    "repetitions",
    "next_review_date",
    "total_encounters",
    "correct_first_try",
    "wrong_attempts",
    "help_used_count",
    "confidence_score",
    "last_encountered_at",
)


class SRSService:
    """
    Records encounters against the chunk store.

    Single encounters propagate write failures. Batch recording isolates
    each chunk so one failed write never blocks the rest.
    """

    def __init__(self, chunks: ChunkStore, config: SRSConfig | None = None):
        self.chunks = chunks
        self.config = config or SRSConfig()

    async def _create_record(self, learner_id: str, chunk_id: str, now: datetime) -> UserChunk:
        base_interval = 1
        chunk = await self.chunks.get_by_id(chunk_id)
        if chunk is None:
            logger.debug(f"Chunk {chunk_id} not in library, using default base interval")
        else:
            base_interval = max(1, chunk.base_interval)

        record = UserChunk(
            id=uuid.uuid4().hex,
            learner_id=learner_id,
            chunk_id=chunk_id,
            status=ChunkStatus.NEW,
            ease_factor=self.config.initial_ease_factor,
            interval=base_interval,
            next_review_date=now + timedelta(days=1),
            first_encountered_at=now,
            last_encountered_at=now,
        )
        return await self.chunks.create_acquisition_record(record)

    async def record_encounter(
        self,
        learner_id: str,
        chunk_id: str,
        outcome: EncounterOutcome,
        now: datetime | None = None,
    ) -> EncounterResult:
        """
        Record one encounter, creating the acquisition record on first sight.

        Raises:
            CollaboratorError: The chunk store failed; the original error is the cause
        """
        now = now or utc_now()
        try:
            record = await self.chunks.get_acquisition_record(learner_id, chunk_id)
            if record is None:
                record = await self._create_record(learner_id, chunk_id, now)

            updated, review = apply_encounter(record, outcome, now=now, config=self.config)
            stored = await self.chunks.update_acquisition_record(
                record.id, {name: getattr(updated, name) for name in _RECORD_FIELDS}
            )
        except PedagogyError:
            raise
        except Exception as e:
            raise CollaboratorError(
                "chunk-store", f"could not record encounter for {chunk_id}: {e}"
            ) from e

        if stored.status != record.status:
            logger.debug(f"Chunk {chunk_id}: {record.status.value} -> {stored.status.value}")

        return EncounterResult(
            record=stored,
            previous_status=record.status,
            new_interval=review.interval,
        )

    async def record_batch_encounters(
        self,
        learner_id: str,
        chunk_ids: Sequence[str],
        outcome: EncounterOutcome | None = None,
        star_rating: int | None = None,
        now: datetime | None = None,
    ) -> BatchResult:
        """
        Record the same outcome for every chunk touched by an activity.

        Args:
            learner_id: Learner ID
            chunk_ids: Chunks practised in the activity
            outcome: Encounter outcome (mutually exclusive with star_rating)
            star_rating: 1-3 star game rating
            now: Reference time

        Returns:
            BatchResult with updated/failed counts and status transitions
        """
        if (outcome is None) == (star_rating is None):
            raise InvalidInputError("pass exactly one of outcome or star_rating")
        if outcome is None:
            outcome = EncounterOutcome.from_star_rating(star_rating)

        result = BatchResult()
        if not learner_id or not chunk_ids:
            return result

        for chunk_id in chunk_ids:
            try:
                encounter = await self.record_encounter(learner_id, chunk_id, outcome, now=now)
            except Exception as e:
                logger.error(f"Failed to record encounter for chunk {chunk_id}: {e}")
                result.failed += 1
                result.failed_ids.append(chunk_id)
                continue

            result.updated += 1
            if encounter.status_changed:
                if encounter.record.status == ChunkStatus.ACQUIRED:
                    result.graduated.append(chunk_id)
                elif encounter.record.status == ChunkStatus.FRAGILE:
                    result.became_fragile.append(chunk_id)

        if result.failed:
            logger.warning(
                f"Batch for {learner_id}: {result.updated} updated, {result.failed} failed"
            )
        return result

    async def get_due_chunks(
        self, learner_id: str, limit: int = 10, now: datetime | None = None
    ) -> list[UserChunk]:
        """Chunks whose review date has passed, most overdue first."""
        try:
            return await self.chunks.find_due(learner_id, now or utc_now(), limit)
        except Exception as e:
            logger.warning(f"Could not load due chunks for {learner_id}: {e}")
            return []

    async def get_fragile_chunks(self, learner_id: str, limit: int = 5) -> list[UserChunk]:
        """Chunks that were acquired and have since slipped."""
        try:
            return await self.chunks.find_by_status(learner_id, ChunkStatus.FRAGILE, limit)
        except Exception as e:
            logger.warning(f"Could not load fragile chunks for {learner_id}: {e}")
            return []

    async def decay_overdue_chunks(self, learner_id: str, now: datetime | None = None) -> int:
        """
        Mark overdue ACQUIRED chunks as FRAGILE by recording a miss.

        Returns:
            Number of chunks decayed
        """
        now = now or utc_now()
        try:
            acquired = await self.chunks.find_by_status(
                learner_id, ChunkStatus.ACQUIRED, self.config.decay_scan_limit
            )
        except Exception as e:
            logger.warning(f"Could not scan acquired chunks for {learner_id}: {e}")
            return 0

        miss = EncounterOutcome(correct=False)
        decayed = 0
        for record in acquired:
            if record.next_review_date >= now:
                continue
            try:
                await self.record_encounter(learner_id, record.chunk_id, miss, now=now)
            except Exception as e:
                logger.error(f"Failed to decay chunk {record.chunk_id}: {e}")
                continue
            decayed += 1

        if decayed:
            logger.info(f"Decayed {decayed} overdue chunks for {learner_id}")
        return decayed

    async def topic_health(self, learner_id: str, chunk_ids: Iterable[str]) -> int:
        """Topic health over the learner's records; unseen chunks count as NEW."""
        wanted = list(chunk_ids)
        try:
            records = await self.chunks.list_acquisition_records(learner_id)
        except Exception as e:
            logger.warning(f"Could not load records for {learner_id}: {e}")
            return NEUTRAL_HEALTH

        by_chunk = {record.chunk_id: record.status for record in records}
        return calculate_topic_health(by_chunk.get(cid, ChunkStatus.NEW) for cid in wanted)
