"""
i+1 Difficulty Calibration.

Implements Krashen's Input Hypothesis: comprehensible input sits one step
beyond the learner's current competence (i+1).

- current_level: step function of acquired chunks, nudged by confidence and
  filter risk, clamped to [1, 5]
- target_level: current + 1 unless the affective filter is high
- adapt_difficulty: post-activity adjustment from accuracy and help rate
- should_drop_back: consolidation trigger
- chunk selection helpers over the chunk store (new, context, consolidation)
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from loguru import logger

from .errors import InvalidInputError
from .levels import MAX_LEVEL, MIN_LEVEL, clamp_level, level_to_cefr_label
from .models import ActivityResult, ChunkStatus, LearnerProfile, LexicalChunk
from .stores import ChunkQuery, ChunkStore

# (acquired chunks, level, label); ascending
CHUNK_THRESHOLDS: tuple[tuple[int, float, str], ...] = (
    (0, 1.0, "A1"),
    (50, 1.5, "A1+"),
    (150, 2.0, "A2"),
    (300, 2.5, "A2+"),
    (500, 3.0, "B1"),
    (800, 3.5, "B1+"),
    (1200, 4.0, "B2"),
    (1700, 4.5, "B2+"),
    (2300, 5.0, "C1"),
)


@dataclass
class CalibrationConfig:
    """Calibration constants. One risk threshold gates both i+1 and drop-back."""

    confidence_weight: float = 0.3
    risk_weight: float = 0.2
    filter_risk_threshold: float = 0.7
    drop_back_confidence: float = 0.4
    drop_back_window: int = 5
    drop_back_wrong_count: int = 3
    difficulty_tolerance: float = 0.5


@dataclass
class DifficultyFactors:
    chunk_base_level: float
    confidence_adjustment: float
    filter_risk_adjustment: float


@dataclass
class DifficultyAnalysis:
    """Full calibration result with the factors behind it."""

    current_level: float
    target_level: float
    should_drop_back: bool
    reasoning: str
    factors: DifficultyFactors

    @property
    def cefr_label(self) -> str:
        return level_to_cefr_label(self.current_level)


@dataclass
class PerformanceSummary:
    correct: int = 0
    total: int = 0
    avg_response_time_ms: float = 0.0
    help_used_count: int = 0

    @property
    def accuracy(self) -> float:
        return self.correct / self.total if self.total else 0.0

    @property
    def help_rate(self) -> float:
        return self.help_used_count / self.total if self.total else 0.0


# =============================================================================
# Level calculation
# =============================================================================


def chunk_base_level(chunks_acquired: int) -> float:
    """Map acquired chunk count to a base level on the 1-5 scale."""
    if chunks_acquired < 0:
        raise InvalidInputError(f"chunks_acquired must be non-negative, got {chunks_acquired}")

    level = MIN_LEVEL
    for threshold, threshold_level, _ in CHUNK_THRESHOLDS:
        if chunks_acquired >= threshold:
            level = threshold_level
    return level


def _factors(profile: LearnerProfile, config: CalibrationConfig) -> DifficultyFactors:
    return DifficultyFactors(
        chunk_base_level=chunk_base_level(profile.chunks_acquired),
        confidence_adjustment=(profile.average_confidence - 0.5) * config.confidence_weight,
        filter_risk_adjustment=-profile.filter_risk_score * config.risk_weight,
    )


def current_level(profile: LearnerProfile, config: CalibrationConfig | None = None) -> float:
    """
    Learner's current competence level.

    Args:
        profile: Learner aggregates
        config: Calibration constants

    Returns:
        Level within [1, 5]
    """
    factors = _factors(profile, config or CalibrationConfig())
    return clamp_level(
        factors.chunk_base_level + factors.confidence_adjustment + factors.filter_risk_adjustment
    )


def target_level(profile: LearnerProfile, config: CalibrationConfig | None = None) -> float:
    """i+1 target; stays at i while filter risk exceeds the threshold."""
    config = config or CalibrationConfig()
    level = current_level(profile, config)
    if profile.filter_risk_score > config.filter_risk_threshold:
        return level
    return min(MAX_LEVEL, level + 1.0)


def calibrate_difficulty(
    profile: LearnerProfile,
    recent_activities: Sequence[ActivityResult] = (),
    config: CalibrationConfig | None = None,
) -> DifficultyAnalysis:
    """Calibrate and explain the target difficulty for a learner."""
    config = config or CalibrationConfig()
    factors = _factors(profile, config)
    current = current_level(profile, config)
    drop_back = should_drop_back(profile, recent_activities, config)
    target = current if drop_back else target_level(profile, config)

    if drop_back:
        reasoning = (
            f"Dropping to consolidation mode at level {current:.1f} "
            f"({level_to_cefr_label(current)}): learner needs to rebuild confidence."
        )
    else:
        notes = [f"{profile.chunks_acquired} chunks acquired (base {factors.chunk_base_level:.1f})"]
        if factors.confidence_adjustment > 0.05:
            notes.append("high confidence boosted level")
        elif factors.confidence_adjustment < -0.05:
            notes.append("low confidence reduced level")
        if factors.filter_risk_adjustment < -0.05:
            notes.append("filter risk reduced level")
        reasoning = (
            f"Targeting i+1 at level {target:.1f} ({level_to_cefr_label(target)}). "
            f"Factors: {', '.join(notes)}."
        )

    return DifficultyAnalysis(
        current_level=current,
        target_level=target,
        should_drop_back=drop_back,
        reasoning=reasoning,
        factors=factors,
    )


# =============================================================================
# Adaptation
# =============================================================================


def _validate_performance(performance: PerformanceSummary) -> None:
    if min(performance.correct, performance.total, performance.help_used_count) < 0:
        raise InvalidInputError("performance counts must be non-negative")
    if performance.correct > performance.total:
        raise InvalidInputError("correct cannot exceed total")
    if performance.help_used_count > performance.total:
        raise InvalidInputError("help_used_count cannot exceed total")


def adapt_difficulty(current_target: float, performance: PerformanceSummary) -> float:
    """
    Adjust a target level after activities complete.

    Rules, first match wins:
        accuracy >= 0.9 and help rate < 0.1   -> +0.2
        accuracy < 0.6 or help rate > 0.3     -> -0.3
        accuracy >= 0.8 and help rate <= 0.3  -> +0.1
        accuracy < 0.7                        -> -0.15

    Args:
        current_target: Current target level
        performance: Counts for the activities being judged

    Returns:
        New target level within [1, 5]; unchanged when there are no activities
    """
    _validate_performance(performance)
    if performance.total == 0:
        return clamp_level(current_target)

    accuracy = performance.accuracy
    help_rate = performance.help_rate

    if accuracy >= 0.9 and help_rate < 0.1:
        adjustment = 0.2
    elif accuracy < 0.6 or help_rate > 0.3:
        adjustment = -0.3
    elif accuracy >= 0.8 and help_rate <= 0.3:
        adjustment = 0.1
    elif accuracy < 0.7:
        adjustment = -0.15
    else:
        adjustment = 0.0

    return clamp_level(current_target + adjustment)


def should_drop_back(
    profile: LearnerProfile,
    recent_activities: Sequence[ActivityResult],
    config: CalibrationConfig | None = None,
) -> bool:
    """Whether the learner should consolidate at i instead of stretching to i+1."""
    config = config or CalibrationConfig()

    window = list(recent_activities)[-config.drop_back_window:]
    if sum(1 for a in window if not a.correct) >= config.drop_back_wrong_count:
        return True
    if profile.filter_risk_score > config.filter_risk_threshold:
        return True
    return profile.average_confidence < config.drop_back_confidence


def difficulty_range(target: float, tolerance: float = 0.5) -> tuple[float, float]:
    """Acceptable content difficulty window around a target, clamped to [1, 5]."""
    if tolerance < 0:
        raise InvalidInputError(f"tolerance must be non-negative, got {tolerance}")
    return max(MIN_LEVEL, target - tolerance), min(MAX_LEVEL, target + tolerance)


def summarize_performance(activities: Sequence[ActivityResult]) -> PerformanceSummary:
    total = len(activities)
    if total == 0:
        return PerformanceSummary()
    return PerformanceSummary(
        correct=sum(1 for a in activities if a.correct),
        total=total,
        avg_response_time_ms=sum(a.response_time_ms for a in activities) / total,
        help_used_count=sum(1 for a in activities if a.used_help),
    )


# =============================================================================
# Chunk selection
# =============================================================================


async def select_chunks_for_level(
    store: ChunkStore,
    profile: LearnerProfile,
    level: float,
    count: int,
    topic: str | None = None,
    config: CalibrationConfig | None = None,
) -> list[LexicalChunk]:
    """
    Library chunks around a level that the learner has not started.

    Over-fetches three times the count, then prefers the most frequent.
    Store failures yield an empty list.
    """
    if count <= 0:
        return []
    config = config or CalibrationConfig()
    low, high = difficulty_range(level, config.difficulty_tolerance)

    try:
        records = await store.list_acquisition_records(profile.learner_id)
        started = {r.chunk_id for r in records if r.status != ChunkStatus.NEW}
        query = ChunkQuery(
            target_language=profile.target_language,
            min_difficulty=low,
            max_difficulty=high,
            topic=topic,
            exclude_ids=started,
        )
        candidates = await store.find_by_level_and_topic(query, count * 3)
    except Exception as e:
        logger.warning(f"Could not select chunks at level {level:.1f}: {e}")
        return []

    candidates = [c for c in candidates if c.id not in started]
    candidates.sort(key=lambda c: c.frequency)
    return candidates[:count]


async def get_context_chunks(
    store: ChunkStore,
    learner_id: str,
    level: float,
    count: int,
    topic: str | None = None,
) -> list[LexicalChunk]:
    """Known chunks at or below a level, most confident first, for scaffolding."""
    if count <= 0:
        return []
    try:
        records = await store.list_acquisition_records(learner_id)
        known = sorted(
            (r for r in records if r.status in (ChunkStatus.ACQUIRED, ChunkStatus.LEARNING)),
            key=lambda r: r.confidence_score,
            reverse=True,
        )
        chunks: list[LexicalChunk] = []
        for record in known:
            chunk = await store.get_by_id(record.chunk_id)
            if chunk is None or chunk.difficulty > level:
                continue
            if topic and topic not in chunk.topic_ids:
                continue
            chunks.append(chunk)
            if len(chunks) >= count:
                break
    except Exception as e:
        logger.warning(f"Could not load context chunks for {learner_id}: {e}")
        return []
    return chunks


async def get_consolidation_chunks(
    store: ChunkStore, learner_id: str, count: int
) -> list[LexicalChunk]:
    """Chunks for a consolidation session: fragile first, then learning."""
    if count <= 0:
        return []
    chunks: list[LexicalChunk] = []
    try:
        for status in (ChunkStatus.FRAGILE, ChunkStatus.LEARNING):
            remaining = count - len(chunks)
            if remaining <= 0:
                break
            for record in await store.find_by_status(learner_id, status, remaining):
                chunk = await store.get_by_id(record.chunk_id)
                if chunk is not None:
                    chunks.append(chunk)
    except Exception as e:
        logger.warning(f"Could not load consolidation chunks for {learner_id}: {e}")
        return []
    return chunks[:count]
