"""
Pedagogy Data Models.

Shared types for the pedagogy control loop:
- LexicalChunk: a learnable phrase from the chunk library
- UserChunk: per-learner acquisition record for one chunk
- LearnerProfile: learner aggregates read by the calibrator and filter monitor
- ActivityResult / FilterSignal / AdaptationAction: per-turn events
- SessionOptions / SessionPlan / SessionContext: session lifecycle

SessionPlan and SessionContext are frozen. The orchestrator never mutates a
context in place; it returns a copy built with dataclasses.replace.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from .errors import InvalidInputError


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


# =============================================================================
# Enums
# =============================================================================


class ChunkStatus(str, Enum):
    """Acquisition state of a chunk for one learner."""

    NEW = "new"
    LEARNING = "learning"
    ACQUIRED = "acquired"
    FRAGILE = "fragile"

    @property
    def color(self) -> str:
        """Rich color for CLI display."""
        return {
            ChunkStatus.NEW: "dim",
            ChunkStatus.LEARNING: "yellow",
            ChunkStatus.ACQUIRED: "green",
            ChunkStatus.FRAGILE: "red",
        }[self]


class ChunkType(str, Enum):
    """Lexical approach chunk categories."""

    POLYWORD = "polyword"  # "by the way"
    COLLOCATION = "collocation"  # "make a decision"
    UTTERANCE = "utterance"  # "How are you?"
    FRAME = "frame"  # "I'd like to ___"


class ActivityType(str, Enum):
    """Game activity formats, roughly easiest first."""

    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE = "true_false"
    MATCHING = "matching"
    FILL_BLANK = "fill_blank"
    TRANSLATE = "translate"
    WORD_ARRANGE = "word_arrange"
    LISTENING = "listening"
    SPEAKING = "speaking"


# Rotation used when no preference or struggle overrides the choice
ACTIVITY_ORDER: tuple[ActivityType, ...] = (
    ActivityType.MULTIPLE_CHOICE,
    ActivityType.TRUE_FALSE,
    ActivityType.MATCHING,
    ActivityType.FILL_BLANK,
    ActivityType.TRANSLATE,
)


class SignalType(str, Enum):
    """Behavioral signals observed during a session."""

    WRONG = "wrong"
    HELP = "help"
    SLOW = "slow"
    FAST = "fast"
    QUIT = "quit"


class AdaptationType(str, Enum):
    """Adaptations the filter monitor can request."""

    NONE = "none"
    ENCOURAGE = "encourage"
    SIMPLIFY = "simplify"
    CHALLENGE = "challenge"
    SUGGEST_BREAK = "suggest_break"


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"
    SUCCESS = "success"


class SessionPhase(str, Enum):
    """Lifecycle of one session."""

    BUILDING = "building"
    ACTIVE = "active"
    ENDING = "ending"
    SUMMARIZED = "summarized"


# =============================================================================
# Library and acquisition records
# =============================================================================


@dataclass
class LexicalChunk:
    """A phrase in the chunk library."""

    id: str
    text: str
    translation: str
    chunk_type: ChunkType = ChunkType.POLYWORD
    target_language: str = "es"
    native_language: str = "en"
    difficulty: float = 1.0  # 1-5 scale
    topic_ids: list[str] = field(default_factory=list)
    frequency: int = 0  # corpus rank, lower is more common
    base_interval: int = 1
    notes: str | None = None


@dataclass
class UserChunk:
    """Acquisition record for one (learner, chunk) pair."""

    id: str
    learner_id: str
    chunk_id: str
    status: ChunkStatus = ChunkStatus.NEW
    ease_factor: float = 2.5
    interval: int = 1
    repetitions: int = 0
    next_review_date: datetime = field(default_factory=utc_now)
    total_encounters: int = 0
    correct_first_try: int = 0
    wrong_attempts: int = 0
    help_used_count: int = 0
    first_encountered_at: datetime = field(default_factory=utc_now)
    last_encountered_at: datetime = field(default_factory=utc_now)
    confidence_score: float = 0.5

    def is_due(self, now: datetime | None = None) -> bool:
        """Whether the review date has passed (NEW records are never due)."""
        if self.status == ChunkStatus.NEW:
            return False
        return self.next_review_date <= (now or utc_now())


# =============================================================================
# Learner profile
# =============================================================================


@dataclass
class Snapshot:
    """A timestamped value in a history series."""

    value: float
    recorded_at: datetime = field(default_factory=utc_now)


@dataclass
class DetectedInterest:
    topic: str
    strength: float
    detected_at: datetime = field(default_factory=utc_now)


_UNIT_FIELDS = (
    "average_confidence",
    "help_request_rate",
    "wrong_answer_rate",
    "filter_risk_score",
)
_COUNT_FIELDS = (
    "chunks_acquired",
    "chunks_learning",
    "chunks_fragile",
    "total_chunks_encountered",
    "total_sessions",
)


@dataclass
class LearnerProfile:
    """
    Learner aggregates.

    `current_level` is on the fine 0-100 scale; calibration works on the
    1-5 scale and converts through src.pedagogy.levels.
    """

    learner_id: str
    native_language: str = "en"
    target_language: str = "es"
    current_level: int = 0
    level_history: list[Snapshot] = field(default_factory=list)

    # Chunk statistics
    total_chunks_encountered: int = 0
    chunks_acquired: int = 0
    chunks_learning: int = 0
    chunks_fragile: int = 0

    # Interests
    explicit_interests: list[str] = field(default_factory=list)
    detected_interests: list[DetectedInterest] = field(default_factory=list)

    # Confidence and engagement
    average_confidence: float = 0.5
    confidence_history: list[Snapshot] = field(default_factory=list)
    total_sessions: int = 0
    total_time_minutes: float = 0.0
    average_session_length: float = 0.0
    help_request_rate: float = 0.0
    wrong_answer_rate: float = 0.0
    preferred_activity_types: list[ActivityType] = field(default_factory=list)
    preferred_session_length: int = 10

    # Affective filter
    filter_risk_score: float = 0.0
    last_struggle_date: datetime | None = None
    last_session_at: datetime | None = None
    risk_decayed_at: datetime | None = None

    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        for name in _UNIT_FIELDS:
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise InvalidInputError(f"{name} must be within [0, 1], got {value}")
        for name in _COUNT_FIELDS:
            value = getattr(self, name)
            if value < 0:
                raise InvalidInputError(f"{name} must be non-negative, got {value}")
        if not 0 <= self.current_level <= 100:
            raise InvalidInputError(
                f"current_level must be within [0, 100], got {self.current_level}"
            )

    @property
    def interests(self) -> list[str]:
        """Explicit interests followed by detected ones, deduplicated."""
        topics = list(self.explicit_interests)
        for interest in self.detected_interests:
            if interest.topic not in topics:
                topics.append(interest.topic)
        return topics


# =============================================================================
# Session events
# =============================================================================


@dataclass
class ActivityResult:
    """Outcome of one completed activity."""

    id: str
    activity_type: ActivityType
    chunk_ids: list[str]
    correct: bool
    response_time_ms: int
    used_help: bool = False
    attempts: int = 1
    is_review: bool = False
    self_rated_confidence: int | None = None  # 1-5 when asked
    timestamp: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        if self.response_time_ms < 0:
            raise InvalidInputError("response_time_ms must be non-negative")
        if self.attempts < 1:
            raise InvalidInputError("attempts must be at least 1")


@dataclass(frozen=True)
class FilterSignal:
    type: SignalType
    timestamp: datetime = field(default_factory=utc_now)
    activity_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AdaptationAction:
    """A decision produced by the affective filter monitor."""

    type: AdaptationType
    severity: Severity = Severity.INFO
    message: str = ""
    drop_to_level: float | None = None
    increase_to_level: float | None = None

    @classmethod
    def none(cls) -> AdaptationAction:
        return cls(type=AdaptationType.NONE)

    @property
    def is_none(self) -> bool:
        return self.type == AdaptationType.NONE


# =============================================================================
# Session lifecycle
# =============================================================================


@dataclass
class SessionOptions:
    """Caller-supplied knobs for one session."""

    topic: str | None = None
    duration_minutes: int | None = None
    activity_types: list[ActivityType] = field(default_factory=list)
    force_chunk_ids: list[str] = field(default_factory=list)
    include_reviews: bool = True
    max_new_chunks: int | None = None


@dataclass(frozen=True)
class SessionPlan:
    """Immutable plan produced once per session."""

    session_id: str
    learner_id: str
    topic: str
    target_chunks: tuple[LexicalChunk, ...]
    review_chunks: tuple[LexicalChunk, ...]
    context_chunks: tuple[LexicalChunk, ...]
    recommended_activities: tuple[ActivityType, ...]
    estimated_duration_minutes: int
    difficulty: float
    current_level: float
    starting_confidence: float = 0.5
    reasoning: str = ""

    @property
    def total_chunks(self) -> int:
        return len(self.target_chunks) + len(self.review_chunks)


@dataclass(frozen=True)
class SessionContext:
    """
    In-memory record of one session's progress.

    Event sequences are append-only tuples; chunk id sequences keep
    first-seen order without duplicates.
    """

    session_id: str
    learner_id: str
    topic: str
    current_target_level: float
    base_target_level: float
    started_at: datetime = field(default_factory=utc_now)
    activities: tuple[ActivityResult, ...] = ()
    filter_signals: tuple[FilterSignal, ...] = ()
    adaptations: tuple[AdaptationAction, ...] = ()
    new_chunk_ids: tuple[str, ...] = ()
    review_chunk_ids: tuple[str, ...] = ()
    phase: SessionPhase = SessionPhase.BUILDING

    @property
    def latest_adaptation(self) -> AdaptationAction | None:
        return self.adaptations[-1] if self.adaptations else None


@dataclass
class ActivityRecommendation:
    activity_type: ActivityType
    chunks: list[LexicalChunk]
    reason: str
    difficulty: float
    is_review: bool = False
    adaptation: AdaptationAction | None = None


@dataclass
class EndDecision:
    should_end: bool
    reason: str = ""
    context: SessionContext | None = None


@dataclass
class SessionSummary:
    """End-of-session report."""

    session_id: str
    duration_minutes: int
    activities_completed: int
    correct_first_try: int
    accuracy: float
    new_chunks_learned: int
    chunks_mastered: int
    chunks_reviewed: int
    reward_points: int
    confidence_change: float
    filter_risk_score: float
    tips: list[str] = field(default_factory=list)
    struggling_chunks: list[str] = field(default_factory=list)
    mastered_chunks: list[str] = field(default_factory=list)
    final_context: SessionContext | None = None
