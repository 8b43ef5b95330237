"""
Pedagogy: the adaptive control loop for lexical chunk learning.

Decides what a learner practises next and how hard it should be.

Components:
- srs: SM-2 spaced repetition over acquisition records
- calibration: i+1 difficulty targeting and chunk selection
- affective_filter: frustration scoring and adaptations
- profile: rolling learner-model updates
- engine: PedagogyEngine session orchestrator
- stores / memory_store: collaborator protocols and in-memory stores
- content_client: HTTP content generator
"""

from .affective_filter import (
    FilterThresholds,
    detect_signals,
    filter_score,
    get_adaptation,
    is_filter_rising,
)
from .calibration import (
    CalibrationConfig,
    DifficultyAnalysis,
    PerformanceSummary,
    adapt_difficulty,
    calibrate_difficulty,
    current_level,
    should_drop_back,
    target_level,
)
from .content_client import ContentClientConfig, HttpContentGenerator, MinIntervalRateLimit
from .engine import ActivityReport, EngineConfig, PedagogyEngine, SessionConfig
from .errors import (
    CollaboratorError,
    InvalidInputError,
    NotFoundError,
    PedagogyError,
    ProfileNotFoundError,
)
from .memory_store import InMemoryChunkStore, InMemoryProfileStore
from .models import (
    ActivityRecommendation,
    ActivityResult,
    ActivityType,
    AdaptationAction,
    AdaptationType,
    ChunkStatus,
    EndDecision,
    FilterSignal,
    LearnerProfile,
    LexicalChunk,
    SessionContext,
    SessionOptions,
    SessionPhase,
    SessionPlan,
    SessionSummary,
    SignalType,
    UserChunk,
)
from .profile import ProfileService
from .srs import (
    BatchResult,
    EncounterOutcome,
    ReviewOutcome,
    SRSConfig,
    SRSService,
    calculate_topic_health,
    next_review,
)
from .stores import ChunkStore, ContentGenerator, ProfileStore

__all__ = [
    # Engine
    "PedagogyEngine",
    "EngineConfig",
    "SessionConfig",
    "ActivityReport",
    # Scheduler
    "SRSConfig",
    "SRSService",
    "EncounterOutcome",
    "ReviewOutcome",
    "BatchResult",
    "next_review",
    "calculate_topic_health",
    # Calibration
    "CalibrationConfig",
    "DifficultyAnalysis",
    "PerformanceSummary",
    "current_level",
    "target_level",
    "calibrate_difficulty",
    "adapt_difficulty",
    "should_drop_back",
    # Affective filter
    "FilterThresholds",
    "detect_signals",
    "filter_score",
    "is_filter_rising",
    "get_adaptation",
    # Profile
    "ProfileService",
    # Collaborators
    "ProfileStore",
    "ChunkStore",
    "ContentGenerator",
    "InMemoryProfileStore",
    "InMemoryChunkStore",
    "HttpContentGenerator",
    "ContentClientConfig",
    "MinIntervalRateLimit",
    # Models
    "ActivityRecommendation",
    "ActivityResult",
    "ActivityType",
    "AdaptationAction",
    "AdaptationType",
    "ChunkStatus",
    "EndDecision",
    "FilterSignal",
    "LearnerProfile",
    "LexicalChunk",
    "SessionContext",
    "SessionOptions",
    "SessionPhase",
    "SessionPlan",
    "SessionSummary",
    "SignalType",
    "UserChunk",
    # Errors
    "PedagogyError",
    "NotFoundError",
    "ProfileNotFoundError",
    "CollaboratorError",
    "InvalidInputError",
]
