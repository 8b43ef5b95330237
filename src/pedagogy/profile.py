"""
Learner profile service.

Rolling updates to learner aggregates driven by the session loop:
confidence, struggle events, session totals, chunk statistics and
inactivity decay of the affective filter.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Any

from loguru import logger

from .affective_filter import FilterThresholds, calculate_updated_filter_risk, decay_filter_risk
from .calibration import CalibrationConfig, current_level
from .errors import InvalidInputError, ProfileNotFoundError
from .levels import coarse_to_fine
from .models import ChunkStatus, LearnerProfile, Snapshot, utc_now
from .stores import ChunkStore, ProfileStore

CONFIDENCE_WEIGHT = 0.1  # weight of the newest activity in the rolling average
HELPED_ACTIVITY_SCORE = 0.7
STRUGGLE_RISK_STEP = 0.15
RATE_HISTORY_WEIGHT = 0.9
LEVEL_CHANGE_THRESHOLD = 5  # fine-scale points before the stored level moves
MAX_HISTORY = 50


def update_confidence_score(current: float, correct: bool, used_help: bool) -> float:
    """Rolling confidence with 10% weight on the newest activity."""
    if not 0.0 <= current <= 1.0:
        raise InvalidInputError(f"confidence must be within [0, 1], got {current}")
    if correct:
        activity_score = HELPED_ACTIVITY_SCORE if used_help else 1.0
    else:
        activity_score = 0.0
    new_score = current * (1 - CONFIDENCE_WEIGHT) + activity_score * CONFIDENCE_WEIGHT
    return max(0.0, min(1.0, new_score))


def _append_snapshot(history: list[Snapshot], value: float, now: datetime) -> list[Snapshot]:
    return [*history, Snapshot(value=value, recorded_at=now)][-MAX_HISTORY:]


class ProfileService:
    """Applies learner-model updates through the profile store."""

    def __init__(
        self,
        profiles: ProfileStore,
        filter_thresholds: FilterThresholds | None = None,
        calibration: CalibrationConfig | None = None,
    ):
        self.profiles = profiles
        self.filter_thresholds = filter_thresholds or FilterThresholds()
        self.calibration = calibration or CalibrationConfig()

    async def get_or_create(
        self, learner_id: str, defaults: dict[str, Any] | None = None
    ) -> LearnerProfile:
        return await self.profiles.get_or_create(learner_id, defaults)

    async def require_profile(self, learner_id: str) -> LearnerProfile:
        """Load a profile or raise ProfileNotFoundError."""
        profile = await self.profiles.get(learner_id)
        if profile is None:
            raise ProfileNotFoundError(learner_id)
        return profile

    async def update_confidence(
        self,
        learner_id: str,
        correct: bool,
        used_help: bool,
        now: datetime | None = None,
    ) -> LearnerProfile | None:
        profile = await self.profiles.get(learner_id)
        if profile is None:
            logger.warning(f"Cannot update confidence: profile {learner_id} not found")
            return None

        confidence = update_confidence_score(profile.average_confidence, correct, used_help)
        return await self.profiles.update(
            learner_id,
            {
                "average_confidence": confidence,
                "confidence_history": _append_snapshot(
                    profile.confidence_history, confidence, now or utc_now()
                ),
            },
        )

    async def record_struggle(
        self, learner_id: str, now: datetime | None = None
    ) -> LearnerProfile | None:
        """Raise filter risk and stamp the struggle time."""
        profile = await self.profiles.get(learner_id)
        if profile is None:
            logger.warning(f"Cannot record struggle: profile {learner_id} not found")
            return None

        risk = min(1.0, profile.filter_risk_score + STRUGGLE_RISK_STEP)
        logger.info(f"Struggle recorded for {learner_id}, filter risk {risk:.2f}")
        return await self.profiles.update(
            learner_id,
            {"filter_risk_score": risk, "last_struggle_date": now or utc_now()},
        )

    async def record_session(
        self,
        learner_id: str,
        duration_minutes: float,
        activities: int,
        correct_first_try: int,
        help_used: int,
        session_risk: float,
        now: datetime | None = None,
    ) -> LearnerProfile | None:
        """
        Fold a finished session into the learner aggregates.

        Args:
            learner_id: Learner ID
            duration_minutes: Session length
            activities: Activities completed
            correct_first_try: Activities answered correctly on the first attempt
            help_used: Activities where help was used
            session_risk: Filter score observed over the session
            now: Session end time

        Returns:
            Updated profile, or None if the learner has no profile
        """
        if min(duration_minutes, activities, correct_first_try, help_used) < 0:
            raise InvalidInputError("session totals must be non-negative")
        if correct_first_try > activities or help_used > activities:
            raise InvalidInputError("per-activity counts cannot exceed activities")

        profile = await self.profiles.get(learner_id)
        if profile is None:
            logger.warning(f"Cannot record session: profile {learner_id} not found")
            return None

        total_sessions = profile.total_sessions + 1
        total_time = profile.total_time_minutes + duration_minutes
        wrong_rate = (activities - correct_first_try) / activities if activities else 0.0
        help_rate = help_used / activities if activities else 0.0
        history = RATE_HISTORY_WEIGHT
        fields = {
            "total_sessions": total_sessions,
            "total_time_minutes": total_time,
            "average_session_length": total_time / total_sessions,
            "wrong_answer_rate": profile.wrong_answer_rate * history + wrong_rate * (1 - history),
            "help_request_rate": profile.help_request_rate * history + help_rate * (1 - history),
            "filter_risk_score": calculate_updated_filter_risk(
                profile.filter_risk_score, session_risk, self.filter_thresholds
            ),
            "last_session_at": now or utc_now(),
        }
        return await self.profiles.update(learner_id, fields)

    async def update_chunk_stats(
        self, learner_id: str, chunks: ChunkStore, now: datetime | None = None
    ) -> LearnerProfile | None:
        """Refresh status counts and move the stored level when it drifts far enough."""
        try:
            counts = await chunks.count_by_status(learner_id)
        except Exception as e:
            logger.warning(f"Could not count chunks for {learner_id}: {e}")
            return None

        profile = await self.profiles.get(learner_id)
        if profile is None:
            logger.warning(f"Cannot update chunk stats: profile {learner_id} not found")
            return None

        fields: dict[str, Any] = {
            "chunks_acquired": counts.get(ChunkStatus.ACQUIRED, 0),
            "chunks_learning": counts.get(ChunkStatus.LEARNING, 0),
            "chunks_fragile": counts.get(ChunkStatus.FRAGILE, 0),
            "total_chunks_encountered": sum(counts.values()),
        }

        refreshed = replace(profile, chunks_acquired=fields["chunks_acquired"])
        estimated = coarse_to_fine(current_level(refreshed, self.calibration))
        if abs(estimated - profile.current_level) >= LEVEL_CHANGE_THRESHOLD:
            fields["current_level"] = estimated
            fields["level_history"] = _append_snapshot(
                profile.level_history, estimated, now or utc_now()
            )
            logger.info(f"Level for {learner_id}: {profile.current_level} -> {estimated}")

        return await self.profiles.update(learner_id, fields)

    async def apply_inactivity_decay(
        self, learner_id: str, now: datetime | None = None
    ) -> LearnerProfile | None:
        """
        Decay stored filter risk by whole days since the last session.

        Days already decayed since that session (tracked by
        `risk_decayed_at`) are not decayed again, so repeated calls
        between sessions never shrink the risk past the day cap.
        """
        profile = await self.profiles.get(learner_id)
        if profile is None or profile.last_session_at is None or profile.filter_risk_score == 0:
            return profile

        now = now or utc_now()
        cap = self.filter_thresholds.max_decay_days
        elapsed = min(cap, max(0, (now - profile.last_session_at).days))
        applied = 0
        if profile.risk_decayed_at is not None and profile.risk_decayed_at > profile.last_session_at:
            applied = min(cap, (profile.risk_decayed_at - profile.last_session_at).days)

        days = elapsed - applied
        if days <= 0:
            return profile

        risk = decay_filter_risk(profile.filter_risk_score, days, self.filter_thresholds)
        logger.debug(f"Filter risk for {learner_id} decayed over {days}d to {risk:.2f}")
        return await self.profiles.update(
            learner_id, {"filter_risk_score": risk, "risk_decayed_at": now}
        )
