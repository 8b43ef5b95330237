"""
Pedagogy Engine: the session control loop.

Combines the scheduler, the i+1 calibrator and the affective filter monitor
into per-turn decisions:

1. prepare_session      - plan new, review and context chunks at i+1
2. create_session_context
3. report_activity_completion (per activity)
   - derive filter signals, record encounters, update confidence
   - pick an adaptation and apply level changes
4. get_next_activity    - review-first when struggling, otherwise new content
5. should_end_session   - fatigue, struggle or time
6. generate_session_summary

The engine owns no learner state between calls. Each call takes a
SessionContext and returns a new one; callers serialize calls per session.
"""

from __future__ import annotations

import asyncio
import math
import random
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime

from loguru import logger

from .affective_filter import FilterThresholds, detect_signals, filter_score, get_adaptation
from .calibration import (
    CalibrationConfig,
    current_level,
    get_context_chunks,
    select_chunks_for_level,
    target_level,
)
from .errors import InvalidInputError
from .levels import generation_cefr, level_to_cefr_label
from .models import (
    ACTIVITY_ORDER,
    ActivityRecommendation,
    ActivityResult,
    ActivityType,
    AdaptationAction,
    AdaptationType,
    EndDecision,
    LearnerProfile,
    LexicalChunk,
    SessionContext,
    SessionOptions,
    SessionPhase,
    SessionPlan,
    SessionSummary,
    SignalType,
    utc_now,
)
from .profile import ProfileService
from .srs import BatchResult, EncounterOutcome, SRSConfig, SRSService, round_half_up
from .stores import ChunkGenerationRequest, ChunkStore, ContentGenerator, ProfileStore

# =============================================================================
# Configuration
# =============================================================================


@dataclass
class SessionConfig:
    """Session pacing and reward constants."""

    default_duration_minutes: int = 10
    max_new_chunks: int = 5
    max_review_chunks: int = 10
    context_chunks: int = 5
    wrong_streak_threshold: int = 3
    minutes_per_activity: float = 1.5
    default_topic: str = "everyday-conversations"
    chunks_per_activity: int = 2
    review_every: int = 3
    max_recommended_activities: int = 4
    fatigue_min_activities: int = 10
    fatigue_wrong_rate: float = 0.5
    struggle_wrong_signals: int = 5
    reward_per_correct: int = 5
    streak_bonus: int = 10
    streak_bonus_length: int = 5
    decay_overdue_on_prepare: bool = True


@dataclass
class EngineConfig:
    srs: SRSConfig = field(default_factory=SRSConfig)
    calibration: CalibrationConfig = field(default_factory=CalibrationConfig)
    filter: FilterThresholds = field(default_factory=FilterThresholds)
    session: SessionConfig = field(default_factory=SessionConfig)


@dataclass
class ActivityReport:
    """Result of reporting one activity."""

    context: SessionContext
    adaptation: AdaptationAction
    batch: BatchResult
    filter_score: float


REASON_REVIEW_AFTER_MISTAKES = "Reviewing to build confidence after some mistakes."
REASON_SCHEDULED_REVIEW = "Scheduled review to reinforce learning."
REASON_NEW_CONTENT = "Introducing new content at your level."
REASON_FALLBACK_REVIEW = "Reinforcing previous learning."
REASON_ALL_COVERED = "All planned chunks covered."

END_FATIGUE = "High error rate suggests fatigue. Time for a break."
END_STRUGGLE = "Multiple struggles detected. Better to rest and return fresh."
END_TIME = "Good session! Time to wrap up."


# =============================================================================
# Helpers
# =============================================================================


def wrong_streak(activities: Sequence[ActivityResult]) -> int:
    """Trailing run of incorrect activities."""
    streak = 0
    for activity in reversed(activities):
        if activity.correct:
            break
        streak += 1
    return streak


def max_correct_streak(activities: Sequence[ActivityResult]) -> int:
    best = current = 0
    for activity in activities:
        current = current + 1 if activity.correct else 0
        best = max(best, current)
    return best


def _merge_ids(existing: tuple[str, ...], new_ids: Sequence[str]) -> tuple[str, ...]:
    merged = list(existing)
    for chunk_id in new_ids:
        if chunk_id not in merged:
            merged.append(chunk_id)
    return tuple(merged)


def _dedupe_chunks(chunks: Sequence[LexicalChunk]) -> list[LexicalChunk]:
    seen: set[str] = set()
    unique = []
    for chunk in chunks:
        if chunk.id not in seen:
            seen.add(chunk.id)
            unique.append(chunk)
    return unique


def session_tips(accuracy: float, duration_minutes: int, struggling_count: int) -> list[str]:
    tips = []
    if accuracy >= 0.9:
        tips.append("Excellent work! You're really getting the hang of this.")
    elif accuracy >= 0.7:
        tips.append("Good progress! Keep practicing to solidify what you learned.")
    elif accuracy >= 0.5:
        tips.append("You're learning! Reviewing these chunks again will help them stick.")
    else:
        tips.append("This topic is challenging. Don't give up, practice makes progress!")

    if duration_minutes < 5:
        tips.append("A bit longer next time will help reinforce your learning.")
    elif duration_minutes > 20:
        tips.append("Great dedication! Shorter sessions more often can be more effective.")

    if struggling_count > 2:
        tips.append(
            f"Focus on the {struggling_count} chunks that were tricky, they'll click with practice."
        )
    return tips


# =============================================================================
# Engine
# =============================================================================


class PedagogyEngine:
    """
    Session orchestrator.

    Collaborator reads degrade to fewer chunks; encounter writes are batched
    per activity so one failed chunk never blocks the rest.
    """

    def __init__(
        self,
        profiles: ProfileStore,
        chunks: ChunkStore,
        generator: ContentGenerator | None = None,
        config: EngineConfig | None = None,
        rng: random.Random | None = None,
    ):
        """
        Initialize the engine.

        Args:
            profiles: Learner profile store
            chunks: Chunk library and acquisition record store
            generator: Optional content generator used when the library runs short
            config: Engine constants (defaults if None)
            rng: Random source for topic and message selection
        """
        self.config = config or EngineConfig()
        self.profiles = profiles
        self.chunks = chunks
        self.generator = generator
        self.rng = rng or random.Random()
        self.srs = SRSService(chunks, self.config.srs)
        self.profile_service = ProfileService(
            profiles, self.config.filter, self.config.calibration
        )

    # -------------------------------------------------------------------------
    # Planning
    # -------------------------------------------------------------------------

    async def prepare_session(
        self,
        learner_id: str,
        options: SessionOptions | None = None,
        now: datetime | None = None,
    ) -> SessionPlan:
        """
        Build the plan for a new session.

        Args:
            learner_id: Learner ID (profile is created if missing)
            options: Session options
            now: Reference time

        Returns:
            SessionPlan
        """
        options = options or SessionOptions()
        session = self.config.session
        now = now or utc_now()

        profile = await self.profile_service.get_or_create(learner_id)
        profile = await self.profile_service.apply_inactivity_decay(learner_id, now) or profile

        current = current_level(profile, self.config.calibration)
        target = target_level(profile, self.config.calibration)
        logger.debug(f"Level for {learner_id}: current={current:.1f}, i+1={target:.1f}")

        topic = options.topic or self._select_topic(profile)

        if session.decay_overdue_on_prepare:
            await self.srs.decay_overdue_chunks(learner_id, now)

        target_chunks, review_chunks, context_chunks = await asyncio.gather(
            self._get_target_chunks(profile, topic, target, options),
            self._get_review_chunks(learner_id, options, now),
            get_context_chunks(self.chunks, learner_id, current, session.context_chunks, topic),
        )

        plan = SessionPlan(
            session_id=str(uuid.uuid4()),
            learner_id=learner_id,
            topic=topic,
            target_chunks=tuple(target_chunks),
            review_chunks=tuple(review_chunks),
            context_chunks=tuple(context_chunks),
            recommended_activities=tuple(
                self._select_activities(len(target_chunks) + len(review_chunks), profile, options)
            ),
            estimated_duration_minutes=options.duration_minutes or session.default_duration_minutes,
            difficulty=target,
            current_level=current,
            starting_confidence=profile.average_confidence,
            reasoning=(
                f"i+1 targeting level {target:.1f} ({level_to_cefr_label(target)}) based on "
                f"{profile.chunks_acquired} acquired chunks, "
                f"{profile.average_confidence * 100:.0f}% confidence"
            ),
        )
        logger.info(
            f"Session {plan.session_id} prepared: {len(target_chunks)} new, "
            f"{len(review_chunks)} review, {len(context_chunks)} context"
        )
        return plan

    def _select_topic(self, profile: LearnerProfile) -> str:
        interests = profile.interests
        if interests:
            return self.rng.choice(interests)
        return self.config.session.default_topic

    def _select_activities(
        self, total_chunks: int, profile: LearnerProfile, options: SessionOptions
    ) -> list[ActivityType]:
        limit = self.config.session.max_recommended_activities
        preferred = options.activity_types or profile.preferred_activity_types
        if preferred:
            return list(preferred)[:limit]
        return list(ACTIVITY_ORDER[: min(limit, total_chunks)])

    async def _get_forced_chunks(self, chunk_ids: Sequence[str]) -> list[LexicalChunk]:
        forced = []
        for chunk_id in chunk_ids:
            try:
                chunk = await self.chunks.get_by_id(chunk_id)
            except Exception as e:
                logger.warning(f"Could not load forced chunk {chunk_id}: {e}")
                continue
            if chunk is None:
                logger.warning(f"Forced chunk {chunk_id} not found")
                continue
            forced.append(chunk)
        return forced

    async def _get_target_chunks(
        self,
        profile: LearnerProfile,
        topic: str,
        level: float,
        options: SessionOptions,
    ) -> list[LexicalChunk]:
        max_new = options.max_new_chunks
        if max_new is None:
            max_new = self.config.session.max_new_chunks
        chunks = await self._get_forced_chunks(options.force_chunk_ids)

        candidates = await select_chunks_for_level(
            self.chunks, profile, level, max_new, topic, self.config.calibration
        )
        chunks = _dedupe_chunks([*chunks, *candidates])

        if len(chunks) < max_new and self.generator is not None:
            request = ChunkGenerationRequest(
                target_language=profile.target_language,
                native_language=profile.native_language,
                cefr_level=generation_cefr(level),
                internal_level=profile.current_level,
                difficulty=round_half_up(level),
                topic=topic,
                count=max_new - len(chunks),
                interests=list(profile.explicit_interests),
            )
            try:
                generated = await self.generator.generate(request)
            except Exception as e:
                logger.warning(f"Could not generate chunks for {topic}: {e}")
            else:
                chunks = _dedupe_chunks([*chunks, *generated])

        return chunks[:max_new]

    async def _get_review_chunks(
        self, learner_id: str, options: SessionOptions, now: datetime
    ) -> list[LexicalChunk]:
        if not options.include_reviews:
            return []

        max_review = self.config.session.max_review_chunks
        half = math.ceil(max_review / 2)
        due = await self.srs.get_due_chunks(learner_id, half, now)
        fragile = await self.srs.get_fragile_chunks(learner_id, half)

        seen: set[str] = set()
        review: list[LexicalChunk] = []
        for record in [*due, *fragile]:
            if record.chunk_id in seen:
                continue
            seen.add(record.chunk_id)
            try:
                chunk = await self.chunks.get_by_id(record.chunk_id)
            except Exception as e:
                logger.warning(f"Could not load review chunk {record.chunk_id}: {e}")
                continue
            if chunk is not None:
                review.append(chunk)
        return review[:max_review]

    def create_session_context(self, plan: SessionPlan, now: datetime | None = None) -> SessionContext:
        """Start an active session from a plan."""
        return SessionContext(
            session_id=plan.session_id,
            learner_id=plan.learner_id,
            topic=plan.topic,
            current_target_level=plan.difficulty,
            base_target_level=plan.difficulty,
            started_at=now or utc_now(),
            phase=SessionPhase.ACTIVE,
        )

    # -------------------------------------------------------------------------
    # Per-activity loop
    # -------------------------------------------------------------------------

    async def report_activity_completion(
        self,
        learner_id: str,
        activity: ActivityResult,
        context: SessionContext,
        now: datetime | None = None,
    ) -> ActivityReport:
        """
        Fold one completed activity into the session.

        Args:
            learner_id: Learner ID (must own the context)
            activity: Completed activity
            context: Current session context (not modified)
            now: Reference time

        Returns:
            ActivityReport with the new context, adaptation and batch result
        """
        if context.phase != SessionPhase.ACTIVE:
            raise InvalidInputError(f"Session {context.session_id} is {context.phase.value}")
        if learner_id != context.learner_id:
            raise InvalidInputError(f"Session {context.session_id} belongs to another learner")
        now = now or utc_now()
        thresholds = self.config.filter

        previous = context.activities
        if previous:
            average_ms = sum(a.response_time_ms for a in previous) / len(previous)
        else:
            average_ms = float(activity.response_time_ms)
        signals = detect_signals(activity, average_ms, thresholds)

        updated = replace(
            context,
            activities=(*previous, activity),
            filter_signals=(*context.filter_signals, *signals),
            new_chunk_ids=(
                context.new_chunk_ids
                if activity.is_review
                else _merge_ids(context.new_chunk_ids, activity.chunk_ids)
            ),
            review_chunk_ids=(
                _merge_ids(context.review_chunk_ids, activity.chunk_ids)
                if activity.is_review
                else context.review_chunk_ids
            ),
        )

        batch = await self.srs.record_batch_encounters(
            learner_id,
            activity.chunk_ids,
            outcome=EncounterOutcome(
                correct=activity.correct,
                used_help=activity.used_help,
                response_time_ms=activity.response_time_ms,
            ),
            now=now,
        )

        profile = await self._update_confidence(learner_id, activity, now)

        recent = updated.filter_signals[-thresholds.signal_window:]
        score = filter_score(profile, recent, now, thresholds)
        adaptation = get_adaptation(
            score, recent, updated.current_target_level, thresholds, self.rng
        )

        if adaptation.type == AdaptationType.SIMPLIFY and adaptation.drop_to_level is not None:
            updated = replace(updated, current_target_level=adaptation.drop_to_level)
        elif adaptation.type == AdaptationType.CHALLENGE and adaptation.increase_to_level is not None:
            updated = replace(updated, current_target_level=adaptation.increase_to_level)
        if not adaptation.is_none:
            updated = replace(updated, adaptations=(*updated.adaptations, adaptation))
            logger.debug(f"Adaptation {adaptation.type.value} at filter score {score:.2f}")

        if not activity.correct and not activity.used_help:
            if wrong_streak(updated.activities) >= self.config.session.wrong_streak_threshold:
                await self._record_struggle(learner_id, now)

        return ActivityReport(context=updated, adaptation=adaptation, batch=batch, filter_score=score)

    async def _update_confidence(
        self, learner_id: str, activity: ActivityResult, now: datetime
    ) -> LearnerProfile:
        try:
            profile = await self.profile_service.update_confidence(
                learner_id, activity.correct, activity.used_help, now
            )
        except Exception as e:
            logger.warning(f"Could not update confidence for {learner_id}: {e}")
            profile = None
        return profile or LearnerProfile(learner_id=learner_id)

    async def _record_struggle(self, learner_id: str, now: datetime) -> None:
        try:
            await self.profile_service.record_struggle(learner_id, now)
        except Exception as e:
            logger.warning(f"Could not record struggle for {learner_id}: {e}")

    def get_next_activity(self, context: SessionContext, plan: SessionPlan) -> ActivityRecommendation:
        """Recommend the next activity type and chunks."""
        session = self.config.session
        streak = wrong_streak(context.activities)
        unseen_review = [c for c in plan.review_chunks if c.id not in context.review_chunk_ids]
        unseen_new = [c for c in plan.target_chunks if c.id not in context.new_chunk_ids]

        is_review = True
        if streak >= 2 and unseen_review:
            chunks, reason = unseen_review, REASON_REVIEW_AFTER_MISTAKES
        elif len(context.activities) % session.review_every == 0 and unseen_review:
            chunks, reason = unseen_review, REASON_SCHEDULED_REVIEW
        elif unseen_new:
            chunks, reason, is_review = unseen_new, REASON_NEW_CONTENT, False
        elif unseen_review:
            chunks, reason = unseen_review, REASON_FALLBACK_REVIEW
        else:
            chunks, reason, is_review = [], REASON_ALL_COVERED, False

        if is_review:
            activity_type = ActivityType.MULTIPLE_CHOICE
        elif streak >= 2:
            activity_type = ActivityType.TRUE_FALSE
        else:
            activity_type = ACTIVITY_ORDER[len(context.activities) % len(ACTIVITY_ORDER)]

        latest = context.latest_adaptation
        return ActivityRecommendation(
            activity_type=activity_type,
            chunks=chunks[: session.chunks_per_activity],
            reason=reason,
            difficulty=context.current_target_level,
            is_review=is_review,
            adaptation=latest if latest is not None and not latest.is_none else None,
        )

    def should_end_session(
        self, context: SessionContext, options: SessionOptions | None = None
    ) -> EndDecision:
        """
        Decide whether the session should stop.

        Returns:
            EndDecision; when ending, `context` is a copy in the ENDING phase
        """
        session = self.config.session
        options = options or SessionOptions()
        total = len(context.activities)

        reason = ""
        if total >= session.fatigue_min_activities:
            wrong = sum(1 for a in context.activities if not a.correct)
            if wrong / total > session.fatigue_wrong_rate:
                reason = END_FATIGUE
        if not reason:
            wrong_signals = sum(1 for s in context.filter_signals if s.type == SignalType.WRONG)
            if wrong_signals >= session.struggle_wrong_signals:
                reason = END_STRUGGLE
        if not reason:
            duration = options.duration_minutes or session.default_duration_minutes
            if total * session.minutes_per_activity >= duration:
                reason = END_TIME

        if not reason:
            return EndDecision(should_end=False)
        return EndDecision(
            should_end=True,
            reason=reason,
            context=replace(context, phase=SessionPhase.ENDING),
        )

    # -------------------------------------------------------------------------
    # Summary
    # -------------------------------------------------------------------------

    async def generate_session_summary(
        self,
        context: SessionContext,
        plan: SessionPlan,
        now: datetime | None = None,
    ) -> SessionSummary:
        """
        Close the session, update learner aggregates and build the report.

        Raises:
            InvalidInputError: if the session was already summarized
        """
        if context.phase == SessionPhase.SUMMARIZED:
            raise InvalidInputError(f"Session {context.session_id} already summarized")
        session = self.config.session
        now = now or utc_now()

        duration = max(0, round_half_up((now - context.started_at).total_seconds() / 60))
        activities = context.activities
        total = len(activities)
        correct_first_try = sum(1 for a in activities if a.correct and a.attempts == 1)
        accuracy = correct_first_try / total if total else 0.0

        reward_points = correct_first_try * session.reward_per_correct
        if max_correct_streak(activities) >= session.streak_bonus_length:
            reward_points += session.streak_bonus

        profile = await self._close_profile(context, duration, correct_first_try, now)
        confidence_end = profile.average_confidence if profile else plan.starting_confidence

        results: dict[str, list[int]] = {}
        for activity in activities:
            for chunk_id in activity.chunk_ids:
                tally = results.setdefault(chunk_id, [0, 0])
                tally[1] += 1
                if activity.correct:
                    tally[0] += 1

        struggling = [cid for cid, (ok, seen) in results.items() if ok / seen < 0.5]
        mastered = [cid for cid, (ok, seen) in results.items() if ok == seen and seen >= 2]

        summary = SessionSummary(
            session_id=context.session_id,
            duration_minutes=duration,
            activities_completed=total,
            correct_first_try=correct_first_try,
            accuracy=accuracy,
            new_chunks_learned=len(context.new_chunk_ids),
            chunks_mastered=len(mastered),
            chunks_reviewed=len(context.review_chunk_ids),
            reward_points=reward_points,
            confidence_change=confidence_end - plan.starting_confidence,
            filter_risk_score=profile.filter_risk_score if profile else 0.0,
            tips=session_tips(accuracy, duration, len(struggling)),
            struggling_chunks=struggling,
            mastered_chunks=mastered,
            final_context=replace(context, phase=SessionPhase.SUMMARIZED),
        )
        logger.info(
            f"Session {context.session_id} summarized: {total} activities, "
            f"accuracy {accuracy:.0%}, {reward_points} points"
        )
        return summary

    async def _close_profile(
        self,
        context: SessionContext,
        duration: int,
        correct_first_try: int,
        now: datetime,
    ) -> LearnerProfile | None:
        learner_id = context.learner_id
        try:
            profile = await self.profiles.get(learner_id)
            if profile is None:
                return None
            session_risk = filter_score(profile, context.filter_signals, now, self.config.filter)
            await self.profile_service.record_session(
                learner_id,
                duration_minutes=duration,
                activities=len(context.activities),
                correct_first_try=correct_first_try,
                help_used=sum(1 for a in context.activities if a.used_help),
                session_risk=session_risk,
                now=now,
            )
            await self.profile_service.update_chunk_stats(learner_id, self.chunks, now)
            return await self.profiles.get(learner_id)
        except Exception as e:
            logger.warning(f"Could not update profile for {learner_id} after session: {e}")
            return None
