"""
Affective Filter Monitor.

Krashen's Affective Filter Hypothesis: anxiety, frustration and boredom
block acquisition even when input is comprehensible. This module scores that
risk from behavioral signals and picks an adaptation.

Signals:
- wrong: incorrect answer
- help: hint or translation requested
- slow: response slower than twice the session average
- fast: correct response quicker than half the session average
- quit: activity abandoned

Adaptations, in priority order:
1. suggest_break  - score above 0.8
2. simplify       - filter rising and score above 0.5
3. encourage      - wrong answers mixed with help or slow responses
4. challenge      - score below 0.3 with a trailing run of fast answers
5. none
"""

from __future__ import annotations

import random
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

from .errors import InvalidInputError
from .levels import clamp_level
from .models import (
    ActivityResult,
    AdaptationAction,
    AdaptationType,
    FilterSignal,
    LearnerProfile,
    Severity,
    SignalType,
    utc_now,
)

# Signals that belong to a failed attempt and so do not break a wrong streak
_STRUGGLE_SIGNALS = frozenset({SignalType.WRONG, SignalType.HELP, SignalType.SLOW})


@dataclass
class FilterThresholds:
    """Weights and thresholds for scoring and adaptation."""

    # Score weights
    wrong_streak_weight: float = 0.1
    wrong_streak_cap: float = 0.3
    help_rate_weight: float = 0.2
    low_confidence_weight: float = 0.2
    struggle_recency_weight: float = 0.2
    struggle_recency_days: float = 3.0
    session_wrong_weight: float = 0.05
    session_wrong_cap: float = 0.2
    session_help_weight: float = 0.03
    session_help_cap: float = 0.1
    session_slow_weight: float = 0.03
    session_slow_cap: float = 0.1

    # Pattern detection
    signal_window: int = 10
    wrong_streak_threshold: int = 3
    mixed_wrong_count: int = 2
    mixed_help_count: int = 2
    mixed_slow_count: int = 2
    quit_struggle_count: int = 2
    fast_streak_threshold: int = 3
    slow_response_multiplier: float = 2.0
    fast_response_multiplier: float = 0.5

    # Adaptation bands
    break_score: float = 0.8
    simplify_score: float = 0.5
    challenge_score: float = 0.3
    level_step: float = 0.5

    # Risk blending
    history_weight: float = 0.8
    daily_decay: float = 0.9
    max_decay_days: int = 10


ENCOURAGEMENT_MESSAGES: dict[str, tuple[str, ...]] = {
    "wrong_answer": (
        "Almost! Let's look at it together.",
        "Mistakes help us learn. Try again!",
        "Good try! Here's a hint...",
        "You're learning! That's what matters.",
    ),
    "help_used": (
        "Great job asking for help!",
        "Using hints is smart learning!",
        "That's how we learn new things!",
    ),
    "struggling": (
        "This one's tricky! Let's try something similar.",
        "You're doing great. Let's practice a bit more.",
        "Learning takes time. You've got this!",
        "Let's take it step by step.",
    ),
    "success": (
        "Perfect!",
        "You got it!",
        "Amazing!",
        "Exactly right!",
        "Brilliant!",
    ),
    "streak": (
        "You're on fire!",
        "Keep it up!",
        "You're unstoppable!",
    ),
    "suggest_break": (
        "You've been working hard! Want to take a short break?",
        "Great effort today! Maybe rest your brain for a bit?",
        "Time for a quick stretch? You've earned it!",
    ),
    "simplify": (
        "Let's try some easier ones first!",
        "Let's build up to that one.",
        "Let's practice the basics a bit more.",
    ),
    "challenge": (
        "You're ready for something harder!",
        "Let's level up!",
        "Time for a challenge!",
    ),
}


def random_message(category: str, rng: random.Random | None = None) -> str:
    """Pick a message from the catalogue."""
    if category not in ENCOURAGEMENT_MESSAGES:
        raise InvalidInputError(f"unknown message category: {category}")
    return (rng or random).choice(ENCOURAGEMENT_MESSAGES[category])


# =============================================================================
# Signal helpers
# =============================================================================


def count_signals(signals: Sequence[FilterSignal], signal_type: SignalType) -> int:
    return sum(1 for s in signals if s.type == signal_type)


def trailing_wrong_streak(signals: Sequence[FilterSignal]) -> int:
    """Wrong signals at the end of the sequence; help and slow do not break the run."""
    streak = 0
    for signal in reversed(signals):
        if signal.type == SignalType.WRONG:
            streak += 1
        elif signal.type not in _STRUGGLE_SIGNALS:
            break
    return streak


def trailing_fast_streak(signals: Sequence[FilterSignal]) -> int:
    streak = 0
    for signal in reversed(signals):
        if signal.type != SignalType.FAST:
            break
        streak += 1
    return streak


def detect_signals(
    activity: ActivityResult,
    average_response_ms: float,
    thresholds: FilterThresholds | None = None,
) -> list[FilterSignal]:
    """
    Derive filter signals from one activity outcome.

    Args:
        activity: Completed activity
        average_response_ms: Session average to compare against
        thresholds: Slow/fast multipliers

    Returns:
        Signals in wrong, help, slow, fast order
    """
    thresholds = thresholds or FilterThresholds()
    if average_response_ms < 0:
        raise InvalidInputError("average_response_ms must be non-negative")

    def signal(signal_type: SignalType, **data) -> FilterSignal:
        return FilterSignal(
            type=signal_type,
            timestamp=activity.timestamp,
            activity_id=activity.id,
            data=data,
        )

    signals: list[FilterSignal] = []
    if not activity.correct:
        signals.append(signal(SignalType.WRONG))
    if activity.used_help:
        signals.append(signal(SignalType.HELP))
    if activity.response_time_ms > average_response_ms * thresholds.slow_response_multiplier:
        signals.append(
            signal(
                SignalType.SLOW,
                response_time_ms=activity.response_time_ms,
                average_ms=average_response_ms,
            )
        )
    elif (
        activity.correct
        and activity.response_time_ms < average_response_ms * thresholds.fast_response_multiplier
    ):
        signals.append(signal(SignalType.FAST, response_time_ms=activity.response_time_ms))
    return signals


def record_signal(
    signals: Sequence[FilterSignal],
    signal_type: SignalType,
    activity_id: str | None = None,
    timestamp: datetime | None = None,
) -> tuple[FilterSignal, ...]:
    """Return a new signal sequence with one signal appended."""
    signal = FilterSignal(type=signal_type, timestamp=timestamp or utc_now(), activity_id=activity_id)
    return (*signals, signal)


# =============================================================================
# Scoring
# =============================================================================


def filter_score(
    profile: LearnerProfile,
    signals: Sequence[FilterSignal],
    now: datetime | None = None,
    thresholds: FilterThresholds | None = None,
) -> float:
    """
    Affective filter risk from learner aggregates plus session signals.

    Every term is non-negative, so appending wrong, help or slow signals never
    lowers the score. Fast and quit signals add nothing.

    Returns:
        Score within [0, 1]
    """
    t = thresholds or FilterThresholds()
    now = now or utc_now()
    score = 0.0

    score += min(t.wrong_streak_cap, trailing_wrong_streak(signals) * t.wrong_streak_weight)
    score += profile.help_request_rate * t.help_rate_weight
    score += (1.0 - profile.average_confidence) * t.low_confidence_weight

    if profile.last_struggle_date is not None:
        days = max(0.0, (now - profile.last_struggle_date).total_seconds() / 86400)
        if days <= t.struggle_recency_days:
            score += t.struggle_recency_weight * (1.0 - days / t.struggle_recency_days)

    score += min(t.session_wrong_cap, count_signals(signals, SignalType.WRONG) * t.session_wrong_weight)
    score += min(t.session_help_cap, count_signals(signals, SignalType.HELP) * t.session_help_weight)
    score += min(t.session_slow_cap, count_signals(signals, SignalType.SLOW) * t.session_slow_weight)

    return max(0.0, min(1.0, score))


def is_filter_rising(
    signals: Sequence[FilterSignal],
    window: int | None = None,
    thresholds: FilterThresholds | None = None,
) -> bool:
    """Whether the recent signals show a building frustration pattern."""
    t = thresholds or FilterThresholds()
    window = t.signal_window if window is None else window
    if window <= 0:
        raise InvalidInputError(f"window must be positive, got {window}")
    recent = list(signals)[-window:]

    if trailing_wrong_streak(recent) >= t.wrong_streak_threshold:
        return True

    wrong = count_signals(recent, SignalType.WRONG)
    if wrong >= t.mixed_wrong_count and count_signals(recent, SignalType.HELP) >= t.mixed_help_count:
        return True
    if wrong >= t.mixed_wrong_count and count_signals(recent, SignalType.SLOW) >= t.mixed_slow_count:
        return True

    for index, signal in enumerate(recent):
        if signal.type != SignalType.QUIT:
            continue
        struggles = sum(1 for s in recent[:index] if s.type in _STRUGGLE_SIGNALS)
        if struggles >= t.quit_struggle_count:
            return True
    return False


def get_adaptation(
    score: float,
    signals: Sequence[FilterSignal],
    current_level: float = 2.5,
    thresholds: FilterThresholds | None = None,
    rng: random.Random | None = None,
) -> AdaptationAction:
    """
    Choose an adaptation for the current filter state.

    Combinations not covered by a rule produce no adaptation.

    Args:
        score: Filter score from filter_score
        signals: Session signals (only the recent window is examined)
        current_level: Target level the adaptation adjusts
        thresholds: Bands and pattern thresholds
        rng: Random source for message selection

    Returns:
        AdaptationAction
    """
    t = thresholds or FilterThresholds()
    if not 0.0 <= score <= 1.0:
        raise InvalidInputError(f"score must be within [0, 1], got {score}")
    recent = list(signals)[-t.signal_window:]

    if score > t.break_score:
        return AdaptationAction(
            type=AdaptationType.SUGGEST_BREAK,
            severity=Severity.CRITICAL,
            message=random_message("suggest_break", rng),
        )

    wrong = count_signals(recent, SignalType.WRONG)
    help_used = count_signals(recent, SignalType.HELP)
    slow = count_signals(recent, SignalType.SLOW)

    if is_filter_rising(recent, thresholds=t) and score > t.simplify_score:
        category = "struggling" if wrong >= t.wrong_streak_threshold else "simplify"
        return AdaptationAction(
            type=AdaptationType.SIMPLIFY,
            severity=Severity.WARNING,
            message=random_message(category, rng),
            drop_to_level=clamp_level(current_level - t.level_step),
        )

    if wrong >= 1 and (help_used >= 1 or slow >= 1):
        category = "help_used" if help_used > wrong else "wrong_answer"
        return AdaptationAction(
            type=AdaptationType.ENCOURAGE,
            severity=Severity.INFO,
            message=random_message(category, rng),
        )

    if score < t.challenge_score and trailing_fast_streak(recent) >= t.fast_streak_threshold:
        return AdaptationAction(
            type=AdaptationType.CHALLENGE,
            severity=Severity.SUCCESS,
            message=random_message("challenge", rng),
            increase_to_level=clamp_level(current_level + t.level_step),
        )

    return AdaptationAction.none()


def calculate_updated_filter_risk(
    current_risk: float,
    session_risk: float,
    thresholds: FilterThresholds | None = None,
) -> float:
    """Blend a session's risk into the stored risk; history dominates."""
    t = thresholds or FilterThresholds()
    blended = current_risk * t.history_weight + session_risk * (1.0 - t.history_weight)
    return max(0.0, min(1.0, blended))


def decay_filter_risk(
    risk: float,
    days_since_last_session: float,
    thresholds: FilterThresholds | None = None,
) -> float:
    """Relax stored risk after time away, capped at ten days of decay."""
    t = thresholds or FilterThresholds()
    if days_since_last_session < 0:
        raise InvalidInputError("days_since_last_session must be non-negative")
    days = min(days_since_last_session, t.max_decay_days)
    return max(0.0, risk * t.daily_decay**days)


def requires_immediate_action(action: AdaptationAction) -> bool:
    return action.severity in (Severity.CRITICAL, Severity.WARNING) and not action.is_none


def involves_difficulty_change(action: AdaptationAction) -> bool:
    return action.type in (AdaptationType.SIMPLIFY, AdaptationType.CHALLENGE)
