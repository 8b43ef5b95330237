"""
Unit tests for the SM-2 scheduler.

Tests cover:
- Interval progression 1, 3, then interval x EF
- Ease factor bounds and the 180 day cap
- Status transitions (NEW, LEARNING, ACQUIRED, FRAGILE)
- Encounter counters and per-chunk confidence
- Topic health
"""

from datetime import timedelta

import pytest

from src.pedagogy.errors import InvalidInputError
from src.pedagogy.models import ChunkStatus
from src.pedagogy.srs import (
    EncounterOutcome,
    SRSConfig,
    apply_encounter,
    calculate_topic_health,
    chunk_confidence,
    next_review,
    round_half_up,
)

CLEAN = EncounterOutcome(correct=True)
HELPED = EncounterOutcome(correct=True, used_help=True)
WRONG = EncounterOutcome(correct=False)


class TestIntervalProgression:
    """Clean answers follow 1, 3, then round(interval x EF)."""

    def test_three_clean_answers_from_new(self, make_record, now):
        record = make_record(status=ChunkStatus.NEW)
        intervals = []
        for _ in range(3):
            record, review = apply_encounter(record, CLEAN, now=now)
            intervals.append(review.interval)

        assert intervals == [1, 3, 8]
        assert record.ease_factor == pytest.approx(2.8)
        assert record.repetitions == 3
        assert record.status == ChunkStatus.ACQUIRED

    def test_due_date_is_interval_days_ahead(self, make_record, now):
        record = make_record(status=ChunkStatus.LEARNING, repetitions=1, interval=1)

        review = next_review(record, CLEAN, now=now)

        assert review.interval == 3
        assert review.next_review_date == now + timedelta(days=3)

    def test_interval_capped_at_180_days(self, make_record, now):
        record = make_record(status=ChunkStatus.ACQUIRED, repetitions=6, interval=100)

        review = next_review(record, CLEAN, now=now)

        assert review.interval == 180

    def test_half_rounds_up(self):
        assert round_half_up(8.5) == 9
        assert round_half_up(8.4) == 8


class TestOutcomes:
    def test_wrong_answer_resets_and_penalizes(self, make_record, now):
        record = make_record(status=ChunkStatus.ACQUIRED, interval=20, repetitions=5)

        review = next_review(record, WRONG, now=now)

        assert review.status == ChunkStatus.FRAGILE
        assert review.interval == 1
        assert review.repetitions == 0
        assert review.ease_factor == pytest.approx(2.2)

    def test_wrong_answer_keeps_learning_status(self, make_record, now):
        record = make_record(status=ChunkStatus.LEARNING, interval=3, repetitions=2)

        review = next_review(record, WRONG, now=now)

        assert review.status == ChunkStatus.LEARNING

    def test_helped_answer_stretches_interval(self, make_record, now):
        record = make_record(status=ChunkStatus.LEARNING, interval=10, repetitions=2)

        review = next_review(record, HELPED, now=now)

        assert review.interval == 12
        assert review.ease_factor == pytest.approx(2.4)
        assert review.repetitions == 2
        assert review.status == ChunkStatus.LEARNING

    def test_helped_answer_moves_new_to_learning(self, make_record, now):
        record = make_record(status=ChunkStatus.NEW)

        review = next_review(record, HELPED, now=now)

        assert review.status == ChunkStatus.LEARNING

    def test_helped_interval_is_capped(self, make_record, now):
        record = make_record(status=ChunkStatus.ACQUIRED, interval=170, repetitions=5)

        review = next_review(record, HELPED, now=now)

        assert review.interval == 180

    def test_fragile_recovers_on_clean_answer(self, make_record, now):
        record = make_record(status=ChunkStatus.FRAGILE, ease_factor=1.9, repetitions=0)

        review = next_review(record, CLEAN, now=now)

        assert review.status == ChunkStatus.ACQUIRED
        assert review.interval == 1

    def test_new_never_jumps_to_acquired(self, make_record, now):
        record = make_record(status=ChunkStatus.NEW, repetitions=5, ease_factor=2.9)

        review = next_review(record, CLEAN, now=now)

        assert review.status == ChunkStatus.LEARNING

    def test_learning_needs_ease_to_graduate(self, make_record, now):
        record = make_record(status=ChunkStatus.LEARNING, repetitions=4, ease_factor=1.5)

        review = next_review(record, CLEAN, now=now)

        assert review.status == ChunkStatus.LEARNING


class TestEaseBounds:
    def test_ease_floor(self, make_record, now):
        record = make_record(ease_factor=1.35)
        assert next_review(record, WRONG, now=now).ease_factor == pytest.approx(1.3)

    def test_ease_ceiling(self, make_record, now):
        record = make_record(ease_factor=2.95)
        assert next_review(record, CLEAN, now=now).ease_factor == pytest.approx(3.0)

    def test_ease_stays_in_bounds_over_long_runs(self, make_record, now):
        config = SRSConfig()
        record = make_record(status=ChunkStatus.NEW)
        for outcome in [WRONG] * 10 + [CLEAN] * 20 + [HELPED] * 5:
            record, review = apply_encounter(record, outcome, now=now, config=config)
            assert config.min_ease_factor <= review.ease_factor <= config.max_ease_factor
            assert 1 <= review.interval <= config.max_interval_days

    def test_invalid_interval_raises(self, make_record, now):
        record = make_record(interval=0)
        with pytest.raises(InvalidInputError):
            next_review(record, CLEAN, now=now)


class TestEncounterCounters:
    def test_counters_track_outcomes(self, make_record, now):
        record = make_record(status=ChunkStatus.NEW)
        for outcome in (CLEAN, HELPED, WRONG, CLEAN):
            record, _ = apply_encounter(record, outcome, now=now)

        assert record.total_encounters == 4
        assert record.correct_first_try == 2
        assert record.help_used_count == 1
        assert record.wrong_attempts == 1
        assert record.confidence_score == pytest.approx(0.45)
        assert record.last_encountered_at == now

    def test_original_record_untouched(self, make_record, now):
        record = make_record(status=ChunkStatus.NEW)
        apply_encounter(record, CLEAN, now=now)
        assert record.total_encounters == 0
        assert record.status == ChunkStatus.NEW

    def test_chunk_confidence(self):
        assert chunk_confidence(0, 0, 0) == 0.5
        assert chunk_confidence(3, 4, 1) == pytest.approx(0.7)
        assert chunk_confidence(1, 1, 10) == pytest.approx(0.8)

    def test_chunk_confidence_rejects_bad_counts(self):
        with pytest.raises(InvalidInputError):
            chunk_confidence(5, 4, 0)


class TestStarRatings:
    @pytest.mark.parametrize(
        "stars,correct,used_help",
        [(3, True, False), (2, True, True), (1, False, False)],
    )
    def test_mapping(self, stars, correct, used_help):
        outcome = EncounterOutcome.from_star_rating(stars)
        assert outcome.correct is correct
        assert outcome.used_help is used_help

    def test_out_of_range(self):
        with pytest.raises(InvalidInputError):
            EncounterOutcome.from_star_rating(4)


class TestTopicHealth:
    def test_empty_is_neutral(self):
        assert calculate_topic_health([]) == 50

    def test_acquired_and_fragile(self):
        assert calculate_topic_health([ChunkStatus.ACQUIRED, ChunkStatus.FRAGILE]) == 65

    def test_rounds_to_integer(self):
        statuses = [ChunkStatus.ACQUIRED, ChunkStatus.LEARNING, ChunkStatus.FRAGILE]
        assert calculate_topic_health(statuses) == 67

    def test_accepts_records(self, make_record):
        records = [
            make_record("c1", status=ChunkStatus.ACQUIRED),
            make_record("c2", status=ChunkStatus.NEW),
        ]
        assert calculate_topic_health(records) == 75
