"""
Unit tests for the store-backed scheduler service.
"""

from datetime import timedelta

import pytest

from src.pedagogy.errors import CollaboratorError, InvalidInputError
from src.pedagogy.memory_store import InMemoryChunkStore
from src.pedagogy.models import ChunkStatus
from src.pedagogy.srs import EncounterOutcome, SRSService


class FlakyChunkStore(InMemoryChunkStore):
    """Chunk store that fails reads and writes for selected chunks."""

    def __init__(self, chunks=None, failing_ids=(), fail_queries=False):
        super().__init__(chunks)
        self.failing_ids = set(failing_ids)
        self.fail_queries = fail_queries

    async def get_acquisition_record(self, learner_id, chunk_id):
        if chunk_id in self.failing_ids:
            raise ConnectionError(f"store unavailable for {chunk_id}")
        return await super().get_acquisition_record(learner_id, chunk_id)

    async def find_due(self, learner_id, now, limit):
        if self.fail_queries:
            raise ConnectionError("store unavailable")
        return await super().find_due(learner_id, now, limit)

    async def find_by_status(self, learner_id, status, limit):
        if self.fail_queries:
            raise ConnectionError("store unavailable")
        return await super().find_by_status(learner_id, status, limit)


class TestRecordEncounter:
    @pytest.mark.asyncio
    async def test_creates_record_on_first_sight(self, chunk_store, now):
        srs = SRSService(chunk_store)

        result = await srs.record_encounter("learner-1", "c1", EncounterOutcome(correct=True), now=now)

        assert result.previous_status == ChunkStatus.NEW
        assert result.record.status == ChunkStatus.LEARNING
        assert result.status_changed
        assert result.new_interval == 1
        stored = await chunk_store.get_acquisition_record("learner-1", "c1")
        assert stored.total_encounters == 1
        assert stored.ease_factor == pytest.approx(2.6)

    @pytest.mark.asyncio
    async def test_unknown_chunk_uses_default_interval(self, chunk_store, now):
        srs = SRSService(chunk_store)

        result = await srs.record_encounter("learner-1", "generated-9", EncounterOutcome(correct=True), now=now)

        assert result.record.chunk_id == "generated-9"
        assert result.record.interval == 1

    @pytest.mark.asyncio
    async def test_store_failure_propagates_as_collaborator_error(self, chunk_library, now):
        srs = SRSService(FlakyChunkStore(chunk_library, failing_ids={"c1"}))

        with pytest.raises(CollaboratorError) as exc_info:
            await srs.record_encounter("learner-1", "c1", EncounterOutcome(correct=True), now=now)

        assert exc_info.value.collaborator == "chunk-store"
        assert isinstance(exc_info.value.__cause__, ConnectionError)


class TestBatchEncounters:
    @pytest.mark.asyncio
    async def test_one_failure_does_not_block_the_rest(self, chunk_library, now):
        store = FlakyChunkStore(chunk_library, failing_ids={"c3"})
        srs = SRSService(store)

        result = await srs.record_batch_encounters(
            "learner-1", ["c1", "c2", "c3", "c4", "c5"], outcome=EncounterOutcome(correct=True), now=now
        )

        assert result.updated == 4
        assert result.failed == 1
        assert result.failed_ids == ["c3"]
        assert await store.get_acquisition_record("learner-1", "c5") is not None

    @pytest.mark.asyncio
    async def test_reports_graduations_and_fragile(self, chunk_store, make_record, now):
        await chunk_store.create_acquisition_record(
            make_record("c1", status=ChunkStatus.LEARNING, repetitions=2, interval=3, ease_factor=2.7)
        )
        await chunk_store.create_acquisition_record(make_record("c2", status=ChunkStatus.ACQUIRED))
        srs = SRSService(chunk_store)

        graduated = await srs.record_batch_encounters("learner-1", ["c1"], star_rating=3, now=now)
        slipped = await srs.record_batch_encounters("learner-1", ["c2"], star_rating=1, now=now)

        assert graduated.graduated == ["c1"]
        assert slipped.became_fragile == ["c2"]

    @pytest.mark.asyncio
    async def test_star_rating_two_counts_as_help(self, chunk_store, now):
        srs = SRSService(chunk_store)

        await srs.record_batch_encounters("learner-1", ["c1"], star_rating=2, now=now)

        record = await chunk_store.get_acquisition_record("learner-1", "c1")
        assert record.help_used_count == 1
        assert record.status == ChunkStatus.LEARNING

    @pytest.mark.asyncio
    async def test_empty_input_is_a_no_op(self, chunk_store, now):
        srs = SRSService(chunk_store)

        result = await srs.record_batch_encounters("learner-1", [], star_rating=3, now=now)

        assert result.updated == 0
        assert result.failed == 0

    @pytest.mark.asyncio
    async def test_requires_exactly_one_outcome_source(self, chunk_store):
        srs = SRSService(chunk_store)

        with pytest.raises(InvalidInputError):
            await srs.record_batch_encounters("learner-1", ["c1"])
        with pytest.raises(InvalidInputError):
            await srs.record_batch_encounters(
                "learner-1", ["c1"], outcome=EncounterOutcome(correct=True), star_rating=3
            )


class TestQueries:
    @pytest.mark.asyncio
    async def test_due_chunks_most_overdue_first(self, chunk_store, make_record, now):
        await chunk_store.create_acquisition_record(make_record("c1", next_review_date=now - timedelta(days=1)))
        await chunk_store.create_acquisition_record(make_record("c2", next_review_date=now - timedelta(days=5)))
        await chunk_store.create_acquisition_record(make_record("c3", next_review_date=now + timedelta(days=2)))
        srs = SRSService(chunk_store)

        due = await srs.get_due_chunks("learner-1", limit=10, now=now)

        assert [r.chunk_id for r in due] == ["c2", "c1"]

    @pytest.mark.asyncio
    async def test_read_failures_return_empty(self, chunk_library, now):
        srs = SRSService(FlakyChunkStore(chunk_library, fail_queries=True))

        assert await srs.get_due_chunks("learner-1", now=now) == []
        assert await srs.get_fragile_chunks("learner-1") == []
        assert await srs.decay_overdue_chunks("learner-1", now=now) == 0

    @pytest.mark.asyncio
    async def test_decay_turns_overdue_acquired_fragile(self, chunk_store, make_record, now):
        await chunk_store.create_acquisition_record(
            make_record("c1", status=ChunkStatus.ACQUIRED, next_review_date=now - timedelta(days=3))
        )
        await chunk_store.create_acquisition_record(
            make_record("c2", status=ChunkStatus.ACQUIRED, next_review_date=now + timedelta(days=3))
        )
        srs = SRSService(chunk_store)

        decayed = await srs.decay_overdue_chunks("learner-1", now=now)

        assert decayed == 1
        fragile = await srs.get_fragile_chunks("learner-1")
        assert [r.chunk_id for r in fragile] == ["c1"]

    @pytest.mark.asyncio
    async def test_topic_health_counts_unseen_as_new(self, chunk_store, make_record):
        await chunk_store.create_acquisition_record(make_record("c1", status=ChunkStatus.ACQUIRED))
        await chunk_store.create_acquisition_record(make_record("c2", status=ChunkStatus.FRAGILE))
        srs = SRSService(chunk_store)

        assert await srs.topic_health("learner-1", ["c1", "c2", "c3"]) == 60
